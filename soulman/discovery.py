"""
LAN instance discovery for Soulman.

Running copies find each other with a small plaintext protocol over UDP
port 45832::

    SOULMAN_DISCOVERY_V1:REQUEST:<requestId>:PORT:<returnPort>
    SOULMAN_DISCOVERY_V1:RESPONSE:<requestId>:<machineName>|<version>

Every instance runs a listener that answers requests.  A query sends the
request to the limited broadcast address, the multicast group and every
local subnet broadcast address (twice each, UDP being UDP), then collects
responses for a fixed window.  Responses are de-duplicated by machine
name; the latest one wins.  This is presence detection only, with no
acknowledgements or sequence numbers.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import struct
import threading
import time
import uuid
from dataclasses import dataclass

import psutil

from soulman import __version__
from soulman.platform_utils import get_machine_name

logger = logging.getLogger(__name__)

DISCOVERY_PORT = 45832
MAGIC_HEADER = "SOULMAN_DISCOVERY_V1"
MULTICAST_GROUP = "239.255.64.64"
LIMITED_BROADCAST = "255.255.255.255"

REQUEST_PREFIX = f"{MAGIC_HEADER}:REQUEST:"
RESPONSE_PREFIX = f"{MAGIC_HEADER}:RESPONSE:"

_PROBE_REPEATS = 2
_RECV_BUFFER = 2048
_POLL_SECONDS = 0.25  # receive timeout so loops notice stop/cancel quickly

Endpoint = tuple[str, int]


@dataclass(frozen=True)
class DiscoveredInstance:
    """Another Soulman instance that answered a probe."""
    machine_name: str
    version: str
    endpoint: Endpoint


# ----------------------------------------------------------------------
# Wire format
# ----------------------------------------------------------------------

def new_request_id() -> str:
    return uuid.uuid4().hex


def build_request(request_id: str, return_port: int) -> bytes:
    return f"{REQUEST_PREFIX}{request_id}:PORT:{return_port}".encode("utf-8")


def build_response(request_id: str, machine_name: str, version: str) -> bytes:
    return f"{RESPONSE_PREFIX}{request_id}:{machine_name}|{version}".encode("utf-8")


def _decode(data: bytes) -> str | None:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def parse_request(message: str) -> tuple[str, int | None] | None:
    """
    Parse a request into ``(request_id, return_port)``.

    ``return_port`` is None when the ``PORT`` field is missing or invalid.
    Returns None for anything that is not a request.
    """
    if not message.startswith(REQUEST_PREFIX):
        return None
    parts = [p for p in message[len(REQUEST_PREFIX):].split(":") if p]
    if not parts or not parts[0].strip():
        return None

    request_id = parts[0].strip()
    port = None
    for i in range(1, len(parts) - 1):
        if parts[i].upper() == "PORT":
            try:
                candidate = int(parts[i + 1])
            except ValueError:
                continue
            if 0 < candidate < 65536:
                port = candidate
                break
    return request_id, port


def parse_response(message: str) -> tuple[str, str, str] | None:
    """Parse a response into ``(request_id, machine_name, version)`` or None."""
    if not message.startswith(RESPONSE_PREFIX):
        return None
    remainder = message[len(RESPONSE_PREFIX):]
    request_id, sep, body = remainder.partition(":")
    if not sep or not request_id.strip():
        return None
    fields = body.split("|")
    machine = fields[0].strip()
    if not machine:
        return None
    version = fields[1].strip() if len(fields) > 1 else ""
    return request_id.strip(), machine, version


# ----------------------------------------------------------------------
# Probe destinations
# ----------------------------------------------------------------------

def calculate_broadcast(address: str, netmask: str) -> str | None:
    """Return the subnet broadcast address (``address | ~netmask``)."""
    try:
        ip = int(ipaddress.IPv4Address(address))
        mask = int(ipaddress.IPv4Address(netmask))
    except ValueError:
        return None
    return str(ipaddress.IPv4Address(ip | (~mask & 0xFFFFFFFF)))


def _interface_broadcasts() -> list[str]:
    """Subnet broadcast addresses of every up, non-loopback IPv4 interface."""
    found = []
    try:
        stats = psutil.net_if_stats()
        for name, addrs in psutil.net_if_addrs().items():
            if name in stats and not stats[name].isup:
                continue
            for addr in addrs:
                if addr.family != socket.AF_INET or not addr.netmask:
                    continue
                try:
                    if ipaddress.IPv4Address(addr.address).is_loopback:
                        continue
                except ValueError:
                    continue
                broadcast = calculate_broadcast(addr.address, addr.netmask)
                if broadcast and broadcast not in found:
                    found.append(broadcast)
    except Exception:
        logger.debug("Could not enumerate network interfaces", exc_info=True)
    return found


def broadcast_endpoints(port: int = DISCOVERY_PORT) -> list[Endpoint]:
    """Every destination a probe is sent to."""
    endpoints = [(LIMITED_BROADCAST, port), (MULTICAST_GROUP, port)]
    for address in _interface_broadcasts():
        if (address, port) not in endpoints:
            endpoints.append((address, port))
    return endpoints


# ----------------------------------------------------------------------
# Pending requests
# ----------------------------------------------------------------------

class _PendingDiscovery:
    """Responses collected for one request id, keyed by machine name."""

    def __init__(self) -> None:
        self._instances: dict[str, DiscoveredInstance] = {}
        self._lock = threading.Lock()

    def add(self, instance: DiscoveredInstance) -> None:
        with self._lock:
            self._instances[instance.machine_name.casefold()] = instance

    @property
    def results(self) -> list[DiscoveredInstance]:
        with self._lock:
            return sorted(self._instances.values(), key=lambda i: i.machine_name.casefold())


class InstanceDiscovery:
    """
    Listener and query client for LAN discovery.

    Parameters
    ----------
    machine_name : str, optional
        Name this instance answers with; defaults to the host name.
    version : str
        Version this instance answers with.
    port : int
        UDP port the listener binds to, and the return port requested in
        probes.  ``0`` binds an ephemeral port (tests).
    """

    def __init__(
        self,
        machine_name: str | None = None,
        version: str = __version__,
        port: int = DISCOVERY_PORT,
    ):
        self.machine_name = machine_name or get_machine_name()
        self.version = version
        self._port = port
        self._pending: dict[str, _PendingDiscovery] = {}
        self._pending_lock = threading.Lock()
        self._stop = threading.Event()
        self._ready = threading.Event()
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """The bound listener port once started, else the configured one."""
        return self._port

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    def start(self, wait: float = 2.0) -> bool:
        """Start the listener thread.  Returns True once the socket is bound."""
        if self._thread is not None and self._thread.is_alive():
            return self._sock is not None
        self._stop.clear()
        self._ready.clear()
        self._thread = threading.Thread(
            target=self._listen, daemon=True, name="DiscoveryListener"
        )
        self._thread.start()
        self._ready.wait(timeout=wait)
        return self._sock is not None

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the listener and close its socket."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._close_socket()

    @property
    def is_listening(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and self._sock is not None

    def _close_socket(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                logger.debug("Error closing discovery socket", exc_info=True)

    def _open_listener(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(("", self._port))
        except OSError:
            sock.close()
            raise
        try:
            membership = struct.pack(
                "4s4s", socket.inet_aton(MULTICAST_GROUP), socket.inet_aton("0.0.0.0")
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        except OSError as exc:
            # multicast is best effort; broadcast and unicast still work
            logger.debug("Could not join multicast group %s: %s", MULTICAST_GROUP, exc)
        sock.settimeout(_POLL_SECONDS)
        return sock

    def _listen(self) -> None:
        try:
            self._sock = self._open_listener()
            self._port = self._sock.getsockname()[1]
            logger.info("Instance discovery listening on UDP %d", self._port)
        except OSError as exc:
            logger.warning(
                "Could not start instance discovery listener on UDP %d: %s", self._port, exc
            )
            return
        finally:
            self._ready.set()

        sock = self._sock
        while not self._stop.is_set():
            try:
                data, remote = sock.recvfrom(_RECV_BUFFER)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                logger.debug("Instance discovery receive failed: %s", exc)
                # avoid a hot loop if the socket went bad
                self._stop.wait(timeout=_POLL_SECONDS)
                continue
            try:
                self._handle_datagram(sock, data, remote)
            except Exception:
                logger.debug("Failed handling datagram from %s", remote, exc_info=True)
        self._close_socket()
        logger.info("Instance discovery listener stopped")

    def _handle_datagram(self, sock: socket.socket, data: bytes, remote: Endpoint) -> None:
        message = _decode(data)
        if message is None:
            return
        if self._handle_response(message, remote):
            return
        request = parse_request(message)
        if request is not None:
            self._reply(sock, request[0], request[1], remote)

    def _reply(
        self,
        sock: socket.socket,
        request_id: str,
        return_port: int | None,
        remote: Endpoint,
    ) -> None:
        payload = build_response(request_id, self.machine_name, self.version)
        reply_to = (remote[0], return_port) if return_port else remote
        targets = [reply_to]
        # also answer the source port, for senders whose inbound 45832 is blocked
        if reply_to != remote:
            targets.append(remote)
        for target in targets:
            try:
                sock.sendto(payload, target)
            except OSError as exc:
                logger.debug("Failed replying to discovery request at %s: %s", target, exc)
        logger.debug("Answered discovery request %s from %s", request_id, remote)

    def _handle_response(self, message: str, remote: Endpoint) -> bool:
        """Route a response to its pending query.  Returns True if *message* was a response."""
        if not message.startswith(RESPONSE_PREFIX):
            return False
        parsed = parse_response(message)
        if parsed is None:
            return True
        request_id, machine, version = parsed
        if machine.casefold() == self.machine_name.casefold():
            return True
        with self._pending_lock:
            pending = self._pending.get(request_id)
        if pending is not None:
            pending.add(DiscoveredInstance(machine, version, (remote[0], remote[1])))
        return True

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def discover(
        self,
        timeout: float = 3.0,
        cancel: threading.Event | None = None,
        endpoints: list[Endpoint] | None = None,
    ) -> list[DiscoveredInstance]:
        """
        Probe the LAN and return the instances that answered within *timeout*.

        Uses its own socket, independent of the listener.  *endpoints*
        replaces the computed broadcast destinations.  Never raises for
        network problems; returns an empty list instead.
        """
        request_id = new_request_id()
        pending = _PendingDiscovery()
        with self._pending_lock:
            self._pending[request_id] = pending

        try:
            try:
                sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            except OSError as exc:
                logger.debug("Could not open discovery socket: %s", exc)
                return []
            with sock:
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 0)
                    sock.bind(("", 0))
                except OSError as exc:
                    logger.debug("Could not prepare discovery socket: %s", exc)
                    return []

                probe = build_request(request_id, self._port or DISCOVERY_PORT)
                targets = endpoints if endpoints is not None else broadcast_endpoints(
                    self._port or DISCOVERY_PORT
                )
                sent = 0
                for endpoint in targets:
                    # send a couple times to improve odds across flaky networks
                    for _ in range(_PROBE_REPEATS):
                        try:
                            sock.sendto(probe, endpoint)
                            sent += 1
                        except OSError as exc:
                            logger.debug("Failed sending discovery probe to %s: %s", endpoint, exc)
                if sent == 0:
                    logger.debug("No discovery probe could be sent")
                    return []

                self._collect(sock, timeout, cancel)
            return pending.results
        finally:
            with self._pending_lock:
                self._pending.pop(request_id, None)

    def _collect(self, sock: socket.socket, timeout: float, cancel: threading.Event | None) -> None:
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            if cancel is not None and cancel.is_set():
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock.settimeout(min(remaining, _POLL_SECONDS))
            try:
                data, remote = sock.recvfrom(_RECV_BUFFER)
            except socket.timeout:
                continue
            except OSError as exc:
                logger.debug("Discovery receive failed: %s", exc)
                continue
            message = _decode(data)
            if message is not None:
                self._handle_response(message, remote)
