import socket
import threading
import time
from types import SimpleNamespace

import pytest

from soulman import discovery
from soulman.discovery import (
    DISCOVERY_PORT,
    LIMITED_BROADCAST,
    MULTICAST_GROUP,
    DiscoveredInstance,
    InstanceDiscovery,
    _PendingDiscovery,
    broadcast_endpoints,
    build_request,
    build_response,
    calculate_broadcast,
    parse_request,
    parse_response,
)


@pytest.fixture
def remote():
    """A listener standing in for another machine, on an ephemeral port."""
    listener = InstanceDiscovery(machine_name="REMOTE-PC", version="2.1.0", port=0)
    assert listener.start()
    yield listener
    listener.stop()


def _ask(listener, payload, timeout=2.0):
    """Send *payload* to *listener* from a fresh socket and return the reply text."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.bind(("127.0.0.1", 0))
        client.settimeout(timeout)
        client.sendto(payload, ("127.0.0.1", listener.port))
        data, _ = client.recvfrom(2048)
        return data.decode("utf-8")


# ---- wire format ----

def test_request_wire_format():
    assert build_request("abc", 45832) == b"SOULMAN_DISCOVERY_V1:REQUEST:abc:PORT:45832"


def test_response_wire_format():
    assert build_response("abc", "STUDIO", "1.2.3") == b"SOULMAN_DISCOVERY_V1:RESPONSE:abc:STUDIO|1.2.3"


def test_parse_request():
    assert parse_request("SOULMAN_DISCOVERY_V1:REQUEST:abc:PORT:45832") == ("abc", 45832)
    assert parse_request("SOULMAN_DISCOVERY_V1:REQUEST:abc:port:5000") == ("abc", 5000)
    assert parse_request("SOULMAN_DISCOVERY_V1:REQUEST:abc") == ("abc", None)
    assert parse_request("SOULMAN_DISCOVERY_V1:REQUEST:abc:PORT:nope") == ("abc", None)
    assert parse_request("SOULMAN_DISCOVERY_V1:REQUEST:") is None
    assert parse_request("OTHER_APP:REQUEST:abc:PORT:1") is None


def test_parse_response():
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE:abc:STUDIO|1.0") == ("abc", "STUDIO", "1.0")
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE:abc:STUDIO") == ("abc", "STUDIO", "")
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE:abc:STUDIO|1.0|extra") == ("abc", "STUDIO", "1.0")
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE:abc") is None
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE::STUDIO|1.0") is None
    assert parse_response("SOULMAN_DISCOVERY_V1:RESPONSE:abc:|1.0") is None
    assert parse_response("SOULMAN_DISCOVERY_V1:REQUEST:abc:PORT:1") is None


# ---- probe destinations ----

def test_calculate_broadcast():
    assert calculate_broadcast("192.168.1.23", "255.255.255.0") == "192.168.1.255"
    assert calculate_broadcast("10.1.2.3", "255.0.0.0") == "10.255.255.255"
    assert calculate_broadcast("172.16.5.4", "255.255.240.0") == "172.16.15.255"
    assert calculate_broadcast("bogus", "255.0.0.0") is None


def test_broadcast_endpoints_from_interfaces(monkeypatch):
    addrs = {
        "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1", netmask="255.0.0.0")],
        "eth0": [
            SimpleNamespace(family=socket.AF_INET, address="192.168.1.23", netmask="255.255.255.0"),
            SimpleNamespace(family=socket.AF_INET6, address="fe80::1", netmask="ffff:ffff::"),
        ],
        "wlan0": [SimpleNamespace(family=socket.AF_INET, address="10.0.0.5", netmask="255.255.0.0")],
        "down0": [SimpleNamespace(family=socket.AF_INET, address="172.16.0.2", netmask="255.255.0.0")],
    }
    stats = {
        "lo": SimpleNamespace(isup=True),
        "eth0": SimpleNamespace(isup=True),
        "wlan0": SimpleNamespace(isup=True),
        "down0": SimpleNamespace(isup=False),
    }
    monkeypatch.setattr(discovery.psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(discovery.psutil, "net_if_stats", lambda: stats)

    assert broadcast_endpoints() == [
        (LIMITED_BROADCAST, DISCOVERY_PORT),
        (MULTICAST_GROUP, DISCOVERY_PORT),
        ("192.168.1.255", DISCOVERY_PORT),
        ("10.0.255.255", DISCOVERY_PORT),
    ]


def test_interface_enumeration_failure_keeps_fixed_targets(monkeypatch):
    def _boom():
        raise OSError("no interfaces")

    monkeypatch.setattr(discovery.psutil, "net_if_stats", _boom)
    assert broadcast_endpoints(5000) == [(LIMITED_BROADCAST, 5000), (MULTICAST_GROUP, 5000)]


# ---- response bookkeeping ----

def test_latest_response_wins_per_machine():
    local = InstanceDiscovery(machine_name="LOCAL", port=0)
    local._pending["r1"] = pending = _PendingDiscovery()

    local._handle_response("SOULMAN_DISCOVERY_V1:RESPONSE:r1:PEER|1.0", ("10.0.0.2", 45832))
    local._handle_response("SOULMAN_DISCOVERY_V1:RESPONSE:r1:peer|1.1", ("10.0.0.2", 51000))
    local._handle_response("SOULMAN_DISCOVERY_V1:RESPONSE:r1:local|9.9", ("10.0.0.3", 45832))
    local._handle_response("SOULMAN_DISCOVERY_V1:RESPONSE:other:ELSE|1.0", ("10.0.0.4", 45832))

    assert pending.results == [DiscoveredInstance("peer", "1.1", ("10.0.0.2", 51000))]


# ---- listener ----

def test_listener_answers_request(remote):
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.bind(("127.0.0.1", 0))
        client.settimeout(2.0)
        port = client.getsockname()[1]
        client.sendto(build_request("abc123", port), ("127.0.0.1", remote.port))
        data, _ = client.recvfrom(2048)

    assert parse_response(data.decode("utf-8")) == ("abc123", "REMOTE-PC", "2.1.0")


def test_listener_replies_to_return_port_and_source_port(remote):
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as inbox, \
            socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
        inbox.bind(("127.0.0.1", 0))
        sender.bind(("127.0.0.1", 0))
        inbox.settimeout(2.0)
        sender.settimeout(2.0)
        sender.sendto(
            build_request("xyz", inbox.getsockname()[1]), ("127.0.0.1", remote.port)
        )
        via_return_port, _ = inbox.recvfrom(2048)
        via_source_port, _ = sender.recvfrom(2048)

    assert via_return_port == via_source_port == build_response("xyz", "REMOTE-PC", "2.1.0")


def test_malformed_datagrams_are_ignored(remote):
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.bind(("127.0.0.1", 0))
        client.settimeout(0.5)
        for junk in (
            b"hello",
            b"\xff\xfe\xfd",
            b"SOULMAN_DISCOVERY_V1:REQUEST:",
            b"SOULMAN_DISCOVERY_V1:RESPONSE:abc",
            b"SOULMAN_DISCOVERY_V2:REQUEST:abc:PORT:1",
        ):
            client.sendto(junk, ("127.0.0.1", remote.port))
        with pytest.raises(socket.timeout):
            client.recvfrom(2048)

    assert remote.is_listening
    reply = _ask(remote, b"SOULMAN_DISCOVERY_V1:REQUEST:after-junk")
    assert parse_response(reply)[0] == "after-junk"


def test_listener_stops_promptly():
    listener = InstanceDiscovery(machine_name="X", port=0)
    assert listener.start()
    started = time.monotonic()
    listener.stop()
    assert time.monotonic() - started < 3.0
    assert not listener.is_listening


def test_bind_failure_is_not_fatal():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
        taken.bind(("127.0.0.1", 0))
        port = taken.getsockname()[1]
        listener = InstanceDiscovery(machine_name="X", port=port)
        # SO_REUSEADDR may let the bind succeed on some platforms; either way no exception
        listener.start()
        listener.stop()


# ---- query ----

def test_discover_round_trip(remote):
    second = InstanceDiscovery(machine_name="OTHER-PC", version="1.0.0", port=0)
    assert second.start()
    try:
        local = InstanceDiscovery(machine_name="LOCAL", port=remote.port)
        found = local.discover(
            timeout=1.0,
            endpoints=[("127.0.0.1", remote.port), ("127.0.0.1", second.port)],
        )
    finally:
        second.stop()

    assert [(i.machine_name, i.version) for i in found] == [
        ("OTHER-PC", "1.0.0"),
        ("REMOTE-PC", "2.1.0"),
    ]
    assert all(i.endpoint[0] == "127.0.0.1" for i in found)
    assert local._pending == {}


def test_discover_filters_own_machine_name():
    me = InstanceDiscovery(machine_name="Studio", port=0)
    assert me.start()
    try:
        found = me.discover(timeout=0.5, endpoints=[("127.0.0.1", me.port)])
    finally:
        me.stop()
    assert found == []


def test_discover_with_nothing_sent_returns_empty():
    local = InstanceDiscovery(machine_name="LOCAL", port=0)
    started = time.monotonic()
    assert local.discover(timeout=5.0, endpoints=[]) == []
    assert time.monotonic() - started < 1.0
    assert local._pending == {}


def test_discover_honours_cancel(remote):
    local = InstanceDiscovery(machine_name="LOCAL", port=remote.port)
    cancel = threading.Event()
    threading.Timer(0.2, cancel.set).start()
    started = time.monotonic()
    local.discover(timeout=10.0, cancel=cancel, endpoints=[("127.0.0.1", remote.port)])
    assert time.monotonic() - started < 2.0
