"""Soulman: download folder organiser for music collections.

Watches download folders for finished audio files, files them under
``Artist/Album/NN - Title.ext`` in a music library, copies them to any
clone folders, and lets running copies on the LAN find each other.
"""

__version__ = "1.0.0"
__app_name__ = "Soulman"
