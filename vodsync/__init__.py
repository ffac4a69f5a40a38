"""Livestream VOD metadata synchronisation against a spreadsheet manifest and YouTube."""

__version__ = "0.3.0"
