"""Adopter wall: discover repositories that ship a marker file."""

__version__ = "0.1.0"
