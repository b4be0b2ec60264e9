"""Eventroom: ephemeral event rooms with presence tracking and session resumption."""

__version__ = "0.1.0"
