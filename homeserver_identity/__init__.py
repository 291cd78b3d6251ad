"""Identity and session persistence for a chat homeserver."""

__version__ = "0.1.0"
