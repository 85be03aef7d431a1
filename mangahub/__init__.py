"""TCP/UDP sync messages, session and heartbeat tracking, and manga catalogue and library handlers."""

__version__ = "0.1.0"