"""AnyClaw: HTTP bridge and client state engine for the codex app-server."""

__version__ = "0.1.0"
