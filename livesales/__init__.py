"""Live-commerce chat agent: ingest live chat, classify intent, auto-reply within quota."""

__version__ = "0.1.0"
