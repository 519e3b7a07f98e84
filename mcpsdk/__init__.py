"""Model Context Protocol building blocks: transports, providers and a WSGI handler."""

__version__ = "0.1.0"