"""forget-me-not: desktop reminder daemon and client."""

__version__ = "0.1.0"
