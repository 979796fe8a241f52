"""HWID-bound activation key server."""

__version__ = "1.0.0"
