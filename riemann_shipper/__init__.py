"""Forward structured log events to Riemann over TCP."""

__version__ = "0.1.0"
