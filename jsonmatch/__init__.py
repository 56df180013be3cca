"""Match newline-delimited JSON records against detection rules."""

__version__ = "0.1.0"
