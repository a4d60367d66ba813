"""miniclaw -- coding-assistant agent engine."""

__version__ = "0.1.0"
