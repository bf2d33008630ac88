"""Single source of version for quote-engine."""

__version__ = "0.1.0"
