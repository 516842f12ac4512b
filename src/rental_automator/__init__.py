"""Calendar-driven check-in and check-out automation for rental properties."""

__version__ = "0.1.0"
