"""Focus timer and milestone timeline services for Study Room learning rooms."""

__version__ = "0.1.0"
