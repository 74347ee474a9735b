"""Account Book: income/expense tracking with multi-device sync."""

__version__ = "0.3.0"
