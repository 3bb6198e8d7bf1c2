"""Work accountability tracking: ticket lifecycle rules, scoring and repeat detection."""

__version__ = "0.1.0"
