"""Voice-driven shopping assistant that compares prices across Indian stores."""

__version__ = "0.1.0"
