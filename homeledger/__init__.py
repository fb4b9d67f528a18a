"""Personal and family finance tracking API."""

__version__ = "1.0.0"
