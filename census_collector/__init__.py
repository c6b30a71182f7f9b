"""US Census Bureau table collector."""

__version__ = "1.0.0"
