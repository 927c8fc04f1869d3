"""cardwire: resilient authenticated client for the Magi Archive card API."""

__version__ = "0.3.0"
