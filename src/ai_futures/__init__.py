"""AI futures trading agent."""

__version__ = "0.1.0"
