"""Real-time coin counting service with a shared aggregate."""

__version__ = "0.1.0"
