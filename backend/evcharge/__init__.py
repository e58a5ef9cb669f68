"""EV charger desk backend: task scheduler service."""

__version__ = "0.1.0"
