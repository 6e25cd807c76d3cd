"""Face-presence and location gated attendance kiosk."""

__version__ = "1.0.0"
