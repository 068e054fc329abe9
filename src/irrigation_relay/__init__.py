"""Real-time irrigation telemetry relay."""

__version__ = "0.1.0"
