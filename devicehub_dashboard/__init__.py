"""DeviceHub read-only status dashboard."""

__version__ = "1.0.0"
