"""fleetpilot -- natural-language control for a fleet of managed processes."""

__version__ = "0.1.0"
