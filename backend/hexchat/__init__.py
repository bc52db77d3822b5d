"""Location-scoped three-tier realtime chat core."""

__version__ = "0.1.0"
