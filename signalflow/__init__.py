"""SignalFlow: road-network traffic simulation with pluggable signal control."""

__version__ = "0.1.0"
