"""sensorlabel: activity labels and file sync for wearable sensor recordings."""

__version__ = "0.3.0"
