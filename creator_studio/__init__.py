"""Creator Studio backend: social account connections and Instagram publishing."""

__version__ = "0.1.0"
