"""SectorScope - AI-driven sector research pipeline."""

__version__ = "1.0.0"
