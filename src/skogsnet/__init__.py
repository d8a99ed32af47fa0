"""Skogsnet: sensor ingestion, weather correlation and dashboard aggregation."""

__version__ = "2.0.0"
