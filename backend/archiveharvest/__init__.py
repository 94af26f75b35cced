"""Harvest, ingest and transcribe archival material into a searchable local store."""

__version__ = "0.3.0"
