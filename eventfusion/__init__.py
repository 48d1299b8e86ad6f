"""Multi-source event ingestion: bounded task spawning, normalization and deduplication."""

__version__ = "0.1.0"
