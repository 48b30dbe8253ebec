"""Incremental library search against the Calil Unitrad aggregator."""

__version__ = "0.1.0"
