"""Ingestion layer.

This package contains adapters that receive data from the tracking backend
(push channel, REST pulls) and emit normalized, typed events.
"""

__all__: list[str] = []
