"""Ingestion layer.

This package contains the line sources (TCP, MQTT, replay), the stateless
SBS-1 parser, and the adapter that feeds parsed updates into the store.
"""

__all__: list[str] = []
