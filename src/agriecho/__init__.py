"""
AgriEcho - offline-tolerant farming assistant.

The package is split into two halves:
- agriecho.offline: client-side offline sync (queue, cache gatekeeper,
  connectivity monitor, local caches)
- agriecho.server: Flask API for SOS alerts, voice queries and weather alerts
"""

__version__ = '1.0.0'
