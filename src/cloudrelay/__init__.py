"""
cloudrelay - reliability layer for relaying uploads to cloud storage providers.

Classifies provider failures into a universal taxonomy, decides how and when
to retry or recover, tracks per-connection health, and coordinates token
refresh with rate limiting, rotation and audit logging.
"""

__version__ = "0.1.0"
