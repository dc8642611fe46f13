"""
Remote reconciliation service clients.
"""

from .base import RemoteSyncService
from .http import HttpSyncService

__all__ = [
    "RemoteSyncService",
    "HttpSyncService",
]
