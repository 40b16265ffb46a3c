"""GCP Compute Engine backend for imageroll.

NOTE: Only config classes are imported at package level to avoid deps.
For the backend implementation, import explicitly:

    from imageroll.providers.gcp.provider import GCPBackend

Environment Variables:
    GOOGLE_CLOUD_PROJECT: GCP project ID (used when the config omits it)
    GOOGLE_APPLICATION_CREDENTIALS: Path to service account key
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import GCPBackend

from .config import GCP

__all__ = [
    "GCP",
    "GCPBackend",
]
