"""Compute backends for imageroll."""

from imageroll.providers.aws.config import AWS
from imageroll.providers.gcp.config import GCP
from imageroll.providers.provider import ComputeBackend
from imageroll.providers.registry import create_backend

__all__ = [
    "AWS",
    "GCP",
    "ComputeBackend",
    "create_backend",
]
