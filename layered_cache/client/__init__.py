"""
Client Module

Caller-side integration: middleware pipelines, bounded retry and a cached
httpx API client.
"""

from .api_client import CacheOptions, CachedApiClient
from .pipeline import Middleware, Pipeline
from .retry import RetryPolicy

__all__ = [
    "CacheOptions",
    "CachedApiClient",
    "Middleware",
    "Pipeline",
    "RetryPolicy",
]
