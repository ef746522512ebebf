"""SchoolSync: resource client and synchronized cache for the school-management API."""

from .cache import CacheConfig, CacheKey, RevalidationScheduler, SynchronizedCache
from .client import ClientConfig, ResourceClient, ResourceEnvelope, ResourceError

__version__ = "0.1.0"

__all__ = [
    "CacheConfig",
    "CacheKey",
    "ClientConfig",
    "ResourceClient",
    "ResourceEnvelope",
    "ResourceError",
    "RevalidationScheduler",
    "SynchronizedCache",
]
