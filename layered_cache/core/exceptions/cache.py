"""
Cache-Related Exceptions

All exceptions raised by the cache tiers, the codec and the loaders.

Propagation policy:
- LoadError is the only one surfaced to callers of CacheEngine.get
- CodecError and BackingStoreError are absorbed by the engine and logged
"""

from layered_cache.core.exceptions.base import LayeredCacheError


class CacheError(LayeredCacheError):
    """Base exception for cache-related errors."""
    pass


class CodecError(CacheError):
    """
    Raised when a value cannot be serialized or deserialized.

    Common causes:
    - Value holds objects orjson cannot encode (sockets, open files, sets of objects)
    - Backing store returned a payload written by an incompatible version
    """
    pass


class BackingStoreError(CacheError):
    """
    Raised when the distributed tier is unreachable or errored.

    Never propagated past the engine: treated as a miss.
    """
    pass


class BackingStoreTimeoutError(BackingStoreError):
    """Raised when a backing store call exceeds its configured timeout."""
    pass


class LoadError(CacheError):
    """
    Raised when the caller-supplied loader fails.

    Every waiter of a deduplicated load receives the same instance.
    The original exception is available as ``__cause__`` and ``original``.
    """

    @property
    def original(self) -> BaseException | None:
        """The exception raised by the loader, if any."""
        return self.__cause__


class LoadTimeoutError(LoadError):
    """Raised when a load does not settle within its timeout."""
    pass
