"""
Entry Codec - cache keys and value serialization

Responsibilities:
    - compute_key: canonical, collision-resistant key from a RequestDescriptor
    - serialize/deserialize: value <-> bytes (orjson)
    - encode_envelope/decode_envelope: backing store payload carrying the
      value plus the metadata needed to rebuild a CacheEntry on read-through

Key layout:
    [<namespace>:]<METHOD>:<path>:<sha256(canonical params)[:32]>

    The readable prefix keeps pattern invalidation practical
    (e.g. ``^GET:/users/``); the digest separates different parameters.
"""

import hashlib
from collections.abc import Iterable, Mapping
from typing import Any, NamedTuple
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import orjson

from layered_cache.core.config.constants import KEY_DIGEST_LENGTH
from layered_cache.core.exceptions import CodecError
from layered_cache.infrastructure.cache.models import RequestDescriptor

_KEY_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS
_VALUE_OPTIONS = orjson.OPT_NON_STR_KEYS


class DecodedEntry(NamedTuple):
    value: Any
    created_at: float
    ttl_seconds: int
    tags: frozenset[str]


def _default(obj: Any) -> Any:
    """orjson fallback for types it does not handle natively."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    raise TypeError(f"Type is not serializable: {type(obj).__name__}")


def _is_pair_sequence(value: Any) -> bool:
    if not isinstance(value, (list, tuple)):
        return False
    return bool(value) and all(
        isinstance(item, (tuple, list)) and len(item) == 2 and isinstance(item[0], str)
        for item in value
    )


def _pairs_to_dict(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Group query pairs; repeated names keep their value order."""
    grouped: dict[str, Any] = {}
    for name, value in pairs:
        if name in grouped:
            existing = grouped[name]
            grouped[name] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            grouped[name] = value
    return grouped


class EntryCodec:
    """
    Computes cache keys and (de)serializes values with orjson.

    Stateless; one instance can be shared by any number of engines.
    """

    def __init__(self, digest_length: int = KEY_DIGEST_LENGTH):
        self._digest_length = digest_length

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def normalize_params(self, descriptor: RequestDescriptor) -> tuple[str, Any]:
        """
        Split the query string off the path and merge it into the params.

        Returns:
            (base path without query/fragment, normalized params)
        """
        parts = urlsplit(descriptor.path)
        base_path = urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")) or descriptor.path

        params = descriptor.params
        if _is_pair_sequence(params):
            params = _pairs_to_dict(params)

        if parts.query:
            query_params = _pairs_to_dict(parse_qsl(parts.query, keep_blank_values=True))
            if params is None:
                params = query_params
            elif isinstance(params, Mapping):
                params = {**query_params, **params}
            else:
                params = {"query": query_params, "params": params}

        return base_path, params

    def compute_key(self, descriptor: RequestDescriptor) -> str:
        """
        Compute a deterministic cache key.

        Semantically equal requests with differently ordered parameters map
        to the same key: orjson sorts mapping keys recursively.

        Raises:
            CodecError: If the params cannot be canonicalized
        """
        base_path, params = self.normalize_params(descriptor)
        try:
            canonical = orjson.dumps(params, default=_default, option=_KEY_OPTIONS)
        except TypeError as e:
            raise CodecError.from_exception(
                e, message="Request parameters cannot be canonicalized", path=descriptor.path
            ) from e

        digest = hashlib.sha256(canonical).hexdigest()[: self._digest_length]
        segments = [descriptor.namespace, descriptor.method, base_path, digest]
        return ":".join(segment for segment in segments if segment)

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def serialize(self, value: Any) -> bytes:
        """
        Serialize a value to bytes.

        Raises:
            CodecError: If the value holds types orjson cannot encode
        """
        try:
            return orjson.dumps(value, default=_default, option=_VALUE_OPTIONS)
        except TypeError as e:
            raise CodecError.from_exception(
                e, message="Value is not serializable", value_type=type(value).__name__
            ) from e

    def deserialize(self, data: bytes) -> Any:
        """
        Deserialize bytes produced by serialize().

        Raises:
            CodecError: If the payload is not valid JSON
        """
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise CodecError.from_exception(e, message="Payload is not valid JSON") from e

    # -------------------------------------------------------------------------
    # Backing store envelope
    # -------------------------------------------------------------------------

    def encode_envelope(
        self,
        value_bytes: bytes,
        created_at: float,
        ttl_seconds: int,
        tags: Iterable[str] = (),
    ) -> bytes:
        """
        Wrap already-serialized value bytes with entry metadata.

        The value is spliced in as raw JSON so it is encoded only once.
        """
        meta = orjson.dumps({"c": created_at, "t": ttl_seconds, "g": sorted(tags)})
        return meta[:-1] + b',"v":' + value_bytes + b"}"

    def decode_envelope(self, data: bytes | str) -> DecodedEntry:
        """
        Unwrap a backing store payload.

        Raises:
            CodecError: If the payload is malformed or misses fields
        """
        document = self.deserialize(data.encode() if isinstance(data, str) else data)
        try:
            return DecodedEntry(
                value=document["v"],
                created_at=float(document["c"]),
                ttl_seconds=int(document["t"]),
                tags=frozenset(document.get("g") or ()),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CodecError.from_exception(e, message="Malformed cache envelope") from e
