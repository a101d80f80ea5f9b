"""Transport codec for crossing the backend boundary.

Rich values (timestamps, binary data, path links) are not JSON-safe. The
codec replaces them with plain strings and records a type tag for each
replaced location, so the receiving side can restore them:

    serialize({"created": datetime(2024, 1, 1, tzinfo=timezone.utc), "n": 1})
    # {"val": {"created": "2024-01-01T00:00:00.000Z", "n": 1},
    #  "map": {"created": "date"}}

A single rich value carries its tag directly:

    serialize(b"\\x00\\x01")
    # {"val": "!!*", "map": "binary"}
"""

import base64
from datetime import datetime, timezone
from typing import Any, Dict, Union

from . import paths
from .exceptions import SerializationError

DATE = "date"
BINARY = "binary"
REFERENCE = "reference"

_BINARY_TYPES = (bytes, bytearray, memoryview)


class PathReference:
    """Marks a string as a path to another node rather than literal text."""

    __slots__ = ("path",)

    def __init__(self, path: str):
        self.path = path

    def __eq__(self, other) -> bool:
        return isinstance(other, PathReference) and other.path == self.path

    def __hash__(self) -> int:
        return hash((PathReference, self.path))

    def __repr__(self) -> str:
        return f"PathReference({self.path!r})"


def _encode_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _decode_date(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text).astimezone(timezone.utc)


def _encode_binary(value) -> str:
    return base64.a85encode(bytes(value)).decode("ascii")


def _decode_binary(text: str) -> bytes:
    return base64.a85decode(text.encode("ascii"))


def _tag_of(value: Any):
    """Closed variant check for leaves that need a type tag."""
    if isinstance(value, datetime):
        return DATE
    if isinstance(value, _BINARY_TYPES):
        return BINARY
    if isinstance(value, PathReference):
        return REFERENCE
    return None


def _encode_leaf(tag: str, value: Any) -> str:
    if tag == DATE:
        return _encode_date(value)
    if tag == BINARY:
        return _encode_binary(value)
    return value.path


def _decode_leaf(tag: str, value: Any) -> Any:
    try:
        if tag == DATE:
            return _decode_date(value)
        if tag == BINARY:
            return _decode_binary(value)
        if tag == REFERENCE:
            return PathReference(value)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot decode {tag} value {value!r}: {e}")
    return value


def _clone(value: Any) -> Any:
    """Copy containers so the caller's value is never modified.

    Tagged leaves are kept as-is; they are replaced by strings afterwards.
    """
    if isinstance(value, dict):
        cloned = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"Cannot serialize non-string key {key!r}; keys must be strings"
                )
            if "/" in key or "[" in key:
                raise SerializationError(
                    f"Cannot serialize key {key!r}; keys can't contain \"/\" or \"[\""
                )
            cloned[key] = _clone(item)
        return cloned
    if isinstance(value, (list, tuple)):
        return [_clone(item) for item in value]
    return value


def _process(container, mappings: Dict[str, str], prefix: str) -> None:
    items = container.items() if isinstance(container, dict) else enumerate(container)
    for key, value in list(items):
        path = paths.child(prefix, key)
        tag = _tag_of(value)
        if tag is not None:
            container[key] = _encode_leaf(tag, value)
            mappings[path] = tag
        elif isinstance(value, (dict, list)):
            _process(value, mappings, path)


def serialize(value: Any) -> Dict[str, Any]:
    """Convert a value into a transport envelope {"val": ..., "map": ...}.

    "map" is omitted when the value contains nothing that needs a tag.
    """
    if not isinstance(value, (dict, list, tuple)):
        tag = _tag_of(value)
        if tag is None:
            return {"val": value}
        return {"val": _encode_leaf(tag, value), "map": tag}

    val = _clone(value)
    mappings: Dict[str, str] = {}
    _process(val, mappings, "")
    envelope = {"val": val}
    if mappings:
        envelope["map"] = mappings
    return envelope


def deserialize(envelope: Dict[str, Any]) -> Any:
    """Restore a value from a transport envelope.

    Tagged locations are overwritten inside envelope["val"], which is returned.
    """
    mappings: Union[None, str, Dict[str, str]] = envelope.get("map")
    val = envelope.get("val")
    if not mappings:
        return val
    if isinstance(mappings, str):
        return _decode_leaf(mappings, val)

    for path, tag in mappings.items():
        keys = paths.split_to_keys(path)
        target = val
        try:
            for key in keys[:-1]:
                target = target[key]
            target[keys[-1]] = _decode_leaf(tag, target[keys[-1]])
        except (KeyError, IndexError, TypeError) as e:
            raise SerializationError(f"Envelope has no value at mapped path \"{path}\": {e}")
    return val
