"""Application class codecs layered above the transport codec."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from . import paths, transport
from .exceptions import SerializationError


@dataclass
class TypeMapping:
    """A class bound to a path pattern."""

    pattern: str
    cls: Type
    serializer: Optional[Callable[[Any], Dict[str, Any]]] = None
    creator: Optional[Callable[[Dict[str, Any]], Any]] = None

    def to_plain(self, obj: Any) -> Dict[str, Any]:
        if self.serializer is not None:
            return self.serializer(obj)
        if hasattr(obj, "serialize"):
            return obj.serialize()
        return dict(vars(obj))

    def from_plain(self, value: Dict[str, Any]) -> Any:
        if self.creator is not None:
            return self.creator(value)
        if hasattr(self.cls, "create"):
            return self.cls.create(value)
        return self.cls(**value)


class TypeMappings:
    """Maps path patterns to application classes.

    Instances of a bound class are stored as plain objects, and plain
    objects found at a matching path are turned back into instances.

    Example:
        db.types.bind("users/*", User)

        await db.ref("users/ewout").set(User(name="Ewout"))
        snap = await db.ref("users/ewout").get()
        snap.val()  # User(name="Ewout")

    Patterns are matched in registration order (first match wins).
    """

    def __init__(self):
        self._mappings: List[TypeMapping] = []

    def bind(
        self,
        pattern: str,
        cls: Type,
        serializer: Optional[Callable[[Any], Dict[str, Any]]] = None,
        creator: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> None:
        """Bind a class to a path pattern.

        Args:
            pattern: Path pattern with per-segment wildcards (e.g., "users/*")
            cls: The class stored at matching paths
            serializer: Converts an instance to a dict; defaults to
                obj.serialize() or vars(obj)
            creator: Builds an instance from a dict; defaults to
                cls.create(value) or cls(**value)
        """
        self._mappings.append(
            TypeMapping(paths.normalize(pattern), cls, serializer, creator)
        )

    def get(self, path: str) -> Optional[TypeMapping]:
        """Get the mapping for a path, or None if no pattern matches."""
        for mapping in self._mappings:
            if paths.matches_pattern(mapping.pattern, path):
                return mapping
        return None

    def clear(self) -> None:
        """Remove all bindings."""
        self._mappings.clear()

    def serialize(self, path: str, value: Any) -> Dict[str, Any]:
        """Convert bound instances to plain objects, then build an envelope."""
        if self._mappings:
            value = self._to_plain(path, value)
        return transport.serialize(value)

    def deserialize(self, path: str, envelope: Dict[str, Any]) -> Any:
        """Restore an envelope, then rebuild bound instances."""
        value = transport.deserialize(envelope)
        if self._mappings:
            value = self._from_plain(path, value)
        return value

    def _to_plain(self, path: str, value: Any) -> Any:
        mapping = self.get(path)
        if mapping is not None and isinstance(value, mapping.cls):
            try:
                value = mapping.to_plain(value)
            except Exception as e:
                raise SerializationError(
                    f"Failed to serialize {type(value).__name__} at \"{path}\": {e}"
                )
        if isinstance(value, dict):
            return {
                k: self._to_plain(paths.child(path, k), v) if isinstance(k, str) else v
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._to_plain(paths.child(path, i), v) for i, v in enumerate(value)]
        return value

    def _from_plain(self, path: str, value: Any) -> Any:
        if isinstance(value, dict):
            value = {k: self._from_plain(paths.child(path, k), v) for k, v in value.items()}
        elif isinstance(value, list):
            value = [self._from_plain(paths.child(path, i), v) for i, v in enumerate(value)]
        else:
            return value

        mapping = self.get(path)
        if mapping is None or not isinstance(value, dict):
            return value
        try:
            return mapping.from_plain(value)
        except Exception as e:
            raise SerializationError(
                f"Failed to create {mapping.cls.__name__} at \"{path}\": {e}"
            )
