"""In-memory backend for testing."""

from typing import Any, Dict, List

from .tree import TreeBackend


class MemoryBackend(TreeBackend):
    """In-memory backend.

    Useful for testing and temporary databases. Data is lost when the
    backend is closed or the process ends.

    Example:
        backend = MemoryBackend()
        backend.connect()
        db = Database(backend)
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._data: Dict[str, Any] = {}

    def connect(self, **kwargs) -> None:
        """Initialize the in-memory tree."""
        self._data = {}
        super().connect()

    def close(self) -> None:
        """Clear the in-memory tree."""
        self._data.clear()
        super().close()

    def _read(self, key: str) -> Any:
        return self._data.get(key)

    def _write(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def _keys(self) -> List[str]:
        return list(self._data.keys())
