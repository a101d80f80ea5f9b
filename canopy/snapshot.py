"""Point-in-time value views bound to a Reference."""

import copy
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from . import paths

if TYPE_CHECKING:
    from .reference import Reference


class DataSnapshot:
    """The value of a node at the moment it was read.

    Example:
        snap = await db.ref("users/ewout").get()
        if snap.exists():
            print(snap.val()["name"])
            print(snap.child("address/city").val())
    """

    def __init__(self, ref: "Reference", value: Any):
        self.ref = ref
        self._value = value

    @property
    def key(self):
        """Key of the node this snapshot was taken from."""
        return self.ref.key

    def val(self) -> Any:
        """Get a copy of the value, None if the node did not exist."""
        return copy.deepcopy(self._value)

    def exists(self) -> bool:
        return self._value is not None

    def child(self, path: Union[str, int]) -> "DataSnapshot":
        """Get a snapshot of a child node's value. An int addresses an array item."""
        if isinstance(path, int):
            path = f"[{path}]"
        value = self._value
        for key in paths.split_to_keys(path):
            value = _get_key(value, key)
            if value is None:
                break
        return DataSnapshot(self.ref.child(path), value)

    def has_child(self, path: str) -> bool:
        return self.child(path).exists()

    def has_children(self) -> bool:
        return self.num_children() > 0

    def num_children(self) -> int:
        if isinstance(self._value, (dict, list)):
            return len(self._value)
        return 0

    def for_each(self, callback: Callable[["DataSnapshot"], Optional[bool]]) -> bool:
        """Call callback with a snapshot of each child.

        Iteration stops when callback returns False.

        Returns:
            False if iteration was stopped, True otherwise
        """
        if isinstance(self._value, dict):
            keys = list(self._value.keys())
        elif isinstance(self._value, list):
            keys = list(range(len(self._value)))
        else:
            return True
        for key in keys:
            child = DataSnapshot(self.ref.child(key), self._value[key])
            if callback(child) is False:
                return False
        return True

    def __repr__(self) -> str:
        return f"DataSnapshot(path={self.ref.path!r}, value={self._value!r})"


def _get_key(value: Any, key) -> Any:
    if isinstance(value, dict) and isinstance(key, str):
        return value.get(key)
    if isinstance(value, list) and isinstance(key, int) and key < len(value):
        return value[key]
    return None
