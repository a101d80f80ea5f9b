"""Shared engine for backends that keep the whole tree locally.

TreeBackend implements navigation, change events, optimistic transactions,
query evaluation and index descriptors. Subclasses only provide storage for
the top-level children of the root node.
"""

import copy
import fnmatch
import functools
import logging
import time
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from .. import paths, transport
from ..exceptions import BackendError, DeliveryError, TransactionError
from ..undefined import UNDEFINED
from .base import (
    Backend,
    Envelope,
    EventHandler,
    EventSubscriptionRecord,
    IndexDescriptor,
    TransactionUpdater,
)

logger = logging.getLogger(__name__)

VALUE = "value"
CHILD_ADDED = "child_added"
CHILD_CHANGED = "child_changed"
CHILD_REMOVED = "child_removed"
EVENTS = (VALUE, CHILD_ADDED, CHILD_CHANGED, CHILD_REMOVED)


class TreeBackend(Backend):
    """Backend base class for locally stored trees.

    Subclasses implement three primitives over the root's top-level keys:
    _read(key), _write(key, value) and _keys(). A None value passed to
    _write removes the key.
    """

    def __init__(self, max_transaction_retries: int = 10):
        self.max_transaction_retries = max_transaction_retries
        self._subscriptions: List[EventSubscriptionRecord] = []
        self._indexes: List[IndexDescriptor] = []
        self._connected = False

    # Storage primitives

    @abstractmethod
    def _read(self, key: str) -> Any:
        """Get the value stored under a top-level key, or None."""
        pass

    @abstractmethod
    def _write(self, key: str, value: Any) -> None:
        """Store the value of a top-level key; None removes it."""
        pass

    @abstractmethod
    def _keys(self) -> List[str]:
        """List the top-level keys."""
        pass

    def _save_index(self, index: IndexDescriptor) -> None:
        """Persist an index descriptor. Nothing to do by default."""
        pass

    # Lifecycle

    def connect(self, **kwargs) -> None:
        self._connected = True

    def close(self) -> None:
        self._subscriptions.clear()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def _check_connected(self) -> None:
        if not self._connected:
            raise BackendError(f"{type(self).__name__} is not connected")

    # Tree navigation

    def _value_at(self, path: str) -> Any:
        keys = paths.split_to_keys(path)
        if not keys:
            return {key: self._read(key) for key in self._keys()} or None
        if not isinstance(keys[0], str):
            return None
        value = self._read(keys[0])
        for key in keys[1:]:
            value = _get_key(value, key)
            if value is None:
                return None
        return value

    def _set_value(self, path: str, value: Any) -> None:
        keys = paths.split_to_keys(path)
        if not keys:
            if value is not None and not isinstance(value, dict):
                raise BackendError("The root node can only hold an object")
            value = value or {}
            for key in self._keys():
                if key not in value:
                    self._write(key, None)
            for key, child in value.items():
                self._write(key, child)
            return

        top = keys[0]
        if not isinstance(top, str):
            raise BackendError(f"The root node is not an array: \"{path}\"")
        if len(keys) == 1:
            self._write(top, value)
            return
        current = copy.deepcopy(self._read(top))
        self._write(top, _assign(current, keys[1:], value, path))

    def _envelope(self, value: Any) -> Envelope:
        return transport.serialize(value)

    # Change events

    def _mutate(self, path: str, apply) -> None:
        """Run apply() and notify subscriptions affected by the change."""
        watched = [s for s in self._subscriptions if paths.is_related(s.path, path)]
        before = {s.path: self._value_at(s.path) for s in watched}
        apply()
        after = {p: self._value_at(p) for p in before}
        for sub in watched:
            if not any(s is sub for s in self._subscriptions):
                continue
            self._notify(sub, before[sub.path], after[sub.path])

    def _notify(self, sub: EventSubscriptionRecord, old: Any, new: Any) -> None:
        if sub.event == VALUE:
            if old != new:
                self._deliver(sub, sub.path, new, old)
            return

        old_children = _children(old)
        new_children = _children(new)
        if sub.event == CHILD_ADDED:
            for key, value in new_children.items():
                if key not in old_children:
                    self._deliver(sub, paths.child(sub.path, key), value, None)
        elif sub.event == CHILD_REMOVED:
            for key, value in old_children.items():
                if key not in new_children:
                    self._deliver(sub, paths.child(sub.path, key), None, value)
        elif sub.event == CHILD_CHANGED:
            for key, value in new_children.items():
                if key in old_children and old_children[key] != value:
                    self._deliver(sub, paths.child(sub.path, key), value, old_children[key])

    def _deliver(self, sub: EventSubscriptionRecord, path: str, new: Any, old: Any) -> None:
        try:
            try:
                new_value, old_value = self._envelope(new), self._envelope(old)
            except Exception as e:
                sub.handler(DeliveryError(path, sub.event, e), path, None, None)
                return
            sub.handler(None, path, new_value, old_value)
        except Exception:
            logger.exception("Handler for %s event on \"%s\" failed", sub.event, sub.path)

    def subscribe(self, ref, event: str, handler: EventHandler) -> None:
        if event not in EVENTS:
            raise BackendError(f"Unsupported event \"{event}\"")
        self._subscriptions.append(EventSubscriptionRecord(ref.path, event, handler))
        logger.debug("Subscribed to %s events on \"%s\"", event, ref.path)

    def unsubscribe(self, ref, event: Optional[str] = None, handler: Optional[EventHandler] = None) -> None:
        def matches(sub: EventSubscriptionRecord) -> bool:
            return (
                sub.path == ref.path
                and (event is None or sub.event == event)
                and (handler is None or sub.handler is handler)
            )

        self._subscriptions = [s for s in self._subscriptions if not matches(s)]
        logger.debug("Unsubscribed from %s events on \"%s\"", event or "all", ref.path)

    # Reads and writes

    async def get(self, ref, options=None) -> Envelope:
        self._check_connected()
        value = self._value_at(ref.path)
        if options is not None:
            value = _apply_retrieval_options(value, options)
        return self._envelope(value)

    async def set(self, ref, value: Envelope) -> None:
        self._check_connected()
        data = transport.deserialize(value)
        self._mutate(ref.path, lambda: self._set_value(ref.path, data))

    async def update(self, ref, updates: Envelope) -> None:
        self._check_connected()
        data = transport.deserialize(updates)
        if not isinstance(data, dict):
            raise BackendError(f"Updates for \"{ref.path}\" must be an object")

        def apply():
            for key, value in data.items():
                self._set_value(paths.child(ref.path, key), value)

        self._mutate(ref.path, apply)

    async def exists(self, ref) -> bool:
        self._check_connected()
        return self._value_at(ref.path) is not None

    async def transaction(self, ref, updater: TransactionUpdater) -> None:
        self._check_connected()
        for attempt in range(1, self.max_transaction_retries + 1):
            current = self._envelope(self._value_at(ref.path))
            result = await updater(copy.deepcopy(current))
            if result is UNDEFINED:
                logger.debug("Transaction on \"%s\" cancelled", ref.path)
                return
            if self._envelope(self._value_at(ref.path)) != current:
                logger.debug(
                    "Transaction on \"%s\" conflicted with another write (attempt %d)",
                    ref.path,
                    attempt,
                )
                continue
            data = transport.deserialize(result)
            self._mutate(ref.path, lambda: self._set_value(ref.path, data))
            return
        raise TransactionError(
            f"Transaction on \"{ref.path}\" failed after "
            f"{self.max_transaction_retries} attempts"
        )

    # Queries

    async def query(self, ref, query, options) -> List[Any]:
        self._check_connected()
        children = _children(self._value_at(ref.path))
        matches = [
            (key, value)
            for key, value in children.items()
            if all(_test_filter(value, f) for f in query.filters)
        ]
        if query.order:
            matches.sort(
                key=functools.cmp_to_key(
                    lambda a, b: _compare_by_order(a[1], b[1], query.order)
                )
            )
        matches = matches[query.skip:]
        if query.take:
            matches = matches[: query.take]

        results = []
        for key, value in matches:
            path = paths.child(ref.path, key)
            if options.snapshots:
                value = _apply_retrieval_options(value, options)
                results.append({"path": path, "val": self._envelope(value)})
            else:
                results.append(path)
        return results

    # Indexes

    async def get_indexes(self) -> List[IndexDescriptor]:
        self._check_connected()
        return list(self._indexes)

    async def create_index(self, path: str, key: str) -> IndexDescriptor:
        self._check_connected()
        path = paths.normalize(path)
        for index in self._indexes:
            if index.path == path and index.key == key:
                return index
        index = IndexDescriptor(path=path, key=key, created_at=time.time())
        self._save_index(index)
        self._indexes.append(index)
        logger.info("Created index on \"%s\" for key \"%s\"", path, key)
        return index


def _get_key(value: Any, key) -> Any:
    if isinstance(value, dict) and isinstance(key, str):
        return value.get(key)
    if isinstance(value, list) and isinstance(key, int) and key < len(value):
        return value[key]
    return None


def _children(value: Any) -> Dict[Any, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return dict(enumerate(value))
    return {}


def _assign(node: Any, keys: Sequence, value: Any, path: str) -> Any:
    """Set value at keys inside node and return the updated node.

    A None value removes the key; containers emptied by a removal are
    removed too (None is returned for them).
    """
    key, rest = keys[0], keys[1:]
    if not isinstance(node, (dict, list)):
        if value is None:
            return node
        node = [] if isinstance(key, int) else {}
    if isinstance(key, int) != isinstance(node, list):
        raise BackendError(f"Cannot address \"{key}\" in path \"{path}\"")
    if rest:
        value = _assign(_get_key(node, key), rest, value, path)

    if value is None:
        if isinstance(node, dict):
            node.pop(key, None)
        elif key < len(node):
            del node[key]
        return node or None
    if isinstance(node, dict) or key < len(node):
        node[key] = value
    elif key == len(node):
        node.append(value)
    else:
        raise BackendError(f"Array index {key} out of range in path \"{path}\"")
    return node


def _segment_matches(pattern, key) -> bool:
    return fnmatch.fnmatchcase(str(key), str(pattern))


def _include(node: Any, patterns: List[List]) -> Any:
    if not isinstance(node, dict):
        return node
    result = {}
    for key, child in node.items():
        matching = [p for p in patterns if _segment_matches(p[0], key)]
        if not matching:
            continue
        if any(len(p) == 1 for p in matching):
            result[key] = child
        else:
            result[key] = _include(child, [p[1:] for p in matching])
    return result


def _exclude(node: Any, patterns: List[List]) -> Any:
    if not isinstance(node, dict):
        return node
    result = {}
    for key, child in node.items():
        matching = [p for p in patterns if _segment_matches(p[0], key)]
        if any(len(p) == 1 for p in matching):
            continue
        if matching:
            result[key] = _exclude(child, [p[1:] for p in matching])
        else:
            result[key] = child
    return result


def _apply_retrieval_options(value: Any, options) -> Any:
    if not isinstance(value, dict):
        return value
    if options.child_objects is False:
        value = {k: v for k, v in value.items() if not isinstance(v, (dict, list))}
    if options.include:
        value = _include(value, [paths.split_to_keys(p) for p in options.include])
    if options.exclude:
        value = _exclude(value, [paths.split_to_keys(p) for p in options.exclude])
    return value


def _lookup(value: Any, key: str) -> Any:
    for k in paths.split_to_keys(key):
        value = _get_key(value, k)
        if value is None:
            return None
    return value


def _compare_values(a: Any, b: Any) -> int:
    if a == b:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    try:
        return -1 if a < b else 1
    except TypeError:
        name_a, name_b = type(a).__name__, type(b).__name__
        if name_a == name_b:
            return 0
        return -1 if name_a < name_b else 1


def _compare_by_order(a: Any, b: Any, order) -> int:
    for sort in order:
        result = _compare_values(_lookup(a, sort.key), _lookup(b, sort.key))
        if result:
            return result if sort.ascending else -result
    return 0


def _ordered(op, actual, compare) -> bool:
    if actual is None:
        return False
    try:
        return op(actual, compare)
    except TypeError:
        return False


def _test_operator(op: str, actual: Any, compare: Any) -> bool:
    if op == "==":
        return actual == compare
    if op == "!=":
        return actual != compare
    if op == "<":
        return _ordered(lambda a, b: a < b, actual, compare)
    if op == "<=":
        return _ordered(lambda a, b: a <= b, actual, compare)
    if op == ">":
        return _ordered(lambda a, b: a > b, actual, compare)
    if op == ">=":
        return _ordered(lambda a, b: a >= b, actual, compare)
    if op == "exists":
        return actual is not None
    if op == "between":
        low, high = compare
        return _ordered(lambda a, b: min(b) <= a <= max(b), actual, (low, high))
    if op == "like":
        return isinstance(actual, str) and fnmatch.fnmatchcase(actual.lower(), compare.lower())
    if op == "matches":
        return isinstance(actual, str) and compare.search(actual) is not None
    if op == "in":
        return any(actual == item for item in compare)
    if op == "has":
        return isinstance(actual, dict) and compare in actual
    if op == "contains":
        if not isinstance(actual, list):
            return False
        if isinstance(compare, (list, tuple)):
            return all(item in actual for item in compare)
        return compare in actual
    if op == "custom":
        return bool(compare(actual))
    raise BackendError(f"Unsupported query operator \"{op}\"")


def _test_filter(value: Any, query_filter) -> bool:
    op = query_filter.op
    actual = _lookup(value, query_filter.key)
    if op.startswith("!") and op != "!=":
        return not _test_operator(op[1:], actual, query_filter.compare)
    return _test_operator(op, actual, query_filter.compare)
