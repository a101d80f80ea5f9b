"""References to nodes in the database tree."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Union

from . import ids, paths
from .exceptions import DatabaseError, RegistrationNotFound, ValidationError
from .snapshot import DataSnapshot
from .subscription import EventStream
from .undefined import UNDEFINED

if TYPE_CHECKING:
    from .core import Database
    from .query import DataReferenceQuery

logger = logging.getLogger(__name__)

EVENTS = ("value", "child_added", "child_changed", "child_removed")

# Events that replay current data when registered with a callback
_REPLAY_EVENTS = ("value", "child_added")

SnapshotCallback = Callable[[DataSnapshot], Any]


@dataclass
class DataRetrievalOptions:
    """Which parts of a node to load.

    Attributes:
        include: Child paths to include (other keys are excluded);
            segments may contain wildcards, e.g. "*/title"
        exclude: Child paths to exclude (other keys are included)
        child_objects: Set to False to leave out nested objects and arrays
    """

    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    child_objects: Optional[bool] = None


@dataclass(eq=False)
class EventRegistration:
    """An event subscription created by Reference.on()."""

    event: str
    callback: Optional[SnapshotCallback]
    stream: EventStream
    handler: Optional[Callable] = None
    replaying: bool = False
    pending: List[DataSnapshot] = field(default_factory=list)
    replay_task: Optional[asyncio.Task] = None


@dataclass
class ReferenceState:
    """Internal state owned by a Reference."""

    path: str
    key: Union[str, int]
    pushed: bool = False
    registrations: List[EventRegistration] = field(default_factory=list)


class Reference:
    """A handle to the node at one path.

    References are cheap to create and do not load any data. Writes return
    awaitables that resolve with the reference once the backend committed.

    Example:
        ref = db.ref("game_users/ewout")
        await ref.set({"name": "Ewout", "points": 0})
        await ref.update({"points": 10})
        snap = await ref.get()
        print(snap.val())  # {'name': 'Ewout', 'points': 10}

    Arguments are validated before any backend call: invalid ones raise
    ValidationError right away, not when the result is awaited.
    """

    def __init__(self, db: "Database", path: str = ""):
        path = paths.normalize(path)
        self.db = db
        self._state = ReferenceState(path=path, key=paths.key_of(path))

    @property
    def path(self) -> str:
        """The path this reference was created with."""
        return self._state.path

    @property
    def key(self) -> Union[str, int]:
        """Key (property name or array index) of this node, "" for the root."""
        return self._state.key

    @property
    def parent(self) -> Optional["Reference"]:
        """Reference to the parent node, or None for the root."""
        parent_path = paths.parent(self.path)
        if parent_path is None:
            return None
        return Reference(self.db, parent_path)

    @property
    def pushed(self) -> bool:
        """True if this reference was created by push()."""
        return self._state.pushed

    def child(self, child_path: Union[str, int]) -> "Reference":
        """Get a reference to a child node."""
        return Reference(self.db, paths.child(self.path, child_path))

    def __repr__(self) -> str:
        return f"Reference({self.path!r})"

    async def _resolve(self, pending: Awaitable) -> "Reference":
        await pending
        return self

    # Writes

    def set(self, value: Any) -> Awaitable["Reference"]:
        """Set or overwrite the stored value.

        Raises:
            ValidationError: If this is the root or value is UNDEFINED
        """
        if self.parent is None:
            raise ValidationError(
                "Cannot set the root object. Use update, or set individual child properties"
            )
        if value is UNDEFINED:
            raise ValidationError("Cannot store value UNDEFINED")
        envelope = self.db.types.serialize(self.path, value)
        return self._resolve(self.db.backend.set(self, envelope))

    def update(self, updates: Any) -> Awaitable["Reference"]:
        """Update properties of the referenced object.

        Anything other than a dict (a list, bytes, a datetime, a scalar)
        replaces the value, like set().
        """
        if not isinstance(updates, dict):
            return self.set(updates)
        envelope = self.db.types.serialize(self.path, updates)
        return self._resolve(self.db.backend.update(self, envelope))

    def transaction(self, callback: Callable[[DataSnapshot], Any]) -> Awaitable["Reference"]:
        """Replace the value with the result of callback(snapshot).

        The callback may be a coroutine function. It is called again with
        fresh data if the node changed before the new value could be
        committed, so it must not have other side effects. Returning
        UNDEFINED cancels the transaction.
        """
        if not callable(callback):
            raise ValidationError("transaction requires a callback function")

        async def updater(current):
            value = self.db.types.deserialize(self.path, current)
            new_value = callback(DataSnapshot(self, value))
            if inspect.isawaitable(new_value):
                new_value = await new_value
            if new_value is UNDEFINED:
                return UNDEFINED
            return self.db.types.serialize(self.path, new_value)

        return self._resolve(self.db.backend.transaction(self, updater))

    def push(self, value: Any = UNDEFINED) -> Union["Reference", Awaitable["Reference"]]:
        """Create a child with a unique, roughly time-ordered key.

        Without a value, the new child reference is returned right away so
        it can be set later. With a value, returns an awaitable resolving to
        the child reference once the value is stored.

        Example:
            user_ref = await db.ref("users").push({"name": "Betty Boop"})
            # user_ref.path == "users/c0l8y7ghq0000a1b2c3d4e5f"
        """
        ref = self.child(ids.generate())
        ref._state.pushed = True
        if value is UNDEFINED:
            return ref
        return ref.set(value)

    def remove(self) -> Awaitable["Reference"]:
        """Remove this node and all children.

        Raises:
            ValidationError: If this is the root
        """
        if self.parent is None:
            raise ValidationError("Cannot remove the top node")
        return self.set(None)

    # Reads

    async def get(self, options: Union[DataRetrievalOptions, dict, None] = None) -> DataSnapshot:
        """Get a snapshot of the stored value."""
        if isinstance(options, dict):
            options = DataRetrievalOptions(**options)
        envelope = await self.db.backend.get(self, options)
        return DataSnapshot(self, self.db.types.deserialize(self.path, envelope))

    async def exists(self) -> bool:
        """Check if this node has a value, without loading it."""
        return await self.db.backend.exists(self)

    def once(self, event: str, options: Union[DataRetrievalOptions, dict, None] = None) -> Awaitable[DataSnapshot]:
        """Wait for an event to occur.

        For "value" this is the same as get(). For other events, resolves
        with the first snapshot delivered after the call.
        """
        if event == "value":
            return self.get(options)
        self._check_event(event)

        future = asyncio.get_running_loop().create_future()

        def callback(snap: DataSnapshot) -> None:
            # One write can report several children
            if future.done():
                return
            self.off(event, callback)
            future.set_result(snap)

        self._register(event, callback, replay=False)
        return future

    def query(self) -> "DataReferenceQuery":
        """Create a query on the children of this node."""
        from .query import DataReferenceQuery

        return DataReferenceQuery(self)

    # Events

    def on(
        self, event: str, callback: Union[SnapshotCallback, bool, None] = None
    ) -> EventStream:
        """Subscribe to an event.

        With a callback, "value" first delivers the current value and
        "child_added" first delivers every existing child, before any live
        event. Without one, only future events are published on the
        returned stream, and the backend subscription ends as soon as the
        stream is stopped or left without subscribers.

        Args:
            event: "value", "child_added", "child_changed" or "child_removed"
            callback: Called with a DataSnapshot for each event. Pass True
                instead of a function to have the current data published on
                the stream only

        Returns:
            EventStream publishing the same snapshots
        """
        self._check_event(event)
        if isinstance(callback, bool):
            replay, callback = callback, None
        elif callback is None or callable(callback):
            replay = callback is not None
        else:
            raise ValidationError("callback must be callable, True or False")
        registration = self._register(event, callback, replay=replay)
        return registration.stream

    def off(self, event: Optional[str] = None, callback: Optional[SnapshotCallback] = None) -> "Reference":
        """Unsubscribe from a previously added event.

        With a callback, only the registration made with that callback is
        removed. Without one, every registration on this reference is removed
        (only those for event, if given).
        """
        registrations = self._state.registrations
        if callback is not None:
            registration = next(
                (
                    r
                    for r in registrations
                    if r.callback == callback and (event is None or r.event == event)
                ),
                None,
            )
            if registration is None:
                logger.warning("%s", RegistrationNotFound(self.path, event, callback))
                return self
            self._detach(registration)
        else:
            for registration in [r for r in registrations if event is None or r.event == event]:
                self._detach(registration)
        return self

    @staticmethod
    def _check_event(event: str) -> None:
        if event not in EVENTS:
            raise ValidationError(
                f"Unknown event \"{event}\", expected one of {', '.join(EVENTS)}"
            )

    def _register(self, event: str, callback: Optional[SnapshotCallback], replay: bool) -> EventRegistration:
        replay = replay and event in _REPLAY_EVENTS
        loop = asyncio.get_running_loop() if replay else None
        registration = EventRegistration(event=event, callback=callback, stream=EventStream())
        registration.handler = self._make_handler(registration)
        self._state.registrations.append(registration)

        # Backend registration comes first so no live event is lost while
        # the current value is being read.
        self.db.backend.subscribe(self, event, registration.handler)
        if replay:
            registration.replaying = True
            registration.replay_task = loop.create_task(self._replay(registration))
        return registration

    def _make_handler(self, registration: EventRegistration):
        event = registration.event

        def handler(error, path, new_value, old_value) -> None:
            if error is not None:
                logger.error("Error getting data for event %s on path \"%s\": %s", event, path, error)
                return
            try:
                value = self.db.types.deserialize(
                    path, old_value if event == "child_removed" else new_value
                )
            except DatabaseError as e:
                logger.error("Error getting data for event %s on path \"%s\": %s", event, path, e)
                return
            # The event may come from a child node, so build a reference from
            # the reported path instead of using this one.
            snap = DataSnapshot(self.db.ref(path), value)
            if registration.replaying:
                registration.pending.append(snap)
                return
            self._deliver(registration, snap)

        return handler

    def _deliver(self, registration: EventRegistration, snap: DataSnapshot) -> None:
        if registration.callback is not None:
            registration.callback(snap)
        keep = registration.stream.publish(snap)
        if not keep and registration.callback is None:
            self._detach(registration)

    def _detach(self, registration: EventRegistration) -> None:
        registrations = self._state.registrations
        if registration in registrations:
            registrations.remove(registration)
        registration.stream.stop()
        self.db.backend.unsubscribe(self, registration.event, registration.handler)

    async def _replay(self, registration: EventRegistration) -> None:
        snaps: List[DataSnapshot] = []
        try:
            current = await self.get()
        except DatabaseError as e:
            logger.error(
                "Failed to read current value for %s event on \"%s\": %s",
                registration.event,
                self.path,
                e,
            )
        else:
            if registration.event == "value":
                snaps.append(current)
            else:
                current.for_each(snaps.append)
        finally:
            registration.replaying = False
            pending, registration.pending = registration.pending, []

        for snap in snaps + pending:
            if registration not in self._state.registrations:
                return
            try:
                self._deliver(registration, snap)
            except Exception:
                logger.exception(
                    "Callback for %s event on \"%s\" failed", registration.event, self.path
                )
