"""Abstract backend capability consumed by References and Queries."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

if TYPE_CHECKING:
    from ..query import QueryDescriptor, QueryOptions
    from ..reference import DataRetrievalOptions, Reference

Envelope = Dict[str, Any]

# handler(error, path, new_value, old_value); values are transport envelopes
EventHandler = Callable[[Optional[Exception], str, Optional[Envelope], Optional[Envelope]], None]

# updater(current) -> new envelope, or UNDEFINED to cancel
TransactionUpdater = Callable[[Envelope], Awaitable[Any]]


@dataclass
class IndexDescriptor:
    """An index on "key" of all child nodes at "path"."""

    path: str
    key: str
    created_at: float = 0.0


@dataclass(eq=False)
class EventSubscriptionRecord:
    """A handler registered on a backend for one path and event."""

    path: str
    event: str
    handler: EventHandler


class Backend(ABC):
    """Abstract storage capability.

    Backends implement storage, change events, transactions and queries,
    while Reference and Query handle validation, type mapping and the public
    API. Values cross this boundary as transport envelopes
    (see canopy.transport).
    """

    @abstractmethod
    def connect(self, **kwargs) -> None:
        """Establish connection to storage.

        Args:
            **kwargs: Backend-specific connection parameters
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        pass

    @abstractmethod
    async def get(self, ref: "Reference", options: Optional["DataRetrievalOptions"] = None) -> Envelope:
        """Read the value of a node.

        Args:
            ref: Reference to the node
            options: Child keys to include or exclude

        Returns:
            Envelope of the value; {"val": None} if the node does not exist
        """
        pass

    @abstractmethod
    async def set(self, ref: "Reference", value: Envelope) -> None:
        """Overwrite the value of a node. A None value removes the node."""
        pass

    @abstractmethod
    async def update(self, ref: "Reference", updates: Envelope) -> None:
        """Update properties of a node; None-valued properties are removed."""
        pass

    @abstractmethod
    async def exists(self, ref: "Reference") -> bool:
        """Check if a node has a value."""
        pass

    @abstractmethod
    def subscribe(self, ref: "Reference", event: str, handler: EventHandler) -> None:
        """Call handler whenever event occurs on the node."""
        pass

    @abstractmethod
    def unsubscribe(self, ref: "Reference", event: Optional[str] = None, handler: Optional[EventHandler] = None) -> None:
        """Remove handlers for the node.

        Args:
            ref: Reference to the node
            event: Only remove handlers for this event, or all events if None
            handler: Only remove this handler, or all handlers if None
        """
        pass

    @abstractmethod
    async def transaction(self, ref: "Reference", updater: TransactionUpdater) -> None:
        """Atomically replace a node's value with the result of updater.

        updater receives the current value and must be safe to call again:
        if the node changes before the new value is committed, it is called
        with the refreshed value.
        """
        pass

    @abstractmethod
    async def query(
        self,
        ref: "Reference",
        query: "QueryDescriptor",
        options: "QueryOptions",
    ) -> List[Union[Dict[str, Any], str]]:
        """Run a query on the children of a node.

        Returns:
            [{"path": ..., "val": envelope}] if options.snapshots, else paths
        """
        pass

    @abstractmethod
    async def get_indexes(self) -> List[IndexDescriptor]:
        """List all indexes."""
        pass

    @abstractmethod
    async def create_index(self, path: str, key: str) -> IndexDescriptor:
        """Create an index on key for all child nodes at path.

        If the index already exists, nothing happens.
        """
        pass
