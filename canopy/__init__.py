"""Client core for a hierarchical (tree-structured) database.

Nodes are addressed by paths like "users/ewout/posts[2]". References read
and write nodes, queries filter and sort a node's children, and event
subscriptions deliver snapshots when data changes.

Quick Start:
    import asyncio
    from canopy import connect

    async def main():
        db = connect("memory://")

        ref = await db.ref("users").push({"name": "Betty Boop", "points": 0})
        await ref.update({"points": 10})

        db.ref("users").on("child_changed", lambda snap: print(snap.val()))

        top = await db.query("users").where("points", ">", 5).get()
        print([snap.val()["name"] for snap in top])

        db.close()

    asyncio.run(main())

Supported backends:
    - memory://           In-memory storage (testing)
    - sqlite:///path.db   SQLite file storage
    - sqlite:///:memory:  SQLite in-memory

Values:
    - Plain JSON values, datetime, bytes and PathReference survive storage
    - None removes a node; UNDEFINED marks "no value given"
    - Classes bound with db.types.bind() are stored as plain objects
"""

from .core import Database, DatabaseSettings, connect
from .reference import Reference, DataRetrievalOptions
from .query import DataReferenceQuery, QueryOptions
from .snapshot import DataSnapshot
from .subscription import EventStream, EventSubscription
from .transport import PathReference
from .type_mappings import TypeMappings
from .undefined import UNDEFINED
from .backends import Backend, IndexDescriptor, TreeBackend, MemoryBackend, SQLiteBackend
from .exceptions import (
    DatabaseError,
    ValidationError,
    RegistrationNotFound,
    BackendError,
    DeliveryError,
    SerializationError,
    TransactionError,
)

__all__ = [
    # Main API
    "Database",
    "DatabaseSettings",
    "connect",
    "Reference",
    "DataRetrievalOptions",
    "DataReferenceQuery",
    "QueryOptions",
    "DataSnapshot",
    "EventStream",
    "EventSubscription",
    # Values
    "PathReference",
    "TypeMappings",
    "UNDEFINED",
    # Backends
    "Backend",
    "IndexDescriptor",
    "TreeBackend",
    "MemoryBackend",
    "SQLiteBackend",
    # Exceptions
    "DatabaseError",
    "ValidationError",
    "RegistrationNotFound",
    "BackendError",
    "DeliveryError",
    "SerializationError",
    "TransactionError",
]

__version__ = "0.1.0"
