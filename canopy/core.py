"""Database facade and URL-based connection."""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional
from urllib.parse import parse_qsl, urlparse

from . import paths
from .backends.base import Backend, IndexDescriptor
from .backends.memory import MemoryBackend
from .exceptions import ValidationError
from .query import DataReferenceQuery
from .reference import Reference
from .type_mappings import TypeMappings

logger = logging.getLogger(__name__)


@dataclass
class DatabaseSettings:
    """Settings for a Database.

    Attributes:
        log_level: Level for the "canopy" logger (e.g. "debug", "warning");
            None leaves logging configuration to the application
        max_transaction_retries: Attempts before a conflicting transaction
            fails with TransactionError (used by connect())
    """

    log_level: Optional[str] = None
    max_transaction_retries: int = 10

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> "DatabaseSettings":
        """Build settings from keyword arguments or URL query parameters.

        Raises:
            ValueError: If an option is unknown or has an invalid value
        """
        known = {f.name: f for f in dataclasses.fields(cls)}
        values = {}
        for name, value in options.items():
            if name not in known:
                raise ValueError(f"Unknown database setting: {name}")
            if name == "max_transaction_retries":
                value = int(value)
                if value < 1:
                    raise ValueError("max_transaction_retries must be at least 1")
            values[name] = value
        return cls(**values)


class Indexes:
    """Index management for a Database."""

    def __init__(self, backend: Backend):
        self._backend = backend

    async def get(self) -> List[IndexDescriptor]:
        """Get all indexes."""
        return await self._backend.get_indexes()

    def create(self, path: str, key: str) -> Awaitable[IndexDescriptor]:
        """Create an index on key for all child nodes at path.

        If the index already exists, nothing happens. Wildcard paths index
        fragmented data: path "users/*/posts" with key "title" indexes the
        titles of all posts of all users.
        """
        if not isinstance(path, str) or not isinstance(key, str) or not key:
            raise ValidationError("Index path and key must be strings")
        return self._backend.create_index(paths.normalize(path), key)


class Database:
    """Entry point for working with a hierarchical database.

    Example:
        from canopy import connect

        db = connect("sqlite:///app.db")

        await db.ref("game_users/ewout").set({"name": "Ewout", "points": 0})
        snap = await db.ref("game_users/ewout").get()

        top = await db.query("game_users").order("points", False).take(10).get()

        db.close()
    """

    def __init__(self, backend: Backend, settings: Optional[DatabaseSettings] = None):
        """Create a Database with the given backend.

        Use connect() for convenient URL-based connection.

        Args:
            backend: Connected backend instance
            settings: Optional settings
        """
        self.settings = settings or DatabaseSettings()
        if self.settings.log_level:
            logging.getLogger("canopy").setLevel(self.settings.log_level.upper())
        self.backend = backend
        self.types = TypeMappings()
        self.indexes = Indexes(backend)

    def ref(self, path: str = "") -> Reference:
        """Create a reference to a node."""
        return Reference(self, path)

    @property
    def root(self) -> Reference:
        """Reference to the root node."""
        return self.ref("")

    def query(self, path: str) -> DataReferenceQuery:
        """Create a query on the children of the node at path."""
        return DataReferenceQuery(self.ref(path))

    # Lifecycle

    def close(self) -> None:
        """Close the backend and release resources."""
        self.backend.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def connect(url: str, **settings) -> Database:
    """Connect to a database using a URL.

    Supported URL schemes:
        - memory://          In-memory storage (testing)
        - sqlite:///path.db  SQLite file storage
        - sqlite:///:memory: SQLite in-memory

    Settings may be passed as keyword arguments or URL query parameters,
    e.g. "memory://?max_transaction_retries=3".

    Args:
        url: Connection URL
        **settings: DatabaseSettings fields

    Returns:
        Connected Database instance

    Example:
        db = connect("sqlite:///app.db", log_level="debug")
        db = connect("memory://")
    """
    parsed = urlparse(url)
    scheme = parsed.scheme

    options: Dict[str, Any] = dict(parse_qsl(parsed.query))
    options.update(settings)
    db_settings = DatabaseSettings.from_options(options)
    backend_options = {"max_transaction_retries": db_settings.max_transaction_retries}

    if scheme == "memory":
        backend = MemoryBackend(**backend_options)
        backend.connect()

    elif scheme == "sqlite":
        from .backends.sqlite import SQLiteBackend

        # Handle sqlite:///path and sqlite:///:memory:
        path = parsed.path
        if path.startswith("/"):
            path = path[1:]  # Remove leading slash from file path

        backend = SQLiteBackend(**backend_options)
        backend.connect(path=path if path else ":memory:")

    else:
        raise ValueError(f"Unknown storage scheme: {scheme}")

    logger.debug("Connected to %s", url)
    return Database(backend, db_settings)
