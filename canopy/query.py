"""Query builder and executor."""

import asyncio
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Union

from .exceptions import ValidationError
from .reference import DataRetrievalOptions
from .snapshot import DataSnapshot

if TYPE_CHECKING:
    from .reference import Reference

OPERATORS = (
    "<", "<=", "==", "!=", ">", ">=",
    "exists", "!exists",
    "between", "!between",
    "like", "!like",
    "matches", "!matches",
    "in", "!in",
    "has", "!has",
    "contains", "!contains",
    "custom",
)


@dataclass
class QueryFilter:
    key: str
    op: str
    compare: Any = None


@dataclass
class QueryOrder:
    key: str
    ascending: bool = True


@dataclass
class QueryDescriptor:
    """Filters, sort order and paging for the children of a node."""

    filters: List[QueryFilter] = field(default_factory=list)
    order: List[QueryOrder] = field(default_factory=list)
    skip: int = 0
    take: int = 0  # 0 means no limit


@dataclass
class QueryOptions(DataRetrievalOptions):
    """Retrieval options for query results.

    Attributes:
        snapshots: Resolve with snapshots (True) or references (False)
    """

    snapshots: bool = True


def _check_count(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")


class DataReferenceQuery:
    """Query on the children of a node.

    Example:
        chats = await (
            db.ref("chats")
            .query()
            .where("title", "matches", re.compile(r"\\bdatabase\\b", re.I))
            .order("created", ascending=False)
            .take(10)
            .get()
        )

        # Or remove all matches
        await db.ref("chats").query().where("archived", "==", True).remove()
    """

    def __init__(self, ref: "Reference"):
        self.ref = ref
        self.descriptor = QueryDescriptor()

    def where(self, key: str, op: str, compare: Any = None) -> "DataReferenceQuery":
        """Add a filter.

        Args:
            key: Child property to test; may be a nested path ("address/city")
            op: Operator, e.g. "==", "<", "between", "in", "matches", "custom"
            compare: Value to compare with

        Raises:
            ValidationError: If op is unknown or compare doesn't suit op
        """
        if not isinstance(key, str):
            raise ValidationError("key must be a string")
        if op not in OPERATORS:
            raise ValidationError(f"Unknown query operator \"{op}\"")
        if op in ("in", "!in") and (
            not isinstance(compare, (list, tuple, set, frozenset)) or len(compare) == 0
        ):
            raise ValidationError(
                f"{op} filter for {key} must supply a list compare argument "
                f"containing at least 1 value"
            )
        if op in ("between", "!between") and (
            not isinstance(compare, (list, tuple)) or len(compare) != 2
        ):
            raise ValidationError(
                f"{op} filter for {key} must supply a list compare argument containing 2 values"
            )
        if op in ("matches", "!matches") and not isinstance(compare, re.Pattern):
            raise ValidationError(
                f"{op} filter for {key} must supply a compiled regular expression"
            )
        if op in ("like", "!like") and not isinstance(compare, str):
            raise ValidationError(f"{op} filter for {key} must supply a string pattern")
        if op in ("has", "!has") and not isinstance(compare, str):
            raise ValidationError(f"{op} filter for {key} must supply a child key string")
        if op == "custom" and not callable(compare):
            raise ValidationError(f"{op} filter for {key} must supply a function")
        self.descriptor.filters.append(QueryFilter(key, op, compare))
        return self

    def take(self, n: int) -> "DataReferenceQuery":
        """Limit the number of results; 0 means no limit."""
        _check_count("take", n)
        self.descriptor.take = n
        return self

    def skip(self, n: int) -> "DataReferenceQuery":
        """Skip the first n results."""
        _check_count("skip", n)
        self.descriptor.skip = n
        return self

    def order(self, key: str, ascending: bool = True) -> "DataReferenceQuery":
        """Sort results by key. Later calls break ties of earlier ones."""
        if not isinstance(key, str):
            raise ValidationError("key must be a string")
        self.descriptor.order.append(QueryOrder(key, ascending))
        return self

    async def get(
        self, options: Union[QueryOptions, dict, None] = None
    ) -> Union[List[DataSnapshot], List["Reference"]]:
        """Execute the query.

        Returns:
            Snapshots of the matching children, or references to them if
            options.snapshots is False, in the order chosen by the backend
        """
        if options is None:
            options = QueryOptions()
        elif isinstance(options, dict):
            options = QueryOptions(**options)

        db = self.ref.db
        results = await db.backend.query(self.ref, self.descriptor, options)
        if options.snapshots:
            return [
                DataSnapshot(db.ref(result["path"]), db.types.deserialize(result["path"], result["val"]))
                for result in results
            ]
        return [db.ref(path) for path in results]

    async def remove(self) -> None:
        """Remove all matching children.

        Deletions run independently: if one fails its error is raised, but
        the others are not rolled back.
        """
        refs = await self.get(QueryOptions(snapshots=False))
        await asyncio.gather(*(ref.remove() for ref in refs))
