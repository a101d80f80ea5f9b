"""Path parsing and navigation helpers.

A path such as "users/ewout/posts[2]/title" addresses one node in the tree.
It decomposes into keys: property names (str) and array indexes (int),
where indexes are written as bracketed segments.
"""

import fnmatch
import re
from typing import List, Optional, Union

Key = Union[str, int]

SEPARATOR = "/"

_INDEX_SEGMENT = re.compile(r"^\[(\d+)\]$")


def normalize(path: Optional[str]) -> str:
    """Strip leading and trailing separators. None becomes the root path."""
    if not path:
        return ""
    return path.strip(SEPARATOR)


def split_to_keys(path: str) -> List[Key]:
    """Split a path into its key sequence.

    Example:
        split_to_keys("users/ewout/posts[2]/title")
        # ["users", "ewout", "posts", 2, "title"]
    """
    path = normalize(path)
    if not path:
        return []
    keys: List[Key] = []
    for segment in path.replace("[", SEPARATOR + "[").split(SEPARATOR):
        if not segment:
            continue
        match = _INDEX_SEGMENT.match(segment)
        keys.append(int(match.group(1)) if match else segment)
    return keys


def key_of(path: str) -> Key:
    """Get the trailing key of a path, "" for the root."""
    keys = split_to_keys(path)
    return keys[-1] if keys else ""


def parent(path: str) -> Optional[str]:
    """Get the parent path, or None for the root."""
    path = normalize(path)
    if not path:
        return None
    i = max(path.rfind(SEPARATOR), path.rfind("["))
    if i < 0:
        return ""
    return path[:i]


def child(path: str, rel: Union[str, int]) -> str:
    """Join a relative child path onto path."""
    if isinstance(rel, int):
        rel = f"[{rel}]"
    rel = normalize(rel)
    path = normalize(path)
    if not path:
        return rel
    if not rel:
        return path
    if rel.startswith("["):
        return f"{path}{rel}"
    return f"{path}{SEPARATOR}{rel}"


def is_related(a: str, b: str) -> bool:
    """True if a and b are the same path or one contains the other."""
    keys_a = split_to_keys(a)
    keys_b = split_to_keys(b)
    n = min(len(keys_a), len(keys_b))
    return keys_a[:n] == keys_b[:n]


def matches_pattern(pattern: str, path: str) -> bool:
    """Match a path against a pattern with per-segment shell wildcards.

    "users/*/posts" matches "users/ewout/posts" but not "users/a/b/posts".
    """
    pattern_keys = split_to_keys(pattern)
    path_keys = split_to_keys(path)
    if len(pattern_keys) != len(path_keys):
        return False
    for wanted, key in zip(pattern_keys, path_keys):
        if isinstance(wanted, int) or isinstance(key, int):
            if wanted != key and wanted != "*":
                return False
        elif not fnmatch.fnmatchcase(key, wanted):
            return False
    return True
