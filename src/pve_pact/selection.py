"""
Selection resolution.

Turns an operator selection such as ``"debian12,ubuntu"`` or ``"all"`` into
the set of catalog ids to build.
"""

import re
from typing import FrozenSet, Iterable, List, Mapping, Optional

from .catalog import ALL_GROUP, DistroCatalog, default_catalog
from .exceptions import EmptySelectionError, UnknownTokenError

ResolvedSelection = FrozenSet[str]

_SEPARATORS = re.compile(r"[,\s]+")


def split_tokens(raw: Optional[str]) -> List[str]:
    """Split a selection on commas and whitespace, dropping empty tokens."""
    if not raw:
        return []
    return [token.lower() for token in _SEPARATORS.split(raw) if token]


def resolve(
    raw: Optional[str],
    catalog: DistroCatalog = default_catalog,
    groups: Optional[Mapping[str, Iterable[str]]] = None,
) -> ResolvedSelection:
    """
    Resolve a selection expression into a set of distribution ids.

    Each token is matched against the catalog ids first, then the group
    names. ``all`` always expands to every catalog id. An empty expression
    means ``all``.

    Args:
        raw: Comma separated selection
        catalog: Catalog to resolve against
        groups: Group table; defaults to the catalog's groups

    Returns:
        ResolvedSelection: Deduplicated set of catalog ids

    Raises:
        UnknownTokenError: If any token is neither an id nor a group, listing all of them
        EmptySelectionError: If the expansion is empty
    """
    tokens = split_tokens(raw) or [ALL_GROUP]
    group_table = catalog.groups if groups is None else groups

    selected: set[str] = set()
    unknown: List[str] = []
    for token in tokens:
        if token in catalog:
            selected.add(token)
        elif token == ALL_GROUP:
            selected.update(catalog.ids)
        elif token in group_table:
            selected.update(group_table[token])
        elif token not in unknown:
            unknown.append(token)

    if unknown:
        raise UnknownTokenError(unknown)

    # A group table may name ids the catalog does not have
    stray = sorted(selected - catalog.ids)
    if stray:
        raise UnknownTokenError(stray)

    if not selected:
        raise EmptySelectionError(raw or "")

    return frozenset(selected)


def describe(selection: Iterable[str]) -> str:
    """Stable, human readable rendering of a selection."""
    return ",".join(sorted(selection))
