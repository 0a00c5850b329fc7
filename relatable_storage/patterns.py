"""Translation of shell-style glob patterns into SQL ``LIKE`` filters.

Only ``*`` (any run of characters) and ``?`` (exactly one character) are
wildcards. Characters that are special to ``LIKE`` (``%``, ``_`` and the
escape character itself) are escaped so that they only match literally.

Example:

    >>> glob_to_like("tax%.txt")
    'tax\\\\%.txt'
    >>> build_filename_filter(["*.txt", "file.d?t"])
    (' WHERE filename LIKE :pattern_0 ESCAPE :escape OR filename LIKE :pattern_1 ESCAPE :escape', {'pattern_0': '%.txt', 'pattern_1': 'file.d_t', 'escape': '\\\\'})

"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

SQL_ESCAPE = "\\"


def glob_to_like(pattern: str, escape: str = SQL_ESCAPE) -> str:
    """Convert a single glob pattern into a ``LIKE`` pattern.

    Args:
        pattern: Glob pattern using ``*`` and ``?`` wildcards.
        escape: Single character declared in the ``ESCAPE`` clause.

    Returns:
        The equivalent ``LIKE`` pattern.

    Raises:
        ValueError: If ``escape`` is not exactly one character.

    """
    if len(escape) != 1:
        message = f"Escape must be a single character: {escape!r}"
        raise ValueError(message)
    return (
        pattern.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
        .replace("*", "%")
        .replace("?", "_")
    )


def build_filename_filter(
    patterns: Iterable[str],
    *,
    column: str = "filename",
    escape: str = SQL_ESCAPE,
) -> tuple[str, dict[str, str]]:
    """Build a ``WHERE`` clause matching any of the given patterns.

    Args:
        patterns: Glob patterns, OR-combined.
        column: Already-quoted column name to filter on.
        escape: Escape character bound once and shared by every predicate.

    Returns:
        Tuple of (clause, params). The clause is empty when no pattern is
        given, meaning every row matches.

    """
    predicates = []
    params: dict[str, str] = {}
    for index, pattern in enumerate(patterns):
        key = f"pattern_{index}"
        params[key] = glob_to_like(pattern, escape)
        predicates.append(f"{column} LIKE :{key} ESCAPE :escape")

    if not predicates:
        return "", {}

    params["escape"] = escape
    return " WHERE " + " OR ".join(predicates), params
