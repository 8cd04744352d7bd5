"""
Named-parameter query rewriting.

Queries are written with ``:name`` placeholders and executed with a mapping of
names to values. ``rewrite`` turns them into a positional query in the bind
syntax of the target driver (``%s`` for psycopg through ``prepare``) plus an
ordered argument list. ``adapt_placeholders`` converts hand-written ``?``
queries into the same syntaxes.

Text inside quoted literals (including ``E'...'`` escape strings), quoted
identifiers, dollar-quoted bodies and comments is left untouched, and ``::`` is
kept as the PostgreSQL cast operator.

Usage:
    from cptx.rewriter import prepare

    sql, args = prepare("SELECT * FROM users WHERE id = :id", {"id": 7})
    # sql == "SELECT * FROM users WHERE id = %s", args == [7]
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from cptx.errors import RewriteError

Params = Union[Mapping[str, Any], BaseModel, None]

_PLACEHOLDER = re.compile(r"::|:([A-Za-z_][A-Za-z0-9_]*)|:")
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


class BindStyle(str, Enum):
    """Positional placeholder syntax understood by a database driver."""

    QUESTION = "question"  # ?
    DOLLAR = "dollar"  # $1, $2
    FORMAT = "format"  # %s (psycopg)
    NAMED = "named"  # :arg1, :arg2
    AT = "at"  # @p1, @p2


def _quoted_end(query: str, i: int) -> int:
    """Offset just past the quoted text opening at ``i``."""
    n = len(query)
    quote = query[i]
    # E'...' literals also accept backslash escapes.
    backslashes = (
        quote == "'"
        and i > 0
        and query[i - 1] in "eE"
        and (i < 2 or not (query[i - 2].isalnum() or query[i - 2] == "_"))
    )
    j = i + 1
    while j < n:
        ch = query[j]
        if backslashes and ch == "\\":
            j += 2
            continue
        if ch == quote:
            if j + 1 < n and query[j + 1] == quote:
                j += 2
                continue
            return j + 1
        j += 1
    raise RewriteError(f"unterminated quoted text at offset {i}")


def _split(query: str) -> Iterator[Tuple[str, bool]]:
    """
    Split a query into ``(text, is_code)`` chunks.

    Quoted literals, quoted identifiers, dollar-quoted bodies and comments are
    yielded with ``is_code=False``.
    """
    n = len(query)
    start = i = 0
    while i < n:
        ch = query[i]
        end = -1
        if ch in ("'", '"'):
            end = _quoted_end(query, i)
        elif query.startswith("--", i):
            end = query.find("\n", i)
            end = n if end == -1 else end
        elif query.startswith("/*", i):
            end = query.find("*/", i + 2)
            if end == -1:
                raise RewriteError(f"unterminated comment at offset {i}")
            end += 2
        elif ch == "$":
            tag = _DOLLAR_TAG.match(query, i)
            if tag is not None:
                end = query.find(tag.group(0), tag.end())
                if end == -1:
                    raise RewriteError(f"unterminated dollar-quoted text at offset {i}")
                end += len(tag.group(0))

        if end == -1:
            i += 1
            continue
        if start < i:
            yield query[start:i], True
        yield query[i:end], False
        start = i = end

    if start < n:
        yield query[start:], True


def _as_mapping(params: Params) -> Mapping[str, Any]:
    if params is None:
        return {}
    if isinstance(params, BaseModel):
        return params.model_dump()
    if isinstance(params, Mapping):
        return params
    raise RewriteError(f"unsupported parameter container: {type(params).__name__}")


def _marker(style: BindStyle, position: int) -> str:
    if style is BindStyle.DOLLAR:
        return f"${position}"
    if style is BindStyle.FORMAT:
        return "%s"
    if style is BindStyle.NAMED:
        return f":arg{position}"
    if style is BindStyle.AT:
        return f"@p{position}"
    return "?"


def rewrite(
    query: str,
    params: Params = None,
    style: Union[BindStyle, str] = BindStyle.QUESTION,
) -> Tuple[str, List[Any]]:
    """
    Replace ``:name`` placeholders with positional markers and collect the arguments in order.

    Markers are emitted directly in ``style``, so a ``?`` the query already
    contains (the jsonb ``?``, ``?|`` and ``?&`` operators) is never mistaken
    for a placeholder. A name used several times binds one argument per
    occurrence. For the format style every literal ``%`` is doubled.

    Raises
    ------
    RewriteError
        On a malformed placeholder, a name missing from ``params``, or a key of
        ``params`` that the query never references.
    """
    style = BindStyle(style)
    mapping = _as_mapping(params)
    parts: List[str] = []
    args: List[Any] = []
    used = set()

    for chunk, is_code in _split(query):
        if not is_code:
            parts.append(_escape_percent(chunk, style))
            continue
        pos = 0
        for match in _PLACEHOLDER.finditer(chunk):
            if match.group(0) == "::":
                continue
            name = match.group(1)
            if name is None:
                snippet = chunk[match.start() : match.start() + 12]
                raise RewriteError(f"malformed placeholder near {snippet!r}")
            if name not in mapping:
                raise RewriteError(f"could not find name {name!r} in parameters")
            parts.append(_escape_percent(chunk[pos : match.start()], style))
            args.append(mapping[name])
            parts.append(_marker(style, len(args)))
            used.add(name)
            pos = match.end()
        parts.append(_escape_percent(chunk[pos:], style))

    unused = sorted(str(key) for key in mapping if key not in used)
    if unused:
        raise RewriteError(f"parameters not referenced by the query: {', '.join(unused)}")
    return "".join(parts), args


def _escape_percent(text: str, style: BindStyle) -> str:
    # psycopg parses the whole query text when arguments are supplied.
    if style is BindStyle.FORMAT:
        return text.replace("%", "%%")
    return text


def adapt_placeholders(query: str, style: Union[BindStyle, str] = BindStyle.FORMAT) -> str:
    """
    Convert the ``?`` markers of a hand-written positional query into ``style`` placeholders.

    Every ``?`` outside literals and comments counts as a marker, so queries
    using the jsonb ``?`` operators must go through ``rewrite`` or ``prepare``
    instead.
    """
    style = BindStyle(style)
    if style is BindStyle.QUESTION:
        return query

    parts: List[str] = []
    position = 0
    for chunk, is_code in _split(query):
        chunk = _escape_percent(chunk, style)
        if not is_code:
            parts.append(chunk)
            continue
        pieces = chunk.split("?")
        parts.append(pieces[0])
        for piece in pieces[1:]:
            position += 1
            parts.append(_marker(style, position))
            parts.append(piece)
    return "".join(parts)


def prepare(
    query: str,
    params: Params = None,
    style: Optional[Union[BindStyle, str]] = BindStyle.FORMAT,
) -> Tuple[str, List[Any]]:
    """Rewrite named placeholders straight into ``style`` markers (``%s`` unless given)."""
    return rewrite(query, params, style or BindStyle.FORMAT)


__all__ = ["BindStyle", "Params", "rewrite", "adapt_placeholders", "prepare"]
