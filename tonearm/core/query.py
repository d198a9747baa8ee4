"""
Query language for listing items and albums.

Syntax (terms are whitespace separated, quotes group words):

    word              free text, matched through the full-text index
    field:value       substring match
    field:=value      exact match
    field:value*      prefix match
    field::pattern    glob match; `.*` and `.` are accepted as wildcards,
                      `^` / `$` anchor the pattern
    field:a..b        inclusive range, either side optional
    added:-2w         relative date (d, w, m, y)
    ^term             negation
    field+ / field-   sort ascending / descending

`parse_query()` turns a query into terms. `compile_item_query()` and
`compile_album_query()` turn terms into a `SELECT` plus bound parameters for
`LibraryDb.query_items()` / `LibraryDb.query_albums()`.

Field names and sort keys are checked against whitelists before they reach
SQL; values are always bound parameters.
"""

from __future__ import annotations

import re
import shlex
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Final, Literal, Sequence

from tonearm.core import QueryError
from tonearm.core.db import fts
from tonearm.core.db.ordering import albums_order_clause, items_order_clause

FieldKind = Literal["text", "int", "float", "date"]
FieldOp = Literal["substring", "exact", "prefix", "glob", "range"]

ITEM_FIELDS: Final[dict[str, FieldKind]] = {
    "id": "int",
    "album_id": "int",
    "path": "text",
    "title": "text",
    "artist": "text",
    "album": "text",
    "albumartist": "text",
    "genre": "text",
    "year": "int",
    "track": "int",
    "disc": "int",
    "format": "text",
    "bitrate": "int",
    "length": "float",
    "mb_trackid": "text",
    "mb_albumid": "text",
    "added": "date",
    "mtime": "date",
}

ALBUM_FIELDS: Final[dict[str, FieldKind]] = {
    "id": "int",
    "album": "text",
    "albumartist": "text",
    "year": "int",
    "artpath": "text",
    "mb_albumid": "text",
    "added": "date",
}

_ALL_FIELDS: Final[dict[str, FieldKind]] = {**ITEM_FIELDS, **ALBUM_FIELDS}

_RELATIVE_RE = re.compile(r"^-(\d+)([dwmy])$")
_DAYS_PER_UNIT: Final[dict[str, int]] = {"d": 1, "w": 7, "m": 30, "y": 365}
_SECONDS_PER_DAY: Final[int] = 86_400


@dataclass(frozen=True, slots=True)
class FullText:
    text: str
    negated: bool = False


@dataclass(frozen=True, slots=True)
class FieldTerm:
    """
    A filter on one column.

    For `range`, `value` is the lower bound and `end` the upper bound (either may
    be None). Date periods use an exclusive upper bound.
    """

    field: str
    op: FieldOp
    value: Any = None
    end: Any = None
    end_exclusive: bool = False
    negated: bool = False


@dataclass(frozen=True, slots=True)
class SortTerm:
    field: str
    ascending: bool = True


Term = FullText | FieldTerm | SortTerm


@dataclass(frozen=True, slots=True)
class CompiledQuery:
    sql: str
    params: tuple[Any, ...] = ()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_query(query: str | Sequence[str], *, now: float | None = None) -> list[Term]:
    """
    Parse a query into terms.

    A string is split shell-style; a sequence (e.g. CLI arguments) is taken
    term by term without further splitting.
    """
    if isinstance(query, str):
        try:
            parts = shlex.split(query)
        except ValueError as e:
            raise QueryError(f"Cannot parse query {query!r}: {e}") from e
    else:
        parts = list(query)

    ts = time.time() if now is None else now
    terms: list[Term] = []
    for raw in parts:
        part = raw.strip()
        if not part:
            continue
        term = _parse_term(part, ts)
        if term is not None:
            terms.append(term)
    return terms


def _parse_term(part: str, now: float) -> Term | None:
    # Sort directive: only for known fields, so words like "c++" stay free text.
    if ":" not in part and len(part) > 1 and part[-1] in "+-" and part[:-1] in _ALL_FIELDS:
        return SortTerm(field=part[:-1], ascending=part[-1] == "+")

    negated = False
    if part.startswith("^") and len(part) > 1:
        negated = True
        part = part[1:]

    name, sep, value = part.partition(":")
    if not sep:
        if fts.build_match_expression(part) is None:
            return None
        return FullText(text=part, negated=negated)

    name = name.strip().lower()
    if not name:
        raise QueryError(f"Missing field name in {part!r}")
    kind = _ALL_FIELDS.get(name)
    if kind is None:
        raise QueryError(f"Unknown field: {name}")
    return _parse_field_value(name, kind, value, negated=negated, now=now)


def _parse_field_value(
    name: str, kind: FieldKind, value: str, *, negated: bool, now: float
) -> FieldTerm:
    if value.startswith("="):
        exact = value[1:]
        if kind == "date":
            return _date_term(name, exact, negated=negated, now=now)
        return FieldTerm(name, "exact", _coerce(name, kind, exact), negated=negated)

    if value.startswith(":"):
        pattern = value[1:]
        if not pattern:
            raise QueryError(f"Empty pattern for field {name}")
        if kind == "date":
            raise QueryError(f"Pattern match is not supported for date field {name}")
        return FieldTerm(name, "glob", _glob_from_pattern(pattern), negated=negated)

    if ".." in value:
        left, _, right = value.partition("..")
        if ".." in right:
            raise QueryError(f"Malformed range for field {name}: {value!r}")
        if kind == "date":
            start = _date_bounds(left, now)[0] if left else None
            end = _date_bounds(right, now)[1] if right else None
            return FieldTerm(name, "range", start, end, end_exclusive=True, negated=negated)
        start = _coerce(name, kind, left) if left else None
        end = _coerce(name, kind, right) if right else None
        return FieldTerm(name, "range", start, end, negated=negated)

    if not value:
        raise QueryError(f"Empty value for field {name}")

    if kind == "date":
        return _date_term(name, value, negated=negated, now=now)

    if value.endswith("*") and len(value) > 1:
        return FieldTerm(name, "prefix", value[:-1], negated=negated)

    return FieldTerm(name, "substring", value, negated=negated)


def _date_term(name: str, text: str, *, negated: bool, now: float) -> FieldTerm:
    start, end = _date_bounds(text, now)
    if _RELATIVE_RE.match(text):
        end = None
    return FieldTerm(name, "range", start, end, end_exclusive=True, negated=negated)


def _coerce(name: str, kind: FieldKind, text: str) -> Any:
    try:
        if kind == "int":
            return int(text)
        if kind == "float":
            return float(text)
    except ValueError as e:
        raise QueryError(f"Invalid {kind} value for field {name}: {text!r}") from e
    return text


def _date_bounds(text: str, now: float) -> tuple[float, float]:
    """
    Return `(start, end)` unix seconds for a date expression.

    Relative dates (`-2w`) are a single point in time.
    Calendar dates (`2024`, `2024-03`, `2024-03-15`) cover the whole period.
    """
    m = _RELATIVE_RE.match(text)
    if m:
        days = int(m.group(1)) * _DAYS_PER_UNIT[m.group(2)]
        point = now - days * _SECONDS_PER_DAY
        return point, point

    try:
        parts = [int(p) for p in text.split("-")]
    except ValueError as e:
        raise QueryError(f"Invalid date: {text!r}") from e
    try:
        if len(parts) == 1:
            start = datetime(parts[0], 1, 1)
            end = datetime(parts[0] + 1, 1, 1)
        elif len(parts) == 2:
            start = datetime(parts[0], parts[1], 1)
            end = (
                datetime(parts[0] + 1, 1, 1)
                if parts[1] == 12
                else datetime(parts[0], parts[1] + 1, 1)
            )
        elif len(parts) == 3:
            start = datetime(parts[0], parts[1], parts[2])
            end = start + timedelta(days=1)
        else:
            raise QueryError(f"Invalid date: {text!r}")
    except ValueError as e:
        raise QueryError(f"Invalid date: {text!r}") from e
    return start.timestamp(), end.timestamp()


def _glob_from_pattern(pattern: str) -> str:
    """Translate a regex-ish pattern to GLOB; unanchored ends match anything."""
    anchored_start = pattern.startswith("^")
    anchored_end = pattern.endswith("$")
    body = pattern.removeprefix("^").removesuffix("$")
    body = body.replace(".*", "*").replace(".", "?")
    if not anchored_start:
        body = "*" + body
    if not anchored_end:
        body = body + "*"
    return body


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _condition(col: str, term: FieldTerm) -> tuple[str, list[Any]]:
    if term.op == "substring":
        return f"{col} LIKE ? ESCAPE '\\'", [f"%{_escape_like(str(term.value))}%"]
    if term.op == "prefix":
        return f"{col} LIKE ? ESCAPE '\\'", [f"{_escape_like(str(term.value))}%"]
    if term.op == "exact":
        return f"{col} = ?", [term.value]
    if term.op == "glob":
        return f"{col} GLOB ?", [term.value]

    parts: list[str] = []
    params: list[Any] = []
    if term.value is not None:
        parts.append(f"{col} >= ?")
        params.append(term.value)
    if term.end is not None:
        parts.append(f"{col} {'<' if term.end_exclusive else '<='} ?")
        params.append(term.end)
    if not parts:
        return f"{col} IS NOT NULL", []
    return " AND ".join(parts), params


def _negate(sql: str) -> str:
    # NULL columns count as "not matching", so they satisfy the negation.
    return f"NOT COALESCE(({sql}), 0)"


def _paging(limit: int | None, offset: int) -> tuple[str, list[Any]]:
    if limit is None and not offset:
        return "", []
    return "LIMIT ? OFFSET ?", [-1 if limit is None else int(limit), int(offset)]


def _sort_sql(col: str, kind: FieldKind, ascending: bool) -> str:
    direction = "ASC" if ascending else "DESC"
    if kind == "text":
        return f"{col} COLLATE NOCASE {direction}"
    return f"{col} {direction}"


def compile_item_query(
    terms: Sequence[Term], *, limit: int | None = None, offset: int = 0
) -> CompiledQuery:
    """Compile terms into a `SELECT i.* FROM items i ...` statement."""
    join = ""
    join_params: list[Any] = []
    where: list[str] = []
    where_params: list[Any] = []
    sorts: list[str] = []

    words = [t.text for t in terms if isinstance(t, FullText) and not t.negated]
    match_expr = fts.build_match_expression(" ".join(words)) if words else None
    if match_expr is not None:
        join = f"JOIN ({fts.MATCH_SUBQUERY}) m ON m.id = i.id"
        join_params.append(match_expr)

    for term in terms:
        if isinstance(term, FullText):
            if term.negated:
                expr = fts.build_match_expression(term.text)
                if expr is not None:
                    where.append("i.id NOT IN (SELECT rowid FROM items_fts WHERE items_fts MATCH ?)")
                    where_params.append(expr)
        elif isinstance(term, FieldTerm):
            if term.field not in ITEM_FIELDS:
                raise QueryError(f"Unknown item field: {term.field}")
            sql, params = _condition(f"i.{term.field}", term)
            where.append(_negate(sql) if term.negated else f"({sql})")
            where_params.extend(params)
        else:
            kind = ITEM_FIELDS.get(term.field)
            if kind is None:
                raise QueryError(f"Cannot sort items by {term.field}")
            sorts.append(_sort_sql(f"i.{term.field}", kind, term.ascending))

    if sorts:
        order = "ORDER BY " + ", ".join([*sorts, "i.id ASC"])
    elif match_expr is not None:
        order = "ORDER BY m.rank, i.id"
    else:
        order = items_order_clause("artist")

    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    page_sql, page_params = _paging(limit, offset)
    sql = f"SELECT i.* FROM items i {join} {where_sql} {order} {page_sql}".strip()
    return CompiledQuery(sql, tuple(join_params + where_params + page_params))


def compile_album_query(
    terms: Sequence[Term], *, limit: int | None = None, offset: int = 0
) -> CompiledQuery:
    """
    Compile terms into a `SELECT a.* FROM albums a ...` statement.

    Album fields filter albums directly. Item-only fields (title, genre, ...)
    keep albums that have at least one matching item. Free text keeps albums
    with a matching item, best item rank first, or whose own title or artist
    contains the text.
    """
    join = ""
    join_params: list[Any] = []
    where: list[str] = []
    where_params: list[Any] = []
    sorts: list[str] = []

    positive = [t.text for t in terms if isinstance(t, FullText) and not t.negated]
    match_expr = fts.build_match_expression(" ".join(positive)) if positive else None
    if positive:
        if match_expr is not None:
            join = (
                "LEFT JOIN ("
                "SELECT i.album_id AS album_id, MIN(m.rank) AS rank FROM items i "
                f"JOIN ({fts.MATCH_SUBQUERY}) m ON m.id = i.id "
                "WHERE i.album_id IS NOT NULL GROUP BY i.album_id"
                ") r ON r.album_id = a.id"
            )
            join_params.append(match_expr)
        like_sql, like_params = _album_text_condition(positive)
        if match_expr is not None:
            where.append(f"(r.album_id IS NOT NULL OR {like_sql})")
        else:
            where.append(like_sql)
        where_params.extend(like_params)

    for term in terms:
        if isinstance(term, FullText):
            if term.negated:
                sql, params = _album_negated_text(term.text)
                where.append(sql)
                where_params.extend(params)
        elif isinstance(term, FieldTerm):
            if term.field in ALBUM_FIELDS:
                sql, params = _condition(f"a.{term.field}", term)
                where.append(_negate(sql) if term.negated else f"({sql})")
            elif term.field in ITEM_FIELDS:
                cond, params = _condition(f"i.{term.field}", term)
                sub = (
                    "a.id IN (SELECT i.album_id FROM items i "
                    f"WHERE i.album_id IS NOT NULL AND ({cond}))"
                )
                where.append(f"NOT {sub}" if term.negated else sub)
            else:
                raise QueryError(f"Unknown album field: {term.field}")
            where_params.extend(params)
        else:
            kind = ALBUM_FIELDS.get(term.field)
            if kind is None:
                raise QueryError(f"Cannot sort albums by {term.field}")
            sorts.append(_sort_sql(f"a.{term.field}", kind, term.ascending))

    if sorts:
        order = "ORDER BY " + ", ".join([*sorts, "a.id ASC"])
    elif match_expr is not None:
        order = (
            "ORDER BY r.rank IS NULL, r.rank, "
            "a.albumartist COLLATE NOCASE ASC, a.album COLLATE NOCASE ASC, a.id ASC"
        )
    else:
        order = albums_order_clause("albumartist")

    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    page_sql, page_params = _paging(limit, offset)
    sql = f"SELECT a.* FROM albums a {join} {where_sql} {order} {page_sql}".strip()
    return CompiledQuery(sql, tuple(join_params + where_params + page_params))


def _album_text_condition(texts: Sequence[str]) -> tuple[str, list[Any]]:
    parts: list[str] = []
    params: list[Any] = []
    for text in texts:
        pattern = f"%{_escape_like(text)}%"
        parts.append("(a.album LIKE ? ESCAPE '\\' OR a.albumartist LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    return "(" + " AND ".join(parts) + ")", params


def _album_negated_text(text: str) -> tuple[str, list[Any]]:
    like_sql, params = _album_text_condition([text])
    expr = fts.build_match_expression(text)
    if expr is None:
        return f"NOT {like_sql}", params
    sql = (
        "NOT (a.id IN (SELECT i.album_id FROM items i "
        "WHERE i.album_id IS NOT NULL AND i.id IN "
        "(SELECT rowid FROM items_fts WHERE items_fts MATCH ?)) "
        f"OR {like_sql})"
    )
    return sql, [expr, *params]


def build_item_query(
    query: str | Sequence[str], *, limit: int | None = None, offset: int = 0
) -> CompiledQuery:
    """Parse and compile an item query in one step."""
    return compile_item_query(parse_query(query), limit=limit, offset=offset)


def build_album_query(
    query: str | Sequence[str], *, limit: int | None = None, offset: int = 0
) -> CompiledQuery:
    """Parse and compile an album query in one step."""
    return compile_album_query(parse_query(query), limit=limit, offset=offset)
