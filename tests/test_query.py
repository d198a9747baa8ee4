"""
Tests for tonearm.core.query.

Parser tests check the term structure; compiler tests check the SQL shape and
that user values only travel as parameters. End-to-end behavior against a real
database lives in test_library.py.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from tonearm.core import QueryError
from tonearm.core.query import (
    FieldTerm,
    FullText,
    SortTerm,
    build_album_query,
    build_item_query,
    parse_query,
)

NOW = 1_700_000_000.0
DAY = 86_400


class TestParseQuery:
    def test_empty(self) -> None:
        assert parse_query("") == []
        assert parse_query([]) == []

    def test_free_text(self) -> None:
        assert parse_query("war pigs") == [FullText("war"), FullText("pigs")]

    def test_quoted_words_stay_together(self) -> None:
        assert parse_query('"war pigs"') == [FullText("war pigs")]

    def test_sequence_terms_are_not_split(self) -> None:
        assert parse_query(["black sabbath", "year:1970"]) == [
            FullText("black sabbath"),
            FieldTerm("year", "substring", "1970"),
        ]

    def test_unbalanced_quote(self) -> None:
        with pytest.raises(QueryError):
            parse_query('"war pigs')

    def test_punctuation_only_text_is_dropped(self) -> None:
        assert parse_query("-- !!") == []

    def test_substring(self) -> None:
        assert parse_query("artist:sabbath") == [FieldTerm("artist", "substring", "sabbath")]

    def test_field_name_is_case_insensitive(self) -> None:
        assert parse_query("ARTIST:sabbath") == [FieldTerm("artist", "substring", "sabbath")]

    def test_exact(self) -> None:
        assert parse_query("title:=Paranoid") == [FieldTerm("title", "exact", "Paranoid")]
        assert parse_query("year:=1970") == [FieldTerm("year", "exact", 1970)]

    def test_prefix(self) -> None:
        assert parse_query("title:war*") == [FieldTerm("title", "prefix", "war")]

    def test_pattern(self) -> None:
        assert parse_query("title::^war") == [FieldTerm("title", "glob", "war*")]
        assert parse_query("title::pig.$") == [FieldTerm("title", "glob", "*pig?")]
        assert parse_query("title::^w.*s$") == [FieldTerm("title", "glob", "w*s")]

    def test_numeric_range(self) -> None:
        assert parse_query("year:1970..1979") == [FieldTerm("year", "range", 1970, 1979)]
        assert parse_query("year:1980..") == [FieldTerm("year", "range", 1980, None)]
        assert parse_query("length:..120") == [FieldTerm("length", "range", None, 120.0)]

    def test_bad_numeric_value(self) -> None:
        with pytest.raises(QueryError):
            parse_query("year:=nineteen")
        with pytest.raises(QueryError):
            parse_query("year:19..seventy")

    def test_relative_date(self) -> None:
        assert parse_query("added:-2w", now=NOW) == [
            FieldTerm("added", "range", NOW - 14 * DAY, None, end_exclusive=True)
        ]

    def test_calendar_date(self) -> None:
        [term] = parse_query("added:2024-03")
        assert term.op == "range"
        assert term.value == datetime(2024, 3, 1).timestamp()
        assert term.end == datetime(2024, 4, 1).timestamp()
        assert term.end_exclusive

    def test_date_range(self) -> None:
        [term] = parse_query("added:2023..2024")
        assert term.value == datetime(2023, 1, 1).timestamp()
        assert term.end == datetime(2025, 1, 1).timestamp()

    def test_bad_date(self) -> None:
        with pytest.raises(QueryError):
            parse_query("added:yesterday")
        with pytest.raises(QueryError):
            parse_query("added:2024-13")

    def test_negation(self) -> None:
        assert parse_query("^live ^genre:jazz") == [
            FullText("live", negated=True),
            FieldTerm("genre", "substring", "jazz", negated=True),
        ]

    def test_sort(self) -> None:
        assert parse_query("year- title+") == [SortTerm("year", False), SortTerm("title", True)]

    def test_plus_suffix_on_unknown_word_is_text(self) -> None:
        assert parse_query("c++") == [FullText("c++")]

    def test_unknown_field(self) -> None:
        with pytest.raises(QueryError, match="Unknown field"):
            parse_query("rating:5")

    def test_empty_value(self) -> None:
        with pytest.raises(QueryError):
            parse_query("artist:")


class TestItemQuery:
    def test_everything(self) -> None:
        q = build_item_query("")
        assert q.sql.startswith("SELECT i.* FROM items i")
        assert "WHERE" not in q.sql
        assert "ORDER BY i.artist COLLATE NOCASE" in q.sql
        assert q.params == ()

    def test_free_text_joins_index(self) -> None:
        q = build_item_query("war pigs")
        assert "items_fts MATCH ?" in q.sql
        assert "ORDER BY m.rank" in q.sql
        assert q.params == ('"war"* "pigs"*',)

    def test_values_are_parameters(self) -> None:
        q = build_item_query("artist:\"o'brien\" title:100%")
        assert "o'brien" not in q.sql
        assert q.params == ("%o'brien%", "%100\\%%")

    def test_negated_field(self) -> None:
        q = build_item_query("^genre:jazz")
        assert "NOT COALESCE" in q.sql

    def test_negated_text(self) -> None:
        q = build_item_query("^live")
        assert "i.id NOT IN" in q.sql
        assert q.params == ('"live"*',)

    def test_explicit_sort_overrides_rank(self) -> None:
        q = build_item_query("war year-")
        assert "ORDER BY i.year DESC, i.id ASC" in q.sql

    def test_paging(self) -> None:
        q = build_item_query("artist:sabbath", limit=10, offset=20)
        assert q.sql.endswith("LIMIT ? OFFSET ?")
        assert q.params[-2:] == (10, 20)

    def test_album_only_field(self) -> None:
        with pytest.raises(QueryError):
            build_item_query("artpath:cover")


class TestAlbumQuery:
    def test_everything(self) -> None:
        q = build_album_query("")
        assert q.sql.startswith("SELECT a.* FROM albums a")
        assert "ORDER BY a.albumartist COLLATE NOCASE" in q.sql

    def test_item_field_filters_through_items(self) -> None:
        q = build_album_query("genre:metal")
        assert "a.id IN (SELECT i.album_id FROM items i" in q.sql

    def test_free_text(self) -> None:
        q = build_album_query("paranoid")
        assert "MIN(m.rank)" in q.sql
        assert q.params == ('"paranoid"*', "%paranoid%", "%paranoid%")

    def test_item_only_sort(self) -> None:
        with pytest.raises(QueryError):
            build_album_query("title+")
