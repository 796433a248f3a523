"""A small SQLite-backed database handle with query helpers."""

from __future__ import annotations

import re
import sqlite3
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

_DOLLAR_PARAM = re.compile(r"'(?:[^']|'')*'|\$(\d+)")
_QMARK_PARAM = re.compile(r"'(?:[^']|'')*'|\?(?!\d)")


def _adapt(value: Any) -> Any:
    """Convert a Python value into something SQLite stores natively."""
    if isinstance(value, Enum):
        return _adapt(value.value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def rebind(query: str) -> str:
    """Turn ``$N`` placeholders into SQLite's numbered ``?N`` form."""

    def replace(match: re.Match[str]) -> str:
        number = match.group(1)
        return match.group(0) if number is None else f"?{number}"

    return _DOLLAR_PARAM.sub(replace, query)


def expand_in(query: str, *args: Any) -> tuple[str, list[Any]]:
    """Expand each ``?`` bound to a list or tuple into one placeholder per item.

    Returns the rewritten query and the flattened arguments.
    """
    flat: list[Any] = []
    position = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal position
        text = match.group(0)
        if text != "?":
            return text
        if position >= len(args):
            raise ValueError("more placeholders than arguments")
        arg = args[position]
        position += 1
        if isinstance(arg, (list, tuple)):
            if not arg:
                raise ValueError("empty sequence passed to an IN query")
            flat.extend(arg)
            return ", ".join("?" * len(arg))
        flat.append(arg)
        return "?"

    expanded = _QMARK_PARAM.sub(replace, query)
    if position != len(args):
        raise ValueError("more arguments than placeholders")
    return expanded, flat


class Database:
    """A connection that runs queries and hands rows back as dictionaries."""

    def __init__(self, path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run(self, query: str, args: Sequence[Any]) -> sqlite3.Cursor:
        return self._conn.execute(rebind(query), tuple(_adapt(a) for a in args))

    def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Return the first row, or None when the query yields nothing."""
        row = self._run(query, args).fetchone()
        return None if row is None else dict(row)

    def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        return [dict(row) for row in self._run(query, args).fetchall()]

    def fetch_value(self, query: str, *args: Any) -> Any:
        """Return the first column of the first row, or None."""
        row = self._run(query, args).fetchone()
        return None if row is None else row[0]

    def execute(self, query: str, *args: Any) -> int:
        """Run a statement and return the number of affected rows."""
        return self._run(query, args).rowcount

    def execute_named(
        self,
        query: str,
        params: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> int:
        """Run a statement with ``:name`` placeholders, once or for each mapping."""
        if isinstance(params, Mapping):
            adapted = {key: _adapt(value) for key, value in params.items()}
            return self._conn.execute(rebind(query), adapted).rowcount
        batch = [
            {key: _adapt(value) for key, value in item.items()} for item in params
        ]
        if not batch:
            raise ValueError("empty batch passed to a named statement")
        return self._conn.executemany(rebind(query), batch).rowcount

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Commit on success, roll back when the block raises."""
        if self._in_transaction:
            raise RuntimeError("a transaction is already open")
        self._conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_transaction = False