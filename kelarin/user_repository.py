"""Storage for user accounts."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kelarin.database import Database, expand_in
from kelarin.errors import NoDataError


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class User:
    id: uuid.UUID
    name: str
    email: str
    password: str | None
    role: str
    auth_provider: str | None = None
    is_suspended: bool = False
    suspended_count: int = 0
    suspended_from: datetime | None = None
    suspended_to: datetime | None = None
    is_banned: bool = False
    banned_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> User:
        return cls(
            id=uuid.UUID(str(row["id"])),
            name=row["name"],
            email=row["email"],
            password=row["password"],
            role=row["role"],
            is_suspended=bool(row["is_suspended"]),
            suspended_count=row["suspended_count"],
            suspended_from=_datetime(row["suspended_from"]),
            suspended_to=_datetime(row["suspended_to"]),
            is_banned=bool(row["is_banned"]),
            banned_at=_datetime(row["banned_at"]),
            created_at=_datetime(row["created_at"]),
        )


_USER_COLUMNS = """
    id, name, email, password, role,
    is_suspended, suspended_count, suspended_from, suspended_to,
    is_banned, banned_at, created_at
"""

_INSERT_USER = """
    INSERT INTO users (id, role, name, email, password, auth_provider)
    VALUES (:id, :role, :name, :email, :password, :auth_provider)
"""


class UserRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def _find_one(self, query: str, *args: Any) -> User:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("user not found")
        return User._from_row(row)

    def find_by_id(self, user_id: uuid.UUID) -> User:
        return self._find_one(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id)

    def find_by_email(self, email: str) -> User:
        return self._find_one(f"SELECT {_USER_COLUMNS} FROM users WHERE email = $1", email)

    def create(self, user: User, tx: Database | None = None) -> None:
        """Insert a user, inside ``tx`` when one is given."""
        target = self._db if tx is None else tx
        target.execute_named(
            _INSERT_USER,
            {
                "id": user.id,
                "role": user.role,
                "name": user.name,
                "email": user.email,
                "password": user.password,
                "auth_provider": user.auth_provider,
            },
        )

    def find_by_ids(self, ids: Iterable[uuid.UUID]) -> list[User]:
        ids = list(ids)
        if not ids:
            return []
        query, args = expand_in(f"SELECT {_USER_COLUMNS} FROM users WHERE id IN (?)", ids)
        return [User._from_row(row) for row in self._db.fetch_all(query, *args)]