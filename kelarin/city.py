"""Cities and the lookups over them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from kelarin.database import Database
from kelarin.errors import AppError, NoDataError


@dataclass
class City:
    id: int
    province_id: int
    name: str

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> City:
        return cls(id=row["id"], province_id=row["province_id"], name=row["name"])


class CityRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def _one(self, query: str, *args: Any) -> City:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("city not found")
        return City._from_row(row)

    def find_by_id_and_province(self, city_id: int, province_id: int) -> City:
        return self._one(
            """
            SELECT id, province_id, name
            FROM cities
            WHERE id = $1
                AND province_id = $2
            """,
            city_id,
            province_id,
        )

    def find_by_province_and_name(self, province_id: int, name: str) -> City:
        """Return the first city of the province whose name contains ``name``, ignoring case."""
        return self._one(
            """
            SELECT id, province_id, name
            FROM cities
            WHERE province_id = $1
                AND name LIKE '%' || $2 || '%'
            LIMIT 1
            """,
            province_id,
            name,
        )

    def find_by_province(self, province_id: int) -> list[City]:
        rows = self._db.fetch_all(
            "SELECT id, province_id, name FROM cities WHERE province_id = $1",
            province_id,
        )
        return [City._from_row(row) for row in rows]


class CityService:
    def __init__(self, city_repo: CityRepository) -> None:
        self._city_repo = city_repo

    def get_by_province_id(self, province_id: int) -> list[City]:
        if not province_id:
            raise AppError(HTTPStatus.BAD_REQUEST, "province_id: cannot be blank")
        return self._city_repo.find_by_province(province_id)