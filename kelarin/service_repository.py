"""Storage for the services that providers offer."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from kelarin.database import Database, expand_in
from kelarin.errors import NoDataError


def _uuid(value: Any) -> uuid.UUID | None:
    return None if value is None else uuid.UUID(str(value))


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _decimal(value: Any) -> Decimal:
    return Decimal(0) if value is None else Decimal(str(value))


def _json_list(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return json.loads(value)


@dataclass
class Service:
    id: uuid.UUID
    service_provider_id: uuid.UUID
    name: str
    description: str
    delivery_methods: list[str] = field(default_factory=list)
    fee_start_at: Decimal = Decimal(0)
    fee_end_at: Decimal = Decimal(0)
    rules: list[dict[str, Any]] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    is_available: bool = True
    received_rating_count: int = 0
    received_rating_average: float = 0.0
    created_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Service:
        return cls(
            id=_uuid(row["id"]),
            service_provider_id=_uuid(row["service_provider_id"]),
            name=row["name"],
            description=row["description"],
            delivery_methods=_json_list(row["delivery_methods"]),
            fee_start_at=_decimal(row["fee_start_at"]),
            fee_end_at=_decimal(row["fee_end_at"]),
            rules=_json_list(row["rules"]),
            images=_json_list(row["images"]),
            is_available=bool(row["is_available"]),
            received_rating_count=row["received_rating_count"] or 0,
            received_rating_average=float(row["received_rating_average"] or 0.0),
            created_at=_datetime(row["created_at"]),
        )

    def _params(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service_provider_id": self.service_provider_id,
            "name": self.name,
            "description": self.description,
            "delivery_methods": json.dumps(self.delivery_methods),
            "fee_start_at": self.fee_start_at,
            "fee_end_at": self.fee_end_at,
            "rules": json.dumps(self.rules),
            "images": json.dumps(self.images),
            "is_available": self.is_available,
            "created_at": self.created_at,
        }


_COLUMNS = """
    id, service_provider_id, name, description, delivery_methods,
    fee_start_at, fee_end_at, rules, images, is_available,
    received_rating_count, received_rating_average, created_at
"""


class ServiceRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _one(source: Database, query: str, *args: Any) -> Service:
        row = source.fetch_one(query, *args)
        if row is None:
            raise NoDataError("service not found")
        return Service._from_row(row)

    def find_by_id(self, service_id: uuid.UUID) -> Service:
        """Return a service by id, deleted or not."""
        return self._one(self._db, f"SELECT {_COLUMNS} FROM services WHERE id = $1", service_id)

    def create(self, tx: Database, service: Service) -> None:
        tx.execute_named(
            """
            INSERT INTO services (
                id, service_provider_id, name, description, delivery_methods,
                fee_start_at, fee_end_at, rules, images, is_available, created_at
            )
            VALUES (
                :id, :service_provider_id, :name, :description, :delivery_methods,
                :fee_start_at, :fee_end_at, :rules, :images, :is_available, :created_at
            )
            """,
            service._params(),
        )

    def find_by_id_and_provider(
        self, service_id: uuid.UUID, provider_id: uuid.UUID
    ) -> Service:
        """Return a provider's service unless it has been deleted."""
        return self._one(
            self._db,
            f"""
            SELECT {_COLUMNS}
            FROM services
            WHERE id = $1
                AND service_provider_id = $2
                AND is_deleted = 0
            """,
            service_id,
            provider_id,
        )

    def update(self, tx: Database, service: Service) -> None:
        tx.execute_named(
            """
            UPDATE services
            SET
                name = :name,
                description = :description,
                delivery_methods = :delivery_methods,
                fee_start_at = :fee_start_at,
                fee_end_at = :fee_end_at,
                rules = :rules,
                images = :images,
                is_available = :is_available
            WHERE id = :id
            """,
            service._params(),
        )

    def find_all_by_provider(self, provider_id: uuid.UUID) -> list[Service]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_COLUMNS}
            FROM services
            WHERE service_provider_id = $1
                AND is_deleted = 0
            ORDER BY id DESC
            """,
            provider_id,
        )
        return [Service._from_row(row) for row in rows]

    def delete(self, tx: Database, service: Service) -> None:
        """Mark a service as deleted at ``service.deleted_at``."""
        tx.execute(
            "UPDATE services SET is_deleted = 1, deleted_at = $1 WHERE id = $2",
            service.deleted_at,
            service.id,
        )

    def find_by_ids(self, ids: Iterable[uuid.UUID]) -> list[Service]:
        ids = list(ids)
        if not ids:
            return []
        query, args = expand_in(
            f"SELECT {_COLUMNS} FROM services WHERE id IN (?) AND is_deleted = 0", ids
        )
        return [Service._from_row(row) for row in self._db.fetch_all(query, *args)]

    def update_rating(self, tx: Database, service: Service) -> None:
        tx.execute(
            """
            UPDATE services
            SET received_rating_count = $1,
                received_rating_average = $2
            WHERE id = $3
            """,
            service.received_rating_count,
            service.received_rating_average,
            service.id,
        )

    def find_for_update(self, tx: Database, service_id: uuid.UUID) -> Service:
        """Read a service inside ``tx`` so it can be changed in the same transaction."""
        return self._one(tx, f"SELECT {_COLUMNS} FROM services WHERE id = $1", service_id)

    def find_rated_by_provider(
        self, provider_id: uuid.UUID, exclude_id: uuid.UUID
    ) -> list[Service]:
        """Return a provider's rated services, leaving out ``exclude_id``."""
        rows = self._db.fetch_all(
            f"""
            SELECT {_COLUMNS}
            FROM services
            WHERE service_provider_id = $1
                AND received_rating_count > 0
                AND id != $2
            """,
            provider_id,
            exclude_id,
        )
        return [Service._from_row(row) for row in rows]