"""Storage for service providers."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kelarin.database import Database, expand_in
from kelarin.errors import NoDataError


def _uuid(value: Any) -> uuid.UUID | None:
    return None if value is None else uuid.UUID(str(value))


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ServiceProvider:
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    description: str
    has_physical_office: bool = False
    office_coordinates: str | None = None
    address: str = ""
    mobile_phone_number: str = ""
    telephone: str | None = None
    logo_image: str = ""
    received_rating_count: int = 0
    received_rating_average: float = 0.0
    credit: int = 0
    is_deleted: bool = False
    created_at: datetime | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> ServiceProvider:
        return cls(
            id=_uuid(row["id"]),
            user_id=_uuid(row["user_id"]),
            name=row["name"],
            description=row["description"],
            has_physical_office=bool(row["has_physical_office"]),
            office_coordinates=row["office_coordinates"],
            address=row["address"],
            mobile_phone_number=row["mobile_phone_number"],
            telephone=row["telephone"],
            logo_image=row["logo_image"],
            received_rating_count=row["received_rating_count"] or 0,
            received_rating_average=float(row["received_rating_average"] or 0.0),
            credit=row["credit"] or 0,
            is_deleted=bool(row["is_deleted"]),
            created_at=_datetime(row["created_at"]),
        )


_COLUMNS = """
    service_providers.id,
    service_providers.user_id,
    service_providers.name,
    service_providers.description,
    service_providers.has_physical_office,
    service_providers.office_coordinates,
    service_providers.address,
    service_providers.mobile_phone_number,
    service_providers.telephone,
    service_providers.logo_image,
    service_providers.received_rating_count,
    service_providers.received_rating_average,
    service_providers.credit,
    service_providers.is_deleted,
    service_providers.created_at
"""


class ServiceProviderRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _one(source: Database, query: str, *args: Any) -> ServiceProvider:
        row = source.fetch_one(query, *args)
        if row is None:
            raise NoDataError("service provider not found")
        return ServiceProvider._from_row(row)

    def _many_by(self, column: str, ids: Iterable[uuid.UUID]) -> list[ServiceProvider]:
        ids = list(ids)
        if not ids:
            return []
        query, args = expand_in(
            f"""
            SELECT {_COLUMNS}
            FROM service_providers
            WHERE {column} IN (?)
            ORDER BY id DESC
            """,
            ids,
        )
        return [ServiceProvider._from_row(row) for row in self._db.fetch_all(query, *args)]

    def create(self, tx: Database, provider: ServiceProvider) -> None:
        tx.execute_named(
            """
            INSERT INTO service_providers (
                id, user_id, name, description, has_physical_office,
                office_coordinates, address, mobile_phone_number, telephone, logo_image
            )
            VALUES (
                :id, :user_id, :name, :description, :has_physical_office,
                :office_coordinates, :address, :mobile_phone_number, :telephone,
                :logo_image
            )
            """,
            {
                "id": provider.id,
                "user_id": provider.user_id,
                "name": provider.name,
                "description": provider.description,
                "has_physical_office": provider.has_physical_office,
                "office_coordinates": provider.office_coordinates,
                "address": provider.address,
                "mobile_phone_number": provider.mobile_phone_number,
                "telephone": provider.telephone,
                "logo_image": provider.logo_image,
            },
        )

    def find_by_user_id(self, user_id: uuid.UUID) -> ServiceProvider:
        return self._one(
            self._db, f"SELECT {_COLUMNS} FROM service_providers WHERE user_id = $1", user_id
        )

    def find_by_ids(self, ids: Iterable[uuid.UUID]) -> list[ServiceProvider]:
        return self._many_by("id", ids)

    def find_by_id(self, provider_id: uuid.UUID) -> ServiceProvider:
        return self._one(
            self._db, f"SELECT {_COLUMNS} FROM service_providers WHERE id = $1", provider_id
        )

    def update_credit(self, provider: ServiceProvider) -> None:
        self._db.execute(
            "UPDATE service_providers SET credit = $1 WHERE id = $2",
            provider.credit,
            provider.id,
        )

    def find_by_user_ids(self, user_ids: Iterable[uuid.UUID]) -> list[ServiceProvider]:
        return self._many_by("user_id", user_ids)

    def find_by_service_id(self, service_id: uuid.UUID) -> ServiceProvider:
        return self._one(
            self._db,
            f"""
            SELECT {_COLUMNS}
            FROM service_providers
            INNER JOIN services
                ON services.service_provider_id = service_providers.id
            WHERE services.id = $1
            """,
            service_id,
        )

    def find_for_update(self, tx: Database, provider_id: uuid.UUID) -> ServiceProvider:
        """Read a provider inside ``tx`` so it can be changed in the same transaction."""
        return self._one(
            tx, f"SELECT {_COLUMNS} FROM service_providers WHERE id = $1", provider_id
        )

    def update_rating(self, tx: Database, provider: ServiceProvider) -> None:
        tx.execute(
            """
            UPDATE service_providers
            SET received_rating_count = $1,
                received_rating_average = $2
            WHERE id = $3
            """,
            provider.received_rating_count,
            provider.received_rating_average,
            provider.id,
        )