"""Storage for the offers consumers make on services."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from kelarin.database import Database, expand_in
from kelarin.errors import NoDataError

STATUS_PENDING = "pending"
STATUS_EXPIRED = "expired"


def _uuid(value: Any) -> uuid.UUID | None:
    return None if value is None else uuid.UUID(str(value))


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _time(value: Any) -> time | None:
    if value is None or isinstance(value, time):
        return value
    return time.fromisoformat(value)


def _decimal(value: Any) -> Decimal:
    return Decimal(0) if value is None else Decimal(str(value))


@dataclass
class Offer:
    id: uuid.UUID
    user_id: uuid.UUID
    user_address_id: uuid.UUID
    service_id: uuid.UUID
    detail: str
    service_cost: Decimal
    service_start_date: date
    service_end_date: date
    service_start_time: time
    service_end_time: time
    status: str = STATUS_PENDING
    created_at: datetime | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Offer:
        return cls(
            id=_uuid(row["id"]),
            user_id=_uuid(row["user_id"]),
            user_address_id=_uuid(row["user_address_id"]),
            service_id=_uuid(row["service_id"]),
            detail=row["detail"],
            service_cost=_decimal(row["service_cost"]),
            service_start_date=_date(row["service_start_date"]),
            service_end_date=_date(row["service_end_date"]),
            service_start_time=_time(row["service_start_time"]),
            service_end_time=_time(row["service_end_time"]),
            status=row["status"],
            created_at=_datetime(row["created_at"]),
        )

    def _params(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_address_id": self.user_address_id,
            "service_id": self.service_id,
            "detail": self.detail,
            "service_cost": self.service_cost,
            "service_start_date": self.service_start_date,
            "service_end_date": self.service_end_date,
            "service_start_time": self.service_start_time,
            "service_end_time": self.service_end_time,
            "status": self.status,
            "created_at": self.created_at,
        }


@dataclass
class OfferWithServiceAndProvider:
    """An offer with the name of its service and the provider behind it."""

    offer: Offer
    service_name: str
    service_image: str | None
    service_provider_id: uuid.UUID
    service_provider_name: str
    service_provider_logo_image: str | None


@dataclass
class OfferForReport:
    date: date
    count: int


_COLUMNS = """
    offers.id,
    offers.user_id,
    offers.user_address_id,
    offers.service_id,
    offers.detail,
    offers.service_cost,
    offers.service_start_date,
    offers.service_end_date,
    offers.service_start_time,
    offers.service_end_time,
    offers.status,
    offers.created_at
"""

_IN_MONTH = """
    CAST(strftime('%m', offers.created_at) AS INTEGER) = $2
    AND CAST(strftime('%Y', offers.created_at) AS INTEGER) = $3
"""


class OfferRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def _one(self, query: str, *args: Any) -> Offer:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("offer not found")
        return Offer._from_row(row)

    def create(self, tx: Database, offer: Offer) -> None:
        tx.execute_named(
            """
            INSERT INTO offers (
                id, user_id, user_address_id, service_id, detail, service_cost,
                service_start_date, service_end_date, service_start_time,
                service_end_time, status, created_at
            )
            VALUES (
                :id, :user_id, :user_address_id, :service_id, :detail, :service_cost,
                :service_start_date, :service_end_date, :service_start_time,
                :service_end_time, :status, :created_at
            )
            """,
            offer._params(),
        )

    def pending_offer_exists(self, user_id: uuid.UUID, service_id: uuid.UUID) -> bool:
        """Tell whether the user already has a pending offer on the service."""
        value = self._db.fetch_value(
            """
            SELECT 1
            FROM offers
            WHERE user_id = $1
                AND service_id = $2
                AND status = $3
            """,
            user_id,
            service_id,
            STATUS_PENDING,
        )
        return bool(value)

    def find_all_by_user_id(self, user_id: uuid.UUID) -> list[OfferWithServiceAndProvider]:
        rows = self._db.fetch_all(
            f"""
            SELECT
                {_COLUMNS},
                services.name AS service_name,
                json_extract(services.images, '$[0]') AS service_image,
                service_providers.id AS service_provider_id,
                service_providers.name AS service_provider_name,
                service_providers.logo_image AS service_provider_logo_image
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            INNER JOIN service_providers
                ON service_providers.id = services.service_provider_id
            WHERE offers.user_id = $1
            ORDER BY offers.id DESC
            """,
            user_id,
        )
        return [
            OfferWithServiceAndProvider(
                offer=Offer._from_row(row),
                service_name=row["service_name"],
                service_image=row["service_image"],
                service_provider_id=_uuid(row["service_provider_id"]),
                service_provider_name=row["service_provider_name"],
                service_provider_logo_image=row["service_provider_logo_image"],
            )
            for row in rows
        ]

    def find_by_id_and_user(self, offer_id: uuid.UUID, user_id: uuid.UUID) -> Offer:
        return self._one(
            f"SELECT {_COLUMNS} FROM offers WHERE offers.id = $1 AND offers.user_id = $2",
            offer_id,
            user_id,
        )

    def find_by_id_and_provider(self, offer_id: uuid.UUID, provider_id: uuid.UUID) -> Offer:
        """Return an offer made on one of the provider's services."""
        return self._one(
            f"""
            SELECT {_COLUMNS}
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE offers.id = $1
                AND services.service_provider_id = $2
            """,
            offer_id,
            provider_id,
        )

    def update(self, tx: Database, offer: Offer) -> None:
        tx.execute_named(
            """
            UPDATE offers
            SET
                user_address_id = :user_address_id,
                detail = :detail,
                service_cost = :service_cost,
                service_start_date = :service_start_date,
                service_end_date = :service_end_date,
                service_start_time = :service_start_time,
                service_end_time = :service_end_time,
                status = :status
            WHERE id = :id
            """,
            offer._params(),
        )

    def find_all_by_provider(self, provider_id: uuid.UUID) -> list[Offer]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_COLUMNS}
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE services.service_provider_id = $1
            ORDER BY offers.id DESC
            """,
            provider_id,
        )
        return [Offer._from_row(row) for row in rows]

    def report_by_provider(
        self, provider_id: uuid.UUID, month: int, year: int
    ) -> tuple[int, list[OfferForReport]]:
        """Return the month's offer total and the count for each day that had offers."""
        rows = self._db.fetch_all(
            f"""
            SELECT
                DATE(offers.created_at) AS date,
                COUNT(offers.id) AS count
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE services.service_provider_id = $1
                AND {_IN_MONTH}
            GROUP BY DATE(offers.created_at)
            ORDER BY DATE(offers.created_at)
            """,
            provider_id,
            month,
            year,
        )
        days = [OfferForReport(_date(row["date"]), row["count"]) for row in rows]
        total = self._db.fetch_value(
            f"""
            SELECT COUNT(offers.id)
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE services.service_provider_id = $1
                AND {_IN_MONTH}
            """,
            provider_id,
            month,
            year,
        )
        return int(total or 0), days

    def count_by_status(self, provider_id: uuid.UUID, month: int, year: int) -> dict[str, int]:
        rows = self._db.fetch_all(
            f"""
            SELECT offers.status AS status, COUNT(offers.id) AS count
            FROM offers
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE services.service_provider_id = $1
                AND {_IN_MONTH}
            GROUP BY offers.status
            """,
            provider_id,
            month,
            year,
        )
        return {row["status"]: row["count"] for row in rows}

    def iter_expired_ids(self, today: date | None = None) -> Iterator[uuid.UUID]:
        """Yield the ids of pending offers whose service end date has come."""
        if today is None:
            today = datetime.now(timezone.utc).date()
        rows = self._db.fetch_all(
            """
            SELECT id
            FROM offers
            WHERE service_end_date <= $1
                AND status = $2
            """,
            today,
            STATUS_PENDING,
        )
        for row in rows:
            yield _uuid(row["id"])

    def mark_expired(self, tx: Database, ids: Iterable[uuid.UUID]) -> None:
        ids = list(ids)
        if not ids:
            return
        query, args = expand_in(
            "UPDATE offers SET status = ? WHERE id IN (?)", STATUS_EXPIRED, ids
        )
        tx.execute(query, *args)

    def find_by_id(self, offer_id: uuid.UUID) -> Offer:
        return self._one(f"SELECT {_COLUMNS} FROM offers WHERE offers.id = $1", offer_id)