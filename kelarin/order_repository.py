"""Storage for orders and the reports built from them."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from kelarin.database import Database, expand_in
from kelarin.errors import NoDataError

STATUS_PENDING = "pending"


def _uuid(value: Any) -> uuid.UUID | None:
    return None if value is None else uuid.UUID(str(value))


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _time(value: Any) -> time | None:
    if value is None or isinstance(value, time):
        return value
    return time.fromisoformat(value)


def _decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _int(value: Any) -> int | None:
    return None if value is None else int(value)


def _in_month(column: str, month_param: int, year_param: int) -> str:
    return (
        f"CAST(strftime('%m', {column}) AS INTEGER) = ${month_param} "
        f"AND CAST(strftime('%Y', {column}) AS INTEGER) = ${year_param}"
    )


@dataclass
class Order:
    id: uuid.UUID
    user_id: uuid.UUID
    service_provider_id: uuid.UUID
    offer_id: uuid.UUID
    service_fee: Decimal
    service_date: date
    service_time: time
    payment_id: uuid.UUID | None = None
    payment_fulfilled: bool = False
    status: str = STATUS_PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Order:
        return cls(
            id=_uuid(row["id"]),
            user_id=_uuid(row["user_id"]),
            service_provider_id=_uuid(row["service_provider_id"]),
            offer_id=_uuid(row["offer_id"]),
            service_fee=_decimal(row["service_fee"]) or Decimal(0),
            service_date=_date(row["service_date"]),
            service_time=_time(row["service_time"]),
            payment_id=_uuid(row["payment_id"]),
            payment_fulfilled=bool(row["payment_fulfilled"]),
            status=row["status"],
            created_at=_datetime(row["created_at"]),
            updated_at=_datetime(row["updated_at"]),
        )

    def _params(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service_provider_id": self.service_provider_id,
            "offer_id": self.offer_id,
            "payment_id": self.payment_id,
            "payment_fulfilled": self.payment_fulfilled,
            "service_fee": self.service_fee,
            "service_date": self.service_date,
            "service_time": self.service_time,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class OrderWithRelations:
    """An order with its service, the state of its offer and the ordering user."""

    order: Order
    service_id: uuid.UUID
    service_name: str
    offer_status: str
    user_name: str
    user_email: str


@dataclass
class OrderWithUserAndServiceProvider:
    order: Order
    user_name: str
    service_provider_user_id: uuid.UUID
    service_provider_name: str


@dataclass
class OrderWithServiceAndServiceProvider:
    """An order with its service, provider and, when paid for, its payment."""

    order: Order
    service_id: uuid.UUID
    service_name: str
    service_provider_name: str
    service_provider_logo_image: str | None
    payment_method_name: str | None = None
    payment_amount: Decimal | None = None
    payment_admin_fee: int | None = None
    payment_platform_fee: int | None = None
    payment_status: str | None = None
    payment_payment_link: str | None = None
    payment_created_at: datetime | None = None
    payment_expired_at: datetime | None = None


@dataclass
class OrderForReport:
    date: date
    count: int


@dataclass
class OrderForReportExport:
    id: uuid.UUID
    service_fee: Decimal
    service_date: date
    service_time: time
    status: str
    payment_fulfilled: bool
    user_name: str
    user_email: str
    user_province: str
    user_city: str
    user_address: str
    created_at: datetime | None


_COLUMNS = """
    orders.id,
    orders.user_id,
    orders.service_provider_id,
    orders.offer_id,
    orders.payment_id,
    orders.payment_fulfilled,
    orders.service_fee,
    orders.service_date,
    orders.service_time,
    orders.status,
    orders.created_at,
    orders.updated_at
"""

_WITH_SERVICE_AND_PROVIDER = f"""
    SELECT
        {_COLUMNS},
        services.id AS service_id,
        services.name AS service_name,
        service_providers.name AS service_provider_name,
        service_providers.logo_image AS service_provider_logo_image,
        payment_methods.name AS payment_method_name,
        payments.amount AS payment_amount,
        payments.admin_fee AS payment_admin_fee,
        payments.platform_fee AS payment_platform_fee,
        payments.status AS payment_status,
        payments.payment_link AS payment_payment_link,
        payments.created_at AS payment_created_at,
        payments.expired_at AS payment_expired_at
    FROM orders
    INNER JOIN offers
        ON offers.id = orders.offer_id
    INNER JOIN services
        ON services.id = offers.service_id
    INNER JOIN service_providers
        ON service_providers.id = services.service_provider_id
    LEFT JOIN payments
        ON payments.id = orders.payment_id
    LEFT JOIN payment_methods
        ON payment_methods.id = payments.payment_method_id
"""


def _with_service_and_provider(row: Mapping[str, Any]) -> OrderWithServiceAndServiceProvider:
    return OrderWithServiceAndServiceProvider(
        order=Order._from_row(row),
        service_id=_uuid(row["service_id"]),
        service_name=row["service_name"],
        service_provider_name=row["service_provider_name"],
        service_provider_logo_image=row["service_provider_logo_image"],
        payment_method_name=row["payment_method_name"],
        payment_amount=_decimal(row["payment_amount"]),
        payment_admin_fee=_int(row["payment_admin_fee"]),
        payment_platform_fee=_int(row["payment_platform_fee"]),
        payment_status=row["payment_status"],
        payment_payment_link=row["payment_payment_link"],
        payment_created_at=_datetime(row["payment_created_at"]),
        payment_expired_at=_datetime(row["payment_expired_at"]),
    )


class OrderRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def _row(self, query: str, *args: Any) -> dict[str, Any]:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("order not found")
        return row

    def create(self, tx: Database, order: Order) -> None:
        tx.execute_named(
            """
            INSERT INTO orders (
                id, user_id, service_provider_id, offer_id, payment_fulfilled,
                service_fee, service_date, service_time, created_at
            )
            VALUES (
                :id, :user_id, :service_provider_id, :offer_id, :payment_fulfilled,
                :service_fee, :service_date, :service_time, :created_at
            )
            """,
            order._params(),
        )

    def find_by_id_and_user(self, order_id: uuid.UUID, user_id: uuid.UUID) -> OrderWithRelations:
        row = self._row(
            f"""
            SELECT
                {_COLUMNS},
                services.id AS service_id,
                services.name AS service_name,
                offers.status AS offer_status,
                users.name AS user_name,
                users.email AS user_email
            FROM orders
            INNER JOIN users
                ON users.id = orders.user_id
            INNER JOIN offers
                ON offers.id = orders.offer_id
            INNER JOIN services
                ON services.id = offers.service_id
            WHERE orders.id = $1
                AND orders.user_id = $2
            """,
            order_id,
            user_id,
        )
        return OrderWithRelations(
            order=Order._from_row(row),
            service_id=_uuid(row["service_id"]),
            service_name=row["service_name"],
            offer_status=row["offer_status"],
            user_name=row["user_name"],
            user_email=row["user_email"],
        )

    def set_payment(self, tx: Database, order: Order) -> None:
        """Store the order's payment id and update time."""
        tx.execute_named(
            "UPDATE orders SET payment_id = :payment_id, updated_at = :updated_at "
            "WHERE id = :id",
            {"id": order.id, "payment_id": order.payment_id, "updated_at": order.updated_at},
        )

    def set_payment_fulfilled(self, tx: Database, order: Order) -> None:
        tx.execute_named(
            "UPDATE orders SET payment_fulfilled = :payment_fulfilled, "
            "updated_at = :updated_at WHERE id = :id",
            {
                "id": order.id,
                "payment_fulfilled": order.payment_fulfilled,
                "updated_at": order.updated_at,
            },
        )

    def find_by_payment_id(self, payment_id: uuid.UUID) -> OrderWithUserAndServiceProvider:
        row = self._row(
            f"""
            SELECT
                {_COLUMNS},
                users.name AS user_name,
                service_providers.user_id AS service_provider_user_id,
                service_providers.name AS service_provider_name
            FROM orders
            INNER JOIN users
                ON users.id = orders.user_id
            INNER JOIN service_providers
                ON service_providers.id = orders.service_provider_id
            WHERE orders.payment_id = $1
            """,
            payment_id,
        )
        return OrderWithUserAndServiceProvider(
            order=Order._from_row(row),
            user_name=row["user_name"],
            service_provider_user_id=_uuid(row["service_provider_user_id"]),
            service_provider_name=row["service_provider_name"],
        )

    def find_all_by_user_id(
        self, user_id: uuid.UUID
    ) -> list[OrderWithServiceAndServiceProvider]:
        rows = self._db.fetch_all(
            f"{_WITH_SERVICE_AND_PROVIDER} WHERE orders.user_id = $1 ORDER BY orders.id DESC",
            user_id,
        )
        return [_with_service_and_provider(row) for row in rows]

    def find_all_by_provider(self, provider_id: uuid.UUID) -> list[Order]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_COLUMNS}
            FROM orders
            WHERE service_provider_id = $1
            ORDER BY id DESC
            """,
            provider_id,
        )
        return [Order._from_row(row) for row in rows]

    def find_by_id_and_provider(self, order_id: uuid.UUID, provider_id: uuid.UUID) -> Order:
        return Order._from_row(
            self._row(
                f"SELECT {_COLUMNS} FROM orders WHERE id = $1 AND service_provider_id = $2",
                order_id,
                provider_id,
            )
        )

    def update_status(self, tx: Database, order: Order) -> None:
        tx.execute_named(
            "UPDATE orders SET status = :status, updated_at = :updated_at WHERE id = :id",
            {"id": order.id, "status": order.status, "updated_at": order.updated_at},
        )

    def report_by_provider(
        self, provider_id: uuid.UUID, month: int, year: int
    ) -> tuple[int, list[OrderForReport]]:
        """Return the month's order total and the count for each day that had orders."""
        condition = _in_month("created_at", 2, 3)
        rows = self._db.fetch_all(
            f"""
            SELECT DATE(created_at) AS date, COUNT(id) AS count
            FROM orders
            WHERE service_provider_id = $1
                AND {condition}
            GROUP BY DATE(created_at)
            ORDER BY DATE(created_at)
            """,
            provider_id,
            month,
            year,
        )
        days = [OrderForReport(_date(row["date"]), row["count"]) for row in rows]
        total = self._db.fetch_value(
            f"""
            SELECT COUNT(id)
            FROM orders
            WHERE service_provider_id = $1
                AND {condition}
            """,
            provider_id,
            month,
            year,
        )
        return int(total or 0), days

    def _service_fees(
        self, provider_id: uuid.UUID, status: str, month: int, year: int
    ) -> Decimal:
        rows = self._db.fetch_all(
            f"""
            SELECT service_fee
            FROM orders
            WHERE service_provider_id = $1
                AND status = $2
                AND {_in_month("created_at", 3, 4)}
            """,
            provider_id,
            status,
            month,
            year,
        )
        return sum(
            (Decimal(str(row["service_fee"])) for row in rows if row["service_fee"] is not None),
            Decimal(0),
        )

    def total_service_fee(
        self, provider_id: uuid.UUID, status: str, month: int, year: int
    ) -> Decimal:
        """Sum the fees of the provider's orders with ``status`` in the month; zero if none."""
        return self._service_fees(provider_id, status, month, year)

    def export_by_provider(self, provider_id: uuid.UUID) -> list[OrderForReportExport]:
        rows = self._db.fetch_all(
            """
            SELECT
                orders.id,
                orders.service_fee,
                orders.service_date,
                orders.service_time,
                orders.status,
                orders.payment_fulfilled,
                users.name AS user_name,
                users.email AS user_email,
                user_addresses.province AS user_province,
                user_addresses.city AS user_city,
                user_addresses.address AS user_address,
                orders.created_at
            FROM orders
            INNER JOIN offers
                ON offers.id = orders.offer_id
            INNER JOIN user_addresses
                ON offers.user_address_id = user_addresses.id
            INNER JOIN users
                ON orders.user_id = users.id
            WHERE orders.service_provider_id = $1
            ORDER BY orders.id DESC
            """,
            provider_id,
        )
        return [
            OrderForReportExport(
                id=_uuid(row["id"]),
                service_fee=_decimal(row["service_fee"]) or Decimal(0),
                service_date=_date(row["service_date"]),
                service_time=_time(row["service_time"]),
                status=row["status"],
                payment_fulfilled=bool(row["payment_fulfilled"]),
                user_name=row["user_name"],
                user_email=row["user_email"],
                user_province=row["user_province"],
                user_city=row["user_city"],
                user_address=row["user_address"],
                created_at=_datetime(row["created_at"]),
            )
            for row in rows
        ]

    def find_by_offer_id(self, offer_id: uuid.UUID) -> OrderWithServiceAndServiceProvider:
        row = self._row(
            f"{_WITH_SERVICE_AND_PROVIDER} WHERE orders.offer_id = $1 ORDER BY orders.id DESC",
            offer_id,
        )
        return _with_service_and_provider(row)

    def count_by_status(self, provider_id: uuid.UUID, month: int, year: int) -> dict[str, int]:
        rows = self._db.fetch_all(
            f"""
            SELECT status, COUNT(id) AS count
            FROM orders
            WHERE service_provider_id = $1
                AND {_in_month("created_at", 2, 3)}
            GROUP BY status
            """,
            provider_id,
            month,
            year,
        )
        return {row["status"]: row["count"] for row in rows}

    def sum_service_fee(
        self, provider_id: uuid.UUID, status: str, month: int, year: int
    ) -> Decimal:
        return self._service_fees(provider_id, status, month, year)

    def find_expired_ids(self, today: date | None = None) -> list[uuid.UUID]:
        """Return pending orders whose service date has passed."""
        if today is None:
            today = datetime.now(timezone.utc).date()
        rows = self._db.fetch_all(
            "SELECT id FROM orders WHERE service_date < $1 AND status = $2",
            _date(today),
            STATUS_PENDING,
        )
        return [_uuid(row["id"]) for row in rows]

    def find_ongoing_ids(self, day: date) -> list[uuid.UUID]:
        """Return pending orders whose service falls on ``day``."""
        rows = self._db.fetch_all(
            "SELECT id FROM orders WHERE service_date = $1 AND status = $2",
            _date(day),
            STATUS_PENDING,
        )
        return [_uuid(row["id"]) for row in rows]

    def update_status_by_ids(
        self, tx: Database, ids: Iterable[uuid.UUID], status: str
    ) -> None:
        ids = list(ids)
        if not ids:
            return
        query, args = expand_in(
            "UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id IN (?)",
            status,
            ids,
        )
        tx.execute(query, *args)