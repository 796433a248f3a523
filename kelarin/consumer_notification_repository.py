"""Storage for notifications sent to consumers."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from kelarin.database import Database


def _uuid(value: Any) -> uuid.UUID | None:
    return None if value is None else uuid.UUID(str(value))


def _datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _int(value: Any) -> int | None:
    return None if value is None else int(value)


@dataclass
class ConsumerNotification:
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    created_at: datetime
    offer_negotiation_id: uuid.UUID | None = None
    payment_id: uuid.UUID | None = None
    order_id: uuid.UUID | None = None
    read: bool = False

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> ConsumerNotification:
        return cls(
            id=_uuid(row["id"]),
            user_id=_uuid(row["user_id"]),
            type=row["type"],
            created_at=_datetime(row["created_at"]),
            offer_negotiation_id=_uuid(row["offer_negotiation_id"]),
            payment_id=_uuid(row["payment_id"]),
            order_id=_uuid(row["order_id"]),
            read=bool(row["read"]),
        )


@dataclass
class ConsumerNotificationDetail:
    """A notification with the provider and payment it refers to, where there are any."""

    notification: ConsumerNotification
    service_provider_name: str | None = None
    service_provider_logo_image: str | None = None
    payment_amount: Decimal | None = None
    payment_admin_fee: int | None = None
    payment_platform_fee: int | None = None
    payment_method_name: str | None = None


class ConsumerNotificationRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, tx: Database, notification: ConsumerNotification) -> None:
        tx.execute_named(
            """
            INSERT INTO consumer_notifications (
                id, user_id, offer_negotiation_id, payment_id, order_id, type, created_at
            )
            VALUES (
                :id, :user_id, :offer_negotiation_id, :payment_id, :order_id, :type,
                :created_at
            )
            """,
            {
                "id": notification.id,
                "user_id": notification.user_id,
                "offer_negotiation_id": notification.offer_negotiation_id,
                "payment_id": notification.payment_id,
                "order_id": notification.order_id,
                "type": notification.type,
                "created_at": notification.created_at,
            },
        )

    def find_all_by_user_id(self, user_id: uuid.UUID) -> list[ConsumerNotificationDetail]:
        """Return the user's notifications, newest id first."""
        rows = self._db.fetch_all(
            """
            SELECT
                consumer_notifications.id,
                consumer_notifications.user_id,
                consumer_notifications.offer_negotiation_id,
                consumer_notifications.payment_id,
                consumer_notifications.order_id,
                consumer_notifications.type,
                consumer_notifications.read,
                consumer_notifications.created_at,
                service_providers.name AS service_provider_name,
                service_providers.logo_image AS service_provider_logo_image,
                payments.amount AS payment_amount,
                payments.admin_fee AS payment_admin_fee,
                payments.platform_fee AS payment_platform_fee,
                payment_methods.name AS payment_method_name
            FROM consumer_notifications
            LEFT JOIN offer_negotiations
                ON offer_negotiations.id = consumer_notifications.offer_negotiation_id
            LEFT JOIN offers
                ON offers.id = offer_negotiations.offer_id
            LEFT JOIN services
                ON services.id = offers.service_id
            LEFT JOIN orders
                ON orders.id = consumer_notifications.order_id
            LEFT JOIN payments
                ON payments.id = consumer_notifications.payment_id
            LEFT JOIN payment_methods
                ON payment_methods.id = payments.payment_method_id
            LEFT JOIN service_providers
                ON service_providers.id = orders.service_provider_id
                    OR service_providers.id = services.service_provider_id
            WHERE consumer_notifications.user_id = $1
            ORDER BY consumer_notifications.id DESC
            """,
            user_id,
        )
        return [
            ConsumerNotificationDetail(
                notification=ConsumerNotification._from_row(row),
                service_provider_name=row["service_provider_name"],
                service_provider_logo_image=row["service_provider_logo_image"],
                payment_amount=_decimal(row["payment_amount"]),
                payment_admin_fee=_int(row["payment_admin_fee"]),
                payment_platform_fee=_int(row["payment_platform_fee"]),
                payment_method_name=row["payment_method_name"],
            )
            for row in rows
        ]