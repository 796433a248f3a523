"""Storage for chat rooms, their members and their messages."""

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
class ChatMessage:
    id: uuid.UUID
    chat_room_id: uuid.UUID
    user_id: uuid.UUID
    content: str
    content_type: str
    created_at: datetime
    read: bool = False

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> ChatMessage:
        return cls(
            id=_uuid(row["id"]),
            chat_room_id=_uuid(row["chat_room_id"]),
            user_id=_uuid(row["user_id"]),
            content=row["content"],
            content_type=row["content_type"],
            created_at=_datetime(row["created_at"]),
            read=bool(row["read"]),
        )


@dataclass
class ChatMessageUnreadCount:
    chat_room_id: uuid.UUID
    count: int


@dataclass
class ChatRoom:
    id: uuid.UUID
    created_at: datetime
    service_id: uuid.UUID | None = None
    offer_id: uuid.UUID | None = None

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> ChatRoom:
        return cls(
            id=_uuid(row["id"]),
            created_at=_datetime(row["created_at"]),
            service_id=_uuid(row["service_id"]),
            offer_id=_uuid(row["offer_id"]),
        )


@dataclass
class ChatRoomUser:
    chat_room_id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> ChatRoomUser:
        return cls(
            chat_room_id=_uuid(row["chat_room_id"]),
            user_id=_uuid(row["user_id"]),
            created_at=_datetime(row["created_at"]),
        )


@dataclass
class ChatRoomUserWithContext:
    """A room membership together with the service or offer the room is about."""

    chat_room_id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime
    service_id: uuid.UUID | None = None
    offer_id: uuid.UUID | None = None


_MESSAGE_COLUMNS = "id, chat_room_id, user_id, content, content_type, read, created_at"


class ChatMessageRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, tx: Database, message: ChatMessage) -> None:
        tx.execute_named(
            """
            INSERT INTO chat_messages (
                id, chat_room_id, user_id, content, content_type, created_at
            )
            VALUES (
                :id, :chat_room_id, :user_id, :content, :content_type, :created_at
            )
            """,
            {
                "id": message.id,
                "chat_room_id": message.chat_room_id,
                "user_id": message.user_id,
                "content": message.content,
                "content_type": message.content_type,
                "created_at": message.created_at,
            },
        )

    def count_unread_received(
        self, user_id: uuid.UUID, room_ids: Iterable[uuid.UUID]
    ) -> list[ChatMessageUnreadCount]:
        """Count unread messages sent by others, per room."""
        room_ids = list(room_ids)
        if not room_ids:
            return []
        query, args = expand_in(
            """
            SELECT chat_room_id, COUNT(id) AS count
            FROM chat_messages
            WHERE chat_room_id IN (?)
                AND read = 0
                AND user_id != ?
            GROUP BY chat_room_id
            """,
            room_ids,
            user_id,
        )
        return [
            ChatMessageUnreadCount(_uuid(row["chat_room_id"]), row["count"])
            for row in self._db.fetch_all(query, *args)
        ]

    def find_by_room_id(self, room_id: uuid.UUID) -> list[ChatMessage]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM chat_messages
            WHERE chat_room_id = $1
            ORDER BY id ASC
            """,
            room_id,
        )
        return [ChatMessage._from_row(row) for row in rows]

    def find_latest_by_room_ids(self, room_ids: Iterable[uuid.UUID]) -> list[ChatMessage]:
        """Return the newest message of each of the given rooms."""
        room_ids = list(room_ids)
        if not room_ids:
            return []
        query, args = expand_in(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM chat_messages AS m
            WHERE chat_room_id IN (?)
                AND id = (
                    SELECT MAX(id) FROM chat_messages
                    WHERE chat_room_id = m.chat_room_id
                )
            ORDER BY chat_room_id
            """,
            room_ids,
        )
        return [ChatMessage._from_row(row) for row in self._db.fetch_all(query, *args)]

    def find_received(
        self, ids: Iterable[uuid.UUID], room_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[ChatMessage]:
        """Return the given messages of a room that were sent by someone else."""
        ids = list(ids)
        if not ids:
            return []
        query, args = expand_in(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM chat_messages
            WHERE id IN (?)
                AND chat_room_id = ?
                AND user_id != ?
            """,
            ids,
            room_id,
            user_id,
        )
        return [ChatMessage._from_row(row) for row in self._db.fetch_all(query, *args)]

    def mark_as_seen(self, ids: Iterable[uuid.UUID]) -> None:
        ids = list(ids)
        if not ids:
            return
        query, args = expand_in("UPDATE chat_messages SET read = 1 WHERE id IN (?)", ids)
        self._db.execute(query, *args)


_ROOM_COLUMNS = (
    "chat_rooms.id, chat_rooms.service_id, chat_rooms.offer_id, chat_rooms.created_at"
)


class ChatRoomRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def _find_one(self, query: str, *args: Any) -> ChatRoom:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("chat room not found")
        return ChatRoom._from_row(row)

    def find_by_id(self, room_id: uuid.UUID) -> ChatRoom:
        return self._find_one(
            f"SELECT {_ROOM_COLUMNS} FROM chat_rooms WHERE id = $1", room_id
        )

    def create(self, tx: Database, room: ChatRoom) -> None:
        tx.execute_named(
            """
            INSERT INTO chat_rooms (id, service_id, offer_id, created_at)
            VALUES (:id, :service_id, :offer_id, :created_at)
            """,
            {
                "id": room.id,
                "service_id": room.service_id,
                "offer_id": room.offer_id,
                "created_at": room.created_at,
            },
        )

    def find_by_user_and_service(
        self, user_id: uuid.UUID, service_id: uuid.UUID
    ) -> ChatRoom:
        return self._find_one(
            f"""
            SELECT {_ROOM_COLUMNS}
            FROM chat_rooms
            INNER JOIN chat_room_users
                ON chat_room_users.chat_room_id = chat_rooms.id
            WHERE chat_room_users.user_id = $1
                AND chat_rooms.service_id = $2
            """,
            user_id,
            service_id,
        )

    def find_by_user_and_offer(self, user_id: uuid.UUID, offer_id: uuid.UUID) -> ChatRoom:
        return self._find_one(
            f"""
            SELECT {_ROOM_COLUMNS}
            FROM chat_rooms
            INNER JOIN chat_room_users
                ON chat_room_users.chat_room_id = chat_rooms.id
            WHERE chat_room_users.user_id = $1
                AND chat_rooms.offer_id = $2
            """,
            user_id,
            offer_id,
        )


class ChatRoomUserRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, tx: Database, members: Iterable[ChatRoomUser]) -> None:
        tx.execute_named(
            """
            INSERT INTO chat_room_users (chat_room_id, user_id, created_at)
            VALUES (:chat_room_id, :user_id, :created_at)
            """,
            [
                {
                    "chat_room_id": member.chat_room_id,
                    "user_id": member.user_id,
                    "created_at": member.created_at,
                }
                for member in members
            ],
        )

    def find_room_id_by_user_ids(self, user_ids: Iterable[uuid.UUID]) -> uuid.UUID | None:
        """Return a room whose members include all the given users, or None."""
        user_ids = list(user_ids)
        query, args = expand_in(
            """
            SELECT chat_room_id
            FROM chat_room_users
            WHERE user_id IN (?)
            GROUP BY chat_room_id
            HAVING COUNT(DISTINCT user_id) = ?
            """,
            user_ids,
            len(user_ids),
        )
        return _uuid(self._db.fetch_value(query, *args))

    def find_by_user_id(self, user_id: uuid.UUID) -> list[ChatRoomUserWithContext]:
        rows = self._db.fetch_all(
            """
            SELECT
                chat_room_users.chat_room_id,
                chat_room_users.user_id,
                chat_room_users.created_at,
                chat_rooms.service_id,
                chat_rooms.offer_id
            FROM chat_room_users
            INNER JOIN chat_rooms
                ON chat_rooms.id = chat_room_users.chat_room_id
            WHERE chat_room_users.user_id = $1
            ORDER BY chat_rooms.id DESC
            """,
            user_id,
        )
        return [
            ChatRoomUserWithContext(
                chat_room_id=_uuid(row["chat_room_id"]),
                user_id=_uuid(row["user_id"]),
                created_at=_datetime(row["created_at"]),
                service_id=_uuid(row["service_id"]),
                offer_id=_uuid(row["offer_id"]),
            )
            for row in rows
        ]

    def find_recipients(
        self, user_id: uuid.UUID, room_ids: Iterable[uuid.UUID]
    ) -> list[ChatRoomUser]:
        """Return the other members of the given rooms."""
        room_ids = list(room_ids)
        if not room_ids:
            return []
        query, args = expand_in(
            """
            SELECT chat_room_id, user_id, created_at
            FROM chat_room_users
            WHERE user_id != ?
                AND chat_room_id IN (?)
            """,
            user_id,
            room_ids,
        )
        return [ChatRoomUser._from_row(row) for row in self._db.fetch_all(query, *args)]

    def _find_one(self, query: str, *args: Any) -> ChatRoomUser:
        row = self._db.fetch_one(query, *args)
        if row is None:
            raise NoDataError("chat room user not found")
        return ChatRoomUser._from_row(row)

    def find_recipient(self, user_id: uuid.UUID, room_id: uuid.UUID) -> ChatRoomUser:
        return self._find_one(
            """
            SELECT chat_room_id, user_id, created_at
            FROM chat_room_users
            WHERE user_id != $1
                AND chat_room_id = $2
            """,
            user_id,
            room_id,
        )

    def find_by_room_and_user(self, room_id: uuid.UUID, user_id: uuid.UUID) -> ChatRoomUser:
        return self._find_one(
            """
            SELECT chat_room_id, user_id, created_at
            FROM chat_room_users
            WHERE chat_room_id = $1
                AND user_id = $2
            """,
            room_id,
            user_id,
        )