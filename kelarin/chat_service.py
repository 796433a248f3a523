"""Real-time chat: inbound websocket messages, saving them and opening chat rooms."""

from __future__ import annotations

import json
import logging
import os
import threading
import time as _time
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from http import HTTPStatus
from typing import Any, Protocol

from kelarin.chat_repository import (
    ChatMessage,
    ChatMessageRepository,
    ChatRoom,
    ChatRoomRepository,
    ChatRoomUser,
    ChatRoomUserRepository,
)
from kelarin.database import Database
from kelarin.errors import AppError, NoDataError
from kelarin.offer_repository import OfferRepository
from kelarin.service_provider_repository import ServiceProviderRepository
from kelarin.service_repository import ServiceRepository
from kelarin.user_repository import UserRepository

logger = logging.getLogger(__name__)

ROLE_CONSUMER = "consumer"
ROLE_SERVICE_PROVIDER = "service_provider"

RESPONSE_TYPE_SERVER = "server"
RESPONSE_TYPE_INCOMING_MESSAGE = "chat_incoming_message"


def _uuid7() -> uuid.UUID:
    """Return a time-ordered UUID (version 7)."""
    millis = _time.time_ns() // 1_000_000
    rand_a = int.from_bytes(os.urandom(2), "big") & 0xFFF
    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)
    value = (
        (millis & ((1 << 48) - 1)) << 80
        | 0x7 << 76
        | rand_a << 64
        | 0b10 << 62
        | rand_b
    )
    return uuid.UUID(int=value)


def _json_default(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    raise TypeError(f"cannot encode {type(value).__name__}")


class ConnectionClosed(Exception):
    """Raised by a connection whose peer has closed it normally or gone away."""


class Connection(Protocol):
    def read_message(self) -> bytes: ...

    def write_message(self, data: bytes) -> None: ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class AuthUser:
    id: uuid.UUID
    role: str


class WsResponseCode(str, Enum):
    SUCCESS = "success"
    INTERNAL_SERVER_ERROR = "internal_server_error"
    CLIENT_ERROR = "client_error"
    CHAT_ROOM_NOT_FOUND = "chat_room_not_found"
    CHAT_RECIPIENT_NOT_FOUND = "chat_recipient_not_found"
    CHAT_RECIPIENT_OFFLINE = "chat_recipient_offline"


@dataclass
class WsResponse:
    success: bool = False
    code: WsResponseCode = WsResponseCode.INTERNAL_SERVER_ERROR
    message: str = "internal server error"
    type: str = RESPONSE_TYPE_SERVER
    data: Any = None
    metadata: Any = None
    errors: Any = None

    def to_bytes(self) -> bytes:
        """Encode the response as JSON, leaving out empty optional fields."""
        payload: dict[str, Any] = {
            "success": self.success,
            "type": self.type,
            "code": self.code.value,
            "message": self.message,
        }
        for key in ("data", "metadata", "errors"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, default=_json_default).encode()


class _InvalidMessage(ValueError):
    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("invalid message")
        self.errors = errors


def _optional_uuid(data: dict[str, Any], key: str, errors: dict[str, str]) -> uuid.UUID | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        errors[key] = "must be a valid UUID"
        return None


@dataclass
class ChatSendMessage:
    """A message a client sends over the chat socket."""

    sender_user_id: uuid.UUID
    content: str
    content_type: str
    id: Any = None
    room_id: uuid.UUID | None = None
    service_provider_id: uuid.UUID | None = None

    @classmethod
    def from_json(cls, raw: bytes | str, sender_user_id: uuid.UUID) -> ChatSendMessage:
        """Parse and validate a message; ValueError when it is not usable."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("message must be a JSON object")
        errors: dict[str, str] = {}
        room_id = _optional_uuid(data, "room_id", errors)
        provider_id = _optional_uuid(data, "service_provider_id", errors)
        content = data.get("content")
        content_type = data.get("content_type")
        if not isinstance(content, str) or not content.strip():
            errors["content"] = "cannot be blank"
        if not isinstance(content_type, str) or not content_type.strip():
            errors["content_type"] = "cannot be blank"
        if room_id is None and provider_id is None and not {
            "room_id",
            "service_provider_id",
        } & errors.keys():
            errors["room_id"] = "room_id or service_provider_id is required"
        if errors:
            raise _InvalidMessage(errors)
        return cls(
            sender_user_id=sender_user_id,
            content=content,
            content_type=content_type,
            id=data.get("id"),
            room_id=room_id,
            service_provider_id=provider_id,
        )


@dataclass
class WsClient:
    conn: Connection | None
    auth_user: AuthUser
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class WsHub:
    """Connected clients keyed by the string form of their user id."""

    clients: dict[str, WsClient] = field(default_factory=dict)


@dataclass
class ChatRoomCreateRequest:
    auth_user: AuthUser
    sender_id: uuid.UUID | None = None
    recipient_id: uuid.UUID | None = None
    service_id: uuid.UUID | None = None
    offer_id: uuid.UUID | None = None
    tx: Database | None = None

    def _validate(self) -> None:
        if self.service_id is None and self.offer_id is None:
            if self.sender_id is None or self.recipient_id is None:
                raise AppError(
                    HTTPStatus.BAD_REQUEST, "sender_id and recipient_id are required"
                )


class ChatMessagingService:
    def __init__(
        self,
        db: Database,
        service_repo: ServiceRepository,
        user_repo: UserRepository,
        chat_room_repo: ChatRoomRepository,
        chat_room_user_repo: ChatRoomUserRepository,
        chat_message_repo: ChatMessageRepository,
        hub: WsHub,
        offer_repo: OfferRepository,
        service_provider_repo: ServiceProviderRepository,
    ) -> None:
        self._db = db
        self._service_repo = service_repo
        self._user_repo = user_repo
        self._chat_room_repo = chat_room_repo
        self._chat_room_user_repo = chat_room_user_repo
        self._chat_message_repo = chat_message_repo
        self._hub = hub
        self._offer_repo = offer_repo
        self._service_provider_repo = service_provider_repo

    @staticmethod
    def _send(conn: Connection, response: WsResponse) -> None:
        try:
            conn.write_message(response.to_bytes())
        except Exception:
            logger.exception("failed to write websocket response")

    def handle_inbound_message(self, client: WsClient) -> None:
        """Serve one client's messages until its connection fails."""
        conn = client.conn
        while True:
            response = WsResponse()

            with client.lock:
                try:
                    raw = conn.read_message()
                except Exception:
                    logger.exception("error reading websocket message")
                    response.message = "error reading message"
                    self._send(conn, response)
                    conn.close()
                    return

            try:
                message = ChatSendMessage.from_json(raw, client.auth_user.id)
            except _InvalidMessage as exc:
                response.code = WsResponseCode.CLIENT_ERROR
                response.message = "error validating message"
                response.errors = exc.errors
                self._send(conn, response)
                continue
            except ValueError:
                logger.exception("error parsing websocket message")
                response.code = WsResponseCode.CLIENT_ERROR
                response.message = "error parsing message"
                self._send(conn, response)
                continue

            response.metadata = {"id": message.id}
            recipient_id = message.service_provider_id

            if message.room_id is not None:
                try:
                    self._chat_room_user_repo.find_by_room_and_user(
                        message.room_id, client.auth_user.id
                    )
                except NoDataError:
                    response.code = WsResponseCode.CHAT_ROOM_NOT_FOUND
                    response.message = "chat room not found"
                    self._send(conn, response)
                    continue
                except Exception:
                    logger.exception("failed to look up chat room membership")
                    conn.close()
                    return

                try:
                    recipients = self._chat_room_user_repo.find_recipients(
                        client.auth_user.id, [message.room_id]
                    )
                except Exception:
                    logger.exception("failed to look up chat recipients")
                    self._send(conn, response)
                    return

                if not recipients:
                    response.message = "recipient not found"
                    self._send(conn, response)
                    continue
                recipient_id = recipients[0].user_id
            elif message.service_provider_id is not None:
                try:
                    provider = self._service_provider_repo.find_by_id(
                        message.service_provider_id
                    )
                except NoDataError:
                    response.code = WsResponseCode.CHAT_RECIPIENT_NOT_FOUND
                    response.message = "service provider not found"
                    self._send(conn, response)
                    continue
                except Exception:
                    logger.exception("failed to look up service provider")
                    conn.close()
                    return
                recipient_id = provider.user_id

            if recipient_id == client.auth_user.id:
                response.code = WsResponseCode.CLIENT_ERROR
                response.message = "cannot send message to yourself"
                self._send(conn, response)
                continue

            try:
                room_id, message_id, created_at = self.save_sent_message(
                    client.auth_user,
                    message.room_id,
                    recipient_id,
                    message.content,
                    message.content_type,
                )
            except Exception:
                logger.exception("failed to save chat message")
                self._send(conn, response)
                continue

            target = self._hub.clients.get(str(recipient_id))
            if target is None:
                response.success = True
                response.code = WsResponseCode.CHAT_RECIPIENT_OFFLINE
                response.message = "recipient is offline"
                self._send(conn, response)
                continue

            if target.conn is None:
                logger.error("target client connection is nil")
                self._send(conn, response)
                continue

            try:
                target.conn.ping()
            except ConnectionClosed:
                response.success = True
                response.code = WsResponseCode.CHAT_RECIPIENT_OFFLINE
                response.message = "recipient is offline"
                self._send(conn, response)
                continue
            except Exception:
                logger.exception("failed to ping recipient")
                self._send(conn, response)
                continue

            incoming = WsResponse(
                success=True,
                code=WsResponseCode.SUCCESS,
                message="success",
                type=RESPONSE_TYPE_INCOMING_MESSAGE,
                data={
                    "room_id": room_id,
                    "message_id": message_id,
                    "content": message.content,
                    "content_type": message.content_type,
                    "created_at": created_at,
                },
            )
            try:
                target.conn.write_message(incoming.to_bytes())
            except Exception:
                logger.exception("failed to deliver chat message")
                self._send(conn, response)
                continue

            self._send(
                conn,
                WsResponse(
                    success=True,
                    code=WsResponseCode.SUCCESS,
                    message="success",
                    metadata={"id": message.id},
                ),
            )

    def save_sent_message(
        self,
        auth_user: AuthUser,
        room_id: uuid.UUID | None,
        recipient_user_id: uuid.UUID | None,
        content: str,
        content_type: str,
    ) -> tuple[uuid.UUID, uuid.UUID, datetime]:
        """Store a message, opening a room first when none is given.

        Returns the room id, the new message id and its creation time.
        """
        if not content or not content.strip():
            raise AppError(HTTPStatus.BAD_REQUEST, "content: cannot be blank")
        if not content_type or not content_type.strip():
            raise AppError(HTTPStatus.BAD_REQUEST, "content_type: cannot be blank")
        if room_id is None and recipient_user_id is None:
            raise AppError(
                HTTPStatus.BAD_REQUEST, "room_id or recipient_user_id is required"
            )

        try:
            sender = self._user_repo.find_by_id(auth_user.id)
        except NoDataError:
            raise NoDataError(f"user not found: id {auth_user.id}") from None

        with self._db.transaction() as tx:
            if room_id is not None:
                try:
                    room = self._chat_room_repo.find_by_id(room_id)
                except NoDataError:
                    raise NoDataError(f"chat room not found: id {room_id}") from None
                chat_room_id = room.id
            else:
                try:
                    recipient = self._user_repo.find_by_id(recipient_user_id)
                except NoDataError:
                    raise NoDataError(
                        f"recipient not found: id {recipient_user_id}"
                    ) from None
                chat_room_id = self.create_chat_room(
                    ChatRoomCreateRequest(
                        auth_user=auth_user,
                        sender_id=sender.id,
                        recipient_id=recipient.id,
                        tx=tx,
                    )
                )

            created_at = datetime.now(timezone.utc)
            message_id = _uuid7()
            self._chat_message_repo.create(
                tx,
                ChatMessage(
                    id=message_id,
                    chat_room_id=chat_room_id,
                    user_id=sender.id,
                    content=content,
                    content_type=content_type,
                    created_at=created_at,
                ),
            )

        return chat_room_id, message_id, created_at

    def create_chat_room(self, request: ChatRoomCreateRequest) -> uuid.UUID:
        """Open a room between two users and return its id.

        A room already tied to the same service or offer for the user is reused.
        """
        request._validate()
        auth = request.auth_user
        now = datetime.now(timezone.utc)
        room_id = _uuid7()
        service_id: uuid.UUID | None = None
        offer_id: uuid.UUID | None = None
        sender_id = request.sender_id
        recipient_id = request.recipient_id

        if request.service_id is not None:
            try:
                service = self._service_repo.find_by_id(request.service_id)
            except NoDataError:
                raise NoDataError(f"service not found: id {request.service_id}") from None
            service_id = service.id

            try:
                existing = self._chat_room_repo.find_by_user_and_service(auth.id, service.id)
            except NoDataError:
                existing = None
            if existing is not None:
                return existing.id

            if auth.role != ROLE_CONSUMER:
                raise AppError(
                    HTTPStatus.FORBIDDEN,
                    "only consumer can create chat room to reference service",
                )

            try:
                provider = self._service_provider_repo.find_by_id(service.service_provider_id)
            except NoDataError:
                raise NoDataError(
                    f"service provider not found: id {service.service_provider_id}"
                ) from None
            sender_id = auth.id
            recipient_id = provider.user_id

        if request.offer_id is not None:
            try:
                existing = self._chat_room_repo.find_by_user_and_offer(
                    auth.id, request.offer_id
                )
            except NoDataError:
                existing = None
            if existing is not None:
                return existing.id

            if auth.role == ROLE_CONSUMER:
                try:
                    offer = self._offer_repo.find_by_id_and_user(request.offer_id, auth.id)
                except NoDataError:
                    raise AppError(HTTPStatus.NOT_FOUND, "offer not found") from None
            elif auth.role == ROLE_SERVICE_PROVIDER:
                try:
                    provider = self._service_provider_repo.find_by_user_id(auth.id)
                except NoDataError:
                    raise NoDataError(f"provider not found: user_id {auth.id}") from None
                try:
                    offer = self._offer_repo.find_by_id_and_provider(
                        request.offer_id, provider.id
                    )
                except NoDataError:
                    raise AppError(HTTPStatus.NOT_FOUND, "offer not found") from None
            else:
                raise AppError(HTTPStatus.FORBIDDEN)
            offer_id = offer.id

        room = ChatRoom(id=room_id, service_id=service_id, offer_id=offer_id, created_at=now)
        members = [
            ChatRoomUser(chat_room_id=room_id, user_id=sender_id, created_at=now),
            ChatRoomUser(chat_room_id=room_id, user_id=recipient_id, created_at=now),
        ]

        if request.tx is None:
            with self._db.transaction() as tx:
                self._chat_room_repo.create(tx, room)
                self._chat_room_user_repo.create(tx, members)
        else:
            self._chat_room_repo.create(request.tx, room)
            self._chat_room_user_repo.create(request.tx, members)

        return room_id