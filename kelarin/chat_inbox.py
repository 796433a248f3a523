"""Reading chats: conversation lists, room views and read receipts."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from http import HTTPStatus
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from kelarin.errors import AppError, NoDataError


class ChatContext(str, Enum):
    """What a chat room is about."""

    COMMON = "common"
    ORDER = "order"
    SERVICE = "service"


@dataclass
class LatestMessage:
    id: uuid.UUID
    content: str
    content_type: str
    read: bool
    created_at: datetime


@dataclass
class ConsumerChatSummary:
    """One entry of a consumer's chat list."""

    context: ChatContext
    room_id: uuid.UUID
    service_provider_id: uuid.UUID
    service_provider_name: str
    service_provider_logo_url: str
    unread_message_count: int = 0
    latest_message: LatestMessage | None = None


@dataclass
class ProviderChatSummary:
    """One entry of a service provider's chat list."""

    context: ChatContext
    room_id: uuid.UUID
    consumer_id: uuid.UUID
    consumer_name: str
    unread_message_count: int = 0
    latest_message: LatestMessage | None = None


@dataclass
class RoomMessage:
    id: uuid.UUID
    is_sender: bool
    content: str
    content_type: str
    read: bool
    created_at: datetime


@dataclass
class RoomOrder:
    id: uuid.UUID
    status: str
    service_date: str
    service_time: str


@dataclass
class RoomService:
    id: uuid.UUID
    name: str


@dataclass
class ConsumerRoomView:
    context: ChatContext
    room_id: uuid.UUID
    service_provider_id: uuid.UUID
    service_provider_name: str
    service_provider_logo_url: str
    messages: list[RoomMessage] = field(default_factory=list)
    offer_id: uuid.UUID | None = None
    order: RoomOrder | None = None
    service: RoomService | None = None


@dataclass
class ProviderRoomView:
    context: ChatContext
    room_id: uuid.UUID
    consumer_id: uuid.UUID
    consumer_name: str
    messages: list[RoomMessage] = field(default_factory=list)
    offer_id: uuid.UUID | None = None
    order: RoomOrder | None = None
    service: RoomService | None = None


def _parse_time_zone(name: str | None) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise AppError(HTTPStatus.BAD_REQUEST, f"invalid time zone: {name}") from None


def _in_zone(moment: datetime, zone: tzinfo) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone)


def _first(items: Iterable[Any], predicate: Callable[[Any], bool]) -> Any | None:
    return next((item for item in items if predicate(item)), None)


def _room_context(member: Any) -> ChatContext:
    if member.offer_id is not None:
        return ChatContext.ORDER
    if member.service_id is not None:
        return ChatContext.SERVICE
    return ChatContext.COMMON


def _latest(message: Any | None, zone: tzinfo) -> LatestMessage | None:
    if message is None:
        return None
    return LatestMessage(
        id=message.id,
        content=message.content,
        content_type=message.content_type,
        read=message.read,
        created_at=_in_zone(message.created_at, zone),
    )


class ChatInboxService:
    def __init__(
        self,
        service_repo: Any,
        user_repo: Any,
        chat_room_repo: Any,
        chat_room_user_repo: Any,
        chat_message_repo: Any,
        service_provider_repo: Any,
        order_repo: Any,
        presign_url: Callable[[str], str],
    ) -> None:
        self._service_repo = service_repo
        self._user_repo = user_repo
        self._chat_room_repo = chat_room_repo
        self._chat_room_user_repo = chat_room_user_repo
        self._chat_message_repo = chat_message_repo
        self._service_provider_repo = service_provider_repo
        self._order_repo = order_repo
        self._presign_url = presign_url

    def _rooms_overview(self, auth_user: Any) -> tuple[list, list, list, list]:
        members = self._chat_room_user_repo.find_by_user_id(auth_user.id)
        room_ids = [member.chat_room_id for member in members]
        recipients = self._chat_room_user_repo.find_recipients(auth_user.id, room_ids)
        user_ids = list(dict.fromkeys(recipient.user_id for recipient in recipients))
        unread = self._chat_message_repo.count_unread_received(auth_user.id, room_ids)
        latest = self._chat_message_repo.find_latest_by_room_ids(room_ids)
        return members, recipients, user_ids, unread, latest

    @staticmethod
    def _unread_count(unread: list, room_id: uuid.UUID) -> int:
        found = _first(unread, lambda item: item.chat_room_id == room_id)
        return found.count if found is not None else 0

    def consumer_get_all(
        self, auth_user: Any, time_zone: str | None = None
    ) -> list[ConsumerChatSummary]:
        """List the consumer's chat rooms with the provider on the other side."""
        members, recipients, user_ids, unread, latest = self._rooms_overview(auth_user)
        providers = self._service_provider_repo.find_by_user_ids(user_ids)
        zone = _parse_time_zone(time_zone)

        summaries = []
        for member in members:
            room_id = member.chat_room_id
            recipient = _first(recipients, lambda r: r.chat_room_id == room_id)
            if recipient is None:
                continue
            provider = _first(providers, lambda p: p.user_id == recipient.user_id)
            if provider is None:
                continue
            summaries.append(
                ConsumerChatSummary(
                    context=_room_context(member),
                    room_id=room_id,
                    service_provider_id=provider.id,
                    service_provider_name=provider.name,
                    service_provider_logo_url=self._presign_url(provider.logo_image),
                    unread_message_count=self._unread_count(unread, room_id),
                    latest_message=_latest(
                        _first(latest, lambda m: m.chat_room_id == room_id), zone
                    ),
                )
            )
        return summaries

    def provider_get_all(
        self, auth_user: Any, time_zone: str | None = None
    ) -> list[ProviderChatSummary]:
        """List the provider's chat rooms with the consumer on the other side."""
        members, recipients, user_ids, unread, latest = self._rooms_overview(auth_user)
        consumers = self._user_repo.find_by_ids(user_ids)
        zone = _parse_time_zone(time_zone)

        summaries = []
        for member in members:
            room_id = member.chat_room_id
            recipient = _first(recipients, lambda r: r.chat_room_id == room_id)
            if recipient is None:
                continue
            consumer = _first(consumers, lambda c: c.id == recipient.user_id)
            if consumer is None:
                continue
            summaries.append(
                ProviderChatSummary(
                    context=_room_context(member),
                    room_id=room_id,
                    consumer_id=consumer.id,
                    consumer_name=consumer.name,
                    unread_message_count=self._unread_count(unread, room_id),
                    latest_message=_latest(
                        _first(latest, lambda m: m.chat_room_id == room_id), zone
                    ),
                )
            )
        return summaries

    def _room_and_recipient(self, auth_user: Any, room_id: uuid.UUID) -> tuple[Any, list, Any]:
        try:
            room = self._chat_room_repo.find_by_id(room_id)
        except NoDataError:
            raise AppError(HTTPStatus.NOT_FOUND, "chat room not found") from None
        messages = self._chat_message_repo.find_by_room_id(room.id)
        try:
            recipient = self._chat_room_user_repo.find_recipient(auth_user.id, room.id)
        except NoDataError:
            raise NoDataError(f"recipient not found: user_id {auth_user.id}") from None
        return room, messages, recipient

    def _fill_room(
        self,
        view: ConsumerRoomView | ProviderRoomView,
        room: Any,
        messages: list,
        auth_user: Any,
        zone: tzinfo,
    ) -> None:
        if room.offer_id is not None:
            try:
                found = self._order_repo.find_by_offer_id(room.offer_id)
            except NoDataError:
                raise NoDataError(f"order not found: offer_id {room.offer_id}") from None
            order = found.order
            service_moment = datetime.combine(
                order.service_date, order.service_time.replace(tzinfo=None), timezone.utc
            )
            view.context = ChatContext.ORDER
            view.offer_id = order.offer_id
            view.order = RoomOrder(
                id=order.id,
                status=order.status,
                service_date=order.service_date.isoformat(),
                service_time=service_moment.astimezone(zone).strftime("%H:%M:%S"),
            )
            view.service = RoomService(id=found.service_id, name=found.service_name)
        elif room.service_id is not None:
            try:
                service = self._service_repo.find_by_id(room.service_id)
            except NoDataError:
                raise NoDataError(f"service not found: id {room.service_id}") from None
            view.context = ChatContext.SERVICE
            view.service = RoomService(id=service.id, name=service.name)

        view.messages = [
            RoomMessage(
                id=message.id,
                is_sender=message.user_id == auth_user.id,
                content=message.content,
                content_type=message.content_type,
                read=message.read,
                created_at=_in_zone(message.created_at, zone),
            )
            for message in messages
        ]

    def consumer_get_by_room_id(
        self, auth_user: Any, room_id: uuid.UUID, time_zone: str | None = None
    ) -> ConsumerRoomView:
        room, messages, recipient = self._room_and_recipient(auth_user, room_id)
        try:
            provider = self._service_provider_repo.find_by_user_id(recipient.user_id)
        except NoDataError:
            raise NoDataError(
                f"service provider not found: user_id {recipient.user_id}"
            ) from None
        view = ConsumerRoomView(
            context=ChatContext.COMMON,
            room_id=room.id,
            service_provider_id=provider.id,
            service_provider_name=provider.name,
            service_provider_logo_url=self._presign_url(provider.logo_image),
        )
        self._fill_room(view, room, messages, auth_user, _parse_time_zone(time_zone))
        return view

    def provider_get_by_room_id(
        self, auth_user: Any, room_id: uuid.UUID, time_zone: str | None = None
    ) -> ProviderRoomView:
        room, messages, recipient = self._room_and_recipient(auth_user, room_id)
        try:
            consumer = self._user_repo.find_by_id(recipient.user_id)
        except NoDataError:
            raise NoDataError(f"consumer not found: user_id {recipient.user_id}") from None
        view = ProviderRoomView(
            context=ChatContext.COMMON,
            room_id=room.id,
            consumer_id=consumer.id,
            consumer_name=consumer.name,
        )
        self._fill_room(view, room, messages, auth_user, _parse_time_zone(time_zone))
        return view

    def mark_received_as_seen(
        self, auth_user: Any, room_id: uuid.UUID, message_ids: Iterable[uuid.UUID]
    ) -> None:
        """Mark messages the user received in the room as read.

        Every id must name a message received in that room.
        """
        message_ids = list(message_ids)
        if not message_ids:
            raise AppError(HTTPStatus.BAD_REQUEST, "chat_message_ids: cannot be blank")
        try:
            room = self._chat_room_repo.find_by_id(room_id)
        except NoDataError:
            raise AppError(HTTPStatus.NOT_FOUND, "chat room not found") from None

        received = self._chat_message_repo.find_received(message_ids, room.id, auth_user.id)
        read_by_id = {message.id: message.read for message in received}

        unread = []
        for message_id in message_ids:
            if message_id not in read_by_id:
                raise AppError(
                    HTTPStatus.BAD_REQUEST, f"invalid chat_message_id: {message_id}"
                )
            if not read_by_id[message_id]:
                unread.append(message_id)

        if unread:
            self._chat_message_repo.mark_as_seen(unread)