import json
import uuid
from types import SimpleNamespace

import pytest

from kelarin.chat_service import (
    RESPONSE_TYPE_INCOMING_MESSAGE,
    ROLE_CONSUMER,
    ROLE_SERVICE_PROVIDER,
    AuthUser,
    ChatMessagingService,
    ChatRoomCreateRequest,
    ChatSendMessage,
    ConnectionClosed,
    WsClient,
    WsHub,
    WsResponse,
    WsResponseCode,
)
from kelarin.database import Database
from kelarin.errors import AppError, NoDataError


class FakeConn:
    def __init__(self, inbound=(), ping_error=None):
        self.inbound = list(inbound)
        self.sent = []
        self.closed = False
        self.ping_error = ping_error

    def read_message(self):
        if not self.inbound:
            raise ConnectionError("gone")
        return self.inbound.pop(0)

    def write_message(self, data):
        self.sent.append(json.loads(data))

    def ping(self):
        if self.ping_error is not None:
            raise self.ping_error

    def close(self):
        self.closed = True


class FakeUsers:
    def __init__(self, *users):
        self.users = {u.id: u for u in users}

    def find_by_id(self, user_id):
        if user_id not in self.users:
            raise NoDataError()
        return self.users[user_id]


class FakeProviders:
    def __init__(self, *providers):
        self.providers = list(providers)

    def find_by_id(self, provider_id):
        for p in self.providers:
            if p.id == provider_id:
                return p
        raise NoDataError()

    def find_by_user_id(self, user_id):
        for p in self.providers:
            if p.user_id == user_id:
                return p
        raise NoDataError()


class FakeRooms:
    def __init__(self):
        self.rooms = {}
        self.by_service = {}
        self.by_offer = {}

    def find_by_id(self, room_id):
        if room_id not in self.rooms:
            raise NoDataError()
        return self.rooms[room_id]

    def create(self, tx, room):
        self.rooms[room.id] = room

    def find_by_user_and_service(self, user_id, service_id):
        if (user_id, service_id) not in self.by_service:
            raise NoDataError()
        return self.by_service[(user_id, service_id)]

    def find_by_user_and_offer(self, user_id, offer_id):
        if (user_id, offer_id) not in self.by_offer:
            raise NoDataError()
        return self.by_offer[(user_id, offer_id)]


class FakeMembers:
    def __init__(self):
        self.members = []

    def create(self, tx, members):
        self.members.extend(members)

    def find_by_room_and_user(self, room_id, user_id):
        for m in self.members:
            if m.chat_room_id == room_id and m.user_id == user_id:
                return m
        raise NoDataError()

    def find_recipients(self, user_id, room_ids):
        return [m for m in self.members if m.chat_room_id in room_ids and m.user_id != user_id]


class FakeMessages:
    def __init__(self):
        self.messages = []

    def create(self, tx, message):
        self.messages.append(message)


class FakeServices:
    def __init__(self, *services):
        self.services = {s.id: s for s in services}

    def find_by_id(self, service_id):
        if service_id not in self.services:
            raise NoDataError()
        return self.services[service_id]


class FakeOffers:
    def find_by_id_and_user(self, offer_id, user_id):
        raise NoDataError()

    def find_by_id_and_provider(self, offer_id, provider_id):
        raise NoDataError()


@pytest.fixture
def world():
    consumer = SimpleNamespace(id=uuid.uuid4(), role=ROLE_CONSUMER)
    provider_user = SimpleNamespace(id=uuid.uuid4(), role=ROLE_SERVICE_PROVIDER)
    provider = SimpleNamespace(id=uuid.uuid4(), user_id=provider_user.id)
    service = SimpleNamespace(id=uuid.uuid4(), service_provider_id=provider.id)
    parts = SimpleNamespace(
        db=Database(),
        users=FakeUsers(consumer, provider_user),
        providers=FakeProviders(provider),
        rooms=FakeRooms(),
        members=FakeMembers(),
        messages=FakeMessages(),
        services=FakeServices(service),
        offers=FakeOffers(),
        hub=WsHub(),
        consumer=consumer,
        provider_user=provider_user,
        provider=provider,
        service=service,
    )
    parts.svc = ChatMessagingService(
        parts.db,
        parts.services,
        parts.users,
        parts.rooms,
        parts.members,
        parts.messages,
        parts.hub,
        parts.offers,
        parts.providers,
    )
    yield parts
    parts.db.close()


def _msg(**fields):
    return json.dumps(fields).encode()


def test_ws_response_to_bytes_omits_empty_fields():
    payload = json.loads(WsResponse(success=True, code=WsResponseCode.SUCCESS, message="success").to_bytes())
    assert payload["success"] is True
    assert payload["message"] == "success"
    assert payload["code"] == WsResponseCode.SUCCESS.value
    assert "data" not in payload and "errors" not in payload


def test_send_message_parsing_and_validation():
    sender = uuid.uuid4()
    room = uuid.uuid4()
    parsed = ChatSendMessage.from_json(_msg(id="m1", room_id=str(room), content="hi", content_type="text"), sender)
    assert parsed.room_id == room
    assert parsed.sender_user_id == sender
    with pytest.raises(ValueError) as excinfo:
        ChatSendMessage.from_json(_msg(room_id=str(room), content_type="text"), sender)
    assert "content" in excinfo.value.errors
    with pytest.raises(ValueError):
        ChatSendMessage.from_json(b"not json", sender)


def test_bad_json_then_read_error(world):
    conn = FakeConn([b"{oops"])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.consumer.id, ROLE_CONSUMER)))
    assert conn.sent[0]["message"] == "error parsing message"
    assert conn.sent[0]["code"] == WsResponseCode.CLIENT_ERROR.value
    assert conn.sent[-1]["message"] == "error reading message"
    assert conn.closed


def test_cannot_message_yourself(world):
    conn = FakeConn([_msg(service_provider_id=str(world.provider.id), content="hi", content_type="text")])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.provider_user.id, ROLE_SERVICE_PROVIDER)))
    assert conn.sent[0]["message"] == "cannot send message to yourself"
    assert world.messages.messages == []


def test_unknown_room(world):
    conn = FakeConn([_msg(room_id=str(uuid.uuid4()), content="hi", content_type="text")])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.consumer.id, ROLE_CONSUMER)))
    assert conn.sent[0]["code"] == WsResponseCode.CHAT_ROOM_NOT_FOUND.value


def test_offline_recipient_gets_room_created(world):
    conn = FakeConn([_msg(id="abc", service_provider_id=str(world.provider.id), content="hello", content_type="text")])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.consumer.id, ROLE_CONSUMER)))
    first = conn.sent[0]
    assert first["success"] is True
    assert first["code"] == WsResponseCode.CHAT_RECIPIENT_OFFLINE.value
    assert first["metadata"] == {"id": "abc"}
    assert len(world.rooms.rooms) == 1
    assert {m.user_id for m in world.members.members} == {world.consumer.id, world.provider_user.id}
    assert world.messages.messages[0].content == "hello"


def test_online_recipient_receives_message(world):
    target = FakeConn()
    world.hub.clients[str(world.provider_user.id)] = WsClient(target, AuthUser(world.provider_user.id, ROLE_SERVICE_PROVIDER))
    conn = FakeConn([_msg(id="x", service_provider_id=str(world.provider.id), content="hello", content_type="text")])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.consumer.id, ROLE_CONSUMER)))
    incoming = target.sent[0]
    assert incoming["type"] == RESPONSE_TYPE_INCOMING_MESSAGE
    assert incoming["data"]["content"] == "hello"
    assert incoming["data"]["message_id"] == str(world.messages.messages[0].id)
    assert conn.sent[0]["code"] == WsResponseCode.SUCCESS.value


def test_closed_recipient_counts_as_offline(world):
    target = FakeConn(ping_error=ConnectionClosed())
    world.hub.clients[str(world.provider_user.id)] = WsClient(target, AuthUser(world.provider_user.id, ROLE_SERVICE_PROVIDER))
    conn = FakeConn([_msg(service_provider_id=str(world.provider.id), content="hi", content_type="text")])
    world.svc.handle_inbound_message(WsClient(conn, AuthUser(world.consumer.id, ROLE_CONSUMER)))
    assert conn.sent[0]["code"] == WsResponseCode.CHAT_RECIPIENT_OFFLINE.value
    assert target.sent == []


def test_save_in_existing_room_reuses_it(world):
    auth = AuthUser(world.consumer.id, ROLE_CONSUMER)
    room_id, _, _ = world.svc.save_sent_message(auth, None, world.provider_user.id, "one", "text")
    again, message_id, _ = world.svc.save_sent_message(auth, room_id, None, "two", "text")
    assert again == room_id
    assert len(world.rooms.rooms) == 1
    assert world.messages.messages[-1].id == message_id


def test_create_room_for_service_reuses_existing(world):
    existing = SimpleNamespace(id=uuid.uuid4())
    world.rooms.by_service[(world.consumer.id, world.service.id)] = existing
    request = ChatRoomCreateRequest(AuthUser(world.consumer.id, ROLE_CONSUMER), service_id=world.service.id)
    assert world.svc.create_chat_room(request) == existing.id
    assert world.rooms.rooms == {}


def test_create_room_for_service_requires_consumer(world):
    request = ChatRoomCreateRequest(AuthUser(world.provider_user.id, ROLE_SERVICE_PROVIDER), service_id=world.service.id)
    with pytest.raises(AppError) as excinfo:
        world.svc.create_chat_room(request)
    assert excinfo.value.code == 403


def test_create_room_for_unknown_offer(world):
    request = ChatRoomCreateRequest(AuthUser(world.consumer.id, ROLE_CONSUMER), offer_id=uuid.uuid4())
    with pytest.raises(AppError) as excinfo:
        world.svc.create_chat_room(request)
    assert excinfo.value.code == 404
    assert excinfo.value.message == "offer not found"


def test_create_room_for_service_stores_members(world):
    request = ChatRoomCreateRequest(AuthUser(world.consumer.id, ROLE_CONSUMER), service_id=world.service.id)
    room_id = world.svc.create_chat_room(request)
    assert world.rooms.rooms[room_id].service_id == world.service.id
    assert [m.user_id for m in world.members.members] == [world.consumer.id, world.provider_user.id]
    assert room_id.version == 7