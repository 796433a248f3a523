import uuid
from datetime import datetime, timedelta, timezone

import pytest

from kelarin.chat_repository import (
    ChatMessage,
    ChatMessageRepository,
    ChatRoom,
    ChatRoomRepository,
    ChatRoomUser,
    ChatRoomUserRepository,
)
from kelarin.database import Database
from kelarin.errors import NoDataError

SCHEMA = (
    "CREATE TABLE chat_rooms (id TEXT PRIMARY KEY, service_id TEXT, offer_id TEXT, created_at TEXT)",
    "CREATE TABLE chat_room_users (chat_room_id TEXT, user_id TEXT, created_at TEXT)",
    "CREATE TABLE chat_messages (id TEXT PRIMARY KEY, chat_room_id TEXT, user_id TEXT, "
    "content TEXT, content_type TEXT, read INTEGER NOT NULL DEFAULT 0, created_at TEXT)",
)

USER_A = uuid.UUID(int=1)
USER_B = uuid.UUID(int=2)
USER_C = uuid.UUID(int=3)
ROOM_1 = uuid.UUID(int=101)
ROOM_2 = uuid.UUID(int=102)
SERVICE = uuid.UUID(int=201)
OFFER = uuid.UUID(int=301)
NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
MSG = [uuid.UUID(int=1000 + n) for n in range(5)]


class Boom(Exception):
    pass


@pytest.fixture
def db():
    database = Database()
    for statement in SCHEMA:
        database.execute(statement)
    rooms = ChatRoomRepository(database)
    members = ChatRoomUserRepository(database)
    with database.transaction() as tx:
        rooms.create(tx, ChatRoom(id=ROOM_1, created_at=NOW, service_id=SERVICE))
        rooms.create(tx, ChatRoom(id=ROOM_2, created_at=NOW, offer_id=OFFER))
        members.create(tx, [ChatRoomUser(ROOM_1, USER_A, NOW), ChatRoomUser(ROOM_1, USER_B, NOW)])
        members.create(tx, [ChatRoomUser(ROOM_2, USER_A, NOW), ChatRoomUser(ROOM_2, USER_C, NOW)])
    yield database
    database.close()


def _message(n, room, user):
    return ChatMessage(
        id=MSG[n],
        chat_room_id=room,
        user_id=user,
        content=f"message {n}",
        content_type="text",
        created_at=NOW + timedelta(minutes=n),
    )


@pytest.fixture
def messages(db):
    repo = ChatMessageRepository(db)
    created = [
        _message(1, ROOM_1, USER_A),
        _message(2, ROOM_1, USER_B),
        _message(3, ROOM_1, USER_B),
        _message(4, ROOM_2, USER_C),
    ]
    with db.transaction() as tx:
        for message in reversed(created):
            repo.create(tx, message)
    return repo, created


def test_find_room_by_id_round_trip(db):
    room = ChatRoomRepository(db).find_by_id(ROOM_1)
    assert room == ChatRoom(id=ROOM_1, created_at=NOW, service_id=SERVICE, offer_id=None)


def test_find_room_by_missing_id_raises(db):
    with pytest.raises(NoDataError):
        ChatRoomRepository(db).find_by_id(uuid.UUID(int=999))


def test_find_room_by_user_and_service(db):
    repo = ChatRoomRepository(db)
    assert repo.find_by_user_and_service(USER_B, SERVICE).id == ROOM_1
    with pytest.raises(NoDataError):
        repo.find_by_user_and_service(USER_C, SERVICE)


def test_find_room_by_user_and_offer(db):
    repo = ChatRoomRepository(db)
    assert repo.find_by_user_and_offer(USER_C, OFFER).id == ROOM_2
    with pytest.raises(NoDataError):
        repo.find_by_user_and_offer(USER_B, OFFER)


def test_room_creation_rolls_back(db):
    repo = ChatRoomRepository(db)
    new_room = uuid.UUID(int=150)
    with pytest.raises(Boom):
        with db.transaction() as tx:
            repo.create(tx, ChatRoom(id=new_room, created_at=NOW))
            raise Boom()
    with pytest.raises(NoDataError):
        repo.find_by_id(new_room)


def test_find_room_id_by_user_ids(db):
    repo = ChatRoomUserRepository(db)
    assert repo.find_room_id_by_user_ids([USER_A, USER_B]) == ROOM_1
    assert repo.find_room_id_by_user_ids([USER_C, USER_A]) == ROOM_2
    assert repo.find_room_id_by_user_ids([USER_B, USER_C]) is None


def test_find_room_id_by_no_user_ids_is_rejected(db):
    with pytest.raises(ValueError):
        ChatRoomUserRepository(db).find_room_id_by_user_ids([])


def test_find_memberships_by_user_id(db):
    memberships = ChatRoomUserRepository(db).find_by_user_id(USER_A)
    assert [m.chat_room_id for m in memberships] == [ROOM_2, ROOM_1]
    by_room = {m.chat_room_id: m for m in memberships}
    assert by_room[ROOM_1].service_id == SERVICE
    assert by_room[ROOM_1].offer_id is None
    assert by_room[ROOM_2].offer_id == OFFER
    assert all(m.user_id == USER_A for m in memberships)


def test_find_recipients(db):
    repo = ChatRoomUserRepository(db)
    recipients = repo.find_recipients(USER_A, [ROOM_1, ROOM_2])
    assert {(r.chat_room_id, r.user_id) for r in recipients} == {
        (ROOM_1, USER_B),
        (ROOM_2, USER_C),
    }
    assert repo.find_recipients(USER_A, []) == []


def test_find_recipient(db):
    repo = ChatRoomUserRepository(db)
    assert repo.find_recipient(USER_B, ROOM_1).user_id == USER_A
    with pytest.raises(NoDataError):
        repo.find_recipient(USER_A, uuid.UUID(int=999))


def test_find_by_room_and_user(db):
    repo = ChatRoomUserRepository(db)
    assert repo.find_by_room_and_user(ROOM_1, USER_A) == ChatRoomUser(ROOM_1, USER_A, NOW)
    with pytest.raises(NoDataError):
        repo.find_by_room_and_user(ROOM_1, USER_C)


def test_messages_by_room_are_in_id_order(messages):
    repo, created = messages
    found = repo.find_by_room_id(ROOM_1)
    assert found == [m for m in created if m.chat_room_id == ROOM_1]
    assert [m.id for m in found] == sorted(m.id for m in found)
    assert not any(m.read for m in found)


def test_latest_message_per_room(messages):
    repo, created = messages
    latest = repo.find_latest_by_room_ids([ROOM_1, ROOM_2])
    expected = {}
    for message in created:
        current = expected.get(message.chat_room_id)
        if current is None or str(message.id) > str(current):
            expected[message.chat_room_id] = message.id
    assert {m.chat_room_id: m.id for m in latest} == expected
    assert repo.find_latest_by_room_ids([]) == []


def test_count_unread_received(messages):
    repo, _ = messages
    counts = repo.count_unread_received(USER_A, [ROOM_1, ROOM_2])
    assert {c.chat_room_id: c.count for c in counts} == {ROOM_1: 2, ROOM_2: 1}
    assert repo.count_unread_received(USER_A, []) == []


def test_find_received_excludes_own_messages(messages):
    repo, _ = messages
    found = repo.find_received([MSG[1], MSG[2]], ROOM_1, USER_A)
    assert [m.id for m in found] == [MSG[2]]
    assert repo.find_received([MSG[4]], ROOM_1, USER_A) == []


def test_mark_as_seen(messages):
    repo, _ = messages
    before = {c.chat_room_id: c.count for c in repo.count_unread_received(USER_A, [ROOM_1])}
    repo.mark_as_seen([MSG[2]])
    after = {c.chat_room_id: c.count for c in repo.count_unread_received(USER_A, [ROOM_1])}
    assert after[ROOM_1] == before[ROOM_1] - 1
    assert repo.find_received([MSG[2]], ROOM_1, USER_A)[0].read is True


def test_mark_as_seen_with_no_ids_changes_nothing(messages):
    repo, _ = messages
    before = repo.find_by_room_id(ROOM_1)
    repo.mark_as_seen([])
    assert repo.find_by_room_id(ROOM_1) == before


def test_message_creation_rolls_back(db):
    repo = ChatMessageRepository(db)
    with pytest.raises(Boom):
        with db.transaction() as tx:
            repo.create(tx, _message(1, ROOM_1, USER_A))
            raise Boom()
    assert repo.find_by_room_id(ROOM_1) == []