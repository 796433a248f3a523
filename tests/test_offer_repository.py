import uuid
from datetime import date, datetime, time
from decimal import Decimal

import pytest

from kelarin.database import Database
from kelarin.errors import NoDataError
from kelarin.offer_repository import (
    STATUS_EXPIRED,
    STATUS_PENDING,
    Offer,
    OfferRepository,
)

SCHEMA = [
    """CREATE TABLE offers (
        id TEXT PRIMARY KEY, user_id TEXT, user_address_id TEXT, service_id TEXT,
        detail TEXT, service_cost TEXT, service_start_date TEXT,
        service_end_date TEXT, service_start_time TEXT, service_end_time TEXT,
        status TEXT, created_at TEXT)""",
    "CREATE TABLE services (id TEXT, service_provider_id TEXT, name TEXT, images TEXT)",
    "CREATE TABLE service_providers (id TEXT, name TEXT, logo_image TEXT)",
]

USER = uuid.UUID(int=100)
OTHER_USER = uuid.UUID(int=101)
PROVIDER = uuid.UUID(int=200)
OTHER_PROVIDER = uuid.UUID(int=201)
SERVICE = uuid.UUID(int=300)
OTHER_SERVICE = uuid.UUID(int=301)
ADDRESS = uuid.UUID(int=400)


@pytest.fixture
def db():
    database = Database()
    for statement in SCHEMA:
        database.execute(statement)
    database.execute("INSERT INTO service_providers VALUES ($1, $2, $3)", PROVIDER, "Bersih", "logo.png")
    database.execute("INSERT INTO service_providers VALUES ($1, $2, $3)", OTHER_PROVIDER, "Rapi", None)
    database.execute(
        "INSERT INTO services VALUES ($1, $2, $3, $4)",
        SERVICE, PROVIDER, "Cleaning", '["a.png", "b.png"]',
    )
    database.execute(
        "INSERT INTO services VALUES ($1, $2, $3, $4)",
        OTHER_SERVICE, OTHER_PROVIDER, "Gardening", '["g.png"]',
    )
    yield database
    database.close()


@pytest.fixture
def repo(db):
    return OfferRepository(db)


def make_offer(n, user=USER, service=SERVICE, status=STATUS_PENDING,
               created_at=datetime(2025, 1, 13, 10, 0), end=date(2025, 1, 20)):
    return Offer(
        id=uuid.UUID(int=n),
        user_id=user,
        user_address_id=ADDRESS,
        service_id=service,
        detail=f"offer {n}",
        service_cost=Decimal("150000.50"),
        service_start_date=date(2025, 1, 15),
        service_end_date=end,
        service_start_time=time(9, 0),
        service_end_time=time(17, 30),
        status=status,
        created_at=created_at,
    )


def add(db, repo, *offers):
    with db.transaction() as tx:
        for offer in offers:
            repo.create(tx, offer)


def test_create_and_find_by_id_round_trip(db, repo):
    offer = make_offer(1)
    add(db, repo, offer)
    assert repo.find_by_id(offer.id) == offer


def test_find_by_id_missing_raises(repo):
    with pytest.raises(NoDataError):
        repo.find_by_id(uuid.UUID(int=999))


def test_find_by_id_and_user(db, repo):
    offer = make_offer(1)
    add(db, repo, offer)
    assert repo.find_by_id_and_user(offer.id, USER) == offer
    with pytest.raises(NoDataError):
        repo.find_by_id_and_user(offer.id, OTHER_USER)


def test_find_by_id_and_provider(db, repo):
    offer = make_offer(1)
    add(db, repo, offer)
    assert repo.find_by_id_and_provider(offer.id, PROVIDER) == offer
    with pytest.raises(NoDataError):
        repo.find_by_id_and_provider(offer.id, OTHER_PROVIDER)


def test_pending_offer_exists(db, repo):
    add(db, repo, make_offer(1), make_offer(2, service=OTHER_SERVICE, status="accepted"))
    assert repo.pending_offer_exists(USER, SERVICE) is True
    assert repo.pending_offer_exists(USER, OTHER_SERVICE) is False
    assert repo.pending_offer_exists(OTHER_USER, SERVICE) is False


def test_find_all_by_user_id_joins_service_and_provider(db, repo):
    add(db, repo, make_offer(1), make_offer(2, service=OTHER_SERVICE), make_offer(3, user=OTHER_USER))
    found = repo.find_all_by_user_id(USER)
    assert [item.offer.id for item in found] == [uuid.UUID(int=2), uuid.UUID(int=1)]
    last = found[1]
    assert last.service_name == "Cleaning"
    assert last.service_image == "a.png"
    assert last.service_provider_id == PROVIDER
    assert last.service_provider_name == "Bersih"
    assert last.service_provider_logo_image == "logo.png"


def test_update_changes_fields(db, repo):
    offer = make_offer(1)
    add(db, repo, offer)
    offer.detail = "changed"
    offer.service_cost = Decimal("99000")
    offer.service_end_time = time(18, 0)
    offer.status = "accepted"
    with db.transaction() as tx:
        repo.update(tx, offer)
    assert repo.find_by_id(offer.id) == offer


def test_find_all_by_provider(db, repo):
    add(db, repo, make_offer(1), make_offer(2, user=OTHER_USER), make_offer(3, service=OTHER_SERVICE))
    ids = [offer.id for offer in repo.find_all_by_provider(PROVIDER)]
    assert ids == [uuid.UUID(int=2), uuid.UUID(int=1)]


def test_report_by_provider_total_matches_days(db, repo):
    add(
        db, repo,
        make_offer(1, created_at=datetime(2025, 1, 13, 8, 0)),
        make_offer(2, created_at=datetime(2025, 1, 13, 15, 0)),
        make_offer(3, created_at=datetime(2025, 1, 20, 9, 0)),
        make_offer(4, created_at=datetime(2025, 2, 1, 9, 0)),
        make_offer(5, service=OTHER_SERVICE, created_at=datetime(2025, 1, 13, 9, 0)),
    )
    total, days = repo.report_by_provider(PROVIDER, 1, 2025)
    assert total == sum(day.count for day in days)
    assert [day.date for day in days] == [date(2025, 1, 13), date(2025, 1, 20)]
    assert total == 3


def test_report_by_provider_empty_month(db, repo):
    add(db, repo, make_offer(1))
    total, days = repo.report_by_provider(PROVIDER, 6, 2025)
    assert (total, days) == (0, [])


def test_count_by_status(db, repo):
    add(
        db, repo,
        make_offer(1),
        make_offer(2, status="accepted"),
        make_offer(3, status="accepted"),
        make_offer(4, status="accepted", created_at=datetime(2024, 1, 2)),
    )
    counts = repo.count_by_status(PROVIDER, 1, 2025)
    assert counts == {STATUS_PENDING: 1, "accepted": 2}


def test_iter_expired_ids(db, repo):
    add(
        db, repo,
        make_offer(1, end=date(2025, 1, 10)),
        make_offer(2, end=date(2025, 1, 20)),
        make_offer(3, end=date(2025, 1, 5), status="accepted"),
        make_offer(4, end=date(2025, 1, 15)),
    )
    ids = set(repo.iter_expired_ids(date(2025, 1, 15)))
    assert ids == {uuid.UUID(int=1), uuid.UUID(int=4)}


def test_mark_expired(db, repo):
    add(db, repo, make_offer(1), make_offer(2))
    with db.transaction() as tx:
        repo.mark_expired(tx, [uuid.UUID(int=1)])
    assert repo.find_by_id(uuid.UUID(int=1)).status == STATUS_EXPIRED
    assert repo.find_by_id(uuid.UUID(int=2)).status == STATUS_PENDING
    assert list(repo.iter_expired_ids(date(2030, 1, 1))) == [uuid.UUID(int=2)]