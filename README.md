# kelarin

Building blocks for the back end of a marketplace where consumers hire
service providers: a small SQLite data-access layer with one repository per
table, and the chat services that sit on top of it. It has no third-party
dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Quick start

```python
from kelarin.database import Database
from kelarin.city import CityRepository, CityService

db = Database()  # in-memory SQLite; pass a file path to keep the data
db.execute("CREATE TABLE cities (id INTEGER PRIMARY KEY, province_id INTEGER, name TEXT)")
db.execute("INSERT INTO cities VALUES ($1, $2, $3)", 1, 31, "Jakarta Selatan")

cities = CityRepository(db)
print(cities.find_by_province_and_name(31, "jakarta"))
print(CityService(cities).get_by_province_id(31))
```

## Errors

- `kelarin.errors.NoDataError` (a `LookupError`) is raised by lookups that
  expect a single row and find none.
- `kelarin.errors.AppError` carries an HTTP status `code` and a `message`
  for failures meant for the client, such as a missing chat room (404), a
  forbidden action (403) or invalid input (400). Without a message, its text
  is the status phrase.

## Database access

`kelarin.database.Database(path=":memory:")` wraps an SQLite connection and
returns rows as dictionaries:

- `fetch_one(query, *args)` gives the first row or `None`;
  `fetch_all(query, *args)` gives every row; `fetch_value(query, *args)`
  gives the first column of the first row or `None`.
- `execute(query, *args)` runs a statement and returns the number of
  affected rows.
- `execute_named(query, params)` runs a statement with `:name` placeholders,
  once for a mapping or once per mapping for a non-empty list of them.
- `transaction()` is a context manager that commits when the block ends and
  rolls back when it raises; nested transactions raise `RuntimeError`.

Queries may use `$1`, `$2`, ... placeholders; `rebind(query)` rewrites them
to SQLite's `?1`, `?2`, ... form, leaving quoted strings alone. `expand_in
(query, *args)` expands every `?` bound to a list or tuple into one
placeholder per item and returns the new query with the flattened
arguments; it raises `ValueError` for an empty list or a mismatch between
placeholders and arguments.

Values are stored the way SQLite holds them: UUIDs, dates, times and
decimals as text, booleans as integers, enums by value. Service images,
rules and delivery methods are stored as JSON text.

## Repositories

Each repository takes a `Database` and returns dataclasses:

| Module | Repository | Records |
| --- | --- | --- |
| `kelarin.chat_repository` | `ChatMessageRepository`, `ChatRoomRepository`, `ChatRoomUserRepository` | `ChatMessage`, `ChatMessageUnreadCount`, `ChatRoom`, `ChatRoomUser`, `ChatRoomUserWithContext` |
| `kelarin.user_repository` | `UserRepository` | `User` |
| `kelarin.service_repository` | `ServiceRepository` | `Service` |
| `kelarin.service_provider_repository` | `ServiceProviderRepository` | `ServiceProvider` |
| `kelarin.offer_repository` | `OfferRepository` | `Offer`, `OfferWithServiceAndProvider`, `OfferForReport` |
| `kelarin.city` | `CityRepository`, `CityService` | `City` |
| `kelarin.consumer_notification_repository` | `ConsumerNotificationRepository` | `ConsumerNotification`, `ConsumerNotificationDetail` |
| `kelarin.order_repository` | `OrderRepository` | `Order`, `OrderWithRelations`, `OrderWithUserAndServiceProvider`, `OrderWithServiceAndServiceProvider`, `OrderForReport`, `OrderForReportExport` |

Methods that look up one record raise `NoDataError` when nothing matches;
methods that return lists return an empty list instead, also when given no
ids. `ChatRoomUserRepository.find_room_id_by_user_ids` returns `None` when
no room holds all the given users.

Most write methods take the `Database` they should write through as `tx`,
usually the one yielded by `Database.transaction()`.
`UserRepository.create(user, tx=None)` writes through the repository's own
database when no `tx` is given, and
`ServiceProviderRepository.update_credit(provider)` always does.
`ServiceRepository.delete` only marks a service deleted; lookups by
provider and by id list leave deleted services out, `find_by_id` does not.

Monthly reporting: `OfferRepository.report_by_provider` and
`OrderRepository.report_by_provider` return the month's total and a count
per day; `count_by_status` on both returns a status-to-count dictionary;
`OrderRepository.total_service_fee` and `sum_service_fee` sum the fees of
orders with a given status in the month (zero when there are none);
`OrderRepository.export_by_provider` returns rows for an order export.

Scheduled clean-up: `OfferRepository.iter_expired_ids(today=None)` yields
pending offers whose end date has come and `mark_expired` sets them to
expired; `OrderRepository.find_expired_ids(today=None)` and
`find_ongoing_ids(day)` find pending orders before or on a date, and
`update_status_by_ids` changes their status. `today` defaults to the
current UTC date.

`CityService.get_by_province_id` raises `AppError` (400) for a blank
province id.

## Chat

`kelarin.chat_service.ChatMessagingService` handles the real-time side.
`handle_inbound_message(client)` reads messages from a `WsClient` until its
connection fails. Each message is parsed with `ChatSendMessage.from_json`
(it needs `content`, `content_type` and a `room_id` or
`service_provider_id`), stored with `save_sent_message` and, when the
recipient is connected in the `WsHub`, forwarded to them as a
`chat_incoming_message`. Every reply to the sender is a `WsResponse`
encoded by `to_bytes()`, whose `code` is one of `WsResponseCode`.
Recipients that are not in the hub, or whose `ping()` raises
`ConnectionClosed`, are reported as offline; the message is still saved.

A connection is any object with `read_message()`, `write_message(data)`,
`ping()` and `close()`; an `AuthUser` holds the user id and role
(`"consumer"` or `"service_provider"`).

`save_sent_message` opens a room first when no room id is given.
`create_chat_room(ChatRoomCreateRequest(...))` opens a room between two
users, or about a service (consumers only) or an offer; a room the user
already has for that service or offer is reused.

`kelarin.chat_inbox.ChatInboxService` serves the inbox views. It is given
the repositories and a `presign_url` function that turns a stored logo
name into a URL.

- `consumer_get_all` / `provider_get_all` list a user's rooms as
  `ConsumerChatSummary` / `ProviderChatSummary`, with the unread count and
  the `LatestMessage`.
- `consumer_get_by_room_id` / `provider_get_by_room_id` return a
  `ConsumerRoomView` / `ProviderRoomView` with every `RoomMessage` and, when
  the room is about an order or a service, its `RoomOrder` or
  `RoomService`; `ChatContext` says which.
- `mark_received_as_seen` marks received messages read and raises
  `AppError` (400) for an empty list or any id that is not a message the
  user received in the room.

Times are shown in the IANA time zone passed as `time_zone` (UTC when none
is given); an unknown zone raises `AppError` (400).

## What the package does not do

- It serves no HTTP routes and runs no websocket server: callers supply the
  connections and call the services themselves.
- It creates no tables and ships no migrations; the schema must exist
  before the repositories are used.
- It stores no files and signs no URLs; `ChatInboxService` relies on the
  `presign_url` function it is given.
- It has no payments, search index or push notifications beyond the
  records the repositories read and write.