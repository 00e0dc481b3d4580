"""
Tests for the Supabase store.

The supabase-py client is replaced with a small in-memory imitation of its
query builder, so the PostgREST call chains run without a network.
"""

from types import SimpleNamespace

import pytest

from lastwish.audit import create_correlation_id
from lastwish.config.settings import SupabaseSettings
from lastwish.models.audit import AuditEventBuilder
from lastwish.models.delivery import DeliveryRecord, DeliveryStatus
from lastwish.models.settings import DataCategory
from lastwish.services.sources import SupabaseTableSource, create_supabase_sources
from lastwish.services.storage import (
    InvalidTransitionError,
    NotFoundError,
    SupabaseAuditStorage,
    SupabaseClient,
    SupabaseStore,
)

from conftest import T0, make_settings


class FakeQuery:
    """
    Just enough of the PostgREST query builder.

    Like postgrest-py, `limit` and `range` append to the request params
    rather than replacing them, and the server honours the first value.
    """

    def __init__(self, rows: list[dict], requests: list[list[tuple]]):
        self._rows = rows
        self._requests = requests
        self.params: list[tuple] = []
        self._filters = []
        self._op = "select"
        self._values = None
        self._order = None

    def select(self, *columns):
        return self

    def eq(self, column, value):
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def gt(self, column, value):
        self._filters.append(lambda r: r.get(column) > value)
        return self

    def gte(self, column, value):
        self._filters.append(lambda r: r.get(column) >= value)
        return self

    def lte(self, column, value):
        self._filters.append(lambda r: r.get(column) <= value)
        return self

    def in_(self, column, values):
        self._filters.append(lambda r: r.get(column) in values)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self.params.append(("limit", n))
        return self

    def range(self, start, end):
        self.params.append(("offset", start))
        self.params.append(("limit", end - start + 1))
        return self

    def _param(self, key):
        return next((v for k, v in self.params if k == key), None)

    def update(self, values):
        self._op = "update"
        self._values = values
        return self

    def insert(self, row):
        self._op = "insert"
        self._values = row
        return self

    def execute(self):
        self._requests.append(list(self.params))
        if self._op == "insert":
            self._rows.append(dict(self._values))
            return SimpleNamespace(data=[dict(self._values)])

        matched = [r for r in self._rows if all(f(r) for f in self._filters)]
        if self._op == "update":
            for row in matched:
                row.update(self._values)
            return SimpleNamespace(data=[dict(r) for r in matched])

        if self._order:
            column, desc = self._order
            matched.sort(key=lambda r: r.get(column), reverse=desc)
        offset = self._param("offset") or 0
        limit = self._param("limit")
        matched = matched[offset:]
        if limit is not None:
            matched = matched[:limit]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.requests: list[list[tuple]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self.tables.setdefault(name, []), self.requests)


@pytest.fixture
def fake() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def client(fake) -> SupabaseClient:
    wrapper = SupabaseClient(SupabaseSettings(
        url="https://example.supabase.co/",
        service_key="service-key",
        page_size=2,
    ))
    wrapper._client = fake
    return wrapper


def _seed(fake: FakeSupabase, *settings) -> None:
    fake.tables["last_wish_settings"] = [s.to_row() for s in settings]


class TestSupabaseStore:
    """Settings reads and the conditional update."""

    @pytest.mark.asyncio
    async def test_scan_pages_through_all_rows(self, fake, client):
        """Test the keyset scan returns every matching row across pages."""
        _seed(fake, *(make_settings(f"u{i}") for i in range(5)), make_settings("off", is_enabled=False))

        rows = await SupabaseStore(client).get_settings_where(True, True, False)

        assert sorted(r["user_id"] for r in rows) == ["u0", "u1", "u2", "u3", "u4"]

    @pytest.mark.asyncio
    async def test_get_settings(self, fake, client):
        """Test a single row read and a missing row."""
        _seed(fake, make_settings("u1"))
        store = SupabaseStore(client)
        assert (await store.get_settings("u1"))["user_id"] == "u1"
        assert await store.get_settings("ghost") is None

    @pytest.mark.asyncio
    async def test_conditional_update_is_compare_and_set(self, fake, client):
        """Test only the first claim changes the row."""
        _seed(fake, make_settings("u1"))
        store = SupabaseStore(client)

        assert await store.conditional_update("u1", {"delivery_triggered": True}, False) is True
        assert await store.conditional_update("u1", {"delivery_triggered": True}, False) is False
        assert fake.tables["last_wish_settings"][0]["delivery_triggered"] is True

    @pytest.mark.asyncio
    async def test_update_check_in(self, fake, client):
        """Test a check-in clears the flag and returns the row."""
        _seed(fake, make_settings("u1", delivery_triggered=True))

        row = await SupabaseStore(client).update_check_in("u1", T0)

        assert row["delivery_triggered"] is False
        assert row["last_check_in"] == T0.isoformat()
        with pytest.raises(NotFoundError):
            await SupabaseStore(client).update_check_in("ghost", T0)

    @pytest.mark.asyncio
    async def test_profiles_batch(self, fake, client):
        """Test profiles are keyed by user id."""
        fake.tables["profiles"] = [
            {"user_id": "u1", "email": "one@example.com"},
            {"user_id": "u2", "email": "two@example.com"},
        ]
        profiles = await SupabaseStore(client).get_user_profiles(["u1", "u1", "u3"])
        assert profiles == {"u1": {"user_id": "u1", "email": "one@example.com"}}


class TestSupabaseDeliveryLog:
    """Delivery records in Supabase."""

    @pytest.mark.asyncio
    async def test_insert_and_transition(self, fake, client):
        """Test pending -> sent, then no further change."""
        store = SupabaseStore(client)
        record = await store.insert_delivery_record(
            DeliveryRecord(user_id="u1", recipient_email="a@example.com", episode_check_in=T0)
        )
        assert record.delivery_status == DeliveryStatus.PENDING

        assert await store.update_delivery_status(record.id, DeliveryStatus.SENT, sent_at=T0)
        with pytest.raises(InvalidTransitionError):
            await store.update_delivery_status(record.id, DeliveryStatus.FAILED)

        listed = await store.list_delivery_records("u1")
        assert listed[0].delivery_status == DeliveryStatus.SENT
        assert listed[0].sent_at == T0

    @pytest.mark.asyncio
    async def test_update_missing_record(self, client):
        """Test updating a record that does not exist."""
        record = DeliveryRecord(user_id="u1", recipient_email="a@example.com")
        with pytest.raises(NotFoundError):
            await SupabaseStore(client).update_delivery_status(record.id, DeliveryStatus.SENT)


class TestSupabaseSources:
    """Category tables."""

    @pytest.mark.asyncio
    async def test_fetch_reads_all_pages(self, fake, client):
        """Test a category read paginates and filters by user."""
        fake.tables["accounts"] = [
            {"user_id": "u1", "id": i, "created_at": f"2025-01-0{i + 1}"} for i in range(5)
        ] + [{"user_id": "u2", "id": 99, "created_at": "2025-01-01"}]

        rows = await SupabaseTableSource("accounts", client).fetch("u1")

        assert [r["id"] for r in rows] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_each_page_sends_a_single_range(self, fake, client):
        """Test later pages do not carry earlier pages' offsets."""
        fake.tables["transactions"] = [
            {"user_id": "u1", "id": i, "created_at": f"2025-01-0{i + 1}"} for i in range(5)
        ]

        rows = await SupabaseTableSource("transactions", client).fetch("u1")

        assert len(rows) == 5
        assert fake.requests == [
            [("offset", 0), ("limit", 2)],
            [("offset", 2), ("limit", 2)],
            [("offset", 4), ("limit", 2)],
        ]

    def test_savings_table_name(self, client):
        """Test savings are read from the donation/saving table."""
        sources = create_supabase_sources(client)
        assert sources[DataCategory.SAVINGS].table_name == "donation_saving_records"
        assert DataCategory.ANALYTICS not in sources


class TestSupabaseAuditStorage:
    """Audit rows round-trip through the audit table."""

    @pytest.mark.asyncio
    async def test_append_and_read(self, client):
        """Test an appended event is read back by correlation id."""
        storage = SupabaseAuditStorage(client)
        event = AuditEventBuilder.claim_lost("u1", correlation_id=create_correlation_id())

        assert await storage.append_event(event) is True

        events = await storage.get_events_by_correlation_id(event.correlation_id)
        assert [e.event_id for e in events] == [event.event_id]

    @pytest.mark.asyncio
    async def test_append_failure_returns_false_at_once(self, fake, client, monkeypatch):
        """Test a failed audit insert is reported, not raised or retried."""
        calls = []

        def failing_insert(self, row):
            calls.append(row)
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(FakeQuery, "insert", failing_insert)
        storage = SupabaseAuditStorage(client)
        event = AuditEventBuilder.claim_lost("u1", correlation_id=create_correlation_id())

        assert await storage.append_event(event) is False
        assert len(calls) == 1
