"""Tests for QuoteService: content, lifecycle, notifications and trash."""

import smtplib
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from quotetrack.core.events import (
    BaseEvent,
    QuoteCreatedEvent,
    QuotePurgedEvent,
    QuoteTransitionEvent,
    QuoteTrashedEvent,
)
from quotetrack.core.lifecycle import EventRecorder, SqlQuoteStore
from quotetrack.core.notifications import NotificationDispatcher, NotificationInbox
from quotetrack.core.quotes import Actor, ClientInfo, QuoteService
from quotetrack.exceptions import (
    AlreadyTerminalError,
    PermissionDeniedError,
    QuoteDeliveryError,
    QuoteLockedError,
    QuoteNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from quotetrack.storage.database.models import (
    Notification,
    Quote,
    QuoteEvent,
    QuoteEventKind,
    QuoteStatus,
)

SALES = Actor(email="sales@example.com")
ADMIN = Actor(email="boss@example.com", is_admin=True)
STRANGER = Actor(email="someone@example.com")


def kinds_of(db, quote_id):
    rows = db.scalars(
        select(QuoteEvent.kind).where(QuoteEvent.quote_id == quote_id).order_by(QuoteEvent.id)
    )
    return list(rows)


@pytest.fixture
def published(event_bus):
    events: list[BaseEvent] = []
    event_bus.subscribe(BaseEvent, events.append)
    return events


class TestCreateQuote:
    def test_creates_draft_with_totals(self, db_session, quote_service, sample_items, published):
        quote = quote_service.create_quote(
            db_session,
            ClientInfo(name="  Jane Homeowner ", email="jane@example.com"),
            sample_items,
            notes="Measure again before ordering",
            created_by="sales@example.com",
        )

        assert quote.client_name == "Jane Homeowner"
        assert quote.status is QuoteStatus.DRAFT
        assert quote.subtotal == Decimal("2799.99")
        assert quote.total == Decimal("2799.99")
        assert [item.position for item in quote.line_items] == [1, 2]
        assert quote.line_items[0].line_total == Decimal("900.00")
        assert kinds_of(db_session, quote.id) == [QuoteEventKind.CREATED]
        assert quote.status_timestamps.keys() == {"draft"}
        assert [type(e) for e in published] == [QuoteCreatedEvent]

    def test_tax_is_rounded_to_cents(self, db_session, quote_service, sample_items):
        quote = quote_service.create_quote(
            db_session, {"name": "Jane"}, sample_items, tax_rate="8.25"
        )

        assert quote.tax == Decimal("231.00")
        assert quote.total == Decimal("3030.99")

    def test_accepts_client_mapping_and_display_name(self, db_session, quote_service):
        quote = quote_service.create_quote(
            db_session,
            {"name": "Bob Builder", "phone": "555-0199"},
            [{"item_type": "door", "unit_price": 300}],
            display_name="Back door",
        )

        assert quote.label == "Back door"
        assert quote.client_phone == "555-0199"
        assert quote.total == Decimal("300.00")

    @pytest.mark.parametrize(
        "client,items",
        [
            ({"name": "  "}, [{"item_type": "window", "unit_price": 1}]),
            ({"name": "Jane"}, [{"item_type": "", "unit_price": 1}]),
            ({"name": "Jane"}, [{"item_type": "window", "quantity": 0, "unit_price": 1}]),
            ({"name": "Jane"}, [{"item_type": "window", "quantity": "two", "unit_price": 1}]),
            ({"name": "Jane"}, [{"item_type": "window", "unit_price": -5}]),
            ({"name": "Jane"}, [{"item_type": "window", "unit_price": "cheap"}]),
        ],
    )
    def test_invalid_input(self, db_session, quote_service, client, items):
        with pytest.raises(ValidationError):
            quote_service.create_quote(db_session, client, items)

        db_session.rollback()
        assert db_session.scalar(select(Quote.id)) is None

    def test_tax_rate_out_of_range(self, db_session, quote_service, sample_items):
        with pytest.raises(ValidationError):
            quote_service.create_quote(db_session, {"name": "Jane"}, sample_items, tax_rate=120)


class TestUpdateQuote:
    def test_replaces_line_items(self, db_session, quote_service, sample_quote):
        quote = quote_service.update_quote(
            db_session,
            sample_quote.id,
            line_items=[{"item_type": "window", "quantity": 3, "unit_price": "100"}],
            notes="Revised",
        )

        assert len(quote.line_items) == 1
        assert quote.total == Decimal("300.00")
        assert quote.notes == "Revised"

    def test_tax_change_recomputes_totals(self, db_session, quote_service, sample_quote):
        quote = quote_service.update_quote(db_session, sample_quote.id, tax_rate=10)

        assert quote.tax == Decimal("280.00")
        assert quote.total == Decimal("3079.99")

    def test_does_not_touch_status(self, db_session, quote_service, sample_quote):
        quote_service.request_transition(db_session, sample_quote.id, QuoteEventKind.SENT)

        quote = quote_service.update_quote(db_session, sample_quote.id, notes="n")

        assert quote.status is QuoteStatus.SENT

    @pytest.mark.parametrize("kind", [QuoteEventKind.SIGNED, QuoteEventKind.DECLINED])
    def test_terminal_quote_is_locked(self, db_session, quote_service, sample_quote, kind):
        quote_service.request_transition(db_session, sample_quote.id, kind)

        with pytest.raises(QuoteLockedError):
            quote_service.update_quote(db_session, sample_quote.id, notes="too late")

    def test_unknown_quote(self, db_session, quote_service):
        with pytest.raises(QuoteNotFoundError):
            quote_service.update_quote(db_session, "missing", notes="x")


class TestSendQuote:
    def test_send_records_sent(self, db_session, quote_service, sample_quote, mailer):
        outcome = quote_service.send_quote(db_session, sample_quote.id, actor=SALES)

        mailer.send_quote.assert_called_once()
        _, recipient, link = mailer.send_quote.call_args.args
        assert recipient == "jane@example.com"
        assert link == f"https://quotes.example.com/view-quote?id={sample_quote.id}"
        assert outcome.status is QuoteStatus.SENT
        assert outcome.notification is None

        summary = quote_service.get_status_summary(db_session, sample_quote.id)
        assert summary.sent_at is not None

    def test_delivery_failure_records_send_failed(
        self, db_session, quote_service, sample_quote, mailer
    ):
        mailer.send_quote.side_effect = smtplib.SMTPException("relay denied")

        with pytest.raises(QuoteDeliveryError) as exc_info:
            quote_service.send_quote(db_session, sample_quote.id)

        assert exc_info.value.retryable
        summary = quote_service.get_status_summary(db_session, sample_quote.id)
        assert summary.status is QuoteStatus.DRAFT
        assert summary.send_failures == 1

    def test_missing_recipient(self, db_session, quote_service, mailer):
        quote = quote_service.create_quote(
            db_session, {"name": "No Email"}, [{"item_type": "window", "unit_price": 1}]
        )

        with pytest.raises(ValidationError):
            quote_service.send_quote(db_session, quote.id)

        mailer.send_quote.assert_not_called()


class TestTransitions:
    def test_first_open_notifies_once(
        self, db_session, quote_service, sample_quote, recording_channel, session_factory
    ):
        quote_service.request_transition(db_session, sample_quote.id, QuoteEventKind.SENT)

        first = quote_service.record_link_open(
            db_session, sample_quote.id, source="pixel", viewer_email="jane@example.com"
        )
        second = quote_service.record_link_open(db_session, sample_quote.id)

        assert first.status is QuoteStatus.VIEWED
        assert sorted(first.notification.delivered) == ["inbox", "recording"]
        assert second.notification is None
        assert len(recording_channel.sent) == 1

        message = recording_channel.sent[0]
        assert message.kind is QuoteEventKind.OPENED
        assert message.recipient == "sales@example.com"
        assert message.detail == "Opened by jane@example.com"

        with session_factory() as db:
            assert NotificationInbox(db).unread_count("sales@example.com") == 1

        summary = quote_service.get_status_summary(db_session, sample_quote.id)
        assert summary.opens_count == 2

    def test_sign_then_decline_is_rejected(
        self, db_session, quote_service, sample_quote, recording_channel
    ):
        quote_service.request_transition(
            db_session, sample_quote.id, "signed", {"signer_name": "Jane Homeowner"}
        )

        with pytest.raises(AlreadyTerminalError) as exc_info:
            quote_service.request_transition(
                db_session, sample_quote.id, "declined", {"reason": "changed my mind"}
            )

        assert exc_info.value.current_status == "signed"
        assert quote_service.get_quote(db_session, sample_quote.id).status is QuoteStatus.SIGNED
        assert [m.kind for m in recording_channel.sent] == [QuoteEventKind.SIGNED]
        assert recording_channel.sent[0].detail == "Signed by Jane Homeowner"

    def test_double_submitted_sign_is_recorded_once(
        self, db_session, quote_service, sample_quote, recording_channel, clock
    ):
        first = quote_service.request_transition(db_session, sample_quote.id, "signed")
        clock.advance(seconds=5)
        again = quote_service.request_transition(db_session, sample_quote.id, "signed")

        assert again.duplicate
        assert again.event_id == first.event_id
        assert again.notification is None
        assert kinds_of(db_session, sample_quote.id).count(QuoteEventKind.SIGNED) == 1
        assert len(recording_channel.sent) == 1

    def test_decline_notification_has_reason(
        self, db_session, quote_service, sample_quote, recording_channel
    ):
        outcome = quote_service.request_transition(
            db_session, sample_quote.id, QuoteEventKind.DECLINED, {"reason": "Too expensive"}
        )

        assert outcome.status is QuoteStatus.DECLINED
        assert recording_channel.sent[0].detail == "Reason: Too expensive"
        assert recording_channel.sent[0].title == "❌ Declined - Jane Homeowner"

    def test_open_after_sign_is_logged_without_notification(
        self, db_session, quote_service, sample_quote, recording_channel
    ):
        quote_service.request_transition(db_session, sample_quote.id, "signed")

        outcome = quote_service.record_link_open(db_session, sample_quote.id)

        assert outcome.status is QuoteStatus.SIGNED
        assert outcome.notification is None
        assert kinds_of(db_session, sample_quote.id)[-1] is QuoteEventKind.OPENED
        assert len(recording_channel.sent) == 1

    def test_failing_channel_does_not_fail_transition(
        self, db_session, test_settings, event_bus, mailer, clock, sample_quote, channel_factory
    ):
        broken = channel_factory("webhook", error=RuntimeError("HTTP 500"))
        dispatcher = NotificationDispatcher([broken], timeout=1.0)
        service = QuoteService(
            test_settings, dispatcher=dispatcher, event_bus=event_bus, mailer=mailer, clock=clock
        )
        try:
            outcome = service.request_transition(db_session, sample_quote.id, "signed")
        finally:
            dispatcher.close()

        assert outcome.status is QuoteStatus.SIGNED
        assert outcome.notification.failed == {"webhook": "HTTP 500"}
        assert not outcome.notification.ok

    def test_publishes_transition_events(self, db_session, quote_service, sample_quote, published):
        outcome = quote_service.request_transition(db_session, sample_quote.id, "sent")

        event = published[-1]
        assert isinstance(event, QuoteTransitionEvent)
        assert event.quote_event_id == outcome.event_id
        assert (event.previous_status, event.status) == ("draft", "sent")

    def test_rejects_unknown_kind_and_metadata(self, db_session, quote_service, sample_quote):
        with pytest.raises(ValidationError):
            quote_service.request_transition(db_session, sample_quote.id, "archived")
        with pytest.raises(ValidationError):
            quote_service.request_transition(db_session, sample_quote.id, "signed", {"x": 1})

    def test_unknown_quote(self, db_session, quote_service):
        with pytest.raises(QuoteNotFoundError):
            quote_service.request_transition(db_session, "missing", "sent")
        with pytest.raises(QuoteNotFoundError):
            quote_service.get_status_summary(db_session, "missing")

    def test_link_open_never_raises(self, db_session, quote_service):
        assert quote_service.record_link_open(db_session, "missing") is None

    def test_trashed_quote_keeps_its_lifecycle(self, db_session, quote_service, sample_quote):
        quote_service.trash_quote(db_session, sample_quote.id, SALES)

        outcome = quote_service.request_transition(db_session, sample_quote.id, "signed")

        assert outcome.status is QuoteStatus.SIGNED


class TestRetryAndReconcile:
    def test_retry_reuses_idempotency_key(
        self, db_session, quote_service, sample_quote, monkeypatch
    ):
        keys = []
        original = EventRecorder.record

        def flaky(self, quote_id, kind, metadata=None, *, idempotency_key=None):
            keys.append(idempotency_key)
            if len(keys) == 1:
                raise StoreUnavailableError("connection reset")
            return original(self, quote_id, kind, metadata, idempotency_key=idempotency_key)

        monkeypatch.setattr(EventRecorder, "record", flaky)

        outcome = quote_service.request_transition_with_retry(
            db_session, sample_quote.id, "sent", sleep=lambda _: None
        )

        assert outcome.status is QuoteStatus.SENT
        assert len(keys) == 2
        assert keys[0] is not None and keys[0] == keys[1]

    def test_retry_after_stored_event_does_not_duplicate(
        self, db_session, quote_service, sample_quote, monkeypatch
    ):
        original = SqlQuoteStore.update_projection
        failures = [OperationalError("UPDATE quotes", {}, Exception("database is locked"))]

        def flaky(self, *args, **kwargs):
            if failures:
                raise failures.pop()
            return original(self, *args, **kwargs)

        monkeypatch.setattr(SqlQuoteStore, "update_projection", flaky)

        outcome = quote_service.request_transition_with_retry(
            db_session, sample_quote.id, "sent", idempotency_key="send-1", sleep=lambda _: None
        )

        assert outcome.duplicate
        assert outcome.status is QuoteStatus.SENT
        assert kinds_of(db_session, sample_quote.id) == [
            QuoteEventKind.CREATED,
            QuoteEventKind.SENT,
        ]

    def test_stale_status_after_failed_sign_update_still_blocks_terminal_events(
        self, db_session, quote_service, sample_quote, recording_channel, clock, monkeypatch
    ):
        original = SqlQuoteStore.update_projection
        failures: list[OperationalError] = []

        def flaky(self, *args, **kwargs):
            if failures:
                raise failures.pop()
            return original(self, *args, **kwargs)

        monkeypatch.setattr(SqlQuoteStore, "update_projection", flaky)
        quote_service.request_transition(db_session, sample_quote.id, "sent")
        failures.append(OperationalError("UPDATE quotes", {}, Exception("database is locked")))
        with pytest.raises(StoreUnavailableError):
            quote_service.request_transition(db_session, sample_quote.id, "signed")

        clock.advance(seconds=5)
        with pytest.raises(AlreadyTerminalError):
            quote_service.request_transition(
                db_session, sample_quote.id, "declined", {"reason": "changed my mind"}
            )
        clock.advance(seconds=120)
        with pytest.raises(AlreadyTerminalError):
            quote_service.request_transition(db_session, sample_quote.id, "signed")

        assert kinds_of(db_session, sample_quote.id) == [
            QuoteEventKind.CREATED,
            QuoteEventKind.SENT,
            QuoteEventKind.SIGNED,
        ]
        db_session.expire_all()
        quote = quote_service.get_quote(db_session, sample_quote.id)
        assert quote.status is QuoteStatus.SIGNED
        assert quote.signed and not quote.declined
        assert quote_service.get_status_summary(db_session, sample_quote.id).status is (
            QuoteStatus.SIGNED
        )
        assert recording_channel.sent == []

    def test_retry_gives_up(self, db_session, quote_service, sample_quote, monkeypatch):
        def down(self, *args, **kwargs):
            raise StoreUnavailableError("database offline")

        monkeypatch.setattr(EventRecorder, "record", down)

        with pytest.raises(StoreUnavailableError):
            quote_service.request_transition_with_retry(
                db_session, sample_quote.id, "sent", sleep=lambda _: None
            )

    def test_reconcile_all_repairs_drifted_quotes(self, db_session, quote_service, sample_quote):
        other = quote_service.create_quote(
            db_session, {"name": "Fine"}, [{"item_type": "door", "unit_price": 10}]
        )
        quote_service.request_transition(db_session, sample_quote.id, "sent")
        db_session.execute(
            update(Quote).where(Quote.id == sample_quote.id).values(status=QuoteStatus.SIGNED)
        )
        db_session.commit()

        repaired = quote_service.reconcile_all(db_session)

        assert [r.quote_id for r in repaired] == [sample_quote.id]
        assert repaired[0].before.status is QuoteStatus.SIGNED
        assert repaired[0].after.status is QuoteStatus.SENT
        assert quote_service.get_quote(db_session, other.id).status is QuoteStatus.DRAFT
        db_session.expire_all()
        assert quote_service.get_quote(db_session, sample_quote.id).status is QuoteStatus.SENT


class TestTrash:
    def test_trash_and_restore_by_owner(self, db_session, quote_service, sample_quote, published):
        quote_service.trash_quote(db_session, sample_quote.id, SALES)

        assert quote_service.list_quotes(db_session) == []
        assert [q.id for q in quote_service.list_quotes(db_session, include_trashed=True)] == [
            sample_quote.id
        ]
        assert isinstance(published[-1], QuoteTrashedEvent)

        quote = quote_service.restore_quote(db_session, sample_quote.id, SALES)

        assert not quote.is_trashed
        assert quote.deleted_by is None
        assert quote.status is QuoteStatus.DRAFT

    def test_trash_is_idempotent(self, db_session, quote_service, sample_quote):
        first = quote_service.trash_quote(db_session, sample_quote.id, SALES)
        deleted_at = first.deleted_at

        again = quote_service.trash_quote(db_session, sample_quote.id, ADMIN)

        assert again.deleted_at == deleted_at
        assert again.deleted_by == "sales@example.com"

    def test_stranger_cannot_trash(self, db_session, quote_service, sample_quote):
        with pytest.raises(PermissionDeniedError):
            quote_service.trash_quote(db_session, sample_quote.id, STRANGER)

    def test_list_trash_scoping(self, db_session, quote_service, sample_quote):
        quote_service.trash_quote(db_session, sample_quote.id, SALES)

        assert len(quote_service.list_trash(db_session, SALES)) == 1
        assert len(quote_service.list_trash(db_session, ADMIN)) == 1
        assert quote_service.list_trash(db_session, STRANGER) == []

    def test_purge_requires_admin(self, db_session, quote_service, sample_quote):
        with pytest.raises(PermissionDeniedError):
            quote_service.purge_quote(db_session, sample_quote.id, SALES)

        assert quote_service.get_quote(db_session, sample_quote.id) is not None

    def test_purge_removes_quote_and_history(
        self, db_session, quote_service, sample_quote, published
    ):
        quote_id = sample_quote.id
        quote_service.request_transition(db_session, quote_id, "signed")

        deleted = quote_service.purge_quote(db_session, quote_id, ADMIN)

        assert deleted == 2
        assert quote_service.get_quote(db_session, quote_id) is None
        assert kinds_of(db_session, quote_id) == []
        assert db_session.scalar(select(Notification.id)) is None
        assert isinstance(published[-1], QuotePurgedEvent)
