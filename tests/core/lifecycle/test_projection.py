"""Tests for the stored status projection."""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from quotetrack.core.lifecycle import LoggedEvent, StatusProjection, derive_status
from quotetrack.core.lifecycle.metadata import build_metadata
from quotetrack.exceptions import AlreadyTerminalError, TransitionDeniedError
from quotetrack.storage.database.models import QuoteEventKind, QuoteStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
K = QuoteEventKind


def test_apply_advances_and_stamps():
    projection = StatusProjection().apply(K.CREATED, T0).apply(K.SENT, T0 + timedelta(hours=1))

    assert projection.status is QuoteStatus.SENT
    assert projection.status_timestamps == {
        "draft": T0.isoformat(),
        "sent": (T0 + timedelta(hours=1)).isoformat(),
    }
    assert not projection.viewed


def test_apply_keeps_first_timestamp():
    first = T0 + timedelta(hours=1)
    projection = (
        StatusProjection().apply(K.SENT, first).apply(K.SENT, first + timedelta(days=1))
    )

    assert projection.status_timestamps["sent"] == first.isoformat()


def test_apply_sets_flags():
    projection = StatusProjection().apply(K.OPENED, T0).apply(K.SIGNED, T0)

    assert projection.viewed
    assert projection.signed
    assert not projection.declined
    assert projection.status is QuoteStatus.SIGNED


def test_open_after_signed_sets_viewed_flag_but_keeps_status():
    projection = StatusProjection().apply(K.SIGNED, T0).apply(K.OPENED, T0 + timedelta(minutes=5))

    assert projection.status is QuoteStatus.SIGNED
    assert projection.viewed


def test_apply_rejects_second_terminal():
    with pytest.raises(AlreadyTerminalError):
        StatusProjection().apply(K.DECLINED, T0).apply(K.SIGNED, T0)


def test_as_fields():
    fields = StatusProjection().apply(K.SENT, T0).as_fields()

    assert fields == {
        "status": QuoteStatus.SENT,
        "viewed": False,
        "signed": False,
        "declined": False,
        "status_timestamps": {"sent": T0.isoformat()},
    }


def test_from_empty_log_is_default():
    assert StatusProjection.from_log([]) == StatusProjection()


@given(kinds=st.lists(st.sampled_from(list(QuoteEventKind)), max_size=25))
def test_incremental_projection_matches_rebuild(kinds):
    """Applying accepted events one by one equals rebuilding from the log."""
    projection = StatusProjection()
    accepted: list[LoggedEvent] = []

    for i, kind in enumerate(kinds):
        at = T0 + timedelta(seconds=i)
        try:
            projection = projection.apply(kind, at)
        except TransitionDeniedError:
            continue
        accepted.append(
            LoggedEvent(
                event_id=f"ev-{i}", quote_id="q-1", kind=kind, at=at, metadata=build_metadata(kind)
            )
        )

    assert projection == StatusProjection.from_log(accepted)
    assert projection.status is derive_status(accepted).status


@given(kinds=st.lists(st.sampled_from(list(QuoteEventKind)), max_size=25))
def test_at_most_one_terminal_kind_is_accepted(kinds):
    projection = StatusProjection()
    terminal_accepted = 0

    for kind in kinds:
        try:
            projection = projection.apply(kind, T0)
        except TransitionDeniedError:
            continue
        if kind in (K.SIGNED, K.DECLINED):
            terminal_accepted += 1

    assert terminal_accepted <= 1
    assert not (projection.signed and projection.declined)
