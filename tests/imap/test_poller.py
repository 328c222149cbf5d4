"""Tests for interval polling of watched mailboxes."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from mailwatch.errors import ImapTransportError
from mailwatch.imap.email_parser import ContentExtractor
from mailwatch.imap.events import EventBus
from mailwatch.imap.poller import MailboxPoller
from mailwatch.imap.registry import MailboxRegistry


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def registry(fake_connection, events) -> MailboxRegistry:
    return MailboxRegistry(
        connection=fake_connection,
        extractor=ContentExtractor(),
        events=events,
    )


@pytest.fixture
def poller(fake_connection, registry, events) -> MailboxPoller:
    fake_connection.connected = True
    return MailboxPoller(
        connection=fake_connection,
        registry=registry,
        extractor=ContentExtractor(),
        events=events,
        poll_interval=0.02,
    )


def _arrived_uids(callback: Mock) -> list:
    return [call.args[0].uid for call in callback.call_args_list]


# ============================================================================
# Single polls
# ============================================================================


@pytest.mark.asyncio
async def test_sequential_polls_emit_new_uids_in_ascending_order(
    poller, registry, fake_connection, events, make_message
):
    arrived = Mock()
    events.on_arrived(arrived)
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(3), make_message(1), make_message(2)])

    first = await poller.poll("INBOX")

    assert first.new_messages == [2, 3]
    assert first.watermark == 3
    assert _arrived_uids(arrived) == [2, 3]

    fake_connection.add_messages("INBOX", [make_message(5), make_message(4)])
    second = await poller.poll("INBOX")

    assert second.new_messages == [4, 5]
    assert registry.watermark("INBOX") == 5
    assert _arrived_uids(arrived) == [2, 3, 4, 5]


@pytest.mark.asyncio
async def test_poll_without_new_mail_changes_nothing(
    poller, registry, fake_connection, events, make_message
):
    arrived = Mock()
    events.on_arrived(arrived)
    registry.advance_watermark("INBOX", 2)
    fake_connection.add_messages("INBOX", [make_message(1), make_message(2)])

    result = await poller.poll("INBOX")

    assert not result.has_changes
    assert result.watermark == 2
    arrived.assert_not_called()


@pytest.mark.asyncio
async def test_watermark_is_updated_before_events_are_emitted(
    poller, registry, fake_connection, events, make_message
):
    seen_watermarks = []
    events.on_arrived(lambda mail: seen_watermarks.append(registry.watermark("INBOX")))
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2), make_message(3)])

    await poller.poll("INBOX")

    assert seen_watermarks == [3, 3]


@pytest.mark.asyncio
async def test_events_are_emitted_after_lock_release(
    poller, registry, fake_connection, events, make_message
):
    lock_held = []
    events.on_arrived(lambda mail: lock_held.append(fake_connection.locked))
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])

    await poller.poll("INBOX")

    assert lock_held == [False]


@pytest.mark.asyncio
async def test_poll_error_is_swallowed(poller, registry, fake_connection, events, make_message):
    arrived = Mock()
    events.on_arrived(arrived)
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])
    fake_connection.fetch_error = ImapTransportError("reset")

    result = await poller.poll("INBOX")

    assert result.error == "reset"
    assert registry.watermark("INBOX") == 1
    arrived.assert_not_called()
    assert not fake_connection.locked


@pytest.mark.asyncio
async def test_lock_unavailable_yields_no_events(poller, registry, fake_connection, make_message):
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])
    fake_connection.lock_failures.add("INBOX")

    result = await poller.poll("INBOX")

    assert result.new_messages == []
    assert registry.watermark("INBOX") == 1


@pytest.mark.asyncio
async def test_poll_of_unknown_mailbox_is_skipped(poller):
    result = await poller.poll("Nowhere")

    assert result.skipped


@pytest.mark.asyncio
async def test_overlapping_poll_is_skipped(poller, registry, fake_connection, make_message):
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])

    # Hold the connection so the first poll blocks inside the lock.
    blocker = await fake_connection.get_mailbox_lock("INBOX")
    first = asyncio.create_task(poller.poll("INBOX"))
    await asyncio.sleep(0)
    second = await poller.poll("INBOX")
    blocker.release()
    first_result = await first

    assert second.skipped
    assert first_result.new_messages == [2]


# ============================================================================
# Recurring polls
# ============================================================================


@pytest.mark.asyncio
async def test_start_all_polls_immediately_then_repeats(
    poller, registry, fake_connection, events, make_message
):
    arrived = Mock()
    events.on_arrived(arrived)
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])

    await poller.start_all(["INBOX"])
    assert _arrived_uids(arrived) == [2]
    assert poller.watched == ["INBOX"]

    fake_connection.add_messages("INBOX", [make_message(3)])
    await asyncio.sleep(0.08)
    await poller.stop_all()

    assert _arrived_uids(arrived) == [2, 3]
    assert poller.watched == []


@pytest.mark.asyncio
async def test_polling_continues_after_errors(poller, registry, fake_connection, events, make_message):
    arrived = Mock()
    events.on_arrived(arrived)
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [make_message(2)])
    fake_connection.fetch_error = ImapTransportError("flaky")

    await poller.start_all(["INBOX"])
    await asyncio.sleep(0.05)
    fake_connection.fetch_error = None
    await asyncio.sleep(0.08)
    await poller.stop_all()

    assert _arrived_uids(arrived) == [2]


@pytest.mark.asyncio
async def test_start_all_skips_unknown_and_duplicate_paths(poller, registry, fake_connection):
    registry.advance_watermark("INBOX", 1)
    fake_connection.add_messages("INBOX", [])

    await poller.start_all(["INBOX", "Missing"])
    await poller.start_all(["INBOX"])

    assert poller.watched == ["INBOX"]
    await poller.stop_all()


@pytest.mark.asyncio
async def test_unwatched_mailboxes_are_not_polled(poller, registry, fake_connection, make_message):
    registry.advance_watermark("INBOX", 1)
    registry.advance_watermark("Archive", 1)
    fake_connection.add_messages("INBOX", [])
    fake_connection.add_messages("Archive", [make_message(5)])

    await poller.start_all(["INBOX"])
    await asyncio.sleep(0.05)
    await poller.stop_all()

    assert registry.watermark("Archive") == 1
    assert all(entry[1] == "INBOX" for entry in fake_connection.log)
