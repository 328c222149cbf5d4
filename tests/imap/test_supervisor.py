"""Tests for startup, reconnection and timer ownership."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from mailwatch.errors import ImapTransportError
from mailwatch.imap.email_parser import ContentExtractor
from mailwatch.imap.events import EventBus
from mailwatch.imap.poller import MailboxPoller
from mailwatch.imap.registry import MailboxRegistry
from mailwatch.imap.supervisor import ConnectionSupervisor


class Harness:
    """Supervisor wired to real components over a fake connection."""

    def __init__(self, connection) -> None:
        config = connection.config
        self.connection = connection
        self.events = EventBus()
        extractor = ContentExtractor()
        self.registry = MailboxRegistry(
            connection=self.connection, extractor=extractor, events=self.events
        )
        self.poller = MailboxPoller(
            connection=self.connection,
            registry=self.registry,
            extractor=extractor,
            events=self.events,
            poll_interval=config.mailboxes_watch_interval,
        )
        self.supervisor = ConnectionSupervisor(
            config=config,
            connection=self.connection,
            registry=self.registry,
            poller=self.poller,
        )


@pytest.fixture
def harness(fake_connection) -> Harness:
    return Harness(fake_connection)


@pytest.mark.asyncio
async def test_start_runs_full_sequence(harness, make_message):
    harness.connection.add_messages("INBOX", [make_message(1), make_message(2)])
    harness.connection.add_messages("Archive", [make_message(9)])
    loaded = Mock()
    harness.events.on_loaded(loaded)

    await harness.supervisor.start()

    assert harness.connection.connect_calls == 1
    assert harness.registry.watermark("INBOX") == 2
    assert harness.registry.watermark("Archive") == 9
    assert harness.poller.watched == ["INBOX"]
    loaded.assert_not_called()

    await asyncio.sleep(0.05)
    assert sorted(call.args[0].uid for call in loaded.call_args_list) == [1, 2, 9]

    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_connect_failure_schedules_restart_without_raising(harness):
    harness.connection.connect_failures = 1
    harness.connection.add_messages("INBOX", [])

    await harness.supervisor.start()

    assert harness.supervisor.restart_pending
    assert not harness.connection.connected

    await asyncio.sleep(0.06)

    assert harness.connection.connected
    assert harness.supervisor.restart_count == 1
    assert harness.poller.watched == ["INBOX"]
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_retries_forever_until_connect_succeeds(harness):
    harness.connection.connect_failures = 3
    harness.connection.add_messages("INBOX", [])

    await harness.supervisor.start()
    await asyncio.sleep(0.2)

    assert harness.connection.connect_calls == 4
    assert harness.supervisor.restart_count == 3
    assert harness.connection.connected
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_transport_errors_trigger_a_single_restart(harness):
    harness.connection.add_messages("INBOX", [])
    await harness.supervisor.start()

    harness.connection.fire_error()
    harness.connection.fire_error()
    assert harness.supervisor.restart_pending

    await asyncio.sleep(0.05)

    assert harness.supervisor.restart_count == 1
    assert harness.connection.connect_calls == 2
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_restart_does_not_duplicate_pollers_or_error_handlers(harness):
    harness.connection.add_messages("INBOX", [])
    await harness.supervisor.start()

    for _ in range(3):
        harness.connection.fire_error()
        await asyncio.sleep(0.04)

    assert harness.supervisor.restart_count == 3
    assert harness.poller.watched == ["INBOX"]
    assert harness.connection.error_handler_count == 1
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_restart_drops_unflushed_loaded_batch(make_config, make_connection, make_message):
    harness = Harness(make_connection(make_config(settle_delay_ms=60, reconnect_interval_ms=10)))
    harness.connection.add_messages("INBOX", [make_message(1), make_message(2)])
    loaded = Mock()
    harness.events.on_loaded(loaded)

    await harness.supervisor.start()
    harness.connection.fire_error()
    await asyncio.sleep(0.15)

    assert harness.supervisor.restart_count == 1
    assert [call.args[0].uid for call in loaded.call_args_list] == [1, 2]
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_watermarks_survive_restart(harness, make_message):
    arrived = Mock()
    harness.events.on_arrived(arrived)
    harness.connection.add_messages("INBOX", [make_message(1), make_message(2)])
    await harness.supervisor.start()

    harness.connection.fire_error()
    await asyncio.sleep(0.05)

    assert harness.registry.watermark("INBOX") == 2
    arrived.assert_not_called()
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_load_failure_schedules_restart(harness):
    harness.connection.add_messages("INBOX", [])
    harness.connection.list_error = ImapTransportError("reset during LIST")

    await harness.supervisor.start()

    assert harness.supervisor.restart_pending
    harness.connection.list_error = None
    await asyncio.sleep(0.05)

    assert harness.poller.watched == ["INBOX"]
    await harness.supervisor.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_restart_and_closes(harness):
    harness.connection.connect_failures = 5
    await harness.supervisor.start()
    assert harness.supervisor.restart_pending

    await harness.supervisor.stop()
    await asyncio.sleep(0.05)

    assert not harness.supervisor.restart_pending
    assert harness.connection.connect_calls == 1
    assert harness.connection.close_calls == 1


@pytest.mark.asyncio
async def test_errors_after_stop_do_not_restart(harness):
    harness.connection.add_messages("INBOX", [])
    await harness.supervisor.start()
    await harness.supervisor.stop()

    harness.connection.fire_error()

    assert not harness.supervisor.restart_pending
    assert harness.poller.watched == []


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition never became true"
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_stop_during_restart_connect_leaves_nothing_running(harness):
    harness.connection.add_messages("INBOX", [])
    harness.connection.connect_failures = 1
    harness.connection.connect_gate = asyncio.Event()

    await harness.supervisor.start()
    await _wait_for(lambda: harness.connection.connect_calls == 2)
    await harness.supervisor.stop()
    harness.connection.connect_gate.set()
    await asyncio.sleep(0.1)

    assert harness.poller.watched == []
    assert not harness.connection.connected
    assert not harness.supervisor.restart_pending
    assert harness.connection.error_handler_count == 0


@pytest.mark.asyncio
async def test_stop_while_start_is_connecting_abandons_the_session(harness, make_message):
    harness.connection.add_messages("INBOX", [make_message(1)])
    harness.connection.connect_gate = asyncio.Event()
    loaded = Mock()
    harness.events.on_loaded(loaded)

    starting = asyncio.create_task(harness.supervisor.start())
    await _wait_for(lambda: harness.connection.connect_calls == 1)
    await harness.supervisor.stop()
    harness.connection.connect_gate.set()
    await starting
    await asyncio.sleep(0.05)

    assert harness.poller.watched == []
    assert not harness.connection.connected
    assert dict(harness.registry.snapshot()) == {}
    loaded.assert_not_called()


@pytest.mark.asyncio
async def test_failing_restart_schedules_the_next_one(harness):
    harness.connection.connect_failures = 2
    harness.connection.add_messages("INBOX", [])

    await harness.supervisor.start()
    await _wait_for(lambda: harness.connection.connect_calls == 2)
    await asyncio.sleep(0.005)

    assert harness.supervisor.restart_pending
    await _wait_for(lambda: harness.connection.connected)
    assert harness.supervisor.restart_count == 2
    await harness.supervisor.stop()
