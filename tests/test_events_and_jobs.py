"""
Tests for the event bus, the job queue and the listeners wiring them together.
"""

import asyncio
from unittest.mock import patch

import pytest

from wecarry.core import events
from wecarry.core.config import Settings
from wecarry.core.events import Event, EventBus
from wecarry.core.jobs import JobQueue, UnknownJob
from wecarry.tasks import notifications as jobs
from wecarry.tasks.listeners import LISTENERS, register_jobs, register_listeners, unregister_listeners


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------

class TestEventBus:
    async def test_listeners_run_in_registration_order(self):
        bus = EventBus()
        calls = []

        async def first(event):
            calls.append(("first", event.payload["n"]))

        async def second(event):
            calls.append(("second", event.payload["n"]))

        bus.listen("k", "first", first)
        bus.listen("k", "second", second)
        await bus.emit(Event("k", payload={"n": 1}))
        await bus.emit(Event("k", payload={"n": 2}))

        assert calls == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]

    async def test_duplicate_names_rejected(self):
        bus = EventBus()

        async def noop(event):
            pass

        bus.listen("k", "same", noop)
        with pytest.raises(ValueError):
            bus.listen("other", "same", noop)

    async def test_payload_is_a_private_read_only_copy(self):
        bus = EventBus()
        seen = []

        async def mutate(event):
            with pytest.raises(TypeError):
                event.payload["extra"] = 1
            event.payload["data"]["ids"].append(99)

        async def observe(event):
            seen.append(list(event.payload["data"]["ids"]))

        bus.listen("k", "mutate", mutate)
        bus.listen("k", "observe", observe)
        original = {"ids": [1, 2]}
        await bus.emit(Event("k", payload={"data": original}))

        assert seen == [[1, 2]]
        assert original == {"ids": [1, 2]}

    async def test_failing_listener_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def fine(event):
            seen.append(event.kind)

        bus.listen("k", "broken", broken)
        bus.listen("k", "fine", fine)
        await bus.emit(Event("k"))

        assert seen == ["k"]

    async def test_close_drops_listeners_and_later_events(self):
        bus = EventBus()
        seen = []

        async def record(event):
            seen.append(event)

        bus.listen("k", "record", record)
        bus.close()
        await bus.emit(Event("k"))

        assert seen == []
        assert bus.listener_names() == []

    async def test_unlisten(self):
        bus = EventBus()

        async def noop(event):
            pass

        bus.listen("k", "a", noop)
        bus.listen("k", "b", noop)
        bus.unlisten("a")
        assert bus.listener_names("k") == ["b"]

    async def test_module_emit_uses_process_bus(self):
        seen = []

        async def record(event):
            seen.append(event.message)

        events.get_event_bus().listen("k", "record", record)
        await events.emit("k", "hello", id=3)
        assert seen == ["hello"]


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------

class TestJobQueue:
    async def test_runs_handler_with_ctx(self):
        queue = JobQueue()
        queue.ctx["greeting"] = "hi"
        results = []

        async def handler(ctx, args):
            results.append((ctx["greeting"], args["n"]))

        queue.register("greet", handler)
        queue.submit_delayed("greet", {"n": 1}, delay=0)
        await queue.drain()

        assert results == [("hi", 1)]
        assert queue.pending == 0

    async def test_delay_is_respected(self):
        queue = JobQueue(default_delay=0.05)
        done = asyncio.Event()

        async def handler(ctx, args):
            done.set()

        queue.register("later", handler)
        queue.submit_delayed("later", {})
        await asyncio.sleep(0)
        assert not done.is_set()
        await queue.drain()
        assert done.is_set()

    async def test_unknown_job(self):
        with pytest.raises(UnknownJob):
            JobQueue().submit_delayed("nope", {}, delay=0)

    async def test_failing_job_is_contained(self):
        queue = JobQueue()

        async def broken(ctx, args):
            raise RuntimeError("boom")

        queue.register("broken", broken)
        queue.submit_delayed("broken", {}, delay=0)
        await queue.drain()
        assert queue.pending == 0

    async def test_shutdown_stops_accepting(self):
        queue = JobQueue()

        async def noop(ctx, args):
            pass

        queue.register("noop", noop)
        await queue.shutdown()
        with pytest.raises(RuntimeError):
            queue.submit_delayed("noop", {}, delay=0)

    async def test_shutdown_can_cancel(self):
        queue = JobQueue()
        ran = []

        async def slow(ctx, args):
            ran.append(True)

        queue.register("slow", slow)
        queue.submit_delayed("slow", {}, delay=60)
        await queue.shutdown(cancel_pending=True)
        assert ran == []


# ---------------------------------------------------------------------------
# Listeners
# ---------------------------------------------------------------------------

class TestListeners:
    async def test_registration_and_removal(self, settings):
        bus, queue = EventBus(), JobQueue()
        register_jobs(queue)
        register_listeners(bus, queue, settings)

        assert queue.registered() == sorted(jobs.JOBS)
        assert bus.listener_names() == sorted(n.name for n in LISTENERS)
        assert bus.listener_names(events.REQUEST_STATUS_UPDATED) == [
            "request-status-updated",
            "request-status-audit",
        ]

        unregister_listeners(bus)
        assert bus.listener_names() == []

    async def test_message_created_submits_job(self, settings):
        bus, queue = EventBus(), JobQueue()
        seen = []

        async def fake_new_message(ctx, args):
            seen.append(args)

        register_jobs(queue)
        queue.register(jobs.NEW_MESSAGE, fake_new_message)
        register_listeners(bus, queue, settings)

        await bus.emit(Event(events.MESSAGE_CREATED, payload={events.KEY_MESSAGE_ID: 12}))
        await queue.drain()

        assert seen == [{"message_id": 12}]

    async def test_status_listener_stamps_occurrence(self, settings):
        bus, queue = EventBus(), JobQueue()
        seen = []

        async def fake(ctx, args):
            seen.append(args)

        register_jobs(queue)
        queue.register(jobs.REQUEST_STATUS_UPDATED, fake)
        register_listeners(bus, queue, settings)

        data = {"old_status": "OPEN", "new_status": "ACCEPTED", "request_id": 5, "old_provider_id": None}
        await bus.emit(Event(events.REQUEST_STATUS_UPDATED, payload={events.KEY_EVENT_DATA: data}))
        await queue.drain()

        assert seen[0]["request_id"] == 5
        assert seen[0]["new_status"] == "ACCEPTED"
        assert "occurred_at" in seen[0]

    async def test_token_cleanup_is_throttled(self, settings):
        bus, queue = EventBus(), JobQueue()
        runs = []

        async def fake_cleanup(ctx, args):
            runs.append(args)

        register_jobs(queue)
        queue.register(jobs.ACCESS_TOKEN_CLEANUP, fake_cleanup)
        lc = register_listeners(bus, queue, settings)

        for _ in range(3):
            await bus.emit(Event(events.USER_LOGGED_IN, payload={events.KEY_ID: 1}))
        await queue.drain()

        assert len(runs) == 1
        assert lc.last_token_cleanup is not None

    async def test_notification_jobs_wait_for_the_commit(self):
        bus, queue = EventBus(), JobQueue()
        register_jobs(queue)
        register_listeners(bus, queue, Settings())
        status = {"old_status": "OPEN", "new_status": "ACCEPTED", "request_id": 5, "old_provider_id": None}

        with patch.object(queue, "submit_delayed") as submit:
            await bus.emit(Event(events.REQUEST_STATUS_UPDATED, payload={events.KEY_EVENT_DATA: status}))
            await bus.emit(Event(events.REQUEST_CREATED, payload={events.KEY_EVENT_DATA: {"request_id": 5}}))
            await bus.emit(
                Event(
                    events.POTENTIAL_PROVIDER_CREATED,
                    payload={events.KEY_EVENT_DATA: {"request_id": 5, "user_id": 2}},
                )
            )
            await bus.emit(Event(events.MESSAGE_CREATED, payload={events.KEY_MESSAGE_ID: 1}))

        submitted = {c.args[0]: c.kwargs["delay"] for c in submit.call_args_list}
        assert set(submitted) == {
            jobs.REQUEST_STATUS_UPDATED,
            jobs.REQUEST_CREATED,
            jobs.POTENTIAL_PROVIDER_EVENT,
            jobs.NEW_MESSAGE,
        }
        assert min(submitted.values()) >= 10
