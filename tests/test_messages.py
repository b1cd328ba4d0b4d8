"""
Tests for threads, messages and unread counts.
"""

from datetime import timedelta

import pytest

from wecarry.core import events
from wecarry.core.errors import NotFound, ValidationFailed
from wecarry.models.base import utcnow
from wecarry.schemas.common import RequestVisibility
from wecarry.services import messages, threads


@pytest.fixture
async def setup(factory):
    org = await factory.org("Org")
    creator = await factory.user(org, "creator")
    helper = await factory.user(org, "helper")
    request = await factory.request(creator, org)
    return org, creator, helper, request


class TestCreateMessage:
    async def test_first_message_opens_thread_with_creator(self, session, setup, captured_events):
        _, creator, helper, request = setup

        message = await messages.create_message(session, helper, "Can I help?", request_id=request.uuid)

        thread = await threads.get_thread(session, message.thread_id)
        assert thread.request_id == request.id
        assert {u.id for u in await threads.get_participant_users(session, thread)} == {creator.id, helper.id}

        created = [e for e in captured_events if e.kind == events.MESSAGE_CREATED]
        assert len(created) == 1
        assert created[0].payload[events.KEY_MESSAGE_ID] == message.id
        data = created[0].payload[events.KEY_EVENT_DATA]
        assert data["recipient_ids"] == [creator.id]
        assert data["sender_nickname"] == "helper"

    async def test_second_message_reuses_thread(self, session, setup):
        _, _, helper, request = setup
        first = await messages.create_message(session, helper, "one", request_id=request.uuid)
        second = await messages.create_message(session, helper, "two", request_id=request.uuid)
        assert first.thread_id == second.thread_id

    async def test_creator_replies_on_thread(self, session, setup):
        _, creator, helper, request = setup
        first = await messages.create_message(session, helper, "hello", request_id=request.uuid)
        thread = await threads.get_thread(session, first.thread_id)

        reply = await messages.create_message(session, creator, "hi!", thread_id=thread.uuid)

        assert reply.thread_id == thread.id
        assert [m.content for m in await messages.list_messages(session, thread)] == ["hello", "hi!"]

    async def test_creator_cannot_start_thread_on_own_request(self, session, setup):
        _, creator, _, request = setup
        with pytest.raises(ValidationFailed):
            await messages.create_message(session, creator, "talking to myself", request_id=request.uuid)

    async def test_non_participant_cannot_post(self, session, factory, setup):
        org, _, helper, request = setup
        first = await messages.create_message(session, helper, "hello", request_id=request.uuid)
        thread = await threads.get_thread(session, first.thread_id)
        intruder = await factory.user(org, "intruder")

        with pytest.raises(NotFound):
            await messages.create_message(session, intruder, "me too", thread_id=thread.uuid)

    async def test_invisible_request(self, session, factory, setup):
        _, _, _, request = setup
        other_org = await factory.org("Elsewhere")
        stranger = await factory.user(other_org, "stranger")
        assert request.visibility == RequestVisibility.SAME.value

        with pytest.raises(NotFound):
            await messages.create_message(session, stranger, "hi", request_id=request.uuid)

    async def test_empty_content(self, session, setup):
        _, _, helper, request = setup
        with pytest.raises(ValidationFailed):
            await messages.create_message(session, helper, "   ", request_id=request.uuid)

    async def test_needs_thread_or_request(self, session, setup):
        _, _, helper, _ = setup
        with pytest.raises(ValidationFailed):
            await messages.create_message(session, helper, "lost")

    async def test_sender_has_seen_own_message(self, session, setup):
        _, _, helper, request = setup
        message = await messages.create_message(session, helper, "hi", request_id=request.uuid)
        thread = await threads.get_thread(session, message.thread_id)
        assert await threads.get_last_viewed_at(session, thread, helper) == message.created_at
        assert thread.updated_at == message.created_at


class TestFindMessage:
    async def test_participant_and_outsider(self, session, factory, setup):
        org, creator, helper, request = setup
        message = await messages.create_message(session, helper, "hi", request_id=request.uuid)
        outsider = await factory.user(org, "outsider")
        admin = await factory.user(None, "root", admin_role="superAdmin")

        assert (await messages.find_message(session, creator, message.uuid)).id == message.id
        assert (await messages.find_message(session, admin, message.uuid)).id == message.id
        with pytest.raises(NotFound):
            await messages.find_message(session, outsider, message.uuid)

    async def test_bad_uuid(self, session, setup):
        _, creator, _, _ = setup
        with pytest.raises(NotFound):
            await messages.find_message(session, creator, "not-a-uuid")


class TestUnread:
    async def test_unread_counts(self, session, setup):
        _, creator, helper, request = setup
        first = await messages.create_message(session, helper, "one", request_id=request.uuid)
        thread = await threads.get_thread(session, first.thread_id)
        await threads.set_last_viewed_at(session, thread, creator, first.created_at - timedelta(seconds=1))
        await messages.create_message(session, helper, "two", thread_id=thread.uuid)

        unread = await threads.get_unread_threads(session, creator)
        assert [(t.thread_id, t.count) for t in unread] == [(thread.uuid, 2)]
        assert await threads.get_unread_message_count(session, creator) == 2
        assert await threads.get_unread_message_count(session, helper) == 0

        await threads.set_last_viewed_at(session, thread, creator)
        assert await threads.get_unread_threads(session, creator) == []

    async def test_unread_message_count_since(self, session, setup):
        _, creator, helper, request = setup
        message = await messages.create_message(session, helper, "one", request_id=request.uuid)
        thread = await threads.get_thread(session, message.thread_id)
        since = message.created_at - timedelta(minutes=1)
        assert await threads.unread_message_count(session, thread, creator, since) == 1
        assert await threads.unread_message_count(session, thread, helper, since) == 0

    async def test_last_viewed_requires_participant(self, session, factory, setup):
        org, _, helper, request = setup
        message = await messages.create_message(session, helper, "one", request_id=request.uuid)
        thread = await threads.get_thread(session, message.thread_id)
        outsider = await factory.user(org, "outsider")
        with pytest.raises(NotFound):
            await threads.set_last_viewed_at(session, thread, outsider)

    async def test_last_notified_only_moves_forward(self, session, setup):
        _, creator, helper, request = setup
        message = await messages.create_message(session, helper, "one", request_id=request.uuid)
        thread = await threads.get_thread(session, message.thread_id)
        participant = await threads.get_participant(session, thread, creator.id)
        later = utcnow() + timedelta(hours=1)

        await threads.set_last_notified_at(session, participant, later)
        await threads.set_last_notified_at(session, participant, later - timedelta(hours=2))

        assert participant.last_notified_at == later

    async def test_threads_newest_activity_first(self, session, factory, setup):
        org, creator, helper, request = setup
        other = await factory.request(creator, org, "Second")
        a = await messages.create_message(session, helper, "a", request_id=request.uuid)
        b = await messages.create_message(session, helper, "b", request_id=other.uuid)

        listed = await threads.get_threads(session, creator)
        assert [t.id for t in listed] == [b.thread_id, a.thread_id]

        await messages.create_message(session, helper, "again", thread_id=(await threads.get_thread(session, a.thread_id)).uuid)
        listed = await threads.get_threads(session, creator)
        assert [t.id for t in listed] == [a.thread_id, b.thread_id]
