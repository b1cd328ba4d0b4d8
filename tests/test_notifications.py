"""
Tests for the notification jobs and their watermarks.

Covers:
- New message dedup across the last_viewed_at / last_notified_at watermarks
- Status change recipients and per (request, user) dedup
- New request audience and template choice
- Potential provider and welcome emails
- Missing rows retried through the queue, then a FatalError
"""

from datetime import timedelta

import pytest
from sqlmodel import select

from wecarry.core.errors import FatalError
from wecarry.models.base import utcnow
from wecarry.models.thread import Message
from wecarry.models.user import UserAccessToken
from wecarry.notifications import templates
from wecarry.schemas.common import RequestStatus, RequestVisibility
from wecarry.schemas.watches import WatchInput
from wecarry.services import potential_providers, requests, threads, trust, users, watches
from wecarry.tasks import notifications as jobs
from wecarry.tasks.listeners import register_jobs

from conftest import MIAMI


# ---------------------------------------------------------------------------
# New message
# ---------------------------------------------------------------------------

class TestNewMessage:
    @pytest.fixture
    async def conversation(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        provider = await factory.user(org, "provider")
        request = await factory.request(creator, org)
        thread = await threads.create_with_participants(session, request, [provider.id, creator.id])
        return creator, provider, request, thread

    async def _post(self, session, thread, sender, content, at):
        message = Message(thread_id=thread.id, sent_by_id=sender.id, content=content, created_at=at)
        session.add(message)
        await session.commit()
        return message

    async def test_viewed_then_next_message_notifies(self, session, worker_ctx, email, conversation):
        creator, provider, _, thread = conversation
        t0 = utcnow() - timedelta(minutes=30)
        participant = await threads.get_participant(session, thread, provider.id)
        participant.last_viewed_at = t0
        participant.last_notified_at = t0 - timedelta(hours=1)
        session.add(participant)
        await session.commit()

        t1 = t0 + timedelta(minutes=5)
        first = await self._post(session, thread, creator, "M", t1)
        assert await jobs.new_message(worker_ctx, {"message_id": first.id}) == 0
        assert email.count == 0

        await session.refresh(participant)
        assert participant.last_notified_at == t1

        t2 = t1 + timedelta(minutes=5)
        second = await self._post(session, thread, creator, "M'", t2)
        assert await jobs.new_message(worker_ctx, {"message_id": second.id}) == 1
        assert email.count == 1
        assert email.last_to_email == provider.email
        assert email.templates == [templates.NEW_MESSAGE]
        assert "M'" in email.last_body

        await session.refresh(participant)
        assert participant.last_notified_at >= t2

    async def test_already_notified_message_is_skipped(self, session, worker_ctx, email, conversation):
        creator, provider, _, thread = conversation
        participant = await threads.get_participant(session, thread, provider.id)
        participant.last_viewed_at = utcnow() - timedelta(hours=2)
        participant.last_notified_at = utcnow() - timedelta(hours=1)
        session.add(participant)
        await session.commit()

        message = await self._post(session, thread, creator, "hello", utcnow() - timedelta(minutes=10))

        assert await jobs.new_message(worker_ctx, {"message_id": message.id}) == 1
        # the same job again finds the watermark past the message
        assert await jobs.new_message(worker_ctx, {"message_id": message.id}) == 0
        assert email.count == 1

    async def test_sender_never_notified(self, session, worker_ctx, email, conversation):
        creator, provider, _, thread = conversation
        for p in await threads.get_participants(session, thread):
            p.last_viewed_at = utcnow() - timedelta(hours=2)
            p.last_notified_at = utcnow() - timedelta(hours=1)
            session.add(p)
        await session.commit()

        message = await self._post(session, thread, creator, "hi", utcnow())
        await jobs.new_message(worker_ctx, {"message_id": message.id})

        assert email.to_addresses() == [provider.email]

    async def test_missing_message_is_retried_then_fatal(self, worker_ctx, email):
        queue = worker_ctx["queue"]
        register_jobs(queue)

        with pytest.raises(FatalError):
            await jobs.new_message(worker_ctx, {"message_id": 9999, "attempt": 2})

        await jobs.new_message(worker_ctx, {"message_id": 9999})
        assert queue.pending == 1
        await queue.drain()
        assert email.count == 0


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------

class TestRequestStatusUpdated:
    @pytest.fixture
    async def accepted(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        provider = await factory.user(org, "provider")
        other = await factory.user(org, "other")
        request = await factory.request(creator, org)
        await potential_providers.offer(session, request, provider)
        await potential_providers.offer(session, request, other)
        await requests.update_status(session, request, creator, RequestStatus.ACCEPTED, provider.uuid)
        await session.commit()
        return creator, provider, other, request

    def _args(self, request, old, new, old_provider_id=None, occurred_at=None):
        return {
            "request_id": request.id,
            "old_status": old,
            "new_status": new,
            "old_provider_id": old_provider_id,
            "occurred_at": (occurred_at or utcnow()).isoformat(),
        }

    async def test_accept_notifies_provider_and_rejects_others(self, worker_ctx, email, accepted):
        _, provider, other, request = accepted

        sent = await jobs.request_status_updated(worker_ctx, self._args(request, "OPEN", "ACCEPTED"))

        assert sent == 2
        assert email.to_addresses() == [provider.email, other.email]
        assert email.templates == ["RequestStatus.ACCEPTED", templates.POTENTIAL_PROVIDER_REJECTED]

    async def test_same_change_is_announced_once(self, worker_ctx, email, accepted):
        _, provider, _, request = accepted
        occurred = utcnow() - timedelta(seconds=5)
        args = self._args(request, "ACCEPTED", "DELIVERED", occurred_at=occurred)

        assert await jobs.request_status_updated(worker_ctx, args) == 1
        assert await jobs.request_status_updated(worker_ctx, args) == 0
        assert email.count == 1

    async def test_reopen_tells_old_provider(self, session, worker_ctx, email, accepted):
        creator, provider, _, request = accepted
        await requests.update_status(session, request, creator, RequestStatus.OPEN)
        await session.commit()

        await jobs.request_status_updated(
            worker_ctx, self._args(request, "ACCEPTED", "OPEN", old_provider_id=provider.id)
        )

        assert email.to_addresses() == [provider.email]
        assert email.templates == ["RequestStatus.OPEN"]

    async def test_watchers_near_destination_hear_too(self, session, factory, worker_ctx, email, accepted):
        creator, provider, _, request = accepted
        org = await users.get_organization(session, request.organization_id)
        watcher = await factory.user(org, "watcher")
        await watches.create_watch(session, watcher, WatchInput(name="Miami", destination=MIAMI))
        await session.commit()

        await jobs.request_status_updated(worker_ctx, self._args(request, "ACCEPTED", "DELIVERED"))

        assert email.to_addresses() == [creator.email, watcher.email]

    async def test_missing_request_is_fatal(self, worker_ctx):
        with pytest.raises(FatalError):
            await jobs.request_status_updated(
                worker_ctx,
                {"request_id": 4242, "old_status": "OPEN", "new_status": "ACCEPTED"},
            )


# ---------------------------------------------------------------------------
# New requests, offers and users
# ---------------------------------------------------------------------------

class TestRequestCreated:
    async def test_audience_with_interest(self, session, factory, worker_ctx, email):
        home = await factory.org("Home")
        peer = await factory.org("Peer")
        await trust.create_trust(session, home.id, peer.id)
        creator = await factory.user(home, "creator")
        colleague = await factory.user(home, "colleague")
        partner = await factory.user(peer, "partner")
        await factory.user(home, "uninterested")
        for user in (colleague, partner):
            await watches.create_watch(session, user, WatchInput(name="Miami", destination=MIAMI))
        request = await factory.request(creator, home, visibility=RequestVisibility.TRUSTED)
        await session.commit()

        assert await jobs.request_created(worker_ctx, {"request_id": request.id}) == 2

        sent = dict(zip(email.to_addresses(), email.templates))
        assert sent == {
            colleague.email: templates.REQUEST_FROM_YOU,
            partner.email: templates.REQUEST_FROM_TRUSTED,
        }

    async def test_same_visibility_skips_peers(self, session, factory, worker_ctx, email):
        home = await factory.org("Home")
        peer = await factory.org("Peer")
        await trust.create_trust(session, home.id, peer.id)
        creator = await factory.user(home, "creator")
        partner = await factory.user(peer, "partner")
        await watches.create_watch(session, partner, WatchInput(name="Miami", destination=MIAMI))
        request = await factory.request(creator, home)
        await session.commit()

        assert await jobs.request_created(worker_ctx, {"request_id": request.id}) == 0


class TestOffersAndUsers:
    async def test_offer_goes_to_creator(self, session, factory, worker_ctx, email):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        helper = await factory.user(org, "helper")
        request = await factory.request(creator, org, title="Guitar strings")
        await session.commit()

        args = {"action": "created", "request_id": request.id, "user_id": helper.id}
        assert await jobs.potential_provider_event(worker_ctx, args)
        assert email.last_to_email == creator.email
        assert "helper" in email.sent[-1].subject

        args = {"action": "rejected", "request_id": request.id, "user_id": helper.id}
        assert await jobs.potential_provider_event(worker_ctx, args)
        assert email.last_to_email == helper.email
        assert "Guitar strings" in email.last_body

    async def test_welcome(self, session, factory, worker_ctx, email):
        user = await factory.user(None, "newbie")
        await session.commit()

        assert await jobs.user_welcome(worker_ctx, {"user_id": user.id})
        assert email.templates == [templates.WELCOME]
        assert "Hi Newbie" in email.last_body
        assert "https://wecarry.test" in email.last_body

    async def test_delivery_failure_is_logged_not_raised(self, session, factory, worker_ctx, email, monkeypatch):
        user = await factory.user(None, "newbie")
        await session.commit()

        async def boom(rendered):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(email, "deliver", boom)
        assert await jobs.user_welcome(worker_ctx, {"user_id": user.id}) is False

    async def test_access_token_cleanup(self, session, factory, worker_ctx):
        user = await factory.user(None, "expiring")
        await users.issue_access_token(session, user)
        await users.issue_access_token(session, user)

        tokens = (await session.execute(select(UserAccessToken))).scalars().all()
        tokens[0].expires_at = utcnow() - timedelta(days=1)
        await session.commit()

        assert await jobs.access_token_cleanup(worker_ctx, {}) == 1
