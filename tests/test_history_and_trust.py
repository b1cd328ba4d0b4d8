"""
Tests for the request history stack and the organization trust graph.
"""

import pytest

from wecarry.core.errors import ValidationFailed
from wecarry.schemas.common import RequestStatus
from wecarry.services import history, trust


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class TestHistory:
    async def test_creation_pushes_open(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        request = await factory.request(creator, org)

        entries = await history.list_for_request(session, request)
        assert [e.status for e in entries] == ["OPEN"]
        assert entries[0].receiver_id == creator.id
        assert entries[0].provider_id is None

    async def test_push_same_status_is_noop(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        request = await factory.request(creator, org)

        assert await history.push(session, request) is None
        assert len(await history.list_for_request(session, request)) == 1

    async def test_pop_matching(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        request = await factory.request(creator, org)
        request.status = RequestStatus.ACCEPTED.value
        await history.push(session, request)

        popped = await history.pop(session, request, "ACCEPTED")
        assert popped is not None and popped.status == "ACCEPTED"
        assert [e.status for e in await history.list_for_request(session, request)] == ["OPEN"]

    async def test_pop_mismatch_is_ignored(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        request = await factory.request(creator, org)

        assert await history.pop(session, request, "DELIVERED") is None
        assert len(await history.list_for_request(session, request)) == 1

    async def test_pop_empty_is_ignored(self, session, factory):
        org = await factory.org()
        creator = await factory.user(org, "creator")
        request = await factory.request(creator, org)
        await history.pop(session, request, "OPEN")

        assert await history.pop(session, request, "OPEN") is None
        assert await history.get_last(session, request) is None


# ---------------------------------------------------------------------------
# Trust
# ---------------------------------------------------------------------------

class TestTrust:
    async def test_create_writes_mirror(self, session, factory):
        a = await factory.org("A")
        b = await factory.org("B")

        await trust.create_trust(session, a.id, b.id)

        assert await trust.find_trust(session, a.id, b.id) is not None
        assert await trust.find_trust(session, b.id, a.id) is not None
        assert await trust.trusted_peer_ids(session, [a.id]) == {b.id}
        assert await trust.trusted_peer_ids(session, [b.id]) == {a.id}

    async def test_create_is_idempotent(self, session, factory):
        a = await factory.org("A")
        b = await factory.org("B")

        first = await trust.create_trust(session, a.id, b.id)
        second = await trust.create_trust(session, a.id, b.id)
        reverse = await trust.create_trust(session, b.id, a.id)

        assert first.id == second.id
        assert reverse.primary_id == b.id
        assert len(await trust.list_trusts(session, a.id)) == 1
        assert len(await trust.list_trusts(session, b.id)) == 1

    async def test_self_trust_rejected(self, session, factory):
        a = await factory.org("A")
        with pytest.raises(ValidationFailed):
            await trust.create_trust(session, a.id, a.id)

    async def test_remove_drops_both_directions(self, session, factory):
        a = await factory.org("A")
        b = await factory.org("B")
        await trust.create_trust(session, a.id, b.id)

        await trust.remove_trust(session, b.id, a.id)

        assert await trust.find_trust(session, a.id, b.id) is None
        assert await trust.find_trust(session, b.id, a.id) is None

    async def test_remove_missing_is_harmless(self, session, factory):
        a = await factory.org("A")
        b = await factory.org("B")
        await trust.remove_trust(session, a.id, b.id)
        assert await trust.list_trusts(session, a.id) == []

    async def test_trust_is_not_transitive(self, session, factory):
        a = await factory.org("A")
        b = await factory.org("B")
        c = await factory.org("C")
        await trust.create_trust(session, a.id, b.id)
        await trust.create_trust(session, b.id, c.id)

        assert await trust.trusted_peer_ids(session, [a.id]) == {b.id}
        assert [o.name for o in await trust.list_trusted_organizations(session, b.id)] == ["A", "C"]

    async def test_no_orgs_no_peers(self, session):
        assert await trust.trusted_peer_ids(session, []) == set()
