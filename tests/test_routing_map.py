"""Tests for the durable routing map."""

import pytest

from nullroute.errors import PersistenceError
from nullroute.ledger.routing_map import RoutingMap


class TestRoutingMap:

    @pytest.mark.asyncio
    async def test_store_then_lookup(self, session_factory):
        routing = RoutingMap(session_factory)

        await routing.store("internal-1", "ext-1")

        assert await routing.lookup("internal-1") == "ext-1"

    @pytest.mark.asyncio
    async def test_lookup_missing(self, session_factory):
        routing = RoutingMap(session_factory)

        assert await routing.lookup("never-stored") is None

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, session_factory):
        """Mappings live in the database, not the object."""
        await RoutingMap(session_factory).store("internal-1", "ext-1")

        assert await RoutingMap(session_factory).lookup("internal-1") == "ext-1"

    @pytest.mark.asyncio
    async def test_store_same_pair_is_noop(self, session_factory):
        routing = RoutingMap(session_factory)

        await routing.store("internal-1", "ext-1")
        await routing.store("internal-1", "ext-1")

        assert await routing.lookup("internal-1") == "ext-1"

    @pytest.mark.asyncio
    async def test_remap_refused(self, session_factory):
        routing = RoutingMap(session_factory)
        await routing.store("internal-1", "ext-1")

        with pytest.raises(PersistenceError, match="already mapped"):
            await routing.store("internal-1", "ext-2")

        assert await routing.lookup("internal-1") == "ext-1"

    @pytest.mark.asyncio
    async def test_many_to_one_allowed(self, session_factory):
        routing = RoutingMap(session_factory)

        await routing.store("internal-1", "ext-1")
        await routing.store("internal-2", "ext-1")

        assert await routing.lookup("internal-2") == "ext-1"

    @pytest.mark.asyncio
    async def test_store_failure_raises_persistence_error(self, broken_session_factory):
        routing = RoutingMap(broken_session_factory)

        with pytest.raises(PersistenceError):
            await routing.store("internal-1", "ext-1")

    @pytest.mark.asyncio
    async def test_lookup_failure_raises_persistence_error(self, broken_session_factory):
        routing = RoutingMap(broken_session_factory)

        with pytest.raises(PersistenceError):
            await routing.lookup("internal-1")
