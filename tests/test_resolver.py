"""
Tests for the permission resolver: caching, invalidation, and failing closed.
"""
import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from atlas.features.permissions import assignments, store
from atlas.features.permissions.resolver import PermissionResolver


class CountingFactory:
    """Session factory wrapper counting how often storage is hit."""

    def __init__(self, factory):
        self.factory = factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.factory()


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class _FakeResult:
    def __init__(self, keys):
        self._keys = keys

    def scalars(self):
        return self

    def all(self):
        return list(self._keys)


class _FakeSession:
    def __init__(self, execute):
        self._execute = execute

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, _stmt):
        return await self._execute()


@pytest.fixture
async def support(db, permissions, resolver):
    role = await store.create_role(db, "support")
    await assignments.set_permissions(
        db, role.id, {permissions["tickets.read"].id, permissions["tickets.update"].id}, resolver
    )
    return role


class TestResolve:

    async def test_resolve_returns_assigned_keys(self, resolver, support):
        assert await resolver.resolve(support.id) == {"tickets.read", "tickets.update"}

    async def test_unknown_role_resolves_empty(self, resolver, permissions):
        assert await resolver.resolve("01HZZZZZZZZZZZZZZZZZZZZZZZ") == frozenset()

    @pytest.mark.parametrize("role_id", [None, ""])
    async def test_missing_role_id_resolves_empty(self, resolver, role_id):
        assert await resolver.resolve(role_id) == frozenset()

    async def test_resolve_many_unions(self, db, permissions, resolver, support):
        viewer = await store.create_role(db, "viewer")
        await assignments.add_permission(db, viewer.id, permissions["devices.read"].id, resolver)
        keys = await resolver.resolve_many([support.id, viewer.id, None])
        assert keys == {"tickets.read", "tickets.update", "devices.read"}


class TestCaching:

    async def test_second_resolve_is_served_from_cache(self, session_factory, support):
        factory = CountingFactory(session_factory)
        resolver = PermissionResolver(factory, ttl=60)

        await resolver.resolve(support.id)
        await resolver.resolve(support.id)

        assert factory.calls == 1
        assert resolver.is_cached(support.id)

    async def test_entries_expire_after_ttl(self, session_factory, support):
        clock = FakeClock()
        factory = CountingFactory(session_factory)
        resolver = PermissionResolver(factory, ttl=30, clock=clock)

        await resolver.resolve(support.id)
        clock.now += 31
        assert not resolver.is_cached(support.id)
        await resolver.resolve(support.id)

        assert factory.calls == 2

    async def test_sweep_drops_expired_entries(self, session_factory, support):
        clock = FakeClock()
        resolver = PermissionResolver(session_factory, ttl=30, clock=clock)
        await resolver.resolve(support.id)

        assert resolver.sweep() == 0
        clock.now += 31
        assert resolver.sweep() == 1

    async def test_clear_drops_everything(self, session_factory, support):
        factory = CountingFactory(session_factory)
        resolver = PermissionResolver(factory, ttl=60)
        await resolver.resolve(support.id)
        resolver.clear()
        assert not resolver.is_cached(support.id)
        assert await resolver.resolve(support.id) == {"tickets.read", "tickets.update"}
        assert factory.calls == 2


class TestInvalidation:

    async def test_add_is_visible_immediately(self, db, permissions, resolver, support):
        await resolver.resolve(support.id)
        await assignments.add_permission(db, support.id, permissions["tickets.delete"].id, resolver)
        assert "tickets.delete" in await resolver.resolve(support.id)

    async def test_repeated_add_still_invalidates(self, db, permissions, resolver, support):
        await resolver.resolve(support.id)
        changed = await assignments.add_permission(db, support.id, permissions["tickets.read"].id, resolver)
        assert changed is False
        assert not resolver.is_cached(support.id)

    async def test_remove_is_visible_immediately(self, db, permissions, resolver, support):
        await resolver.resolve(support.id)
        await assignments.remove_permission(db, support.id, permissions["tickets.update"].id, resolver)
        assert await resolver.resolve(support.id) == {"tickets.read"}

    async def test_set_is_visible_immediately(self, db, permissions, resolver, support):
        await resolver.resolve(support.id)
        await assignments.set_permissions(db, support.id, {permissions["devices.read"].id}, resolver)
        assert await resolver.resolve(support.id) == {"devices.read"}

    async def test_deleted_role_resolves_empty(self, db, resolver, support):
        assert await resolver.resolve(support.id) == {"tickets.read", "tickets.update"}
        await store.delete_role(db, support.id, resolver)
        assert not resolver.is_cached(support.id)
        assert await resolver.resolve(support.id) == frozenset()

    async def test_load_started_before_invalidation_is_not_cached(self):
        gate = asyncio.Event()

        async def slow_execute():
            await gate.wait()
            return _FakeResult(["tickets.read"])

        resolver = PermissionResolver(lambda: _FakeSession(slow_execute), ttl=60, timeout=5)
        pending = asyncio.create_task(resolver.resolve("role-1"))
        await asyncio.sleep(0)

        resolver.invalidate("role-1")
        gate.set()

        assert await pending == {"tickets.read"}
        assert not resolver.is_cached("role-1")


class TestFailClosed:

    async def test_timeout_resolves_empty(self):
        async def hang():
            await asyncio.sleep(10)

        resolver = PermissionResolver(lambda: _FakeSession(hang), timeout=0.05)
        assert await resolver.resolve("role-1") == frozenset()
        assert not resolver.is_cached("role-1")

    async def test_storage_error_resolves_empty(self):
        async def broken():
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        resolver = PermissionResolver(lambda: _FakeSession(broken))
        assert await resolver.resolve("role-1") == frozenset()

    async def test_unexpected_error_resolves_empty(self):
        def broken_factory():
            raise RuntimeError("Event loop is closed")

        resolver = PermissionResolver(broken_factory)
        assert await resolver.resolve("role-1") == frozenset()
        assert not resolver.is_cached("role-1")

    async def test_unavailable_storage_recovers_after_failure(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("unable to open database file"))
            return _FakeResult(["tickets.read"])

        resolver = PermissionResolver(lambda: _FakeSession(flaky))
        assert await resolver.resolve("role-1") == frozenset()
        assert await resolver.resolve("role-1") == {"tickets.read"}
