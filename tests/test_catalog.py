"""
Tests for the permission catalog and its database mirror.
"""
import pytest
from sqlalchemy import select

from atlas.features.permissions.catalog import (
    DEFAULT_PERMISSIONS,
    PermissionCatalog,
    build_default_catalog,
    sync_catalog,
)
from atlas.features.permissions.exceptions import DuplicateKeyConflict, ValidationError
from atlas.features.permissions.models import Permission


class TestRegister:

    def test_register_returns_entry_with_module_and_action(self):
        registry = PermissionCatalog()
        entry = registry.register("tickets.read", "View tickets")
        assert entry.module == "tickets"
        assert entry.action == "read"
        assert registry.exists("tickets.read")

    def test_register_same_description_is_noop(self):
        registry = PermissionCatalog()
        first = registry.register("tickets.read", "View tickets")
        second = registry.register("tickets.read", "View tickets")
        assert first == second
        assert len(registry) == 1

    def test_register_different_description_conflicts(self):
        registry = PermissionCatalog()
        registry.register("tickets.read", "View tickets")
        with pytest.raises(DuplicateKeyConflict):
            registry.register("tickets.read", "Read all tickets")
        assert registry.get("tickets.read").description == "View tickets"

    @pytest.mark.parametrize("key", ["", "tickets", "tickets.", ".read", "Tickets.Read", "a.b.c", "tickets read"])
    def test_register_rejects_malformed_keys(self, key):
        with pytest.raises(ValidationError):
            PermissionCatalog().register(key, "bad")

    def test_unknown_key_does_not_exist(self):
        registry = PermissionCatalog()
        assert not registry.exists("users.read")
        assert "users.read" not in registry


class TestListing:

    def test_list_keeps_insertion_order(self):
        registry = PermissionCatalog()
        for key in ["users.read", "devices.read", "users.delete", "devices.create"]:
            registry.register(key, key)
        assert [entry.key for entry in registry.list()] == [
            "users.read", "devices.read", "users.delete", "devices.create"
        ]

    def test_list_filters_by_module(self):
        registry = PermissionCatalog()
        for key in ["users.read", "devices.read", "users.delete"]:
            registry.register(key, key)
        assert [entry.key for entry in registry.list("users")] == ["users.read", "users.delete"]
        assert registry.list("licenses") == []

    def test_listing_is_restartable(self):
        registry = build_default_catalog()
        assert list(registry) == list(registry)

    def test_modules_in_declaration_order(self):
        registry = PermissionCatalog()
        for key in ["users.read", "devices.read", "users.delete"]:
            registry.register(key, key)
        assert registry.modules() == ["users", "devices"]

    def test_default_catalog_contains_admin_keys(self):
        registry = build_default_catalog()
        assert len(registry) == len(DEFAULT_PERMISSIONS)
        for key in ["roles.read", "roles.create", "roles.update", "roles.delete",
                    "roles.assign_permissions", "permissions.read", "audit.read"]:
            assert registry.exists(key)


class TestSyncCatalog:

    async def test_sync_inserts_every_key(self, db):
        registry = build_default_catalog()
        permissions_map = await sync_catalog(db, registry)
        assert set(permissions_map) == set(registry.keys())

        result = await db.execute(select(Permission).where(Permission.key == "license_types.manage"))
        stored = result.scalars().one()
        assert stored.module == "license_types"
        assert stored.action == "manage"

    async def test_sync_is_idempotent(self, db):
        registry = build_default_catalog()
        first = await sync_catalog(db, registry)
        second = await sync_catalog(db, registry)
        assert {k: p.id for k, p in first.items()} == {k: p.id for k, p in second.items()}

    async def test_sync_updates_descriptions(self, db):
        old = PermissionCatalog()
        old.register("tickets.read", "View tickets")
        await sync_catalog(db, old)

        new = PermissionCatalog()
        new.register("tickets.read", "View all tickets")
        permissions_map = await sync_catalog(db, new)
        assert permissions_map["tickets.read"].description == "View all tickets"

    async def test_sync_keeps_undeclared_rows(self, db):
        old = PermissionCatalog()
        old.register("tickets.read", "View tickets")
        old.register("tickets.archive", "Archive tickets")
        await sync_catalog(db, old)

        new = PermissionCatalog()
        new.register("tickets.read", "View tickets")
        await sync_catalog(db, new)

        result = await db.execute(select(Permission.key))
        assert set(result.scalars().all()) == {"tickets.read", "tickets.archive"}
