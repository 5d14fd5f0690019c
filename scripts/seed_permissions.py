"""
Seed script to bootstrap the permission engine.

Run this once per deployment (re-running is safe) to:
- Mirror the permission catalog into the database
- Ensure the Administrator system role holds every catalog permission
- Create the default roles that do not exist yet

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core.database.engine import AsyncSessionLocal, init_db
from atlas.features.permissions import assignments, store
from atlas.features.permissions.catalog import PermissionCatalog, catalog, sync_catalog
from atlas.features.permissions.dependencies import get_resolver
from atlas.features.permissions.models import Permission, Role
from atlas.features.permissions.resolver import PermissionResolver
from atlas.utils import get_logger


log = get_logger(__name__)


ADMINISTRATOR_ROLE = "Administrator"


DEFAULT_ROLES = {
    "Manager": {
        "description": "Manages inventory, licenses and tickets",
        "permissions": [
            "users.read",
            "devices.read", "devices.create", "devices.update", "devices.delete",
            "licenses.read", "licenses.create", "licenses.update", "licenses.delete",
            "license_types.read", "license_types.manage",
            "tickets.read", "tickets.create", "tickets.update", "tickets.delete",
            "categories.read", "categories.create", "categories.update",
            "departments.read",
            "switches.read", "network_outlets.read", "network_ports.read",
            "label_templates.read", "label_templates.manage_own",
            "reports.read", "reports.export",
        ],
    },
    "Support": {
        "description": "Help desk staff working tickets",
        "permissions": [
            "tickets.read", "tickets.create", "tickets.update",
            "devices.read", "licenses.read", "users.read",
        ],
    },
    "Viewer": {
        "description": "Read-only access to the inventory",
        "permissions": [
            "devices.read", "licenses.read", "tickets.read",
            "categories.read", "departments.read",
            "switches.read", "network_outlets.read", "network_ports.read",
            "reports.read",
        ],
    },
}


async def ensure_administrator(
    db: AsyncSession,
    permissions_map: dict[str, Permission],
    resolver: PermissionResolver,
) -> Role:
    """
    Create the Administrator system role if needed and give it every permission.

    Converges on each run, so permissions added to the catalog later are
    picked up by re-seeding. The role is found by its system flag, so an
    administrator that was renamed through the API is still the one converged.
    """
    role = await store.get_system_role(db)
    if role is None:
        role = await store.get_role_by_name(db, ADMINISTRATOR_ROLE)
        if role is not None and not role.is_system:
            role.is_system = True
            await db.commit()
    if role is None:
        role = await store.create_role(
            db,
            ADMINISTRATOR_ROLE,
            "Full access to every module",
            is_system=True,
        )
    await assignments.set_permissions(
        db, role.id, {permission.id for permission in permissions_map.values()}, resolver
    )
    log.info(f"Role '{role.name}' holds all {len(permissions_map)} permissions")
    return role


async def seed_roles(
    db: AsyncSession,
    permissions_map: dict[str, Permission],
    resolver: PermissionResolver,
    registry: PermissionCatalog = catalog,
) -> list[Role]:
    """
    Create default roles that are missing. Existing roles are not touched.

    Args:
        db: Database session
        permissions_map: Dictionary of permission key -> Permission object
        resolver: Resolver to invalidate after assignment
        registry: Catalog the role permissions are checked against
    """
    created = []
    for role_name, role_config in DEFAULT_ROLES.items():
        if await store.get_role_by_name(db, role_name) is not None:
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        role = await store.create_role(db, role_name, role_config["description"])
        permission_ids = set()
        for key in role_config["permissions"]:
            if registry.exists(key) and key in permissions_map:
                permission_ids.add(permissions_map[key].id)
            else:
                log.warning(f"Permission '{key}' not found for role '{role_name}'")
        await assignments.set_permissions(db, role.id, permission_ids, resolver)
        log.info(f"Created role '{role_name}' with {len(permission_ids)} permissions")
        created.append(role)
    return created


async def seed(db: AsyncSession, resolver: PermissionResolver, registry: PermissionCatalog = catalog) -> Role:
    permissions_map = await sync_catalog(db, registry)
    administrator = await ensure_administrator(db, permissions_map, resolver)
    await seed_roles(db, permissions_map, resolver, registry)
    return administrator


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed(db, get_resolver())
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
