"""
Role-permission assignment.

The only writer of the role_permissions table. add/remove are
idempotent; set_permissions replaces a role's whole set in one
transaction after validating every id. Each successful mutation
invalidates the role's resolver entry before returning.
"""
from typing import Iterable, Sequence

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.features.permissions.exceptions import NotFound
from atlas.features.permissions.models import Permission, role_permissions
from atlas.features.permissions.resolver import PermissionResolver
from atlas.features.permissions.store import get_role, role_locks
from atlas.utils import get_logger


log = get_logger(__name__)


async def get_permission(db: AsyncSession, permission_id: str) -> Permission:
    result = await db.execute(select(Permission).where(Permission.id == permission_id))
    permission = result.scalars().first()
    if permission is None:
        raise NotFound("Permission not found", details={"permission_id": permission_id})
    return permission


async def permission_ids_for_keys(db: AsyncSession, keys: Iterable[str]) -> set[str]:
    """
    Map permission keys to ids.

    Raises:
        NotFound: any key is not stored, listing every missing key
    """
    wanted = set(keys)
    if not wanted:
        return set()
    result = await db.execute(select(Permission.key, Permission.id).where(Permission.key.in_(wanted)))
    found = {key: permission_id for key, permission_id in result.all()}
    missing = sorted(wanted - found.keys())
    if missing:
        raise NotFound("Unknown permission keys", details={"keys": missing})
    return set(found.values())


async def _assigned_ids(db: AsyncSession, role_id: str) -> set[str]:
    result = await db.execute(
        select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
    )
    return set(result.scalars().all())


async def list_permissions(db: AsyncSession, role_id: str) -> Sequence[Permission]:
    """Permissions assigned to a role, grouped by module."""
    await get_role(db, role_id)
    result = await db.execute(
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(Permission.module, Permission.action)
    )
    return result.scalars().all()


async def add_permission(
    db: AsyncSession,
    role_id: str,
    permission_id: str,
    resolver: PermissionResolver,
) -> bool:
    """
    Assign a permission to a role.

    Returns:
        True if a row was added, False if the pair already existed

    Raises:
        NotFound: unknown role or permission
    """
    async with role_locks.for_role(role_id):
        await get_role(db, role_id)
        permission = await get_permission(db, permission_id)

        existing = await db.execute(
            select(role_permissions).where(
                and_(
                    role_permissions.c.role_id == role_id,
                    role_permissions.c.permission_id == permission_id,
                )
            )
        )
        if existing.first():
            log.debug("Permission %s already assigned to role %s", permission.key, role_id)
            resolver.invalidate(role_id)
            return False

        try:
            await db.execute(insert(role_permissions).values(role_id=role_id, permission_id=permission_id))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            resolver.invalidate(role_id)

        log.info("Assigned permission %s to role %s", permission.key, role_id)
        return True


async def remove_permission(
    db: AsyncSession,
    role_id: str,
    permission_id: str,
    resolver: PermissionResolver,
) -> bool:
    """
    Remove a permission from a role.

    Removing an absent pair succeeds without change.

    Returns:
        True if a row was removed
    """
    async with role_locks.for_role(role_id):
        try:
            result = await db.execute(
                delete(role_permissions).where(
                    and_(
                        role_permissions.c.role_id == role_id,
                        role_permissions.c.permission_id == permission_id,
                    )
                )
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            resolver.invalidate(role_id)

        removed = (result.rowcount or 0) > 0
        if removed:
            log.info("Removed permission %s from role %s", permission_id, role_id)
        return removed


async def set_permissions(
    db: AsyncSession,
    role_id: str,
    permission_ids: Iterable[str],
    resolver: PermissionResolver,
) -> set[str]:
    """
    Replace a role's permissions with exactly ``permission_ids``.

    Duplicates are ignored. All ids are checked before anything is written;
    if one is unknown the role keeps its previous set. The delete and the
    inserts commit together, so no reader sees a half-applied set.

    Returns:
        The permission ids now assigned

    Raises:
        NotFound: unknown role, or any unknown permission id (all listed)
    """
    wanted = set(permission_ids)

    async with role_locks.for_role(role_id):
        await get_role(db, role_id)

        if wanted:
            result = await db.execute(select(Permission.id).where(Permission.id.in_(wanted)))
            missing = sorted(wanted - set(result.scalars().all()))
            if missing:
                raise NotFound("Unknown permission ids", details={"permission_ids": missing})

        current = await _assigned_ids(db, role_id)
        to_remove = current - wanted
        to_add = wanted - current

        try:
            if to_remove:
                await db.execute(
                    delete(role_permissions).where(
                        and_(
                            role_permissions.c.role_id == role_id,
                            role_permissions.c.permission_id.in_(to_remove),
                        )
                    )
                )
            if to_add:
                await db.execute(
                    insert(role_permissions),
                    [{"role_id": role_id, "permission_id": permission_id} for permission_id in to_add],
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            resolver.invalidate(role_id)

        log.info(
            "Set permissions of role %s: %d total, %d added, %d removed",
            role_id, len(wanted), len(to_add), len(to_remove),
        )
        return wanted
