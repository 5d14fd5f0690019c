"""
Role store: create, update, delete, and list roles.

Deleting a role removes its role_permissions rows in the same
transaction and invalidates the resolver entry before returning.
"""
import asyncio
import weakref
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core import config
from atlas.features.permissions.exceptions import (
    DuplicateNameConflict,
    NotFound,
    RoleInUseConflict,
    SystemRoleConflict,
    ValidationError,
)
from atlas.features.permissions.models import Role, role_permissions
from atlas.features.permissions.resolver import PermissionResolver
from atlas.features.users.models import User
from atlas.utils import get_logger


log = get_logger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 255

DELETE_POLICIES = ("proceed", "block")

# Marks an argument the caller left out, so None can still clear a description
UNSET: Any = object()


class RoleLocks:
    """
    One asyncio.Lock per role id.

    Mutations of the same role queue behind each other; different roles
    never share a lock. Entries disappear once no coroutine holds them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_role(self, role_id: str) -> asyncio.Lock:
        lock = self._locks.get(role_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[role_id] = lock
        return lock


role_locks = RoleLocks()


def validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required", details={"name": name})
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"Role name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters",
            details={"name": name},
        )
    return name


def validate_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    description = description.strip()
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters",
            details={"description_length": len(description)},
        )
    return description or None


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Role.id).where(Role.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Role.id != exclude_id)
    result = await db.execute(stmt)
    if result.first() is not None:
        raise DuplicateNameConflict(f"Role '{name}' already exists", details={"name": name})


async def get_role(db: AsyncSession, role_id: str) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalars().first()
    if role is None:
        raise NotFound("Role not found", details={"role_id": role_id})
    return role


async def get_role_by_name(db: AsyncSession, name: str) -> Optional[Role]:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalars().first()


async def get_system_role(db: AsyncSession) -> Optional[Role]:
    """The oldest system role, whatever it is currently named."""
    result = await db.execute(
        select(Role).where(Role.is_system.is_(True)).order_by(Role.created_at, Role.id)
    )
    return result.scalars().first()


async def list_roles(db: AsyncSession, skip: int = 0, limit: Optional[int] = None) -> Sequence[Role]:
    """Roles in creation order."""
    stmt = select(Role).order_by(Role.created_at, Role.id).offset(skip)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


async def create_role(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
    is_system: bool = False,
) -> Role:
    """
    Create a role.

    Raises:
        ValidationError: name empty or outside 2-50 chars, description too long
        DuplicateNameConflict: another role has the same name (case-sensitive)
    """
    name = validate_name(name)
    description = validate_description(description)
    await _ensure_name_free(db, name)

    role = Role(name=name, description=description, is_system=is_system)
    db.add(role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateNameConflict(f"Role '{name}' already exists", details={"name": name})
    await db.refresh(role)
    log.info("Created role %s (%s)", role.name, role.id)
    return role


async def update_role(
    db: AsyncSession,
    role_id: str,
    name: Optional[str] = UNSET,
    description: Optional[str] = UNSET,
) -> Role:
    """
    Rename a role and/or change its description.

    Arguments left out keep their current value. Permissions are untouched,
    so the resolver cache stays valid.
    """
    async with role_locks.for_role(role_id):
        if name is not UNSET:
            name = validate_name(name)
        if description is not UNSET:
            description = validate_description(description)

        role = await get_role(db, role_id)
        if name is not UNSET:
            if name != role.name:
                await _ensure_name_free(db, name, exclude_id=role_id)
            role.name = name
        if description is not UNSET:
            role.description = description

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateNameConflict("Role name already exists", details={"role_id": role_id})
        await db.refresh(role)
        log.info("Updated role %s", role_id)
        return role


async def count_role_holders(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(select(func.count()).select_from(User).where(User.role_id == role_id))
    return result.scalar() or 0


async def delete_role(
    db: AsyncSession,
    role_id: str,
    resolver: PermissionResolver,
    policy: Optional[str] = None,
) -> Role:
    """
    Delete a role together with all of its permission assignments.

    With the "proceed" policy users holding the role keep a dangling
    reference (cleared by the foreign key) and resolve to no permissions.
    With "block" the delete is refused while any user holds the role.

    Raises:
        NotFound: unknown role
        SystemRoleConflict: role is a system role
        RoleInUseConflict: policy is "block" and users still hold the role
    """
    policy = (policy or config.ROLE_DELETE_POLICY).lower()
    if policy not in DELETE_POLICIES:
        raise ValueError(f"Unknown role delete policy {policy!r}")

    async with role_locks.for_role(role_id):
        role = await get_role(db, role_id)
        if role.is_system:
            raise SystemRoleConflict("System roles cannot be deleted", details={"role_id": role_id})

        if policy == "block":
            holders = await count_role_holders(db, role_id)
            if holders:
                raise RoleInUseConflict(
                    "Role is still assigned to users",
                    details={"role_id": role_id, "users": holders},
                )

        try:
            await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
            await db.delete(role)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            # Also covers a failed commit, where storage state is uncertain
            resolver.invalidate(role_id)

        log.info("Deleted role %s (%s)", role.name, role_id)
        return role
