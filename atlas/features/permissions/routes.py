"""
Permission management API routes.

Provides endpoints for the permission catalog, roles, role-permission
assignments, self-checks, and the audit log. Every route is guarded
through authorize().
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core.database.engine import get_db
from atlas.features.permissions import assignments, store
from atlas.features.permissions.catalog import catalog
from atlas.features.permissions.decision import Decision, DecisionPoint
from atlas.features.permissions.dependencies import (
    authorize,
    create_audit_log,
    get_decision_point,
    get_resolver,
)
from atlas.features.permissions.models import AuditLog, Permission
from atlas.features.permissions.resolver import PermissionResolver
from atlas.features.permissions.schemas import (
    AssignmentResult,
    AssignPermissionToRole,
    AuditLogListResponse,
    AuditLogResponse,
    EffectivePermissionsResponse,
    ModuleListResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    SetRolePermissions,
)
from atlas.features.users.dependencies import get_current_principal
from atlas.features.users.schemas import Principal
from atlas.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


READ_PERMISSIONS = ["permissions.read", "roles.read"]
READ_ROLES = "roles.read"
CREATE_ROLES = "roles.create"
UPDATE_ROLES = "roles.update"
DELETE_ROLES = "roles.delete"
ASSIGN_PERMISSIONS = "roles.assign_permissions"
READ_AUDIT = "audit.read"


# ============================================================================
# Permission Catalog Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    module: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(READ_PERMISSIONS)),
):
    """List catalog permissions in declaration order, optionally for one module."""
    result = await db.execute(select(Permission))
    stored = {permission.key: permission for permission in result.scalars().all()}
    return [stored[entry.key] for entry in catalog.list(module) if entry.key in stored]


@router.get("/permissions/modules", response_model=ModuleListResponse)
async def list_permission_modules(
    principal: Principal = Depends(authorize(READ_PERMISSIONS)),
):
    """List permission modules in declaration order."""
    return ModuleListResponse(modules=catalog.modules())


@router.get("/permissions/me", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Effective permission keys of the caller."""
    keys = await resolver.resolve(principal.role_id)
    return EffectivePermissionsResponse(
        user_id=principal.id,
        role_id=principal.role_id,
        permissions=[key for key in catalog.keys() if key in keys],
    )


@router.post("/permissions/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    decision_point: DecisionPoint = Depends(get_decision_point),
):
    """Check whether the caller holds any (or all) of the given keys."""
    effective = await resolver.resolve(principal.role_id)
    if check_request.require_all:
        decision = decision_point.check_all(check_request.permissions, effective)
    else:
        decision = decision_point.check(check_request.permissions, effective)
    return PermissionCheckResponse(allowed=decision is Decision.ALLOW)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(READ_ROLES)),
):
    """List roles in creation order."""
    return await store.list_roles(db, skip=skip, limit=limit)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(CREATE_ROLES)),
):
    """Create a new role."""
    db_role = await store.create_role(db, role.name, role.description)
    await create_audit_log(
        db,
        user_id=principal.id,
        action="create",
        resource_type="role",
        resource_id=db_role.id,
        details=role.model_dump(),
        request=request,
    )
    return db_role


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(READ_ROLES)),
):
    """Get a specific role with its permissions."""
    role = await store.get_role(db, role_id)
    permissions = await assignments.list_permissions(db, role_id)
    return RoleWithPermissions(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(UPDATE_ROLES)),
):
    """Rename a role or change its description."""
    update_data = role_update.model_dump(exclude_unset=True)
    db_role = await store.update_role(db, role_id, **update_data)
    await create_audit_log(
        db,
        user_id=principal.id,
        action="update",
        resource_type="role",
        resource_id=role_id,
        details=update_data,
        request=request,
    )
    return db_role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: PermissionResolver = Depends(get_resolver),
    principal: Principal = Depends(authorize(DELETE_ROLES)),
):
    """Delete a role and its permission assignments."""
    role = await store.delete_role(db, role_id, resolver)
    await create_audit_log(
        db,
        user_id=principal.id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        details={"name": role.name},
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Role-Permission Assignment Routes
# ============================================================================

@router.get("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def list_role_permissions(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(READ_ROLES)),
):
    """Permissions assigned to a role."""
    return await assignments.list_permissions(db, role_id)


@router.post("/roles/{role_id}/permissions", response_model=AssignmentResult)
async def assign_permission_to_role(
    role_id: str,
    assignment: AssignPermissionToRole,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: PermissionResolver = Depends(get_resolver),
    principal: Principal = Depends(authorize(ASSIGN_PERMISSIONS)),
):
    """Assign a permission to a role. Assigning twice is a no-op."""
    changed = await assignments.add_permission(db, role_id, assignment.permission_id, resolver)
    if changed:
        await create_audit_log(
            db,
            user_id=principal.id,
            action="assign_permission",
            resource_type="role",
            resource_id=role_id,
            details={"permission_id": assignment.permission_id},
            request=request,
        )
    return AssignmentResult(role_id=role_id, permission_id=assignment.permission_id, changed=changed)


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_permission_from_role(
    role_id: str,
    permission_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: PermissionResolver = Depends(get_resolver),
    principal: Principal = Depends(authorize(ASSIGN_PERMISSIONS)),
):
    """Remove a permission from a role. Removing an absent pair succeeds."""
    changed = await assignments.remove_permission(db, role_id, permission_id, resolver)
    if changed:
        await create_audit_log(
            db,
            user_id=principal.id,
            action="remove_permission",
            resource_type="role",
            resource_id=role_id,
            details={"permission_id": permission_id},
            request=request,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def set_role_permissions(
    role_id: str,
    payload: SetRolePermissions,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: PermissionResolver = Depends(get_resolver),
    principal: Principal = Depends(authorize(ASSIGN_PERMISSIONS)),
):
    """Replace all permissions of a role in one step."""
    permission_ids = set(payload.permission_ids)
    permission_ids |= await assignments.permission_ids_for_keys(db, payload.permission_keys)
    await assignments.set_permissions(db, role_id, permission_ids, resolver)
    await create_audit_log(
        db,
        user_id=principal.id,
        action="set_permissions",
        resource_type="role",
        resource_id=role_id,
        details={"permission_ids": sorted(permission_ids)},
        request=request,
    )
    return await assignments.list_permissions(db, role_id)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(authorize(READ_AUDIT)),
):
    """List audit logs with optional filtering."""
    stmt = select(AuditLog)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
