"""
Authorization entry points and shared engine instances.

Implements:
- The process-wide resolver and decision point
- authorize() / require_all() FastAPI dependencies for route protection
- Audit logging helper
"""
from functools import lru_cache
from typing import Any, Dict, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core import config
from atlas.core.database.engine import AsyncSessionLocal
from atlas.features.permissions.catalog import catalog
from atlas.features.permissions.decision import (
    AllowAllDecisionPoint,
    Decision,
    DecisionPoint,
    Required,
    normalize_required,
)
from atlas.features.permissions.exceptions import AuthorizationDenied
from atlas.features.permissions.models import AuditLog
from atlas.features.permissions.resolver import PermissionResolver
from atlas.features.users.dependencies import get_current_principal
from atlas.features.users.schemas import Principal
from atlas.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Engine Instances
# ============================================================================

@lru_cache
def get_resolver() -> PermissionResolver:
    return PermissionResolver(
        AsyncSessionLocal,
        ttl=config.PERMISSION_CACHE_TTL,
        timeout=config.RESOLVER_TIMEOUT,
    )


@lru_cache
def get_decision_point() -> DecisionPoint:
    if config.AUTHZ_ALLOW_ALL:
        return AllowAllDecisionPoint(catalog)
    return DecisionPoint(catalog)


# ============================================================================
# Permission Checking
# ============================================================================

async def ensure_allowed(
    principal: Principal,
    required: Required,
    resolver: PermissionResolver,
    decision_point: DecisionPoint,
    require_all: bool = False,
) -> Principal:
    """
    Resolve the principal's permissions and check them against ``required``.

    Any one key suffices unless ``require_all`` is set.

    Raises:
        AuthorizationDenied: the decision point denied the request
    """
    keys = normalize_required(required)
    effective = await resolver.resolve(principal.role_id)
    if require_all:
        decision = decision_point.check_all(keys, effective)
    else:
        decision = decision_point.check(keys, effective)

    if decision is not Decision.ALLOW:
        log.warning(
            "Permission denied for user %s (role %s): requires %s of %s",
            principal.id, principal.role_id, "all" if require_all else "one", sorted(keys),
        )
        raise AuthorizationDenied()

    log.debug("User %s granted %s", principal.id, sorted(keys))
    return principal


def _warn_unknown(keys: frozenset[str]) -> None:
    unknown = sorted(key for key in keys if not catalog.exists(key))
    if unknown:
        log.warning("Route guarded by undeclared permission keys %s; it will always deny", unknown)


def authorize(required: Required):
    """
    FastAPI dependency requiring at least one of the given permissions.

    Usage:
        @router.get("/tickets")
        async def list_tickets(
            principal: Principal = Depends(authorize("tickets.read"))
        ):
            pass

        @router.post("/label-templates/import")
        async def import_template(
            principal: Principal = Depends(
                authorize(["label_templates.manage_own", "label_templates.import_global"])
            )
        ):
            pass

    Returns:
        Dependency function that returns the principal if allowed

    Raises:
        AuthorizationDenied: 403 with a generic body
    """
    keys = normalize_required(required)
    _warn_unknown(keys)

    async def authorization_dependency(
        principal: Principal = Depends(get_current_principal),
        resolver: PermissionResolver = Depends(get_resolver),
        decision_point: DecisionPoint = Depends(get_decision_point),
    ) -> Principal:
        return await ensure_allowed(principal, keys, resolver, decision_point)

    return authorization_dependency


def require_all(required: Required):
    """Like authorize(), but every listed permission is needed."""
    keys = normalize_required(required)
    _warn_unknown(keys)

    async def authorization_dependency(
        principal: Principal = Depends(get_current_principal),
        resolver: PermissionResolver = Depends(get_resolver),
        decision_point: DecisionPoint = Depends(get_decision_point),
    ) -> Principal:
        return await ensure_allowed(principal, keys, resolver, decision_point, require_all=True)

    return authorization_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "set_permissions")
        resource_type: Type of resource (e.g., "role")
        resource_id: ID of the resource
        details: Additional details
        request: Incoming request, for client IP and user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    db.add(audit_log)
    await db.commit()

    log.info(f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id}")

    return audit_log
