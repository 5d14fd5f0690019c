"""
Pydantic schemas for permission management.

Request and response models for the catalog, roles, assignments,
permission checks, and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """A catalog permission as stored."""
    id: str
    key: str
    module: str
    action: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ModuleListResponse(BaseModel):
    modules: List[str]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=2, max_length=50, description="Unique role name (case-sensitive)")
    description: Optional[str] = Field(None, max_length=255, description="Role description")

    @field_validator('name', mode='before')
    @classmethod
    def strip_name(cls, v):
        # Length bounds apply to the stripped name
        if isinstance(v, str):
            return v.strip()
        return v


class RoleCreate(RoleBase):
    """Schema for creating a new role."""


class RoleUpdate(BaseModel):
    """Schema for updating a role. Omitted fields keep their value."""
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=255)

    @field_validator('name', mode='before')
    @classmethod
    def strip_name(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    description: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignPermissionToRole(BaseModel):
    """Schema for assigning a permission to a role."""
    permission_id: str = Field(..., description="Permission ID")


class SetRolePermissions(BaseModel):
    """
    Replace a role's permissions.

    Ids and keys may be mixed; the union becomes the role's new set.
    Both empty clears the role.
    """
    permission_ids: List[str] = Field(default_factory=list)
    permission_keys: List[str] = Field(default_factory=list)


class AssignmentResult(BaseModel):
    role_id: str
    permission_id: str
    changed: bool


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check the caller against one or more permission keys."""
    permissions: List[str] = Field(..., min_length=1, description="Permission keys")
    require_all: bool = Field(False, description="Require every key instead of any one")


class PermissionCheckResponse(BaseModel):
    allowed: bool


class EffectivePermissionsResponse(BaseModel):
    """The caller's role and the keys it grants."""
    user_id: str
    role_id: Optional[str]
    permissions: List[str]


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
