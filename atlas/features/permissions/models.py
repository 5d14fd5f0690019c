"""
Permission, Role, and AuditLog models.

A role holds a flat set of permissions through the role_permissions
junction table. There is no role hierarchy and no per-permission
condition: the junction rows are the only source of a role's permissions.
"""
from typing import Any, Dict
from sqlalchemy import Boolean, Column, ForeignKey, JSON, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column

from atlas.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


# Role-Permission relationship. Composite primary key rules out duplicate rows.
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    A single grantable capability, identified by a "module.action" key.

    Rows mirror the in-process PermissionCatalog and are written by
    sync_catalog() at startup. Keys are never renamed.
    """
    __tablename__ = "permissions"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.key!r})>"


class Role(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    Administrator-managed bundle of permissions.

    System roles (the seeded Administrator) cannot be deleted.
    """
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, system={self.is_system})>"


class AuditLog(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    Audit trail for role and assignment changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
