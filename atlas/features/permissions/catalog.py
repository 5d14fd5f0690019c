"""
Permission catalog: the closed set of valid permission keys.

The catalog is declared once in DEFAULT_PERMISSIONS and built at import
time. Route modules refer to keys through it instead of keeping their own
string constants, and sync_catalog() mirrors it into the permissions table.
"""
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.features.permissions.exceptions import DuplicateKeyConflict, ValidationError
from atlas.features.permissions.models import Permission
from atlas.utils import get_logger


log = get_logger(__name__)

KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class CatalogEntry:
    key: str
    description: str

    @property
    def module(self) -> str:
        return self.key.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.key.split(".", 1)[1]


class PermissionCatalog:
    """
    Registry of permission keys in declaration order.

    Listing keeps insertion order so keys stay grouped by module the way
    they were declared.
    """

    def __init__(self):
        self._entries: dict[str, CatalogEntry] = {}

    def register(self, key: str, description: str) -> CatalogEntry:
        """
        Register a key. Re-registering with the same description is a no-op.

        Raises:
            ValidationError: key is not of the form "module.action"
            DuplicateKeyConflict: key already registered with another description
        """
        if not KEY_PATTERN.match(key or ""):
            raise ValidationError(
                f"Invalid permission key {key!r}, expected 'module.action'",
                details={"key": key},
            )
        existing = self._entries.get(key)
        if existing is not None:
            if existing.description != description:
                raise DuplicateKeyConflict(
                    f"Permission key {key!r} is already registered with a different description",
                    details={"key": key},
                )
            return existing
        entry = CatalogEntry(key=key, description=description)
        self._entries[key] = entry
        return entry

    def exists(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[CatalogEntry]:
        return self._entries.get(key)

    def list(self, module: Optional[str] = None) -> List[CatalogEntry]:
        entries = self._entries.values()
        if module is not None:
            return [entry for entry in entries if entry.module == module]
        return list(entries)

    def modules(self) -> List[str]:
        seen: dict[str, None] = {}
        for entry in self._entries.values():
            seen.setdefault(entry.module, None)
        return list(seen)

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


DEFAULT_PERMISSIONS = [
    # User management
    ("users.read", "View users"),
    ("users.create", "Create users"),
    ("users.update", "Update users"),
    ("users.delete", "Delete users"),

    # Role management
    ("roles.read", "View roles and their permissions"),
    ("roles.create", "Create roles"),
    ("roles.update", "Rename roles and edit descriptions"),
    ("roles.delete", "Delete roles"),
    ("roles.assign_permissions", "Add, remove and replace role permissions"),

    # Permission catalog
    ("permissions.read", "View the permission catalog"),

    # Devices
    ("devices.read", "View devices"),
    ("devices.create", "Create devices"),
    ("devices.update", "Update devices"),
    ("devices.delete", "Delete devices"),

    # Licenses
    ("licenses.read", "View licenses"),
    ("licenses.create", "Create licenses"),
    ("licenses.update", "Update licenses"),
    ("licenses.delete", "Delete licenses"),
    ("license_types.read", "View license types"),
    ("license_types.manage", "Create, edit and delete license types"),

    # Tickets
    ("tickets.read", "View tickets"),
    ("tickets.create", "Create tickets"),
    ("tickets.update", "Update tickets"),
    ("tickets.delete", "Delete tickets"),

    # Reference data
    ("categories.read", "View categories"),
    ("categories.create", "Create categories"),
    ("categories.update", "Update categories"),
    ("categories.delete", "Delete categories"),
    ("departments.read", "View departments"),
    ("departments.create", "Create departments"),
    ("departments.update", "Update departments"),
    ("departments.delete", "Delete departments"),

    # Network inventory
    ("switches.read", "View switches"),
    ("switches.create", "Create switches"),
    ("switches.update", "Update switches"),
    ("switches.delete", "Delete switches"),
    ("network_outlets.read", "View network outlets"),
    ("network_outlets.create", "Create network outlets"),
    ("network_outlets.update", "Update network outlets"),
    ("network_outlets.delete", "Delete network outlets"),
    ("network_ports.read", "View network ports"),
    ("network_ports.create", "Create network ports"),
    ("network_ports.update", "Update network ports"),
    ("network_ports.delete", "Delete network ports"),

    # Asset tags
    ("asset_tag_settings.read", "View asset tag settings"),
    ("asset_tag_settings.create", "Create asset tag settings"),
    ("asset_tag_settings.update", "Update asset tag settings"),
    ("asset_tag_settings.generate_next", "Reserve the next asset tag"),

    # Label templates
    ("label_templates.read", "View label templates"),
    ("label_templates.manage_own", "Create, edit and delete own label templates"),
    ("label_templates.manage_global", "Create, edit and delete global label templates"),
    ("label_templates.import_global", "Import label templates as global templates"),
    ("label_templates.migrate", "Migrate own label settings"),
    ("label_templates.migrate_global", "Migrate global label settings"),

    # Reports and settings
    ("reports.read", "View reports"),
    ("reports.export", "Export reports"),
    ("settings.read", "View system settings"),
    ("settings.update", "Update system settings"),

    # Audit
    ("audit.read", "View the audit log"),
]


def build_default_catalog() -> PermissionCatalog:
    registry = PermissionCatalog()
    for key, description in DEFAULT_PERMISSIONS:
        registry.register(key, description)
    return registry


# Process-wide catalog, populated at import
catalog = build_default_catalog()


async def sync_catalog(db: AsyncSession, registry: PermissionCatalog = catalog) -> dict[str, Permission]:
    """
    Mirror the catalog into the permissions table.

    Missing keys are inserted; descriptions follow the catalog. Rows whose
    key is no longer declared are left alone and logged, since deleting
    them would cascade into role assignments.

    Returns:
        Dictionary mapping permission keys to Permission rows
    """
    result = await db.execute(select(Permission))
    existing = {permission.key: permission for permission in result.scalars().all()}
    permissions_map: dict[str, Permission] = {}

    for entry in registry:
        permission = existing.get(entry.key)
        if permission is None:
            permission = Permission(
                key=entry.key,
                module=entry.module,
                action=entry.action,
                description=entry.description,
            )
            db.add(permission)
            log.info("Registered permission %s", entry.key)
        elif permission.description != entry.description:
            permission.description = entry.description
            log.info("Updated description of permission %s", entry.key)
        permissions_map[entry.key] = permission

    for key in existing.keys() - permissions_map.keys():
        log.warning("Permission %s is stored but not declared in the catalog", key)

    await db.commit()
    log.info("Permission catalog synced (%d keys)", len(permissions_map))
    return permissions_map
