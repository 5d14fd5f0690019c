"""
Errors raised by the permission engine.

Admin operations raise these to the route layer, where atlas.main maps
them onto HTTP status codes. Resolver-side failures never surface as
errors; they collapse into an empty permission set.
"""
from typing import Any, Dict, Optional


class PermissionEngineError(Exception):
    """Base class for permission engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PermissionEngineError):
    """Malformed input to an admin operation."""


class NotFound(PermissionEngineError):
    """Unknown role or permission id."""


class Conflict(PermissionEngineError):
    """The operation clashes with existing state."""


class DuplicateNameConflict(Conflict):
    """Another role already uses this name."""


class DuplicateKeyConflict(Conflict):
    """A permission key was registered twice with different descriptions."""


class SystemRoleConflict(Conflict):
    """System roles cannot be deleted."""


class RoleInUseConflict(Conflict):
    """The role is still held by users and the delete policy is "block"."""


class AuthorizationDenied(PermissionEngineError):
    """
    The acting principal lacks the required permission.

    The message is fixed so callers never learn which key was missing.
    """

    def __init__(self):
        super().__init__("Permission denied")
