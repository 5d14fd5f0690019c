"""
Authorization decision point.

Pure functions over (required keys, effective keys). Nothing here touches
storage, so every protected route reduces to a set comparison.
"""
from enum import Enum
from typing import AbstractSet, Iterable, Optional, Union

from atlas.features.permissions.catalog import PermissionCatalog


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


Required = Union[str, Iterable[str]]


def normalize_required(required: Required) -> frozenset[str]:
    """Accept a single key or any iterable of keys."""
    if isinstance(required, str):
        return frozenset((required,))
    return frozenset(required)


def check(required: Required, effective: AbstractSet[str]) -> Decision:
    """
    ALLOW if the principal holds at least one of the required keys.

    An empty requirement or an empty effective set is a DENY.
    """
    keys = normalize_required(required)
    if not keys or not effective:
        return Decision.DENY
    return Decision.ALLOW if keys & effective else Decision.DENY


def check_all(required: Required, effective: AbstractSet[str]) -> Decision:
    """ALLOW only if every required key is held."""
    keys = normalize_required(required)
    if not keys or not effective:
        return Decision.DENY
    return Decision.ALLOW if keys <= effective else Decision.DENY


class DecisionPoint:
    """
    Production decision point.

    When given a catalog, keys it does not declare never match, so a stale
    or misspelled key in either set cannot grant access.
    """

    allows_everything = False

    def __init__(self, catalog: Optional[PermissionCatalog] = None):
        self.catalog = catalog

    def _known(self, keys: Iterable[str]) -> frozenset[str]:
        if self.catalog is None:
            return frozenset(keys)
        return frozenset(key for key in keys if self.catalog.exists(key))

    def check(self, required: Required, effective: AbstractSet[str]) -> Decision:
        return check(self._known(normalize_required(required)), self._known(effective))

    def check_all(self, required: Required, effective: AbstractSet[str]) -> Decision:
        keys = normalize_required(required)
        known = self._known(keys)
        if known != keys:
            return Decision.DENY
        return check_all(known, self._known(effective))


class AllowAllDecisionPoint(DecisionPoint):
    """
    Decision point that allows every request.

    Only selected through the AUTHZ_ALLOW_ALL setting or explicitly in tests;
    startup logs a warning whenever it is active.
    """

    allows_everything = True

    def check(self, required: Required, effective: AbstractSet[str]) -> Decision:
        return Decision.ALLOW

    def check_all(self, required: Required, effective: AbstractSet[str]) -> Decision:
        return Decision.ALLOW
