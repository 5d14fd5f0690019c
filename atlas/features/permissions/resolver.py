"""
Permission resolver: role id -> effective permission keys.

Resolved sets are cached per role for a short TTL. Every mutation of a
role's assignments calls invalidate() before returning, and a per-role
generation counter stops a load that started before the invalidation from
writing its stale result back into the cache.

Any failure while loading (unknown role, storage error, timeout) yields an
empty set. The authorization path fails closed and never raises.
"""
import asyncio
import time
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.features.permissions.models import Permission, role_permissions
from atlas.utils import get_logger


log = get_logger(__name__)

EMPTY: frozenset[str] = frozenset()


class PermissionResolver:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        ttl: float = 30.0,
        timeout: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl = ttl
        self.timeout = timeout
        self._clock = clock
        # role_id -> (expires_at, keys)
        self._cache: dict[str, tuple[float, frozenset[str]]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    async def resolve(self, role_id: Optional[str]) -> frozenset[str]:
        """Return the permission keys assigned to a role, or an empty set."""
        if not role_id:
            return EMPTY

        cached = self._cache.get(role_id)
        if cached is not None and cached[0] > self._clock():
            return cached[1]

        token = self._token(role_id)
        try:
            keys = await asyncio.wait_for(self._load(role_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.error("Resolving permissions for role %s timed out, denying", role_id)
            return EMPTY
        except (SQLAlchemyError, OSError) as e:
            log.error("Resolving permissions for role %s failed, denying: %s", role_id, e)
            return EMPTY
        except Exception:
            log.exception("Unexpected error resolving permissions for role %s, denying", role_id)
            return EMPTY

        # Skip the write if the role was invalidated while we were loading
        if self._token(role_id) == token:
            self._cache[role_id] = (self._clock() + self.ttl, keys)
        return keys

    async def resolve_many(self, role_ids: Iterable[Optional[str]]) -> frozenset[str]:
        """Union of several roles' keys, for principals holding more than one role."""
        keys: set[str] = set()
        for role_id in role_ids:
            keys |= await self.resolve(role_id)
        return frozenset(keys)

    def _token(self, role_id: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(role_id, 0)

    async def _load(self, role_id: str) -> frozenset[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Permission.key)
                .join(role_permissions, role_permissions.c.permission_id == Permission.id)
                .where(role_permissions.c.role_id == role_id)
            )
            return frozenset(result.scalars().all())

    def invalidate(self, role_id: str) -> None:
        self._generations[role_id] = self._generations.get(role_id, 0) + 1
        self._cache.pop(role_id, None)
        log.debug("Invalidated cached permissions for role %s", role_id)

    def clear(self) -> None:
        self._epoch += 1
        self._cache.clear()

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [role_id for role_id, (expires_at, _) in self._cache.items() if expires_at <= now]
        for role_id in expired:
            self._cache.pop(role_id, None)
        return len(expired)

    def is_cached(self, role_id: str) -> bool:
        cached = self._cache.get(role_id)
        return cached is not None and cached[0] > self._clock()
