"""Token registry: the authoritative set of live push tokens per user."""

import base64
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.concurrency import chunked
from app.core.config import settings
from app.exceptions.push import TokenRegistryError
from models.base import utcnow
from models.push_token import TOKEN_PATH_ROOT, PushToken


logger = logging.getLogger(__name__)

# Bound on parameters per DELETE statement.
_DELETE_BATCH = 200
USER_AGENT_MAX_LENGTH = 160


def token_key(token: str) -> str:
    """URL-safe, unpadded base64 of the token; distinct tokens never share a key."""
    return base64.urlsafe_b64encode(token.encode("utf-8")).decode("ascii").rstrip("=")


def storage_path(user_id: str, key: str) -> str:
    return f"{TOKEN_PATH_ROOT}/{user_id}/{key}"


def parse_storage_path(path: str) -> tuple[str, str]:
    """Split ``tokens/{user_id}/{token_key}`` into ``(user_id, token_key)``.

    User IDs may contain ``/``; token keys are base64url and never do.
    """
    prefix = f"{TOKEN_PATH_ROOT}/"
    user_id, _, key = path.removeprefix(prefix).rpartition("/")
    if not path.startswith(prefix) or not user_id or not key:
        raise ValueError(f"Not a token storage path: {path!r}")
    return user_id, key


@dataclass
class TokenLookup:
    """Deduplicated tokens plus where each one is stored."""

    tokens: list[str] = field(default_factory=list)
    paths_by_token: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class RegistrationResult:
    token_key: str
    storage_path: str
    pruned: int = 0


class TokenRegistry:
    """Service for registering, resolving and deleting device push tokens."""

    def __init__(self, db: AsyncSession, max_tokens_per_user: int | None = None):
        """Initialize the registry.

        Args:
            db: Async database session
            max_tokens_per_user: Per-user cap; defaults to the configured value
        """
        self.db = db
        self.max_tokens_per_user = max_tokens_per_user or settings.push_max_tokens_per_user

    async def register(
        self,
        user_id: str,
        token: str,
        device_id: str | None,
        origin: str | None,
        user_agent: str | None = None,
        registered_at: datetime | None = None,
    ) -> RegistrationResult:
        """Write the token entry and prune the user's other entries in one commit.

        Re-registering the same token updates its entry. Other entries from the
        same device are removed, then the oldest entries are evicted so that the
        user keeps at most ``max_tokens_per_user`` tokens.

        Raises:
            TokenRegistryError: If the write fails
        """
        key = token_key(token)
        now = registered_at or utcnow()

        try:
            entries = await self._user_entries(user_id)
            current = next((entry for entry in entries if entry.token_key == key), None)
            if current is None:
                current = PushToken(user_id=user_id, token_key=key, created_at=now)
                self.db.add(current)

            current.token = token
            current.device_id = device_id
            current.origin = origin
            current.user_agent = (user_agent or "")[:USER_AGENT_MAX_LENGTH] or None
            current.updated_at = now

            stale = self._select_pruned(entries, key, device_id)
            for entry in stale:
                await self.db.delete(entry)

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to register push token for user {user_id}: {str(e)}")
            raise TokenRegistryError(f"Failed to save push token: {str(e)}") from e

        if stale:
            logger.info(f"Pruned {len(stale)} old token(s) for user {user_id}")

        return RegistrationResult(token_key=key, storage_path=storage_path(user_id, key), pruned=len(stale))

    async def prune(self, user_id: str, current_key: str, device_id: str | None) -> int:
        """Remove same-device duplicates and enforce the cap around ``current_key``.

        Returns:
            Number of entries removed
        """
        try:
            entries = await self._user_entries(user_id)
            stale = self._select_pruned(entries, current_key, device_id)
            for entry in stale:
                await self.db.delete(entry)
            if stale:
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenRegistryError(f"Failed to prune push tokens: {str(e)}") from e
        return len(stale)

    def _select_pruned(
        self, entries: list[PushToken], current_key: str, device_id: str | None
    ) -> list[PushToken]:
        same_device = [
            entry
            for entry in entries
            if entry.token_key != current_key and device_id and entry.device_id == device_id
        ]
        marked = {entry.token_key for entry in same_device}
        remaining = [
            entry for entry in entries if entry.token_key != current_key and entry.token_key not in marked
        ]

        # +1 for the entry being kept
        excess = len(remaining) + 1 - self.max_tokens_per_user
        if excess <= 0:
            return same_device

        remaining.sort(key=lambda entry: entry.updated_at or datetime.min)
        return same_device + remaining[:excess]

    async def _user_entries(self, user_id: str) -> list[PushToken]:
        result = await self.db.execute(select(PushToken).where(PushToken.user_id == user_id))
        return list(result.scalars().all())

    async def list_tokens(self, user_id: str) -> list[PushToken]:
        """Get a user's registered devices, newest first."""
        result = await self.db.execute(
            select(PushToken)
            .where(PushToken.user_id == user_id)
            .order_by(PushToken.updated_at.desc())
        )
        return list(result.scalars().all())

    async def resolve_tokens(self, user_ids: Iterable[str] | None = None) -> TokenLookup:
        """Collect the unique tokens of ``user_ids`` (every user when empty).

        Raises:
            TokenRegistryError: If the registry cannot be read
        """
        wanted = {uid for uid in (user_ids or []) if uid}
        query = select(PushToken).order_by(PushToken.user_id, PushToken.created_at)
        if wanted:
            query = query.where(PushToken.user_id.in_(wanted))

        try:
            result = await self.db.execute(query)
            entries = result.scalars().all()
        except SQLAlchemyError as e:
            raise TokenRegistryError(f"Failed to read push tokens: {str(e)}") from e

        lookup = TokenLookup()
        for entry in entries:
            if not entry.token:
                continue
            if entry.token not in lookup.paths_by_token:
                lookup.tokens.append(entry.token)
                lookup.paths_by_token[entry.token] = []
            lookup.paths_by_token[entry.token].append(entry.storage_path)

        logger.debug(f"Resolved {len(lookup.tokens)} tokens for {len(wanted) or 'all'} users")
        return lookup

    async def delete_tokens(
        self,
        tokens: Iterable[str],
        paths_by_token: dict[str, list[str]] | None = None,
    ) -> int:
        """Delete every entry holding one of ``tokens``.

        With ``paths_by_token`` only the mapped paths are removed; otherwise the
        registry is searched for matching entries.

        Returns:
            Number of entries actually removed
        """
        unique = list(dict.fromkeys(t for t in tokens if t))
        if not unique:
            return 0

        if paths_by_token is not None:
            paths = [path for token in unique for path in paths_by_token.get(token, [])]
            return await self.delete_paths(paths)

        removed = 0
        try:
            for batch in chunked(unique, _DELETE_BATCH):
                result = await self.db.execute(delete(PushToken).where(PushToken.token.in_(batch)))
                removed += result.rowcount or 0
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenRegistryError(f"Failed to delete push tokens: {str(e)}") from e

        logger.info(f"Removed {removed} invalid push token entries")
        return removed

    async def delete_paths(self, paths: Iterable[str]) -> int:
        """Delete entries by storage path in one transaction.

        Returns:
            Number of entries actually removed
        """
        try:
            pairs = list(dict.fromkeys(parse_storage_path(path) for path in paths))
        except ValueError as e:
            raise TokenRegistryError(str(e)) from e
        if not pairs:
            return 0

        removed = 0
        try:
            for batch in chunked(pairs, _DELETE_BATCH):
                condition = or_(
                    *(
                        and_(PushToken.user_id == user_id, PushToken.token_key == key)
                        for user_id, key in batch
                    )
                )
                result = await self.db.execute(delete(PushToken).where(condition))
                removed += result.rowcount or 0
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TokenRegistryError(f"Failed to delete push tokens: {str(e)}") from e

        logger.info(f"Removed {removed} of {len(pairs)} push token paths")
        return removed


__all__ = [
    "TokenRegistry",
    "TokenLookup",
    "RegistrationResult",
    "token_key",
    "storage_path",
    "parse_storage_path",
]
