# ruo/services/authorities.py
"""
Authority Directory Cache: postal code -> responsible authority.

Cache-aside over the external directory:
  - hit in the `authorities` table  -> returned as is, no external call
  - miss                            -> directory lookup, upsert on success
  - no coverage / failure           -> None, never persisted

Records older than `max_age` are re-fetched on access; if that re-fetch
fails the stale record is still served. Misses are not cached unless a
negative TTL is configured (in-memory, per process).
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ruo import config, crud
from ruo.errors import ExternalServiceError
from ruo.schemas import AuthorityRecord
from ruo.services.directory import DirectoryClient

logger = logging.getLogger(__name__)


def normalize_postal_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    code = "".join(str(value).split())
    if not code or len(code) > 10:
        return None
    return code


class AuthorityCache:
    def __init__(
        self,
        directory: DirectoryClient,
        *,
        max_age: Optional[timedelta] = timedelta(days=config.AUTHORITY_MAX_AGE_DAYS),
        negative_ttl: float = config.AUTHORITY_NEGATIVE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = directory
        self.max_age = max_age if max_age and max_age.total_seconds() > 0 else None
        self.negative_ttl = negative_ttl
        self._clock = clock
        # code postal -> (verrou, nombre de tâches qui le tiennent ou l'attendent)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}
        self._misses: Dict[str, float] = {}

    # ---------- policy ----------

    def is_stale(self, record: AuthorityRecord) -> bool:
        if self.max_age is None or record.updated_at is None:
            return False
        updated = record.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - updated > self.max_age

    def _miss_is_cached(self, code: str) -> bool:
        expires = self._misses.get(code)
        if expires is None:
            return False
        if self._clock() >= expires:
            self._misses.pop(code, None)
            return False
        return True

    def _remember_miss(self, code: str) -> None:
        if self.negative_ttl > 0:
            self._misses[code] = self._clock() + self.negative_ttl

    # ---------- read path ----------

    async def _load(self, db: AsyncSession, code: str) -> Optional[AuthorityRecord]:
        row = await crud.get_authority_by_postal_code(db, code)
        return AuthorityRecord(**row) if row else None

    async def resolve(self, db: AsyncSession, postal_code: Optional[str]) -> Optional[AuthorityRecord]:
        code = normalize_postal_code(postal_code)
        if code is None:
            return None

        cached = await self._load(db, code)
        if cached is not None and not self.is_stale(cached):
            logger.debug("[authority] cache hit for %s", code)
            return cached
        if cached is None and self._miss_is_cached(code):
            logger.debug("[authority] negative cache hit for %s", code)
            return None

        lock = self._acquire_slot(code)
        try:
            async with lock:
                # une requête concurrente a pu remplir le cache pendant l'attente
                current = await self._load(db, code)
                if current is not None and not self.is_stale(current):
                    return current
                fresh = await self._fetch_and_store(db, code)
                if fresh is not None:
                    return fresh
                if current is not None:
                    logger.info("[authority] serving stale record for %s", code)
                return current
        finally:
            self._release_slot(code)

    def _acquire_slot(self, code: str) -> asyncio.Lock:
        lock, users = self._locks.get(code) or (asyncio.Lock(), 0)
        self._locks[code] = (lock, users + 1)
        return lock

    def _release_slot(self, code: str) -> None:
        lock, users = self._locks[code]
        if users <= 1:
            del self._locks[code]
        else:
            self._locks[code] = (lock, users - 1)

    async def _fetch_and_store(self, db: AsyncSession, code: str) -> Optional[AuthorityRecord]:
        logger.info("[authority] fetching %s from directory", code)
        try:
            entry = await self.directory.lookup(code)
        except ExternalServiceError as e:
            logger.warning("[authority] lookup failed for %s: %s", code, e.message)
            return None

        if entry is None:
            logger.info("[authority] no coverage for %s", code)
            self._remember_miss(code)
            return None

        try:
            await crud.upsert_authority(db, code, entry)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        self._misses.pop(code, None)
        logger.info("[authority] cached %s: %s (%s)", code, entry.name, entry.email)
        return await self._load(db, code)

    # ---------- refresh ----------

    async def refresh_stale(self, db: AsyncSession, limit: int = config.AUTHORITY_REFRESH_BATCH) -> int:
        """Re-fetch up to `limit` records older than max_age. Returns how many were updated."""
        if self.max_age is None:
            return 0
        cutoff = datetime.now(timezone.utc) - self.max_age
        codes = await crud.list_stale_authorities(db, cutoff, limit)
        refreshed = 0
        for code in codes:
            if await self._fetch_and_store(db, code) is not None:
                refreshed += 1
        if codes:
            logger.info("[authority] refreshed %d/%d stale records", refreshed, len(codes))
        return refreshed
