"""Content-addressed build cache: fingerprint -> artifact, persisted across runs.

get_or_build() runs at most one lookup-or-build per fingerprint at a time: the
first caller registers a future, later callers for the same fingerprint await
it. Database reads and writes inside get_or_build() run in worker threads.
"""

import asyncio
import itertools
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from sqlalchemy import delete, func
from sqlmodel import Session, select

from sitepub.cache.database import cache_url, init_db, make_engine
from sitepub.cache.models import CacheEntry, CacheInfo
from sitepub.core.models import Artifact
from sitepub.core.utils.hashing import sha256_bytes


logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1


class BuildCache:
    def __init__(self, engine, max_bytes: int = 0) -> None:
        self.engine = engine
        self.max_bytes = max_bytes
        self._inflight: dict[str, asyncio.Future] = {}
        init_db(engine)
        self._check_format()
        with Session(engine) as session:
            last = session.exec(select(func.max(CacheEntry.last_access))).one() or 0
        self._access_seq = itertools.count(last + 1)

    @classmethod
    def open(cls, cache_dir: Path, max_bytes: int = 0) -> "BuildCache":
        """Open (creating if needed) the persistent cache under cache_dir."""
        Path(cache_dir).mkdir(parents=True, exist_ok=True)
        return cls(make_engine(cache_url(cache_dir)), max_bytes)

    def _check_format(self) -> None:
        """Clear every entry when the stored format version differs from ours."""
        with Session(self.engine) as session:
            info = session.get(CacheInfo, "format_version")
            if info is not None and info.value == str(CACHE_FORMAT_VERSION):
                return
            if info is not None:
                logger.info("Cache format %s != %s; clearing all entries", info.value, CACHE_FORMAT_VERSION)
            session.exec(delete(CacheEntry))
            session.merge(CacheInfo(key="format_version", value=str(CACHE_FORMAT_VERSION)))
            session.commit()

    def _next_seq(self) -> int:
        return next(self._access_seq)

    def get(self, fingerprint: str) -> Artifact | None:
        """Return the stored artifact, or None on miss. A checksum mismatch counts as a miss."""
        with Session(self.engine) as session:
            entry = session.get(CacheEntry, fingerprint)
            if entry is None:
                return None
            if sha256_bytes(entry.content) != entry.checksum or len(entry.content) != entry.size:
                logger.warning("Corrupt cache entry %s; treating as a miss", fingerprint[:12])
                session.delete(entry)
                session.commit()
                return None
            try:
                html = entry.content.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Undecodable cache entry %s; treating as a miss", fingerprint[:12])
                session.delete(entry)
                session.commit()
                return None
            entry.last_access = self._next_seq()
            session.add(entry)
            session.commit()
            return Artifact(fingerprint=fingerprint, html=html, cached=True)

    def put(self, fingerprint: str, html: str) -> Artifact:
        data = html.encode("utf-8")
        with Session(self.engine) as session:
            session.merge(CacheEntry(
                fingerprint=fingerprint,
                content=data,
                checksum=sha256_bytes(data),
                size=len(data),
                last_access=self._next_seq(),
            ))
            session.commit()
        return Artifact(fingerprint=fingerprint, html=html)

    def __contains__(self, fingerprint: str) -> bool:
        with Session(self.engine) as session:
            return session.get(CacheEntry, fingerprint) is not None

    async def get_or_build(self, fingerprint: str, build_fn: Callable[[], Awaitable[str]]) -> Artifact:
        """Return the cached artifact or run build_fn once, sharing its result with concurrent callers.

        Failures propagate to every waiter and are never stored.
        """
        pending = self._inflight.get(fingerprint)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        # Mark the exception retrieved when no other caller is waiting on it.
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._inflight[fingerprint] = future
        try:
            artifact = await asyncio.to_thread(self.get, fingerprint)
            if artifact is None:
                html = await build_fn()
                artifact = await asyncio.to_thread(self.put, fingerprint, html)
        except BaseException as e:
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(e)
            raise
        else:
            future.set_result(artifact)
            return artifact
        finally:
            del self._inflight[fingerprint]

    def evict(self, protected: Iterable[str] = ()) -> int:
        """Drop least-recently-used entries until under max_bytes. Returns count evicted."""
        if self.max_bytes <= 0:
            return 0
        keep = set(protected)
        evicted = 0
        with Session(self.engine) as session:
            total = session.exec(select(func.sum(CacheEntry.size))).one() or 0
            if total <= self.max_bytes:
                return 0
            rows = session.exec(
                select(CacheEntry.fingerprint, CacheEntry.size).order_by(CacheEntry.last_access.asc())
            ).all()
            for fingerprint, size in rows:
                if total <= self.max_bytes:
                    break
                if fingerprint in keep:
                    continue
                session.exec(delete(CacheEntry).where(CacheEntry.fingerprint == fingerprint))
                total -= size
                evicted += 1
            session.commit()
        if evicted:
            logger.info("Evicted %d cache entr%s", evicted, "y" if evicted == 1 else "ies")
        return evicted

    def stats(self) -> dict[str, int]:
        with Session(self.engine) as session:
            count = session.exec(select(func.count()).select_from(CacheEntry)).one()
            total = session.exec(select(func.sum(CacheEntry.size))).one() or 0
        return {"entries": count, "bytes": total, "max_bytes": self.max_bytes}

    def clear(self) -> int:
        with Session(self.engine) as session:
            count = session.exec(select(func.count()).select_from(CacheEntry)).one()
            session.exec(delete(CacheEntry))
            session.commit()
        return count
