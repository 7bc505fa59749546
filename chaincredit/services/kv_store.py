"""
Byte-oriented key-value store backed by the cache_entries table.

All methods are coroutines; the blocking SQLAlchemy work runs in a worker
thread so the event loop keeps serving other keys.
"""
import asyncio
import logging
import threading
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chaincredit.core.database import Base
from chaincredit.core.errors import CacheError
from chaincredit.models.cache_entry import CacheEntryRow

logger = logging.getLogger(__name__)


class SqlKeyValueStore:
    def __init__(self, engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        # SQLite allows one writer; an in-memory engine also shares one connection
        self._lock = threading.Lock()

    def create_tables(self):
        Base.metadata.create_all(bind=self.engine)

    async def get(self, key: str) -> Optional[bytes]:
        return await self._run("get", key, self._get)

    async def set(self, key: str, value: bytes) -> None:
        await self._run("set", key, self._set, value)

    async def delete(self, key: str) -> None:
        await self._run("delete", key, self._delete)

    async def keys(self, prefix: str = "") -> List[str]:
        return await self._run("keys", prefix, self._keys)

    async def clear(self, prefix: str = "") -> int:
        return await self._run("clear", prefix, self._clear)

    async def _run(self, operation: str, key: str, func, *args):
        try:
            return await asyncio.to_thread(self._locked, func, key, *args)
        except SQLAlchemyError as e:
            raise CacheError(str(e), operation=f"store.{operation}", identifier=key) from e

    def _locked(self, func, *args):
        with self._lock:
            return func(*args)

    def _get(self, key: str) -> Optional[bytes]:
        db = self.SessionLocal()
        try:
            row = db.get(CacheEntryRow, key)
            return bytes(row.value) if row else None
        finally:
            db.close()

    def _set(self, key: str, value: bytes):
        db = self.SessionLocal()
        try:
            row = db.get(CacheEntryRow, key)
            if row:
                row.value = value
            else:
                db.add(CacheEntryRow(key=key, value=value))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _delete(self, key: str):
        db = self.SessionLocal()
        try:
            db.query(CacheEntryRow).filter(CacheEntryRow.key == key).delete()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _keys(self, prefix: str) -> List[str]:
        db = self.SessionLocal()
        try:
            query = db.query(CacheEntryRow.key)
            if prefix:
                query = query.filter(CacheEntryRow.key.startswith(prefix, autoescape=True))
            return [row[0] for row in query.all()]
        finally:
            db.close()

    def _clear(self, prefix: str) -> int:
        db = self.SessionLocal()
        try:
            query = db.query(CacheEntryRow)
            if prefix:
                query = query.filter(CacheEntryRow.key.startswith(prefix, autoescape=True))
            removed = query.delete(synchronize_session=False)
            db.commit()
            logger.debug(f"Cleared {removed} stored entries with prefix '{prefix}'")
            return removed
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
