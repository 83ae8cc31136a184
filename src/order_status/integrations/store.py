"""Key-value record store.

Tracking records are JSON objects keyed by order number. `SQLStore` is the
durable backend (any SQLAlchemy URL, SQLite by default). `MemoryStore` keeps
records in process memory only: it is lost on restart and is not shared
between instances, so use it for local runs and tests only.

Stores are created once per app and initialized at startup. `set` is an
upsert (last write wins); `add` only writes when the key is absent.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine
from starlette.concurrency import run_in_threadpool

from ..exceptions import UpstreamUnavailable
from ..schemas import utc_now

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"

# Dialects with INSERT ... ON CONFLICT
_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class KeyValue(SQLModel, table=True):
    __tablename__ = "tracking_records"

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=utc_now)


_TABLE = KeyValue.__table__


class KeyValueStore(ABC):
    """Async get/set by string key. Values are JSON-compatible dicts."""

    def init(self) -> None:
        pass

    def close(self) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def add(self, key: str, value: Dict[str, Any]) -> bool:
        """Store `value` only if `key` is absent. True if it was written."""


class MemoryStore(KeyValueStore):
    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(value)

    async def add(self, key: str, value: Dict[str, Any]) -> bool:
        if key in self._data:
            return False
        self._data[key] = copy.deepcopy(value)
        return True


class SQLStore(KeyValueStore):
    def __init__(self, url: str):
        # SQLite connections are used from the threadpool
        connect_args: Dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        self.engine = create_engine(url, echo=False, connect_args=connect_args)
        self._dialect_insert = _UPSERT_INSERTS.get(self.engine.dialect.name)

    def init(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        with Session(self.engine) as session:
            row = session.get(KeyValue, key)
            return json.loads(row.value) if row else None

    def _row(self, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        return {"key": key, "value": json.dumps(value), "updated_at": utc_now()}

    def _set(self, key: str, value: Dict[str, Any]) -> None:
        row = self._row(key, value)
        if self._dialect_insert is not None:
            stmt = self._dialect_insert(_TABLE).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=["key"],
                set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
            )
            with self.engine.begin() as conn:
                conn.execute(stmt)
            return

        try:
            with self.engine.begin() as conn:
                conn.execute(insert(_TABLE).values(**row))
        except IntegrityError:
            with self.engine.begin() as conn:
                conn.execute(
                    update(_TABLE)
                    .where(_TABLE.c.key == key)
                    .values(value=row["value"], updated_at=row["updated_at"])
                )

    def _add(self, key: str, value: Dict[str, Any]) -> bool:
        row = self._row(key, value)
        if self._dialect_insert is not None:
            stmt = self._dialect_insert(_TABLE).values(**row).on_conflict_do_nothing(index_elements=["key"])
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount == 1

        try:
            with self.engine.begin() as conn:
                conn.execute(insert(_TABLE).values(**row))
        except IntegrityError:
            return False
        return True

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return await run_in_threadpool(self._get, key)
        except (SQLAlchemyError, ValueError) as exc:
            raise UpstreamUnavailable(f"Store read failed for {key}: {exc}") from exc

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        try:
            await run_in_threadpool(self._set, key, value)
        except SQLAlchemyError as exc:
            raise UpstreamUnavailable(f"Store write failed for {key}: {exc}") from exc

    async def add(self, key: str, value: Dict[str, Any]) -> bool:
        try:
            return await run_in_threadpool(self._add, key, value)
        except SQLAlchemyError as exc:
            raise UpstreamUnavailable(f"Store write failed for {key}: {exc}") from exc


def build_store(url: str) -> KeyValueStore:
    if url == MEMORY_URL:
        logger.warning("Using in-memory record store; tracking data will not survive a restart")
        return MemoryStore()
    return SQLStore(url)
