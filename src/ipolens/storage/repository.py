"""SQLAlchemy implementation of ``IpoRepository``.

Calls made inside ``transaction()`` share one session and are committed
together; any failure rolls back every write of that unit and surfaces as
``PersistenceError``. Calls made outside a transaction run in their own
short-lived unit.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ipolens.core.config import StorageConfig, get_config
from ipolens.core.errors import PersistenceError
from ipolens.core.interfaces import IpoRepository
from ipolens.models import ACTIVE_STATUSES, IpoStatus, MergedIpoRecord, StoredIpo, utcnow
from ipolens.storage.models import Base, IpoRow
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)

RECORD_FIELDS = tuple(name for name in MergedIpoRecord.model_fields if name != "symbol")
_ACTIVE = [status.value for status in ACTIVE_STATUSES]
IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_session_factory(
    database_url: str | None = None,
    echo: bool = False,
    storage: StorageConfig | None = None,
) -> sessionmaker[Session]:
    """Create the engine, ensure the schema exists and return a session factory.

    Without an explicit URL the configured database is used.
    """
    url = database_url or _default_url(storage or get_config().storage)
    options: dict[str, Any] = {}
    if url in IN_MEMORY_URLS:
        # One shared connection, otherwise each session opens an empty database
        options = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_engine(url, echo=echo, future=True, **options)
    Base.metadata.create_all(engine)
    logger.info("database_ready", url=engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)


def _default_url(storage: StorageConfig) -> str:
    if storage.database_url is None:
        Path(storage.data_dir).mkdir(parents=True, exist_ok=True)
    return storage.resolved_database_url


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, set):
        return sorted(value)
    return value


def to_stored(row: IpoRow) -> StoredIpo:
    values = {name: getattr(row, name) for name in RECORD_FIELDS}
    return StoredIpo(
        id=row.id,
        symbol=row.symbol,
        created_at=row.created_at,
        archived_at=row.archived_at,
        **values,
    )


class SqlIpoRepository(IpoRepository):
    """IPO persistence over any SQLAlchemy-supported database.

    Example:
        >>> repo = SqlIpoRepository(create_session_factory("sqlite://"))
        >>> with repo.transaction():
        ...     repo.upsert(record)
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self.session_factory = session_factory or create_session_factory()
        self._local = threading.local()

    @property
    def _current(self) -> Session | None:
        """Session of the transaction open on this thread, if any."""
        return getattr(self._local, "session", None)

    @contextmanager
    def transaction(self) -> Iterator[SqlIpoRepository]:
        if self._current is not None:
            # Nested units join the outer one
            yield self
            return

        session = self.session_factory()
        self._local.session = session
        try:
            yield self
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("transaction_rolled_back", error=str(e))
            raise PersistenceError(f"Database write failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _unit(self) -> Iterator[Session]:
        if self._current is not None:
            yield self._current
            return
        with self.transaction():
            yield self._current

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row(self, session: Session, symbol: str) -> IpoRow | None:
        return session.scalars(select(IpoRow).where(IpoRow.symbol == symbol)).one_or_none()

    def find_by_symbol(self, symbol: str) -> StoredIpo | None:
        with self._unit() as session:
            row = self._row(session, symbol.upper())
            return to_stored(row) if row else None

    def list_ipos(
        self,
        status: IpoStatus | None = None,
        min_score: float | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StoredIpo]:
        query = select(IpoRow)
        if status is not None:
            query = query.where(IpoRow.status == status.value)
        if min_score is not None:
            query = query.where(IpoRow.overall_score >= min_score)
        query = query.order_by(IpoRow.overall_score.desc().nulls_last(), IpoRow.symbol).limit(limit).offset(offset)
        with self._unit() as session:
            return [to_stored(row) for row in session.scalars(query)]

    def active_symbols(self) -> set[str]:
        with self._unit() as session:
            return set(session.scalars(select(IpoRow.symbol).where(IpoRow.status.in_(_ACTIVE))))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: MergedIpoRecord, fields: Iterable[str] | None = None) -> StoredIpo:
        with self._unit() as session:
            row = self._row(session, record.symbol)
            now = utcnow()
            if row is None:
                row = IpoRow(symbol=record.symbol, created_at=now)
                names: Iterable[str] = RECORD_FIELDS
                session.add(row)
            else:
                names = RECORD_FIELDS if fields is None else [n for n in fields if n in RECORD_FIELDS]

            for name in names:
                setattr(row, name, _column_value(getattr(record, name)))
            row.last_updated = now
            if record.status in ACTIVE_STATUSES:
                row.archived_at = None
            session.flush()
            return to_stored(row)

    def mark_archived(self, symbol: str) -> bool:
        with self._unit() as session:
            row = self._row(session, symbol)
            if row is None or row.status not in _ACTIVE:
                return False
            now = utcnow()
            row.status = IpoStatus.LISTED.value
            row.archived_at = now
            row.last_updated = now
            session.flush()
            logger.info("ipo_archived", symbol=symbol)
            return True
