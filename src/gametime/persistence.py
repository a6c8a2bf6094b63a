"""Persistence gateway: SQLModel tables, the state store and backup codec."""
from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, func, select

from .exceptions import InvalidBackupFormatError, PersistenceError, UnsupportedBackupVersionError
from .migrations import backfill_logs, migrate, record_version, upgrade_log
from .models import (
    BACKUP_FORMAT_VERSION,
    CURRENT_SCHEMA_VERSION,
    AppConfig,
    BackupDocument,
    LogKind,
    UsageLogEntry,
)
from .ops import StructuredLogger
from .security import is_valid_pin
from .settings import DEFAULT_SQLITE_FILE_NAME, LOG_RETENTION, Settings
from .timekeeping import from_epoch_ms, to_epoch_ms, utcnow

STATE_RECORD_ID = 1


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class StateRecord(SQLModel, table=True):
    id: int = Field(default=STATE_RECORD_ID, primary_key=True)
    schema_version: int
    payload: str  # JSON encoded AppConfig
    updated_at: datetime = Field(default_factory=utcnow)


class UsageLogRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    entry_id: str = Field(index=True, unique=True)
    profile_id: Optional[str] = Field(default=None, index=True)  # null only for pre-migration rows
    started_at: int = Field(index=True)  # epoch ms
    ended_at: int
    kind: str  # grant|consume
    delta_minutes: int
    note: str = ""


def _entry_to_record(entry: UsageLogEntry) -> UsageLogRecord:
    return UsageLogRecord(
        entry_id=entry.id,
        profile_id=entry.profile_id,
        started_at=to_epoch_ms(entry.started_at),
        ended_at=to_epoch_ms(entry.ended_at),
        kind=entry.kind.value,
        delta_minutes=entry.delta_minutes,
        note=entry.note,
    )


def _record_to_entry(record: UsageLogRecord) -> UsageLogEntry:
    return UsageLogEntry(
        id=record.entry_id,
        profile_id=record.profile_id,
        started_at=from_epoch_ms(record.started_at),
        ended_at=from_epoch_ms(record.ended_at),
        kind=LogKind(record.kind),
        delta_minutes=record.delta_minutes,
        note=record.note,
    )


def _encode_config(config: AppConfig) -> str:
    return json.dumps(config.to_dict(), sort_keys=True)


# ---------------------------------------------------------------------------
# Backup codec
# ---------------------------------------------------------------------------
def encode_backup(document: BackupDocument) -> str:
    """Serialise ``document`` as pretty printed UTF-8 JSON."""

    return json.dumps(document.to_dict(), indent=2, ensure_ascii=False)


def decode_backup(serialized: str | bytes) -> Tuple[AppConfig, Tuple[UsageLogEntry, ...]]:
    """Parse and validate a backup document without touching storage.

    Version 1 documents (``appState``/``usageLogs``/``version``) are migrated
    to the current layout on the way in.
    """

    try:
        document: Any = json.loads(serialized)
    except (TypeError, ValueError) as exc:
        raise InvalidBackupFormatError("Backup is not valid JSON.") from exc
    if not isinstance(document, dict):
        raise InvalidBackupFormatError("Backup must be a JSON object.")

    version = document.get("formatVersion", document.get("version"))
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise InvalidBackupFormatError("Backup is missing a valid formatVersion.")
    raw_config = document.get("config", document.get("appState"))
    if not isinstance(raw_config, dict):
        raise InvalidBackupFormatError("Backup is missing its config.")
    if version > BACKUP_FORMAT_VERSION:
        raise UnsupportedBackupVersionError(version, BACKUP_FORMAT_VERSION)
    raw_logs = document.get("logs", document.get("usageLogs")) or []
    if not isinstance(raw_logs, list):
        raise InvalidBackupFormatError("Backup logs must be a list.")

    try:
        stored_version = record_version(raw_config)
        if stored_version > CURRENT_SCHEMA_VERSION:
            raise UnsupportedBackupVersionError(stored_version, CURRENT_SCHEMA_VERSION)
        config = AppConfig.from_dict(migrate(stored_version, raw_config))
        if config.profiles:
            upgraded = backfill_logs(raw_logs, config.profiles[0].id)
        else:
            upgraded = [upgrade_log(item) for item in raw_logs if isinstance(item, dict)]
            if len(upgraded) != len(raw_logs):
                raise ValueError("Log entries must be JSON objects.")
        logs = tuple(UsageLogEntry.from_dict(item) for item in upgraded)
    except (AttributeError, TypeError, ValueError) as exc:
        raise InvalidBackupFormatError(f"Backup content is invalid: {exc}") from exc

    if not is_valid_pin(config.pin):
        raise InvalidBackupFormatError("Backup PIN must be exactly four digits.")
    if len({entry.id for entry in logs}) != len(logs):
        raise InvalidBackupFormatError("Backup log ids must be unique.")
    return config, logs


# ---------------------------------------------------------------------------
# State store
# ---------------------------------------------------------------------------
class StateStore:
    """Single current config record plus an append-only, rotated usage log."""

    def __init__(
        self,
        url: str = f"sqlite:///{DEFAULT_SQLITE_FILE_NAME}",
        *,
        retention: int = LOG_RETENTION,
        logger: StructuredLogger | None = None,
        engine: Engine | None = None,
    ) -> None:
        self._engine = engine or create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
        self._retention = retention
        self._logger = logger or StructuredLogger()
        self.create_tables()

    @classmethod
    def from_settings(cls, settings: Settings, *, logger: StructuredLogger | None = None) -> "StateStore":
        return cls(settings.database_url, retention=settings.log_retention, logger=logger)

    @classmethod
    def in_memory(cls, *, retention: int = LOG_RETENTION, logger: StructuredLogger | None = None) -> "StateStore":
        """Store backed by a private in-memory SQLite database."""

        engine = create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        return cls(retention=retention, logger=logger, engine=engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def retention(self) -> int:
        return self._retention

    def create_tables(self) -> None:
        try:
            SQLModel.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not prepare storage: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Config record
    # ------------------------------------------------------------------
    def load_config(self) -> AppConfig:
        """Return the current config, seeding or migrating it as needed."""

        with self._session() as session:
            record = session.get(StateRecord, STATE_RECORD_ID)
            if record is None:
                config = AppConfig()
                session.add(StateRecord(schema_version=config.schema_version, payload=_encode_config(config)))
                session.commit()
                self._logger.log("config_seeded")
                return config

            try:
                payload = json.loads(record.payload)
                if not isinstance(payload, dict):
                    raise ValueError("Stored config is not a JSON object.")
                stored_version = record.schema_version
                if stored_version >= CURRENT_SCHEMA_VERSION:
                    return AppConfig.from_dict(migrate(stored_version, payload))
                config = AppConfig.from_dict(migrate(stored_version, payload))
            except (TypeError, ValueError) as exc:
                raise PersistenceError(f"Stored config is corrupt: {exc}") from exc

            if config.profiles:
                session.exec(
                    update(UsageLogRecord)
                    .where(col(UsageLogRecord.profile_id).is_(None))
                    .values(profile_id=config.profiles[0].id)
                )
            record.schema_version = config.schema_version
            record.payload = _encode_config(config)
            record.updated_at = utcnow()
            session.add(record)
            session.commit()
            self._logger.log("schema_migrated", from_version=stored_version, to_version=config.schema_version)
            return config

    def save_config(self, config: AppConfig) -> None:
        """Replace the single config record in one transaction."""

        with self._session() as session:
            self._write_config(session, config)
            session.commit()

    def _write_config(self, session: Session, config: AppConfig) -> None:
        record = session.get(StateRecord, STATE_RECORD_ID)
        if record is None:
            record = StateRecord(schema_version=config.schema_version, payload="")
        record.schema_version = config.schema_version
        record.payload = _encode_config(config)
        record.updated_at = utcnow()
        session.add(record)

    # ------------------------------------------------------------------
    # Usage log
    # ------------------------------------------------------------------
    def append_log(self, entry: UsageLogEntry) -> None:
        """Append ``entry`` and rotate; rotation failures are only logged."""

        with self._session() as session:
            session.add(_entry_to_record(entry))
            session.commit()
        try:
            self.rotate_logs()
        except PersistenceError as exc:
            self._logger.error("log_rotation_failed", error=str(exc))

    def rotate_logs(self) -> int:
        """Delete the oldest entries beyond the retention ceiling."""

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(UsageLogRecord)).one()
            excess = total - self._retention
            if excess <= 0:
                return 0
            oldest = session.exec(
                select(UsageLogRecord.id)
                .order_by(col(UsageLogRecord.started_at), col(UsageLogRecord.id))
                .limit(excess)
            ).all()
            session.exec(delete(UsageLogRecord).where(col(UsageLogRecord.id).in_(list(oldest))))
            session.commit()
        self._logger.log("logs_rotated", removed=len(oldest))
        return len(oldest)

    def list_logs(self, limit: int = 10, profile_id: Optional[str] = None) -> Tuple[UsageLogEntry, ...]:
        """Return up to ``limit`` entries, newest first."""

        if limit < 0:
            raise ValueError("limit must not be negative")
        if limit == 0:
            return tuple()
        query = select(UsageLogRecord)
        if profile_id is not None:
            query = query.where(UsageLogRecord.profile_id == profile_id)
        query = query.order_by(
            col(UsageLogRecord.started_at).desc(),
            col(UsageLogRecord.id).desc(),
        ).limit(limit)
        with self._session() as session:
            return tuple(_record_to_entry(record) for record in session.exec(query).all())

    def all_logs(self) -> Tuple[UsageLogEntry, ...]:
        """Return every stored entry, oldest first."""

        query = select(UsageLogRecord).order_by(col(UsageLogRecord.started_at), col(UsageLogRecord.id))
        with self._session() as session:
            return tuple(_record_to_entry(record) for record in session.exec(query).all())

    def count_logs(self) -> int:
        with self._session() as session:
            return session.exec(select(func.count()).select_from(UsageLogRecord)).one()

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------
    def replace_all(self, config: AppConfig, logs: Iterable[UsageLogEntry]) -> None:
        """Swap in ``config`` and ``logs`` as a single transaction."""

        with self._session() as session:
            session.exec(delete(UsageLogRecord))
            self._write_config(session, config)
            for entry in logs:
                session.add(_entry_to_record(entry))
            session.commit()

    def export_backup(self, *, at: Optional[datetime] = None) -> str:
        """Bundle the current config and full log history as JSON."""

        document = BackupDocument(
            config=self.load_config(),
            logs=self.all_logs(),
            exported_at=at or utcnow(),
        )
        return encode_backup(document)

    def import_backup(self, serialized: str | bytes) -> Tuple[AppConfig, Tuple[UsageLogEntry, ...]]:
        """Validate ``serialized`` and destructively replace current state."""

        config, logs = decode_backup(serialized)
        self.replace_all(config, logs)
        self._logger.log("backup_imported", profiles=len(config.profiles), logs=len(logs))
        return config, logs

    def clear_all(self) -> AppConfig:
        """Wipe config and logs, then re-seed the first-run default."""

        config = AppConfig()
        with self._session() as session:
            session.exec(delete(UsageLogRecord))
            session.exec(delete(StateRecord))
            self._write_config(session, config)
            session.commit()
        self._logger.log("store_cleared")
        return config


__all__ = [
    "StateRecord",
    "StateStore",
    "UsageLogRecord",
    "decode_backup",
    "encode_backup",
]
