import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import create_engine, inspect, text, delete
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from wegetchat.entities import Snapshot
from wegetchat.errors import PersistenceError

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


class SnapshotStore:
    """
    Durable home of the snapshot.

    Every collection lives in its own table. A save replaces the contents of
    all five tables inside one transaction, so the database always holds
    either the previous snapshot or the new one, never a mix.

    Accepted failure mode: if the existing database cannot be read at
    startup, it is moved aside to `<name>.corrupt-<timestamp>` and the
    service starts from an empty snapshot. Data in the moved file is not
    loaded.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._path = self._sqlite_path(database_url)
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connect()

    @staticmethod
    def _sqlite_path(database_url: str) -> Optional[Path]:
        url = make_url(database_url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return None
        return Path(url.database)

    def _connect(self) -> None:
        # check_same_thread=False lets request threads share the engine;
        # writes are serialized by the mutation coordinator
        connect_args = {"check_same_thread": False} if self.database_url.startswith("sqlite") else {}
        self.engine = create_engine(self.database_url, connect_args=connect_args, echo=False)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def load(self) -> Snapshot:
        """
        Load the persisted snapshot, called once at startup.

        A fresh database is initialized with an empty snapshot. Tables
        missing from an older database are created empty.
        """
        logger.debug(f"Loading snapshot from {self.database_url}")
        fresh = self._path is not None and not self._path.exists()
        try:
            self._create_tables()
            if fresh:
                snapshot = Snapshot()
                self.save(snapshot)
                logger.info("Initialized empty snapshot")
                return snapshot
            snapshot = self._read_snapshot()
        except (SQLAlchemyError, SchemaValidationError, PersistenceError) as e:
            logger.error(f"Failed to load snapshot, starting empty: {e}")
            return self._reset()

        logger.info(
            "Snapshot loaded",
            extra={
                "users": len(snapshot.users),
                "conversations": len(snapshot.conversations),
                "messages": len(snapshot.messages),
            },
        )
        return snapshot

    def _create_tables(self) -> None:
        # Import models to register them with Base.metadata
        from wegetchat import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def _read_snapshot(self) -> Snapshot:
        from wegetchat.models import COLLECTION_MODELS

        data = {}
        with self.SessionLocal() as db:
            for name, model in COLLECTION_MODELS.items():
                columns = [c.name for c in model.__table__.columns if c.name != "position"]
                rows = db.query(model).order_by(model.position.asc()).all()
                data[name] = [{col: getattr(row, col) for col in columns} for row in rows]
        return Snapshot.model_validate(data)

    def _reset(self) -> Snapshot:
        """Move an unreadable database aside and persist an empty snapshot."""
        self.engine.dispose()
        if self._path is not None and self._path.exists():
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            quarantine = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
            self._path.rename(quarantine)
            logger.error(f"Unreadable snapshot moved to {quarantine}")
        self._connect()
        snapshot = Snapshot()
        self._create_tables()
        self.save(snapshot)
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        """
        Replace the persisted snapshot with `snapshot` in one transaction.

        Raises:
            PersistenceError: the write failed and was rolled back
        """
        from wegetchat.models import COLLECTION_MODELS

        try:
            with self.SessionLocal() as db, db.begin():
                for name, model in COLLECTION_MODELS.items():
                    db.execute(delete(model))
                    records = getattr(snapshot, name)
                    db.add_all(
                        model(position=i, **record.model_dump(mode="json"))
                        for i, record in enumerate(records)
                    )
        except SQLAlchemyError as e:
            logger.error(f"Failed to save snapshot: {e}")
            raise PersistenceError() from e

    def check_health(self) -> bool:
        """
        Check if the database is reachable and every table exists.

        Returns:
            True if healthy, False otherwise.
        """
        from wegetchat.models import COLLECTION_MODELS

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                existing = set(inspect(conn).get_table_names())
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
        missing = set(COLLECTION_MODELS) - existing
        if missing:
            logger.error(f"Database schema not applied, missing tables: {sorted(missing)}")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()
