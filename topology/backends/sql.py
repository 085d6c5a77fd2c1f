"""
SQL backend.

Each topology is one row of the topology_documents table. The revision column
implements compare-and-swap: a put is an UPDATE conditioned on the revision the
caller read, and a create is an INSERT guarded by the unique name constraint.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from topology.backends.base import (
    BackendUnavailable,
    CorruptValue,
    KeyNotFound,
    KVBackend,
    RevisionMismatch,
    VersionedValue,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class TopologyRecord(Base):
    """Persisted topology document"""
    __tablename__ = "topology_documents"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)  # JSON document
    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SqlBackend(KVBackend):
    driver = "sql"

    def __init__(self, database_url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.database_url = database_url
        self.engine = create_engine(database_url, connect_args=connect_args, echo=echo)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)
        self.init_db()

    def init_db(self):
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise BackendUnavailable(f"cannot initialize {self.database_url}: {e}") from e

    def get(self, key: str) -> VersionedValue:
        db = self.SessionLocal()
        try:
            record = db.scalars(select(TopologyRecord).where(TopologyRecord.name == key)).first()
        except SQLAlchemyError as e:
            raise BackendUnavailable(str(e)) from e
        finally:
            db.close()

        if record is None:
            raise KeyNotFound(key)
        try:
            value = json.loads(record.value)
        except ValueError as e:
            raise CorruptValue(key, str(e)) from e
        return VersionedValue(value=value, revision=int(record.revision))

    def put(self, key: str, value: Dict[str, Any], expected_revision: Optional[int]) -> int:
        raw = json.dumps(value, sort_keys=True)
        db = self.SessionLocal()
        try:
            if expected_revision is None:
                db.add(TopologyRecord(name=key, value=raw, revision=0))
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise RevisionMismatch(key, None)
                return 0

            new_revision = expected_revision + 1
            result = db.execute(
                update(TopologyRecord)
                .where(TopologyRecord.name == key, TopologyRecord.revision == expected_revision)
                .values(value=raw, revision=new_revision, updated_at=datetime.utcnow())
            )
            if result.rowcount != 1:
                db.rollback()
                current = db.scalar(select(TopologyRecord.revision).where(TopologyRecord.name == key))
                raise RevisionMismatch(key, expected_revision, current)
            db.commit()
            return new_revision
        except SQLAlchemyError as e:
            db.rollback()
            raise BackendUnavailable(str(e)) from e
        finally:
            db.close()

    def delete(self, key: str) -> bool:
        db = self.SessionLocal()
        try:
            result = db.execute(delete(TopologyRecord).where(TopologyRecord.name == key))
            db.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            db.rollback()
            raise BackendUnavailable(str(e)) from e
        finally:
            db.close()

    def close(self) -> None:
        self.engine.dispose()
