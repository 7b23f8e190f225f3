"""
Job Store: append-only `validations` and `attestations` tables keyed by job_id.

Writes are insert-if-absent. The primary key makes the first insert win; a
repeated identical write is a no-op, a different one raises RecordConflict.
Each record is written whole in one INSERT, so readers never see a partial
record and never need a lock.
"""

import logging
from typing import Optional, Type, TypeVar, Union

from sqlalchemy import Boolean, Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from replyproof.errors import RecordConflict
from replyproof.schema import AttestationRecord, ValidationRecord

logger = logging.getLogger(__name__)

Base = declarative_base()

Record = TypeVar("Record", ValidationRecord, AttestationRecord)


class ValidationRow(Base):
    __tablename__ = "validations"

    job_id = Column(String(64), primary_key=True)
    cast_hash = Column(String(128), nullable=False)
    user_fid = Column(String(32), nullable=False)
    text = Column(Text, nullable=False, default="")
    image_url = Column(Text, nullable=False)
    label = Column(String(128), nullable=False)
    is_valid = Column(Boolean, nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AttestationRow(Base):
    __tablename__ = "attestations"

    job_id = Column(String(64), primary_key=True)
    is_valid = Column(Boolean, nullable=True)
    # One payment pays for one job
    payment_transaction_hash = Column(String(66), nullable=True, unique=True)
    transaction_hash = Column(String(66), nullable=True)
    reward_transaction_hash = Column(String(66), nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


def _engine_for(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every thread sees the same in-memory db
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


class JobStore:
    """Validation/attestation persistence. Safe to share between threads."""

    def __init__(self, engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def from_url(cls, url: str, create: bool = True) -> "JobStore":
        store = cls(_engine_for(url))
        if create:
            store.create_all()
        return store

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    # --- reads ---

    def get_validation(self, job_id: str) -> Optional[ValidationRecord]:
        return self._get(ValidationRow, ValidationRecord, job_id)

    def get_attestation(self, job_id: str) -> Optional[AttestationRecord]:
        return self._get(AttestationRow, AttestationRecord, job_id)

    def get_attestation_by_payment(self, payment_transaction_hash: str) -> Optional[AttestationRecord]:
        """The attestation record that already claimed this payment tx, if any."""
        with self.SessionLocal() as db:
            row = (
                db.query(AttestationRow)
                .filter(AttestationRow.payment_transaction_hash == payment_transaction_hash)
                .first()
            )
            if row is None:
                return None
            return _to_record(row, AttestationRecord)

    # --- writes ---

    def put_validation(self, record: ValidationRecord) -> bool:
        """Insert; False if an identical record exists. Raises RecordConflict otherwise."""
        return self._put(ValidationRow, record)

    def put_attestation(self, record: AttestationRecord) -> bool:
        return self._put(AttestationRow, record)

    def _get(self, row_cls, record_cls: Type[Record], job_id: str) -> Optional[Record]:
        with self.SessionLocal() as db:
            row = db.get(row_cls, job_id)
            if row is None:
                return None
            return _to_record(row, record_cls)

    def _put(self, row_cls, record: Union[ValidationRecord, AttestationRecord]) -> bool:
        table = row_cls.__tablename__
        with self.SessionLocal() as db:
            db.add(row_cls(**record.model_dump()))
            try:
                db.commit()
                logger.info("Stored %s record for job %s", table, record.job_id)
                return True
            except IntegrityError as e:
                db.rollback()
                error = e

        existing = self._get(row_cls, type(record), record.job_id)
        if existing is None:
            # Not a job_id clash (e.g. a payment tx already used by another job)
            raise error
        if existing.content() == record.content():
            logger.debug("Duplicate %s write for job %s ignored", table, record.job_id)
            return False
        logger.error(
            "DATA CONSISTENCY: second, different %s record for job %s rejected (kept=%s, rejected=%s)",
            table,
            record.job_id,
            existing.content(),
            record.content(),
        )
        raise RecordConflict(table, record.job_id)


def _to_record(row, record_cls: Type[Record]) -> Record:
    return record_cls(**{c.name: getattr(row, c.name) for c in row.__table__.columns})
