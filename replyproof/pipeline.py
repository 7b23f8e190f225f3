"""
Pipeline worker: the only writer of job state.

START_VALIDATING: vision check -> ValidationRecord.
START_MINTING:    re-check validation + payment -> EAS attestation + reward mint
                  -> AttestationRecord.
RESET:            tracker back to SUBMITTED (in-flight work is not cancelled).

Each handler first looks for an existing record for the job and returns
silently if one exists; a claim set stops two concurrent deliveries of the
same event from both doing the work. A payment tx pays for one job only: a
hash already on another job's attestation record (or being minted for
another job right now) fails with "Payment already used". Failures are
recorded, never raised. Terminal stages are marked after the record is saved.
"""

import logging
import threading
from typing import Any, Optional, Set, Tuple

from replyproof.bus import RESET, START_MINTING, START_VALIDATING, EventBus
from replyproof.clients import Collaborators
from replyproof.errors import CollaboratorError, RecordConflict, StageError
from replyproof.schema import AttestationRecord, JobDescriptor, Stage, ValidationRecord
from replyproof.stages import JobTracker
from replyproof.store import JobStore

logger = logging.getLogger(__name__)

PAYMENT_USED_MESSAGE = "Payment already used"

# Claim key for a payment tx while a mint for it is in flight
PAYMENT = "PAYMENT"


class PipelineWorker:
    def __init__(self, store: JobStore, collaborators: Collaborators, tracker: Optional[JobTracker] = None):
        self.store = store
        self.clients = collaborators
        self.tracker = tracker or JobTracker(store)
        self._claims: Set[Tuple[str, str]] = set()
        self._claims_lock = threading.Lock()

    def subscribe(self, bus: EventBus) -> None:
        bus.on(START_VALIDATING, self.handle_validating)
        bus.on(START_MINTING, self.handle_minting)
        bus.on(RESET, self.handle_reset)

    # --- handlers ---

    def handle_validating(self, payload: Any) -> None:
        job = _descriptor(payload)
        if not self._claim(START_VALIDATING, job.job_id):
            return
        try:
            if self.store.get_validation(job.job_id) is not None:
                logger.debug("Job %s already validated; duplicate event ignored", job.job_id)
                return
            self._mark(job.job_id, Stage.VALIDATING)
            logger.info("Job %s: validating %s", job.job_id, job.image_url)
            try:
                verdict = self.clients.vision.validate_image(job.image_url, job.text)
                record = ValidationRecord.from_verdict(job, verdict)
            except CollaboratorError as e:
                logger.warning("Job %s: validation failed: %s", job.job_id, e)
                record = ValidationRecord.failed(job, f"Validation failed: {e.reason}")
            except Exception as e:
                logger.exception("Job %s: unexpected validation error", job.job_id)
                record = ValidationRecord.failed(job, f"Validation failed: {type(e).__name__}")
            if not self._save(self.store.put_validation, record):
                self.tracker.forget(job.job_id)
                return
            if record.passed:
                self._mark(job.job_id, Stage.VALIDATED)
                self._mark(job.job_id, Stage.AWAITING_PAYMENT)
                logger.info("Job %s: image accepted, awaiting payment", job.job_id)
            else:
                self._mark(job.job_id, Stage.FAILED)
                logger.info("Job %s: image rejected (%s)", job.job_id, record.message)
        finally:
            self._release(START_VALIDATING, job.job_id)

    def handle_minting(self, payload: Any) -> None:
        job = _descriptor(payload)
        if not self._claim(START_MINTING, job.job_id):
            return
        try:
            if self.store.get_attestation(job.job_id) is not None:
                logger.debug("Job %s already attested; duplicate event ignored", job.job_id)
                return
            payment_tx = (job.payment_transaction_hash or "").strip().lower()
            if payment_tx and not self._claim(PAYMENT, payment_tx):
                record = _payment_used(job.job_id)
            else:
                try:
                    record = self._mint(job, payment_tx)
                finally:
                    if payment_tx:
                        self._release(PAYMENT, payment_tx)
            if not self._save(self.store.put_attestation, record):
                self.tracker.forget(job.job_id)
                return
            self._mark(job.job_id, Stage.COMPLETE if record.complete else Stage.FAILED)
        finally:
            self._release(START_MINTING, job.job_id)

    def handle_reset(self, payload: Any) -> None:
        job_id = payload.get("jobId") if isinstance(payload, dict) else payload
        if job_id:
            self.tracker.reset(str(job_id))

    # --- stages ---

    def _mint(self, job: JobDescriptor, payment_tx: str) -> AttestationRecord:
        """Checks, then attestation + reward. Returns the record to persist; terminal stage is marked after saving."""
        validation = self.store.get_validation(job.job_id)
        if validation is None or not validation.passed:
            logger.warning("Job %s: minting requested without a passed validation", job.job_id)
            return AttestationRecord.failed(job.job_id, "Image has not been validated")
        if not payment_tx:
            return AttestationRecord.failed(job.job_id, "No payment transaction supplied")
        used = self.store.get_attestation_by_payment(payment_tx)
        if used is not None:
            logger.warning("Job %s: payment %s already used by job %s", job.job_id, payment_tx, used.job_id)
            return _payment_used(job.job_id)
        try:
            payment = self.clients.chain.verify_payment(payment_tx)
            if payment.status != "confirmed":
                return AttestationRecord.failed(job.job_id, f"Payment is {payment.status}", payment_tx)
            self._mark(job.job_id, Stage.PAID)
            self._mark(job.job_id, Stage.MINTING)
            logger.info("Job %s: payment %s confirmed, minting", job.job_id, payment_tx)
            # Attest what was validated, not what the event claims
            result = self.clients.chain.attest_and_reward(validation.descriptor(payment_tx), payment.sender)
        except CollaboratorError as e:
            logger.warning("Job %s: minting failed: %s", job.job_id, e)
            return AttestationRecord.failed(job.job_id, f"Minting failed: {e.reason}", payment_tx)
        except Exception as e:
            logger.exception("Job %s: unexpected minting error", job.job_id)
            return AttestationRecord.failed(job.job_id, f"Minting failed: {type(e).__name__}", payment_tx)
        logger.info("Job %s: complete (attestation %s)", job.job_id, result.attestation_hash)
        return AttestationRecord.succeeded(job.job_id, payment_tx, result)


    # --- helpers ---

    def _save(self, put, record) -> bool:
        try:
            put(record)
            return True
        except RecordConflict:
            # Logged by the store; the first record stands
            return False

    def _mark(self, job_id: str, stage: Stage) -> None:
        try:
            self.tracker.advance(job_id, stage)
        except StageError as e:
            logger.warning("Job %s: %s", job_id, e)

    def _claim(self, event: str, job_id: str) -> bool:
        key = (event, job_id)
        with self._claims_lock:
            if key in self._claims:
                logger.debug("Job %s: %s already in flight; duplicate ignored", job_id, event)
                return False
            self._claims.add(key)
            return True

    def _release(self, event: str, job_id: str) -> None:
        with self._claims_lock:
            self._claims.discard((event, job_id))


def _descriptor(payload: Any) -> JobDescriptor:
    if isinstance(payload, JobDescriptor):
        return payload
    return JobDescriptor.model_validate(payload)


def _payment_used(job_id: str) -> AttestationRecord:
    # No payment hash on this record: the tx belongs to the other job
    return AttestationRecord.failed(job_id, PAYMENT_USED_MESSAGE)
