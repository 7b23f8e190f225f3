"""
Stage state machine.

SUBMITTED -> VALIDATING -> VALIDATED -> AWAITING_PAYMENT -> PAID -> MINTING -> COMPLETE
Any non-terminal stage may move to FAILED. The only backward move is reset()
to SUBMITTED.

JobTracker holds the in-flight stage of each job in memory. The pipeline
worker is its only writer; the status facade reads it. Jobs the tracker has
never seen (e.g. after a restart) fall back to the stage derived from the
persisted records.
"""

import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional

from replyproof.errors import StageError
from replyproof.schema import AttestationRecord, Stage, ValidationRecord

logger = logging.getLogger(__name__)

STAGE_ORDER = (
    Stage.SUBMITTED,
    Stage.VALIDATING,
    Stage.VALIDATED,
    Stage.AWAITING_PAYMENT,
    Stage.PAID,
    Stage.MINTING,
    Stage.COMPLETE,
)
TERMINAL = (Stage.COMPLETE, Stage.FAILED)


def can_transition(current: Stage, target: Stage) -> bool:
    """Forward along STAGE_ORDER, or to FAILED from a non-terminal stage."""
    if current in TERMINAL:
        return False
    if target == Stage.FAILED:
        return True
    return STAGE_ORDER.index(target) > STAGE_ORDER.index(current)


def check_transition(current: Stage, target: Stage) -> Stage:
    if not can_transition(current, target):
        raise StageError(f"Illegal stage transition {current.value} -> {target.value}")
    return target


def derive_stage(
    validation: Optional[ValidationRecord],
    attestation: Optional[AttestationRecord],
) -> Stage:
    """Stage implied by persisted records alone."""
    if attestation is not None:
        return Stage.COMPLETE if attestation.complete else Stage.FAILED
    if validation is not None:
        return Stage.AWAITING_PAYMENT if validation.passed else Stage.FAILED
    return Stage.SUBMITTED


# Stages the persisted records already imply; the tracker drops these once reached
STORE_DERIVED = (Stage.AWAITING_PAYMENT, Stage.COMPLETE, Stage.FAILED)

MAX_RESETS = 10_000


class JobTracker:
    """
    In-memory stage per job_id. Thread-safe.

    Only in-flight stages are held. Once a job reaches a stage its records
    already imply (and the worker has written those records), the entry is
    dropped and stage() answers from the store. Reset job ids are kept for
    the newest max_resets resets.
    """

    def __init__(self, store=None, max_resets: int = MAX_RESETS):
        self._store = store
        self._stages: Dict[str, Stage] = {}
        self._reset: "OrderedDict[str, None]" = OrderedDict()
        self.max_resets = max_resets
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._stages)

    def stage(self, job_id: str) -> Stage:
        with self._lock:
            if job_id in self._reset:
                return Stage.SUBMITTED
            known = self._stages.get(job_id)
        if known is not None:
            return known
        if self._store is None:
            return Stage.SUBMITTED
        return derive_stage(self._store.get_validation(job_id), self._store.get_attestation(job_id))

    def advance(self, job_id: str, target: Stage) -> Stage:
        """
        Move job_id to target. Raises StageError on a backward move.
        A job that was reset keeps showing SUBMITTED; late results are ignored here.
        """
        current = self.stage(job_id)
        with self._lock:
            if job_id in self._reset:
                logger.debug("Job %s was reset; not surfacing %s", job_id, target.value)
                return Stage.SUBMITTED
            current = self._stages.get(job_id, current)
            check_transition(current, target)
            if self._store is not None and target in STORE_DERIVED:
                self._stages.pop(job_id, None)
            else:
                self._stages[job_id] = target
        logger.debug("Job %s: %s -> %s", job_id, current.value, target.value)
        return target

    def forget(self, job_id: str) -> None:
        """Drop the in-flight stage; stage() falls back to the store."""
        with self._lock:
            self._stages.pop(job_id, None)

    def reset(self, job_id: str) -> None:
        with self._lock:
            self._stages.pop(job_id, None)
            self._reset[job_id] = None
            self._reset.move_to_end(job_id)
            while len(self._reset) > self.max_resets:
                self._reset.popitem(last=False)
        logger.info("Job %s reset by user", job_id)

    def was_reset(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._reset
