"""
Status Query Facade: what a polling request should show for a job.

Read-only. Looks at the attestation first, then the validation, else reports
"still processing" with a retry pointing back at the same screen. Never
writes, never calls a collaborator, so it is safe to poll as often as the
client likes.
"""

from typing import List, Literal

from pydantic import BaseModel, Field

from replyproof.schema import AttestationRecord, Stage, ValidationRecord
from replyproof.stages import JobTracker
from replyproof.store import JobStore
from replyproof.views import (
    ENTRY_TEXT,
    Action,
    View,
    error_screen,
    info_screen,
    link_action,
    reset_action,
    retry_action,
)

Screen = Literal["validation", "job"]


class JobStatus(BaseModel):
    job_id: str
    stage: Stage
    display_text: str
    next_action: Action
    actions: List[Action] = Field(default_factory=list)
    is_error: bool = False

    def to_view(self) -> View:
        if self.is_error:
            return error_screen(self.display_text)
        return info_screen(self.display_text, self.actions, post_url=self.next_action.target, state=self.job_id)


def validation_path(job_id: str) -> str:
    return f"/validations/{job_id}"


def job_path(job_id: str) -> str:
    return f"/jobs/{job_id}"


class StatusQuery:
    def __init__(self, store: JobStore, tracker: JobTracker, explorer_url: str = "https://sepolia.etherscan.io"):
        self.store = store
        self.tracker = tracker
        self.explorer_url = explorer_url.rstrip("/")

    def get_job_status(self, job_id: str, screen: Screen = "job") -> JobStatus:
        if self.tracker.was_reset(job_id):
            return JobStatus(
                job_id=job_id,
                stage=Stage.SUBMITTED,
                display_text=ENTRY_TEXT,
                next_action=retry_action("Fetch text", "/", value="CAST_TEXT"),
                actions=[retry_action("Fetch text", "/", value="CAST_TEXT")],
            )
        attestation = self.store.get_attestation(job_id)
        if attestation is not None:
            return self._attestation_status(attestation)
        validation = self.store.get_validation(job_id)
        if validation is not None:
            return self._validation_status(validation, screen)
        return self._pending(job_id, screen)

    def get_validation_status(self, job_id: str) -> JobStatus:
        return self.get_job_status(job_id, screen="validation")

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    def _attestation_status(self, record: AttestationRecord) -> JobStatus:
        if record.complete:
            text = f"Attestation complete!\n\nAttestation tx: {record.transaction_hash}"
            actions = [link_action("Attestation", self.tx_url(record.transaction_hash))]
            if record.reward_transaction_hash:
                text += f"\nReward tx: {record.reward_transaction_hash}"
                actions.append(link_action("Reward", self.tx_url(record.reward_transaction_hash)))
            actions.append(reset_action())
            return JobStatus(
                job_id=record.job_id,
                stage=Stage.COMPLETE,
                display_text=text,
                next_action=reset_action(),
                actions=actions,
            )
        return _failed(record.job_id, record.message or "Minting failed")

    def _validation_status(self, record: ValidationRecord, screen: Screen) -> JobStatus:
        if not record.passed:
            if record.is_valid is False:
                reason = record.message or "no reason given"
                return _failed(record.job_id, f"Image was not accepted: {reason}")
            return _failed(record.job_id, record.message or "Validation failed")
        if screen == "job" and self.tracker.stage(record.job_id) in (Stage.PAID, Stage.MINTING):
            return self._pending(record.job_id, screen)
        pay = Action(
            label="Pay now",
            kind="tx",
            target=f"/transactions/{record.job_id}",
            post_url=f"/payments/{record.job_id}",
        )
        text = "Image verified!"
        if record.message:
            text += f"\n\n{record.message}"
        text += "\n\nPay to mint your attestation and reward."
        actions = [pay, reset_action()]
        if screen == "job":
            # The worker may still be confirming a payment that was just sent
            actions.insert(1, retry_action("Check status", job_path(record.job_id), value="REFRESH"))
        return JobStatus(
            job_id=record.job_id,
            stage=Stage.AWAITING_PAYMENT,
            display_text=text,
            next_action=pay,
            actions=actions,
        )

    def _pending(self, job_id: str, screen: Screen) -> JobStatus:
        stage = self.tracker.stage(job_id)
        if screen == "validation":
            text, target = "Still validating your image...", validation_path(job_id)
        else:
            text, target = "Still minting your attestation...", job_path(job_id)
        retry = retry_action("Check status", target, value="REFRESH")
        return JobStatus(
            job_id=job_id,
            stage=stage,
            display_text=text,
            next_action=retry,
            actions=[retry, reset_action()],
        )


def _failed(job_id: str, message: str) -> JobStatus:
    return JobStatus(
        job_id=job_id,
        stage=Stage.FAILED,
        display_text=message,
        next_action=reset_action(),
        actions=[reset_action()],
        is_error=True,
    )
