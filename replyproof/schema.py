"""
Job, record and collaborator schema.

Flow: frame request -> JobDescriptor (published on the bus) -> ValidationRecord
-> payment confirmed -> AttestationRecord. Wire names are camelCase (frame
payloads, collaborator JSON); Python attributes are snake_case.
"""

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_job_id() -> str:
    """
    Time-ordered random job id: 13-digit millisecond timestamp + 16 hex chars.

    Ids sort by submission time and collide only if two submissions in the same
    millisecond draw the same 64 random bits.
    """
    return f"{int(time.time() * 1000):013d}{secrets.token_hex(8)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Stage(str, Enum):
    SUBMITTED = "SUBMITTED"
    VALIDATING = "VALIDATING"
    VALIDATED = "VALIDATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    MINTING = "MINTING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class JobDescriptor(_Wire):
    """Payload of START_VALIDATING / START_MINTING events."""

    job_id: str = Field(..., alias="jobId", description="Unique job identifier (new_job_id)")
    cast_hash: str = Field(..., alias="castHash", description="Hash of the cast that was replied to")
    user_fid: str = Field(..., alias="userFid", description="Farcaster id of the requesting user")
    text: str = Field("", description="Reply text captured at submission")
    image_url: str = Field(..., alias="imageUrl", description="Embed URL selected from the reply")
    label: str = Field("replyproof", description="Attestation label")
    payment_transaction_hash: Optional[str] = Field(
        None, alias="paymentTransactionHash", description="Confirmed payment tx (START_MINTING only)"
    )


# --- Social API ---


class Embed(_Wire):
    url: str


class Reply(_Wire):
    """A direct reply to a cast, as returned by the social API client."""

    author_fid: str = Field(..., alias="authorId")
    timestamp: datetime
    text: str = ""
    embeds: List[Embed] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are UTC; mixing naive and aware ones breaks sorting
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# --- Vision ---


class Verdict(_Wire):
    is_valid: bool = Field(..., alias="isValid")
    message: Optional[str] = None


# --- Chain ---

TxState = Literal["pending", "confirmed", "failed", "absent"]


class TxStatus(_Wire):
    transaction_hash: str = Field(..., alias="transactionHash")
    status: TxState
    sender: Optional[str] = Field(None, description="Address that sent the transaction (0x)")


class MintResult(_Wire):
    attestation_hash: str = Field(..., alias="attestationHash")
    reward_transaction_hash: str = Field(..., alias="rewardTransactionHash")


class PaymentDescriptor(_Wire):
    """What the client wallet must send before minting starts."""

    chain_id: str = Field(..., alias="chainId", description="CAIP-2 chain id, e.g. eip155:11155111")
    method: str = "eth_sendTransaction"
    to: str
    value: str = Field(..., description="Amount in wei, decimal string")


# --- Persisted records ---


class ValidationRecord(_Wire):
    """Outcome of the vision check. is_valid None + message = collaborator failure."""

    job_id: str = Field(..., alias="jobId")
    cast_hash: str = Field(..., alias="castHash")
    user_fid: str = Field(..., alias="userFid")
    text: str = ""
    image_url: str = Field(..., alias="imageUrl")
    label: str = "replyproof"
    is_valid: Optional[bool] = Field(None, alias="isValid")
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @classmethod
    def from_verdict(cls, job: JobDescriptor, verdict: Verdict) -> "ValidationRecord":
        return cls(**_descriptor_fields(job), is_valid=verdict.is_valid, message=verdict.message)

    @classmethod
    def failed(cls, job: JobDescriptor, message: str) -> "ValidationRecord":
        return cls(**_descriptor_fields(job), is_valid=None, message=message)

    @property
    def passed(self) -> bool:
        return self.is_valid is True

    def descriptor(self, payment_transaction_hash: Optional[str] = None) -> JobDescriptor:
        """Rebuild the job descriptor embedded in this record."""
        return JobDescriptor(
            job_id=self.job_id,
            cast_hash=self.cast_hash,
            user_fid=self.user_fid,
            text=self.text,
            image_url=self.image_url,
            label=self.label,
            payment_transaction_hash=payment_transaction_hash,
        )

    def content(self) -> Dict[str, Any]:
        """Fields compared for idempotent writes (created_at excluded)."""
        return self.model_dump(exclude={"created_at"})


class AttestationRecord(_Wire):
    """Outcome of attestation + reward mint. transaction_hash is the attestation tx."""

    job_id: str = Field(..., alias="jobId")
    is_valid: Optional[bool] = Field(None, alias="isValid")
    payment_transaction_hash: Optional[str] = Field(None, alias="paymentTransactionHash")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    reward_transaction_hash: Optional[str] = Field(None, alias="rewardTransactionHash")
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @classmethod
    def succeeded(cls, job_id: str, payment_tx: str, result: MintResult) -> "AttestationRecord":
        return cls(
            job_id=job_id,
            is_valid=True,
            payment_transaction_hash=payment_tx,
            transaction_hash=result.attestation_hash,
            reward_transaction_hash=result.reward_transaction_hash,
        )

    @classmethod
    def failed(cls, job_id: str, message: str, payment_tx: Optional[str] = None) -> "AttestationRecord":
        return cls(job_id=job_id, payment_transaction_hash=payment_tx, message=message)

    @property
    def complete(self) -> bool:
        return self.is_valid is True and bool(self.transaction_hash)

    def content(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"created_at"})


def _descriptor_fields(job: JobDescriptor) -> Dict[str, Any]:
    return {
        "job_id": job.job_id,
        "cast_hash": job.cast_hash,
        "user_fid": job.user_fid,
        "text": job.text,
        "image_url": job.image_url,
        "label": job.label,
    }


# --- Frame requests ---


class FrameCastId(_Wire):
    fid: Optional[int] = None
    hash: str


class FrameData(_Wire):
    fid: int
    cast_id: Optional[FrameCastId] = Field(None, alias="castId")
    button_index: Optional[int] = Field(None, alias="buttonIndex")
    button_value: Optional[str] = Field(None, alias="buttonValue")
    input_text: Optional[str] = Field(None, alias="inputText")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    state: Optional[str] = None


class FrameRequest(_Wire):
    """Body of a frame POST. Only the untrusted part is used."""

    untrusted_data: FrameData = Field(..., alias="untrustedData")
