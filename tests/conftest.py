from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from replyproof.bus import EventBus
from replyproof.clients import Collaborators
from replyproof.config import Settings
from replyproof.pipeline import PipelineWorker
from replyproof.schema import Embed, JobDescriptor, MintResult, PaymentDescriptor, Reply, TxStatus, Verdict
from replyproof.stages import JobTracker
from replyproof.store import JobStore

PAYMENT_TX = "0x" + "ab" * 32
ATTESTATION_TX = "0x" + "cd" * 32
REWARD_TX = "0x" + "ef" * 32
PAYER = "0x1111111111111111111111111111111111111111"
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeBus:
    """Records emitted events instead of running handlers."""

    def __init__(self):
        self.emitted = []
        self.handlers = {}
        self.running = False

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload=None):
        self.emitted.append((event, payload))

    def start(self):
        self.running = True

    def stop(self, timeout=None):
        self.running = False


def make_reply(fid="42", minutes=0, text="look at this", urls=()):
    return Reply(
        author_fid=str(fid),
        timestamp=T0 + timedelta(minutes=minutes),
        text=text,
        embeds=[Embed(url=u) for u in urls],
    )


def make_job(job_id="job-1", image_url="https://example.com/cat.png", payment_tx=None):
    return JobDescriptor(
        job_id=job_id,
        cast_hash="0xcast",
        user_fid="42",
        text="look at this",
        image_url=image_url,
        label="replyproof",
        payment_transaction_hash=payment_tx,
    )


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", explorer_url="https://explorer.test", workers=4)


@pytest.fixture
def store():
    return JobStore.from_url("sqlite://")


@pytest.fixture
def collaborators():
    social = Mock()
    social.get_replies.return_value = []
    vision = Mock()
    vision.validate_image.return_value = Verdict(is_valid=True, message="A cat.")
    chain = Mock()
    chain.verify_payment.return_value = TxStatus(transaction_hash=PAYMENT_TX, status="confirmed", sender=PAYER)
    chain.attest_and_reward.return_value = MintResult(
        attestation_hash=ATTESTATION_TX, reward_transaction_hash=REWARD_TX
    )
    chain.payment_descriptor.return_value = PaymentDescriptor(
        chain_id="eip155:11155111", to=PAYER, value="100000000000000"
    )
    return Collaborators(social=social, vision=vision, chain=chain)


@pytest.fixture
def tracker(store):
    return JobTracker(store)


@pytest.fixture
def worker(store, collaborators, tracker):
    return PipelineWorker(store, collaborators, tracker)


@pytest.fixture
def bus():
    b = EventBus(max_workers=4)
    b.start()
    yield b
    b.stop()


@pytest.fixture
def fake_bus():
    return FakeBus()
