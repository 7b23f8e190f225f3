"""Tests for the pipeline worker stages, idempotency and failure isolation."""

import threading

from replyproof.bus import RESET, START_MINTING, START_VALIDATING
from replyproof.errors import CollaboratorError
from replyproof.schema import AttestationRecord, MintResult, Stage, TxStatus, ValidationRecord, Verdict

from conftest import ATTESTATION_TX, PAYER, PAYMENT_TX, REWARD_TX, make_job


def _validated(store, job_id="job-1"):
    store.put_validation(ValidationRecord.from_verdict(make_job(job_id), Verdict(is_valid=True, message="A cat.")))


def test_validation_success(worker, store, collaborators, tracker):
    worker.handle_validating(make_job().model_dump(by_alias=True))
    record = store.get_validation("job-1")
    assert record.passed
    assert record.message == "A cat."
    assert record.cast_hash == "0xcast"
    assert tracker.stage("job-1") == Stage.AWAITING_PAYMENT
    collaborators.vision.validate_image.assert_called_once_with("https://example.com/cat.png", "look at this")


def test_rejected_image_is_recorded(worker, store, collaborators, tracker):
    collaborators.vision.validate_image.return_value = Verdict(is_valid=False, message="Not a photo")
    worker.handle_validating(make_job())
    record = store.get_validation("job-1")
    assert record.is_valid is False
    assert tracker.stage("job-1") == Stage.FAILED


def test_vision_timeout_becomes_failed_record(worker, store, collaborators, tracker):
    collaborators.vision.validate_image.side_effect = CollaboratorError("vision", "timed out after 60.0s")
    worker.handle_validating(make_job())
    record = store.get_validation("job-1")
    assert record.is_valid is None
    assert record.message == "Validation failed: timed out after 60.0s"
    assert tracker.stage("job-1") == Stage.FAILED


def test_unexpected_error_does_not_escape(worker, store, collaborators):
    collaborators.vision.validate_image.side_effect = KeyError("choices")
    worker.handle_validating(make_job())
    assert store.get_validation("job-1").message == "Validation failed: KeyError"


def test_duplicate_validation_events_run_once(bus, worker, store, collaborators):
    worker.subscribe(bus)
    payload = make_job().model_dump(by_alias=True)
    bus.emit(START_VALIDATING, payload)
    bus.emit(START_VALIDATING, payload)
    assert bus.drain(5)
    bus.emit(START_VALIDATING, payload)
    assert bus.drain(5)
    assert collaborators.vision.validate_image.call_count == 1
    assert store.get_validation("job-1").passed


def test_concurrent_duplicates_are_claimed_once(worker, store, collaborators):
    gate = threading.Event()
    calls = []

    def slow_vision(url, text):
        calls.append(url)
        gate.wait(5)
        return Verdict(is_valid=True)

    collaborators.vision.validate_image.side_effect = slow_vision
    first = threading.Thread(target=worker.handle_validating, args=(make_job(),))
    first.start()
    while not calls:
        pass
    worker.handle_validating(make_job())  # in flight: skipped immediately
    gate.set()
    first.join(5)
    assert len(calls) == 1
    assert store.get_validation("job-1").passed


def test_failed_jobs_do_not_affect_others(bus, worker, store, collaborators):
    def vision(url, text):
        if "bad" in url:
            raise CollaboratorError("vision", "500 Server Error")
        return Verdict(is_valid=True)

    collaborators.vision.validate_image.side_effect = vision
    worker.subscribe(bus)
    bus.emit(START_VALIDATING, make_job("bad-job", image_url="https://example.com/bad.png").model_dump(by_alias=True))
    bus.emit(START_VALIDATING, make_job("good-job").model_dump(by_alias=True))
    assert bus.drain(5)
    assert store.get_validation("bad-job").is_valid is None
    assert store.get_validation("good-job").passed


def test_minting_success(worker, store, collaborators, tracker):
    _validated(store)
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX).model_dump(by_alias=True))
    record = store.get_attestation("job-1")
    assert record.complete
    assert record.payment_transaction_hash == PAYMENT_TX
    assert record.transaction_hash == ATTESTATION_TX
    assert record.reward_transaction_hash == REWARD_TX
    assert tracker.stage("job-1") == Stage.COMPLETE
    job, recipient = collaborators.chain.attest_and_reward.call_args[0]
    assert job.image_url == "https://example.com/cat.png"
    assert recipient == PAYER


def test_minting_without_validation_never_mints(worker, store, collaborators):
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX))
    record = store.get_attestation("job-1")
    assert record.is_valid is None
    assert record.transaction_hash is None
    assert record.message == "Image has not been validated"
    collaborators.chain.attest_and_reward.assert_not_called()


def test_minting_requires_confirmed_payment(worker, store, collaborators):
    _validated(store)
    collaborators.chain.verify_payment.return_value = TxStatus(transaction_hash=PAYMENT_TX, status="pending")
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX))
    record = store.get_attestation("job-1")
    assert record.transaction_hash is None
    assert record.message == "Payment is pending"
    collaborators.chain.attest_and_reward.assert_not_called()


def test_chain_failure_is_recorded(worker, store, collaborators, tracker):
    _validated(store)
    collaborators.chain.attest_and_reward.side_effect = CollaboratorError("chain", "attestation not mined after 120.0s")
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX))
    record = store.get_attestation("job-1")
    assert record.message == "Minting failed: attestation not mined after 120.0s"
    assert record.transaction_hash is None
    assert tracker.stage("job-1") == Stage.FAILED


def test_duplicate_minting_event_is_ignored(worker, store, collaborators):
    _validated(store)
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX))
    worker.handle_minting(make_job(payment_tx=PAYMENT_TX))
    assert collaborators.chain.attest_and_reward.call_count == 1


def test_conflicting_write_is_swallowed(worker, store, collaborators, caplog):
    # Simulate a record written by another delivery between the check and the write
    original = store.get_validation
    calls = {"n": 0}

    def racing_get(job_id):
        calls["n"] += 1
        if calls["n"] == 1:
            store.put_validation(ValidationRecord.from_verdict(make_job(), Verdict(is_valid=False, message="x")))
            return None
        return original(job_id)

    store.get_validation = racing_get
    worker.handle_validating(make_job())
    assert original("job-1").is_valid is False
    assert "DATA CONSISTENCY" in caplog.text


def test_reset_hides_late_result_but_keeps_it(bus, worker, store, collaborators, tracker):
    gate = threading.Event()

    def slow_vision(url, text):
        gate.wait(5)
        return Verdict(is_valid=True)

    collaborators.vision.validate_image.side_effect = slow_vision
    worker.subscribe(bus)
    bus.emit(START_VALIDATING, make_job().model_dump(by_alias=True))
    bus.emit(RESET, {"jobId": "job-1"})
    while not tracker.was_reset("job-1"):
        pass
    gate.set()
    assert bus.drain(5)
    assert store.get_validation("job-1").passed
    assert tracker.stage("job-1") == Stage.SUBMITTED


def test_minting_event_payload_round_trip(bus, worker, store):
    _validated(store)
    worker.subscribe(bus)
    descriptor = store.get_validation("job-1").descriptor(PAYMENT_TX)
    bus.emit(START_MINTING, descriptor.model_dump(by_alias=True))
    assert bus.drain(5)
    assert isinstance(store.get_attestation("job-1"), AttestationRecord)
    assert store.get_attestation("job-1").complete


def test_one_payment_pays_for_one_job(worker, store, collaborators):
    for job_id in ("job-a", "job-b", "job-c"):
        _validated(store, job_id)
    worker.handle_minting(make_job("job-a", payment_tx=PAYMENT_TX))
    worker.handle_minting(make_job("job-b", payment_tx=PAYMENT_TX))
    worker.handle_minting(make_job("job-c", payment_tx=PAYMENT_TX.upper().replace("0X", "0x")))
    assert store.get_attestation("job-a").complete
    for job_id in ("job-b", "job-c"):
        record = store.get_attestation(job_id)
        assert not record.complete
        assert record.message == "Payment already used"
        assert record.payment_transaction_hash is None
    assert collaborators.chain.attest_and_reward.call_count == 1
    assert store.get_attestation_by_payment(PAYMENT_TX).job_id == "job-a"


def test_payment_in_flight_for_another_job_is_not_reused(worker, store, collaborators):
    _validated(store, "job-a")
    _validated(store, "job-b")
    gate = threading.Event()
    calls = []

    def slow_mint(job, recipient):
        calls.append(job.job_id)
        gate.wait(5)
        return MintResult(attestation_hash=ATTESTATION_TX, reward_transaction_hash=REWARD_TX)

    collaborators.chain.attest_and_reward.side_effect = slow_mint
    first = threading.Thread(target=worker.handle_minting, args=(make_job("job-a", payment_tx=PAYMENT_TX),))
    first.start()
    while not calls:
        pass
    worker.handle_minting(make_job("job-b", payment_tx=PAYMENT_TX))
    gate.set()
    first.join(5)
    assert calls == ["job-a"]
    assert store.get_attestation("job-a").complete
    assert store.get_attestation("job-b").message == "Payment already used"


def test_tracker_forgets_finished_jobs(worker, store, collaborators, tracker):
    def vision(url, text):
        return Verdict(is_valid="good" in url)

    collaborators.vision.validate_image.side_effect = vision
    for i in range(100):
        worker.handle_validating(make_job(f"good-{i}", image_url=f"https://example.com/good-{i}.png"))
        worker.handle_validating(make_job(f"bad-{i}", image_url=f"https://example.com/bad-{i}.png"))
    assert len(tracker) == 0
    assert tracker.stage("good-7") == Stage.AWAITING_PAYMENT
    assert tracker.stage("bad-7") == Stage.FAILED
    worker.handle_minting(make_job("good-7", payment_tx=PAYMENT_TX))
    assert len(tracker) == 0
    assert tracker.stage("good-7") == Stage.COMPLETE
