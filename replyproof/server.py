"""
Frame server.

GET  /                      entry view
POST /                      fetch the user's reply; start validation if it has an image
GET|POST /validations/{id}  poll validation
POST /transactions/{id}     payment descriptor for the client wallet
POST /payments/{id}         check the payment tx; start minting once confirmed
GET|POST /jobs/{id}         poll attestation
GET  /health

Handlers never wait for the pipeline: they publish an event and return a
"pending" view. The vision check and minting only run in the worker.

Run: replyproof serve  (or uvicorn "replyproof.server:create_app" --factory)
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from replyproof.bus import RESET, START_MINTING, START_VALIDATING, EventBus
from replyproof.clients import Collaborators, build_collaborators
from replyproof.config import Settings
from replyproof.errors import CollaboratorError, PreconditionError
from replyproof.pipeline import PAYMENT_USED_MESSAGE, PipelineWorker
from replyproof.schema import FrameRequest, JobDescriptor, new_job_id
from replyproof.selection import select_image_embed, select_reply
from replyproof.stages import JobTracker
from replyproof.status import StatusQuery, job_path, validation_path
from replyproof.store import JobStore
from replyproof.views import (
    GENERIC_ERROR,
    dump,
    entry_screen,
    error_screen,
    info_screen,
    reset_action,
    retry_action,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[JobStore] = None,
    bus: Optional[EventBus] = None,
    collaborators: Optional[Collaborators] = None,
    tracker: Optional[JobTracker] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or JobStore.from_url(settings.database_url)
    bus = bus or EventBus(max_workers=settings.workers)
    collaborators = collaborators or build_collaborators(settings)
    tracker = tracker or JobTracker(store)

    worker = PipelineWorker(store, collaborators, tracker)
    worker.subscribe(bus)
    status = StatusQuery(store, tracker, explorer_url=settings.explorer_url)

    app = FastAPI(title="replyproof", description="Reply image -> vision check -> payment -> EAS attestation")
    app.state.settings = settings
    app.state.store = store
    app.state.bus = bus
    app.state.worker = worker
    app.state.status = status

    @app.on_event("startup")
    def _start_bus():
        bus.start()

    @app.on_event("shutdown")
    def _stop_bus():
        bus.stop()

    @app.get("/health")
    def health():
        return {"ok": True, "service": "replyproof", "bus": bus.running}

    @app.get("/")
    def entry():
        return dump(entry_screen())

    @app.post("/")
    def submit(frame: FrameRequest):
        data = frame.untrusted_data
        if (data.button_value or "").upper() == "RESET":
            if data.state:
                bus.emit(RESET, {"jobId": data.state})
            return dump(entry_screen())
        try:
            if data.cast_id is None:
                raise PreconditionError("Open this frame from a cast")
            replies = collaborators.social.get_replies(data.cast_id.hash)
            reply = select_reply(replies, data.fid)
            embed = select_image_embed(reply, settings.embed_filter)
            if embed is None:
                retry = retry_action("Fetch text/image", "/", value="CAST_TEXT")
                return dump(info_screen(reply.text, [retry, reset_action()], post_url="/"))
            job = JobDescriptor(
                job_id=new_job_id(),
                cast_hash=data.cast_id.hash,
                user_fid=str(data.fid),
                text=reply.text,
                image_url=embed.url,
                label=settings.label,
            )
            bus.emit(START_VALIDATING, job.model_dump(by_alias=True))
            logger.info("Job %s submitted by fid %s (%s)", job.job_id, job.user_fid, job.image_url)
            target = validation_path(job.job_id)
            return dump(
                info_screen(
                    f"{reply.text}\n\n\n Validating image...",
                    [retry_action("Check status", target, value="REFRESH"), reset_action()],
                    post_url=target,
                    state=job.job_id,
                )
            )
        except PreconditionError as e:
            return dump(error_screen(str(e)))
        except Exception:
            logger.exception("Entry frame failed")
            return dump(error_screen(GENERIC_ERROR))

    @app.api_route("/validations/{job_id}", methods=["GET", "POST"])
    def validation_status(job_id: str):
        return dump(status.get_validation_status(job_id).to_view())

    @app.api_route("/jobs/{job_id}", methods=["GET", "POST"])
    def job_status(job_id: str):
        return dump(status.get_job_status(job_id).to_view())

    @app.post("/transactions/{job_id}")
    def transaction(job_id: str):
        validation = store.get_validation(job_id)
        if validation is None or not validation.passed:
            return JSONResponse(status_code=409, content=dump(error_screen("Image has not been validated")))
        return collaborators.chain.payment_descriptor().model_dump(by_alias=True)

    @app.post("/payments/{job_id}")
    def payment(job_id: str, frame: FrameRequest):
        data = frame.untrusted_data
        if store.get_attestation(job_id) is not None:
            return dump(status.get_job_status(job_id).to_view())
        validation = store.get_validation(job_id)
        if validation is None or not validation.passed:
            return dump(error_screen("Image has not been validated"))
        tx_hash = (data.transaction_id or data.state or "").strip().lower()
        if not tx_hash:
            return dump(error_screen("No payment transaction received"))
        used = store.get_attestation_by_payment(tx_hash)
        if used is not None:
            logger.warning("Job %s: payment %s already used by job %s", job_id, tx_hash, used.job_id)
            return dump(error_screen(PAYMENT_USED_MESSAGE))
        try:
            payment_status = collaborators.chain.verify_payment(tx_hash)
        except CollaboratorError as e:
            logger.warning("Job %s: payment lookup failed: %s", job_id, e)
            retry = retry_action("Check payment", f"/payments/{job_id}", value="REFRESH")
            return dump(
                info_screen(
                    "Could not check your payment yet. Try again.",
                    [retry, reset_action()],
                    post_url=retry.target,
                    state=tx_hash,
                )
            )
        if payment_status.status == "pending":
            retry = retry_action("Check payment", f"/payments/{job_id}", value="REFRESH")
            return dump(
                info_screen("Payment pending...", [retry, reset_action()], post_url=retry.target, state=tx_hash)
            )
        if payment_status.status != "confirmed":
            return dump(error_screen(f"Payment transaction {payment_status.status}"))
        bus.emit(START_MINTING, validation.descriptor(tx_hash).model_dump(by_alias=True))
        logger.info("Job %s: payment %s confirmed, minting requested", job_id, tx_hash)
        target = job_path(job_id)
        return dump(
            info_screen(
                "Payment confirmed! Minting your attestation...",
                [retry_action("Check status", target, value="REFRESH"), reset_action()],
                post_url=target,
                state=job_id,
            )
        )

    return app
