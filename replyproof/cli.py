"""
replyproof CLI.

Commands:
  replyproof serve            — Start the frame server + pipeline worker (PORT, default 5000)
  replyproof init-db          — Create the validations/attestations tables
  replyproof status <jobId>   — Print what a poll would show for a job (JSON)
  replyproof job-id           — Print a fresh job id
"""

import json
import sys

from replyproof.config import Settings, configure_logging


def serve_command(settings: Settings):
    """Run the frame server; the event bus and worker start with it."""
    import uvicorn

    from replyproof.server import create_app

    print(f"replyproof listening on {settings.port} (db: {settings.database_url})")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_config=None)


def init_db_command(settings: Settings):
    from replyproof.store import JobStore

    JobStore.from_url(settings.database_url, create=True)
    print(f"Tables ready in {settings.database_url}")


def status_command(settings: Settings):
    from replyproof.stages import JobTracker
    from replyproof.status import StatusQuery
    from replyproof.store import JobStore

    if len(sys.argv) < 3:
        print("Usage: replyproof status <jobId>")
        sys.exit(1)
    job_id = sys.argv[2].strip()
    store = JobStore.from_url(settings.database_url, create=False)
    status = StatusQuery(store, JobTracker(store), explorer_url=settings.explorer_url)
    validation = store.get_validation(job_id)
    attestation = store.get_attestation(job_id)
    out = {
        "status": status.get_job_status(job_id).model_dump(mode="json"),
        "validation": validation.model_dump(mode="json", by_alias=True) if validation else None,
        "attestation": attestation.model_dump(mode="json", by_alias=True) if attestation else None,
    }
    print(json.dumps(out, indent=2))


def job_id_command(settings: Settings):
    from replyproof.schema import new_job_id

    print(new_job_id())


COMMANDS = {
    "serve": serve_command,
    "init-db": init_db_command,
    "status": status_command,
    "job-id": job_id_command,
}


def main():
    """CLI entry point."""
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        if len(sys.argv) >= 2:
            print(f"Unknown command: {sys.argv[1]}")
        print(__doc__.strip())
        sys.exit(1)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    COMMANDS[sys.argv[1]](settings)


if __name__ == "__main__":
    main()
