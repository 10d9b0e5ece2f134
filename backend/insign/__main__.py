"""Command line entry points: ``python -m insign serve`` and ``python -m insign expire-overdue``."""
import argparse

import uvicorn
from sqlmodel import Session

from insign.core.logging_setup import configure_logging, logger
from insign.schemas.common import ActionResult


def _expire_overdue() -> ActionResult[int]:
    from insign.db.session import engine, init_db
    from insign.repositories.sql import SqlDocumentRepository, SqlSignatureRequestRepository
    from insign.services.actions import SignatureActions
    from insign.services.notification import build_default_dispatcher
    from insign.services.workflow import SignatureWorkflowService

    init_db()
    with Session(engine) as session:
        repository = SqlSignatureRequestRepository(session)
        service = SignatureWorkflowService(
            repository,
            SqlDocumentRepository(session),
            dispatcher=build_default_dispatcher(),
        )
        return SignatureActions(service).expire_overdue()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="insign")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    commands.add_parser("expire-overdue", help="expire active requests past their deadline")

    args = parser.parse_args(argv)
    if args.command == "serve":
        uvicorn.run("insign.main:create_app", factory=True, host=args.host, port=args.port, reload=args.reload)
        return

    configure_logging()
    result = _expire_overdue()
    if not result.success:
        logger.error("Expiry sweep failed: %s", result.error)
        raise SystemExit(1)
    logger.info("Expired %s signature request(s)", result.data)


if __name__ == "__main__":
    main()
