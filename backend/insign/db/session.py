from typing import Any, Generator

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from insign.core.config import settings
from insign.core.logging_setup import logger
import insign.models  # noqa: F401  registers every table on the metadata

connect_args: dict[str, Any] = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args=connect_args,
)


def init_db() -> None:
    SQLModel.metadata.create_all(bind=engine)
    _check_schema()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def _check_schema() -> None:
    """
    Warn about databases created before the optimistic concurrency column existed.
    Migrations are managed outside this service, so nothing is altered here.
    """
    try:
        with engine.connect() as conn:
            inspector = inspect(conn)
            if "signature_requests" not in set(inspector.get_table_names()):
                return
            columns = {column["name"] for column in inspector.get_columns("signature_requests")}
            if "version" not in columns:
                logger.warning("Column 'version' missing from 'signature_requests'; concurrent transitions are unsafe.")
    except SQLAlchemyError as exc:  # pragma: no cover - best effort safeguard
        logger.error("Failed to inspect database schema: %s", exc)
