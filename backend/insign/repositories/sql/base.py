from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import Session

from insign.core.errors import ConflictError

logger = logging.getLogger("insign.repositories")

CONFLICT_MESSAGE = "The request was modified concurrently, please retry"

R = TypeVar("R", bound="SqlRepository")


def _is_lock_error(exc: OperationalError) -> bool:
    text = str(exc.orig or exc).lower()
    return "database is locked" in text or "could not serialize" in text or "deadlock" in text


class SqlRepository:
    """Session holder whose ``transaction()`` commits, or rolls back and maps store conflicts."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def transaction(self: R) -> Iterator[R]:
        try:
            yield self
            self.session.commit()
        except (IntegrityError, StaleDataError) as exc:
            self.session.rollback()
            logger.info("Write conflict: %s", exc)
            raise ConflictError(CONFLICT_MESSAGE) from exc
        except OperationalError as exc:
            self.session.rollback()
            if _is_lock_error(exc):
                logger.info("Lock conflict: %s", exc)
                raise ConflictError(CONFLICT_MESSAGE) from exc
            raise
        except BaseException:
            self.session.rollback()
            raise

    def save(self, entity) -> None:
        self.session.add(entity)
