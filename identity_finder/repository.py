"""Card persistence.

`ReportRepository` and `FoundCardRepository` are the only places that touch
the database for cards. Backend exceptions are translated into `RepositoryError` subclasses
with a stable `kind`, so route handlers never look at driver-specific errors.
"""
import datetime
import enum
import logging
from typing import Any, List, Mapping, Type

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, select

from .constants import FOUND_CARD_ACTIVE, STATUS_LOST
from .db import session_scope
from .models import FoundCard, FoundCardCreate, ReportCard, ReportCardCreate

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    DUPLICATE_KEY = "duplicate_key"
    VALIDATION_FAILED = "validation_failed"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RepositoryError(Exception):
    kind = ErrorKind.UNKNOWN


class DuplicateKeyError(RepositoryError):
    kind = ErrorKind.DUPLICATE_KEY


class ValidationFailedError(RepositoryError):
    kind = ErrorKind.VALIDATION_FAILED


class UnavailableError(RepositoryError):
    kind = ErrorKind.UNAVAILABLE


class UnknownRepositoryError(RepositoryError):
    kind = ErrorKind.UNKNOWN


_UNIQUE_MARKERS = ("unique", "duplicate", "primary key")


def translate_error(exc: Exception) -> RepositoryError:
    """Map a backend exception to a typed repository error."""
    if isinstance(exc, RepositoryError):
        return exc
    if isinstance(exc, sa_exc.IntegrityError):
        message = str(exc.orig).lower()
        if any(marker in message for marker in _UNIQUE_MARKERS):
            return DuplicateKeyError(str(exc.orig))
        return ValidationFailedError(str(exc.orig))
    if isinstance(exc, (sa_exc.DataError, ValidationError)):
        return ValidationFailedError(str(exc))
    if isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError,
                        sa_exc.DisconnectionError, sa_exc.TimeoutError, TimeoutError)):
        return UnavailableError(str(exc))
    return UnknownRepositoryError(str(exc))


class _OwnedCardRepository:
    """Create, list and count one card table, always scoped by owner.

    Subclasses name the table model, its validating create model, the owner
    column and the status a new row starts in.
    """
    model: Type[SQLModel]
    create_model: Type[SQLModel]
    owner_column: str
    initial_status: str
    label: str

    def __init__(self, engine: Engine):
        self.engine = engine

    def _owner_is(self, owner_id: str):
        return getattr(self.model, self.owner_column) == owner_id

    def _fail(self, action: str, owner_id: str, e: Exception) -> RepositoryError:
        err = translate_error(e)
        logger.error("Failed to %s %ss for %s: %s (%s)", action, self.label, owner_id, err.kind.value, e)
        return err

    def create(self, owner_id: str, fields: Mapping[str, Any]):
        """Persist a new card with the initial status and fresh timestamps."""
        try:
            data = self.create_model.model_validate(dict(fields))
            now = datetime.datetime.now(datetime.timezone.utc)
            card = self.model(
                **data.model_dump(),
                **{self.owner_column: owner_id},
                status=self.initial_status,
                created_at=now,
                updated_at=now,
            )
            with session_scope(self.engine) as session:
                session.add(card)
                session.commit()
                session.refresh(card)
                session.expunge(card)
        except Exception as e:
            raise self._fail("create", owner_id, e) from e

        logger.info("Created %s %s for %s", self.label, card.id, owner_id)
        return card

    def list_by_owner(self, owner_id: str) -> List[Any]:
        """All cards of one owner, newest first."""
        try:
            with session_scope(self.engine) as session:
                stmt = (
                    select(self.model)
                    .where(self._owner_is(owner_id))
                    .order_by(self.model.created_at.desc(), self.model.id.desc())
                )
                rows = session.exec(stmt).all()
                for row in rows:
                    session.expunge(row)
        except Exception as e:
            raise self._fail("list", owner_id, e) from e

        logger.debug("Listed %d %ss for %s", len(rows), self.label, owner_id)
        return list(rows)

    def count_by_owner(self, owner_id: str) -> int:
        try:
            with session_scope(self.engine) as session:
                stmt = select(func.count(self.model.id)).where(self._owner_is(owner_id))
                return session.exec(stmt).one()
        except Exception as e:
            raise self._fail("count", owner_id, e) from e


class ReportRepository(_OwnedCardRepository):
    """Lost ID report cards, owned by the submitter."""
    model = ReportCard
    create_model = ReportCardCreate
    owner_column = "owner_id"
    initial_status = STATUS_LOST
    label = "report card"


class FoundCardRepository(_OwnedCardRepository):
    """Found ID cards, owned by the finder."""
    model = FoundCard
    create_model = FoundCardCreate
    owner_column = "finder_id"
    initial_status = FOUND_CARD_ACTIVE
    label = "found card"
