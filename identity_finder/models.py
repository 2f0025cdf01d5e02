import datetime
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index
from sqlmodel import Field, SQLModel

from .constants import FOUND_CARD_ACTIVE, REPORT_STATUSES, STATUS_LOST


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ReportCardBase(SQLModel):
    full_name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=1, max_length=320)
    id_type: str = Field(min_length=1, max_length=50)
    id_description: str = Field(min_length=1, max_length=2000)
    file_description: Optional[str] = Field(default=None, max_length=2000)


class ReportCardCreate(ReportCardBase):
    """Validated input for a new report card (table models skip validation)."""


class ReportCard(ReportCardBase, table=True):
    """A lost ID card report owned by exactly one user."""
    __tablename__ = "report_cards"
    __table_args__ = (
        Index("ix_report_cards_owner_created", "owner_id", "created_at"),
        CheckConstraint(
            "status IN (%s)" % ", ".join(f"'{s}'" for s in REPORT_STATUSES),
            name="ck_report_cards_status",
        ),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    owner_id: str = Field(index=True)
    status: str = Field(default=STATUS_LOST, index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class FoundCardBase(SQLModel):
    title: str = Field(min_length=1, max_length=200)
    card_type: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=2000)
    full_name: Optional[str] = Field(default=None, max_length=200)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=320)
    id_number: Optional[str] = Field(default=None, max_length=100)
    date_found: Optional[str] = Field(default=None, max_length=50)
    location_found: Optional[str] = Field(default=None, max_length=500)
    additional_info: Optional[str] = Field(default=None, max_length=2000)


class FoundCardCreate(FoundCardBase):
    pass


class FoundCard(FoundCardBase, table=True):
    """An ID card someone found and handed in, owned by the finder."""
    __tablename__ = "found_cards"
    __table_args__ = (Index("ix_found_cards_finder_created", "finder_id", "created_at"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    finder_id: str = Field(index=True)
    status: str = Field(default=FOUND_CARD_ACTIVE)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def report_card_to_dict(card: ReportCard) -> Dict[str, Any]:
    """Public JSON shape of a report card."""
    return {
        'id': card.id,
        'ownerId': card.owner_id,
        'fullName': card.full_name,
        'phone': card.phone,
        'email': card.email,
        'idType': card.id_type,
        'idDescription': card.id_description,
        'fileDescription': card.file_description,
        'status': card.status,
        'createdAt': _as_utc(card.created_at).isoformat(),
        'updatedAt': _as_utc(card.updated_at).isoformat(),
    }


def found_card_to_dict(card: FoundCard) -> Dict[str, Any]:
    return {
        'id': card.id,
        'finderId': card.finder_id,
        'title': card.title,
        'cardType': card.card_type,
        'description': card.description,
        'fullName': card.full_name,
        'phoneNumber': card.phone_number,
        'email': card.email,
        'idNumber': card.id_number,
        'dateFound': card.date_found,
        'locationFound': card.location_found,
        'additionalInfo': card.additional_info,
        'status': card.status,
        'createdAt': _as_utc(card.created_at).isoformat(),
        'updatedAt': _as_utc(card.updated_at).isoformat(),
    }
