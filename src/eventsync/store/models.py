"""SQLAlchemy models for the local replica.

This module defines the database schema using SQLAlchemy ORM: one table per
entity collection, the singleton people counter and a key-value table for
sync state (cursors, retry sets, replica id).

Every synchronized entity carries the same three bookkeeping columns:
``id`` (local identity), ``remote_id`` (bound after the first acknowledged
push) and ``last_modified`` (epoch millis).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from eventsync.core.types import Collection, now_millis

COUNTER_KEY = 1


class VolunteerRank(str, Enum):
    NOVA = "NOVA"  # Shift before midnight
    ETOILE = "ETOILE"  # Shift after midnight
    GALAXIE = "GALAXIE"  # 3+ shifts/month
    ORION = "ORION"  # Committee roles
    VETERAN = "VETERAN"  # Ex-Orion
    SPECIAL = "SPECIAL"  # Manual rewards


class JobType(str, Enum):
    BAR = "BAR"
    SECURITY = "SECURITY"
    CLEANING = "CLEANING"
    SETUP = "SETUP"
    SOUND_TECH = "SOUND_TECH"
    LIGHTING = "LIGHTING"
    ENTRANCE = "ENTRANCE"
    CLOAKROOM = "CLOAKROOM"
    COORDINATION = "COORDINATION"
    COMMITTEE = "COMMITTEE"
    COMMISSION_PRESIDENCY = "COMMISSION_PRESIDENCY"
    MEETING = "MEETING"
    OTHER = "OTHER"


class Gender(str, Enum):
    FEMALE = "FEMALE"
    MALE = "MALE"
    NON_BINARY = "NON_BINARY"
    OTHER = "OTHER"
    PREFER_NOT_TO_DISCLOSE = "PREFER_NOT_TO_DISCLOSE"


class ShiftTime(str, Enum):
    BEFORE_MIDNIGHT = "BEFORE_MIDNIGHT"
    AFTER_MIDNIGHT = "AFTER_MIDNIGHT"


class BenefitSystemType(str, Enum):
    STELLAR = "STELLAR"  # Rank-based benefits
    MANUAL = "MANUAL"  # Uses ManualRewards


@dataclass
class ManualRewards:
    """Manual rewards granted by a job type with the MANUAL benefit system."""

    duration_days: int = 1
    free_drinks: int = 0
    bar_discount_percentage: int = 0
    free_entry: bool = False
    invites: int = 0
    other_notes: str = ""


class ManualRewardsType(TypeDecorator[ManualRewards]):
    """Stores ManualRewards as a JSON object in a TEXT column."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: ManualRewards | None, dialect: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(asdict(value), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Any) -> ManualRewards | None:
        if value is None:
            return None
        return ManualRewards(**json.loads(value))


class InvalidFieldValue(ValueError):
    """A remote payload holds a value its column cannot store."""

    def __init__(self, name: str, value: Any, reason: str) -> None:
        self.name = name
        self.value = value
        super().__init__(f"invalid {name} {value!r}: {reason}")


def _decode(name: str, column: Column[Any], value: Any) -> Any:
    """Convert one JSON value to the Python type of its column."""
    if value is None:
        if not column.nullable:
            raise InvalidFieldValue(name, value, "value required")
        return None

    column_type = column.type
    if isinstance(column_type, SAEnum) and column_type.enum_class is not None:
        try:
            return column_type.enum_class(value)
        except ValueError:
            raise InvalidFieldValue(name, value, "unknown member") from None
    if isinstance(column_type, ManualRewardsType):
        if not isinstance(value, dict):
            raise InvalidFieldValue(name, value, "expected an object")
        try:
            return ManualRewards(**value)
        except TypeError as e:
            raise InvalidFieldValue(name, value, str(e)) from None
    if isinstance(column_type, Boolean):
        if not isinstance(value, bool):
            raise InvalidFieldValue(name, value, "expected a boolean")
        return value
    if isinstance(column_type, Integer):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidFieldValue(name, value, "expected an integer")
        return value
    if isinstance(column_type, (Text, String)):
        if not isinstance(value, str):
            raise InvalidFieldValue(name, value, "expected a string")
        return value
    return value


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class SyncedEntity(Base):
    """Abstract base for entities that take part in two-way sync.

    Subclasses list the columns exchanged with the remote store in
    ``__sync_fields__`` and, when they have one, the natural key used to
    match remote records that are not bound yet in ``__natural_key__``.
    """

    __abstract__ = True

    __collection__: ClassVar[Collection]
    __sync_fields__: ClassVar[tuple[str, ...]] = ()
    __natural_key__: ClassVar[str | None] = None

    if TYPE_CHECKING:
        id: Mapped[int]
        remote_id: Mapped[str | None]
        last_modified: Mapped[int]

    def to_fields(self) -> dict[str, Any]:
        """Serialize the synchronized columns to JSON-compatible values."""
        fields: dict[str, Any] = {}
        for name in self.__sync_fields__:
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, ManualRewards):
                value = asdict(value)
            fields[name] = value
        return fields

    def apply_fields(self, fields: dict[str, Any]) -> None:
        """Overwrite synchronized columns from a remote payload.

        Keys that are not synchronized columns are ignored; columns absent
        from the payload keep their current value. Every value is decoded
        before any column is written, so a bad payload leaves the entity
        untouched.

        Raises:
            InvalidFieldValue: If a value does not fit its column.
        """
        if not isinstance(fields, dict):
            raise InvalidFieldValue("fields", fields, "expected an object")
        columns = self.__table__.columns
        decoded = {
            name: _decode(name, columns[name], fields[name])
            for name in self.__sync_fields__
            if name in fields
        }
        for name, value in decoded.items():
            setattr(self, name, value)

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> SyncedEntity:
        """Build a new, unassigned entity from a remote payload."""
        entity = cls()
        entity.apply_fields(fields)
        return entity

    def natural_key(self) -> Any:
        """Value of the natural key column, or None if the entity has none."""
        if self.__natural_key__ is None:
            return None
        return getattr(self, self.__natural_key__)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} remote_id={self.remote_id!r} "
            f"last_modified={self.last_modified}>"
        )


def _enum(enum_class: type[Enum]) -> SAEnum:
    return SAEnum(enum_class, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])


class Guest(SyncedEntity):
    """A guest-list entry, optionally a volunteer's benefit invitation."""

    __tablename__ = "guests"
    __collection__ = Collection.GUESTS
    __natural_key__ = "name"
    __sync_fields__ = (
        "name",
        "last_name_abbreviation",
        "invitations",
        "venue_name",
        "notes",
        "is_volunteer_benefit",
        "volunteer_id",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name_abbreviation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    invitations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    venue_name: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_volunteer_benefit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    volunteer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    __table_args__ = (
        Index("idx_guests_name", "name"),
        Index("idx_guests_volunteer", "volunteer_id"),
        Index("idx_guests_venue", "venue_name"),
        Index("idx_guests_last_modified", "last_modified"),
        Index("idx_guests_benefit", "is_volunteer_benefit"),
        {"sqlite_autoincrement": True},
    )


class Volunteer(SyncedEntity):
    """A volunteer and their contact details and rank."""

    __tablename__ = "volunteers"
    __collection__ = Collection.VOLUNTEERS
    __natural_key__ = "name"
    __sync_fields__ = (
        "name",
        "last_name_abbreviation",
        "email",
        "phone_number",
        "date_of_birth",
        "gender",
        "current_rank",
        "is_active",
        "last_shift_date",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name_abbreviation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    email: Mapped[str] = mapped_column(Text, default="", nullable=False)
    phone_number: Mapped[str] = mapped_column(Text, default="", nullable=False)
    date_of_birth: Mapped[str] = mapped_column(Text, default="", nullable=False)
    gender: Mapped[Gender | None] = mapped_column(_enum(Gender), nullable=True)
    current_rank: Mapped[VolunteerRank | None] = mapped_column(_enum(VolunteerRank), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_shift_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    __table_args__ = (
        Index("idx_volunteers_name", "name"),
        Index("idx_volunteers_active", "is_active"),
        Index("idx_volunteers_rank", "current_rank"),
        Index("idx_volunteers_last_modified", "last_modified"),
        {"sqlite_autoincrement": True},
    )


class Job(SyncedEntity):
    """A shift or task performed by a volunteer."""

    __tablename__ = "jobs"
    __collection__ = Collection.JOBS
    __sync_fields__ = (
        "volunteer_id",
        "job_type",
        "job_type_name",
        "venue_name",
        "date",
        "shift_time",
        "notes",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    volunteer_id: Mapped[int] = mapped_column(Integer, nullable=False)
    job_type: Mapped[JobType] = mapped_column(_enum(JobType), nullable=False)
    job_type_name: Mapped[str] = mapped_column(Text, nullable=False)
    venue_name: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[int] = mapped_column(BigInteger, nullable=False)
    shift_time: Mapped[ShiftTime] = mapped_column(_enum(ShiftTime), nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    __table_args__ = (
        Index("idx_jobs_volunteer", "volunteer_id"),
        Index("idx_jobs_date", "date"),
        Index("idx_jobs_venue", "venue_name"),
        Index("idx_jobs_type_name", "job_type_name"),
        Index("idx_jobs_last_modified", "last_modified"),
        Index("idx_jobs_volunteer_date", "volunteer_id", "date"),
        Index("idx_jobs_date_shift", "date", "shift_time"),
        {"sqlite_autoincrement": True},
    )


class JobTypeConfig(SyncedEntity):
    """Configuration of a job type and how it counts towards benefits."""

    __tablename__ = "job_type_configs"
    __collection__ = Collection.JOB_TYPE_CONFIGS
    __natural_key__ = "name"
    __sync_fields__ = (
        "name",
        "is_active",
        "is_shift_job",
        "is_orion_job",
        "requires_shift_time",
        "benefit_system_type",
        "manual_rewards",
        "description",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_shift_job: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_orion_job: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_shift_time: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    benefit_system_type: Mapped[BenefitSystemType] = mapped_column(
        _enum(BenefitSystemType), default=BenefitSystemType.STELLAR, nullable=False
    )
    manual_rewards: Mapped[ManualRewards | None] = mapped_column(ManualRewardsType, nullable=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    __table_args__ = (
        Index("idx_job_type_configs_active", "is_active"),
        Index("idx_job_type_configs_last_modified", "last_modified"),
        {"sqlite_autoincrement": True},
    )


class Venue(SyncedEntity):
    """A venue where events and shifts take place."""

    __tablename__ = "venues"
    __collection__ = Collection.VENUES
    __natural_key__ = "name"
    __sync_fields__ = ("name", "description", "is_active")

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    __table_args__ = (
        Index("idx_venues_active", "is_active"),
        Index("idx_venues_last_modified", "last_modified"),
        {"sqlite_autoincrement": True},
    )


class Counter(SyncedEntity):
    """The singleton "people present" counter (always id 1)."""

    __tablename__ = "people_counter"
    __collection__ = Collection.COUNTER
    __sync_fields__ = ("count",)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False, default=COUNTER_KEY)
    remote_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, default=now_millis, nullable=False)

    def natural_key(self) -> Any:
        return COUNTER_KEY


class SyncStateEntry(Base):
    """Key-value sync state (cursors, retry sets, replica id)."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


MODELS: dict[Collection, type[SyncedEntity]] = {
    Collection.GUESTS: Guest,
    Collection.VOLUNTEERS: Volunteer,
    Collection.JOBS: Job,
    Collection.JOB_TYPE_CONFIGS: JobTypeConfig,
    Collection.VENUES: Venue,
    Collection.COUNTER: Counter,
}


def model_for(collection: Collection) -> type[SyncedEntity]:
    """Get the model class for a collection."""
    return MODELS[collection]
