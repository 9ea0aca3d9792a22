"""Store module - Local replica persisted with SQLAlchemy on SQLite."""

from eventsync.store.database import ConstraintViolation, EntityStore, NotFound, StoreError
from eventsync.store.events import ChangeAction, CollectionChanged
from eventsync.store.identity import UNASSIGNED, Assigned, LocalIdentity, Unassigned, identity_of
from eventsync.store.models import (
    BenefitSystemType,
    InvalidFieldValue,
    Counter,
    Gender,
    Guest,
    Job,
    JobType,
    JobTypeConfig,
    ManualRewards,
    ShiftTime,
    SyncedEntity,
    Venue,
    Volunteer,
    VolunteerRank,
    model_for,
)

__all__ = [
    # Store
    "EntityStore",
    "StoreError",
    "NotFound",
    "ConstraintViolation",
    "InvalidFieldValue",
    # Events
    "ChangeAction",
    "CollectionChanged",
    # Identity
    "LocalIdentity",
    "Unassigned",
    "Assigned",
    "UNASSIGNED",
    "identity_of",
    # Models
    "SyncedEntity",
    "Guest",
    "Volunteer",
    "Job",
    "JobTypeConfig",
    "Venue",
    "Counter",
    "ManualRewards",
    "VolunteerRank",
    "JobType",
    "Gender",
    "ShiftTime",
    "BenefitSystemType",
    "model_for",
]
