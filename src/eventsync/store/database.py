"""Entity store using SQLAlchemy with SQLite.

This module provides:
- Typed CRUD over the five synchronized collections and the people counter
- Indexed read paths (natural key, remote id, foreign key, activity flag,
  modification time)
- Key-value sync state used by the change tracker
- Change notifications for live readers

Every public mutating call runs in its own transaction: it either fully
commits or leaves the database untouched.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import DBAPIError, IntegrityError, StatementError
from sqlalchemy.orm import Session, make_transient

from eventsync.core.types import Collection, now_millis
from eventsync.store.events import ChangeAction, ChangeListener, ChangeNotifier, CollectionChanged
from eventsync.store.identity import Assigned, Unassigned, identity_of
from eventsync.store.models import (
    COUNTER_KEY,
    Base,
    Counter,
    Guest,
    Job,
    JobTypeConfig,
    ShiftTime,
    SyncedEntity,
    SyncStateEntry,
    Venue,
    Volunteer,
    VolunteerRank,
    model_for,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.sql import Select

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=SyncedEntity)


class StoreError(Exception):
    """Base exception for entity store errors."""


class NotFound(StoreError):
    """Raised when a write targets a local id that does not exist."""

    def __init__(self, collection: Collection, entity_id: int | None) -> None:
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection.value}: no record with id {entity_id}")


class ConstraintViolation(StoreError):
    """Raised when a write collides with a unique key (id, name, remote id)."""


def _column_keys(model: type[SyncedEntity]) -> list[str]:
    return [attr.key for attr in sa_inspect(model).column_attrs]


def _ordered(model: type[SyncedEntity], stmt: Select[Any]) -> Select[Any]:
    """Apply the default listing order of a collection."""
    if model is Job:
        return stmt.order_by(Job.date.desc(), Job.id.desc())
    if model.__natural_key__ == "name":
        return stmt.order_by(model.name, model.id)  # type: ignore[attr-defined]
    return stmt.order_by(model.id)


class EntityStore:
    """SQLAlchemy store for the local replica.

    Uses SQLite with WAL mode so readers never block on a running sync.
    """

    def __init__(self, db_path: Path, clock: Callable[[], int] = now_millis) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            clock: Source of epoch-millisecond timestamps.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._stamp_lock = threading.Lock()
        self._last_stamp = 0
        self._notifier = ChangeNotifier()

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Subscribe to CollectionChanged events.

        Returns:
            Function that removes the subscription.
        """
        return self._notifier.subscribe(listener)

    def now(self) -> int:
        """Next modification timestamp.

        Never lower than a timestamp previously issued by this store, even
        if the wall clock steps backwards.
        """
        with self._stamp_lock:
            self._last_stamp = max(self._clock(), self._last_stamp)
            return self._last_stamp

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Run a block in a single transaction.

        Unique and NOT NULL violations, and values the column types refuse
        to bind, become ConstraintViolation. Other database errors propagate.
        """
        session = Session(self._engine, expire_on_commit=False)
        try:
            with session.begin():
                yield session
        except IntegrityError as e:
            raise ConstraintViolation(str(e.orig)) from e
        except StatementError as e:
            if isinstance(e, DBAPIError):
                raise
            raise ConstraintViolation(f"cannot store value: {e.orig}") from e
        finally:
            session.close()

    def _read(self) -> Session:
        return Session(self._engine)

    def _emit(self, collection: Collection, action: ChangeAction, *ids: int) -> None:
        self._notifier.emit(CollectionChanged(collection, action, tuple(ids)))

    # === Generic writes ===

    def insert(self, entity: SyncedEntity, *, last_modified: int | None = None) -> Assigned:
        """Insert a new record.

        An unassigned entity gets the next local id. An entity that already
        carries an id is inserted under that id, which must be free.

        Args:
            entity: Entity to insert.
            last_modified: Version stamp to store; defaults to now. Set when
                applying a record pulled from the remote.

        Returns:
            The assigned local identity.

        Raises:
            ConstraintViolation: On duplicate id, name or remote id.
        """
        model = type(entity)
        collection = model.__collection__

        if sa_inspect(entity).detached:
            make_transient(entity)

        entity.last_modified = last_modified if last_modified is not None else self.now()

        with self._transaction() as session:
            identity = identity_of(entity)
            if isinstance(identity, Assigned) and session.get(model, identity.id) is not None:
                raise ConstraintViolation(f"{collection.value}: id {identity.id} already exists")
            session.add(entity)
            session.flush()
            new_id = entity.id

        logger.debug(f"Inserted {collection.value} #{new_id}")
        self._emit(collection, ChangeAction.INSERTED, new_id)
        return Assigned(new_id)

    def update(self, entity: SyncedEntity) -> None:
        """Replace every column of an existing record.

        The caller owns ``last_modified``: it is written as given.

        Raises:
            NotFound: If the entity has no id or the id does not exist.
            ConstraintViolation: On duplicate name or remote id.
        """
        model = type(entity)
        collection = model.__collection__
        identity = identity_of(entity)
        if isinstance(identity, Unassigned):
            raise NotFound(collection, None)

        with self._transaction() as session:
            current = session.get(model, identity.id)
            if current is None:
                raise NotFound(collection, identity.id)
            for key in _column_keys(model):
                if key != "id":
                    setattr(current, key, getattr(entity, key))

        self._emit(collection, ChangeAction.UPDATED, identity.id)

    def delete(self, collection: Collection, entity_id: int) -> None:
        """Hard-delete a record. References to it are left as they are.

        Raises:
            NotFound: If the id does not exist.
        """
        model = model_for(collection)
        with self._transaction() as session:
            entity = session.get(model, entity_id)
            if entity is None:
                raise NotFound(collection, entity_id)
            session.delete(entity)

        self._emit(collection, ChangeAction.DELETED, entity_id)

    def delete_all(self, collection: Collection) -> int:
        """Delete every record of a collection.

        Returns:
            Number of records removed.
        """
        model = model_for(collection)
        with self._transaction() as session:
            result = session.execute(delete(model))
            removed = result.rowcount or 0

        self._emit(collection, ChangeAction.DELETED)
        return removed

    def touch_last_modified(
        self,
        collection: Collection,
        entity_id: int,
        timestamp: int,
        *,
        expected: int | None = None,
    ) -> bool:
        """Set only the version stamp of a record.

        Args:
            collection: Collection of the record.
            entity_id: Local id.
            timestamp: New version stamp.
            expected: If given, only write when the stored stamp still equals it.

        Returns:
            True if the stamp was written, False if ``expected`` did not match.

        Raises:
            NotFound: If the id does not exist.
        """
        model = model_for(collection)
        stmt = update(model).where(model.id == entity_id).values(last_modified=timestamp)
        if expected is not None:
            stmt = stmt.where(model.last_modified == expected)

        with self._transaction() as session:
            result = session.execute(stmt)
            if not result.rowcount:
                if session.get(model, entity_id) is None:
                    raise NotFound(collection, entity_id)
                return False

        self._emit(collection, ChangeAction.UPDATED, entity_id)
        return True

    def bind_remote_id(
        self,
        collection: Collection,
        entity_id: int,
        remote_id: str,
        *,
        last_modified: int | None = None,
        expected: int | None = None,
    ) -> None:
        """Bind a remote identity to a local record.

        The remote id is always written. The version stamp is written as
        well when ``last_modified`` is given and, if ``expected`` is given,
        the stored stamp still equals it.

        Raises:
            NotFound: If the id does not exist.
            ConstraintViolation: If another record is bound to ``remote_id``.
        """
        model = model_for(collection)
        with self._transaction() as session:
            result = session.execute(
                update(model).where(model.id == entity_id).values(remote_id=remote_id)
            )
            if not result.rowcount:
                raise NotFound(collection, entity_id)
            if last_modified is not None:
                stmt = update(model).where(model.id == entity_id).values(last_modified=last_modified)
                if expected is not None:
                    stmt = stmt.where(model.last_modified == expected)
                session.execute(stmt)

        logger.debug(f"Bound {collection.value} #{entity_id} to remote id {remote_id}")
        self._emit(collection, ChangeAction.UPDATED, entity_id)

    def set_active(self, collection: Collection, entity_id: int, active: bool) -> None:
        """Toggle the activity flag of a volunteer, venue or job type.

        Raises:
            NotFound: If the id does not exist.
            ValueError: If the collection has no activity flag.
        """
        model = model_for(collection)
        if not hasattr(model, "is_active"):
            raise ValueError(f"{collection.value} has no activity flag")
        with self._transaction() as session:
            result = session.execute(
                update(model)
                .where(model.id == entity_id)
                .values(is_active=active, last_modified=self.now())
            )
            if not result.rowcount:
                raise NotFound(collection, entity_id)

        self._emit(collection, ChangeAction.UPDATED, entity_id)

    # === Generic reads ===

    def _fetch_all(self, stmt: Select[Any]) -> list[Any]:
        with self._read() as session:
            return list(session.scalars(stmt).all())

    def _fetch_one(self, stmt: Select[Any]) -> Any:
        with self._read() as session:
            return session.scalars(stmt).first()

    def get(self, collection: Collection, entity_id: int) -> SyncedEntity | None:
        """Get a record by local id."""
        with self._read() as session:
            return session.get(model_for(collection), entity_id)

    def get_by_remote_id(self, collection: Collection, remote_id: str) -> SyncedEntity | None:
        """Get the record bound to a remote id."""
        model = model_for(collection)
        return self._fetch_one(select(model).where(model.remote_id == remote_id))

    def get_by_name(self, collection: Collection, name: str) -> SyncedEntity | None:
        """Get the first record with the given name (lowest id)."""
        model = model_for(collection)
        if model.__natural_key__ != "name":
            raise ValueError(f"{collection.value} has no name")
        stmt = select(model).where(model.name == name).order_by(model.id)  # type: ignore[attr-defined]
        return self._fetch_one(stmt)

    def find_by_natural_key(
        self,
        collection: Collection,
        key: Any,
        *,
        unbound_only: bool = True,
    ) -> list[SyncedEntity]:
        """Find records whose natural key equals ``key``.

        Args:
            collection: Collection to search.
            key: Natural key value (a name; ignored for the counter).
            unbound_only: Only consider records without a remote id.

        Returns:
            Matching records, lowest id first. Empty for collections without
            a natural key.
        """
        model = model_for(collection)
        if model is Counter:
            stmt = select(Counter).where(Counter.id == COUNTER_KEY)
        elif model.__natural_key__ is None or key is None:
            return []
        else:
            column = getattr(model, model.__natural_key__)
            stmt = select(model).where(column == key).order_by(model.id)
        if unbound_only:
            stmt = stmt.where(model.remote_id.is_(None))
        return self._fetch_all(stmt)

    def list_all(self, collection: Collection) -> list[SyncedEntity]:
        """List every record (by name; jobs newest first)."""
        model = model_for(collection)
        return self._fetch_all(_ordered(model, select(model)))

    def list_active(self, collection: Collection) -> list[SyncedEntity]:
        """List active volunteers, venues or job types, by name."""
        model = model_for(collection)
        if not hasattr(model, "is_active"):
            raise ValueError(f"{collection.value} has no activity flag")
        stmt = select(model).where(model.is_active.is_(True))  # type: ignore[attr-defined]
        return self._fetch_all(_ordered(model, stmt))

    def list_by_foreign_key(self, collection: Collection, volunteer_id: int) -> list[SyncedEntity]:
        """List guests or jobs that reference a volunteer."""
        model = model_for(collection)
        if model not in (Guest, Job):
            raise ValueError(f"{collection.value} does not reference volunteers")
        stmt = select(model).where(model.volunteer_id == volunteer_id)  # type: ignore[attr-defined]
        return self._fetch_all(_ordered(model, stmt))

    def list_modified_since(self, collection: Collection, timestamp: int) -> list[SyncedEntity]:
        """List records with ``last_modified`` strictly greater than ``timestamp``.

        Ordered oldest change first.
        """
        model = model_for(collection)
        stmt = (
            select(model)
            .where(model.last_modified > timestamp)
            .order_by(model.last_modified, model.id)
        )
        return self._fetch_all(stmt)

    def list_unbound(self, collection: Collection) -> list[SyncedEntity]:
        """List records that were never acknowledged by the remote."""
        model = model_for(collection)
        stmt = (
            select(model)
            .where(model.remote_id.is_(None))
            .order_by(model.last_modified, model.id)
        )
        return self._fetch_all(stmt)

    def list_by_ids(self, collection: Collection, ids: Iterable[int]) -> list[SyncedEntity]:
        """Fetch the records with the given ids that still exist."""
        id_list = list(ids)
        if not id_list:
            return []
        model = model_for(collection)
        stmt = select(model).where(model.id.in_(id_list)).order_by(model.last_modified, model.id)
        return self._fetch_all(stmt)

    def count(self, collection: Collection, *, unbound_only: bool = False) -> int:
        """Count the records of a collection."""
        model = model_for(collection)
        stmt = select(func.count()).select_from(model)
        if unbound_only:
            stmt = stmt.where(model.remote_id.is_(None))
        with self._read() as session:
            return int(session.scalar(stmt) or 0)

    # === Guests ===

    def guests_by_venue(self, venue_name: str) -> list[Guest]:
        """List guests of a venue, by name."""
        return self._fetch_all(
            select(Guest).where(Guest.venue_name == venue_name).order_by(Guest.name, Guest.id)
        )

    def volunteer_benefit_guests(self, volunteer_id: int | None = None) -> list[Guest]:
        """List guest entries created as volunteer benefits.

        Args:
            volunteer_id: Restrict to the entries of one volunteer.
        """
        stmt = select(Guest).where(Guest.is_volunteer_benefit.is_(True))
        if volunteer_id is not None:
            stmt = stmt.where(Guest.volunteer_id == volunteer_id)
        return self._fetch_all(stmt.order_by(Guest.name, Guest.id))

    # === Volunteers ===

    def inactive_volunteers(self) -> list[Volunteer]:
        return self._fetch_all(
            select(Volunteer).where(Volunteer.is_active.is_(False)).order_by(Volunteer.name, Volunteer.id)
        )

    def volunteers_by_rank(self, rank: VolunteerRank) -> list[Volunteer]:
        """List active volunteers holding a rank."""
        return self._fetch_all(
            select(Volunteer)
            .where(Volunteer.current_rank == rank, Volunteer.is_active.is_(True))
            .order_by(Volunteer.name, Volunteer.id)
        )

    # === Jobs ===

    def jobs_by_venue(self, venue_name: str) -> list[Job]:
        return self._fetch_all(
            select(Job).where(Job.venue_name == venue_name).order_by(Job.date.desc(), Job.id.desc())
        )

    def jobs_in_range(self, start: int, end: int) -> list[Job]:
        """List jobs whose date lies in [start, end], newest first."""
        return self._fetch_all(
            select(Job).where(Job.date.between(start, end)).order_by(Job.date.desc(), Job.id.desc())
        )

    def job_count_for_month(
        self,
        volunteer_id: int,
        month_start: int,
        month_end: int,
        shift_time: ShiftTime | None = None,
    ) -> int:
        """Count a volunteer's jobs between two timestamps (inclusive).

        Args:
            volunteer_id: Volunteer to count for.
            month_start: First millisecond of the period.
            month_end: Last millisecond of the period.
            shift_time: Only count shifts before or after midnight.
        """
        stmt = (
            select(func.count())
            .select_from(Job)
            .where(Job.volunteer_id == volunteer_id, Job.date >= month_start, Job.date <= month_end)
        )
        if shift_time is not None:
            stmt = stmt.where(Job.shift_time == shift_time)
        with self._read() as session:
            return int(session.scalar(stmt) or 0)

    # === Job types ===

    def shift_job_types(self) -> list[JobTypeConfig]:
        """Active job types that count as shifts."""
        return self._fetch_all(
            select(JobTypeConfig)
            .where(JobTypeConfig.is_shift_job.is_(True), JobTypeConfig.is_active.is_(True))
            .order_by(JobTypeConfig.name)
        )

    def orion_job_types(self) -> list[JobTypeConfig]:
        """Active job types that count towards the Orion rank."""
        return self._fetch_all(
            select(JobTypeConfig)
            .where(JobTypeConfig.is_orion_job.is_(True), JobTypeConfig.is_active.is_(True))
            .order_by(JobTypeConfig.name)
        )

    # === Venues ===

    def get_venue_by_name(self, name: str) -> Venue | None:
        return self._fetch_one(select(Venue).where(Venue.name == name))

    # === People counter ===

    def get_counter(self) -> Counter | None:
        """Get the singleton counter, if it was ever set."""
        with self._read() as session:
            return session.get(Counter, COUNTER_KEY)

    def set_counter(self, count: int) -> Counter:
        """Create or update the singleton counter."""
        with self._transaction() as session:
            counter = session.get(Counter, COUNTER_KEY)
            if counter is None:
                counter = Counter(id=COUNTER_KEY)
                session.add(counter)
            counter.count = count
            counter.last_modified = self.now()

        self._emit(Collection.COUNTER, ChangeAction.UPDATED, COUNTER_KEY)
        return counter

    def delete_counter(self) -> None:
        self.delete_all(Collection.COUNTER)

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._read() as session:
            entry = session.get(SyncStateEntry, key)
            return entry.value if entry else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._transaction() as session:
            session.merge(SyncStateEntry(key=key, value=value))

    def delete_state(self, key: str) -> None:
        with self._transaction() as session:
            session.execute(delete(SyncStateEntry).where(SyncStateEntry.key == key))
