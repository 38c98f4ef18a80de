"""
SQLite entity store using SQLAlchemy.

Projects, features and tasks share one table discriminated by
entity_type. Each public call opens its own session, so every call is
atomic on its own and no transaction spans two calls.

Timestamps are stored as naive UTC and returned timezone-aware.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.types import JSON

from workitems.lib.types import (
    CHILD_TYPE,
    Dependency,
    DependencyType,
    EntityType,
    Section,
    TransitionRecord,
    WorkItem,
)
from workitems.store.base import EntityStore, Result

logger = logging.getLogger(__name__)

Base = declarative_base()


def _to_db_time(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class WorkItemRow(Base):
    __tablename__ = "work_items"

    __table_args__ = (
        Index("ix_work_items_parent", "entity_type", "parent_id"),
    )

    id = Column(String(36), primary_key=True)
    entity_type = Column(String(16), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False)
    requires_verification = Column(Boolean, nullable=False, default=False)
    parent_id = Column(String(36), ForeignKey("work_items.id"), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False)
    modified_at = Column(DateTime, nullable=False)

    def to_item(self) -> WorkItem:
        return WorkItem(
            id=self.id,
            entity_type=EntityType(self.entity_type),
            name=self.name,
            status=self.status,
            requires_verification=bool(self.requires_verification),
            parent_id=self.parent_id,
            tags=list(self.tags or []),
            created_at=_from_db_time(self.created_at),
            modified_at=_from_db_time(self.modified_at),
        )


class DependencyRow(Base):
    __tablename__ = "dependencies"

    id = Column(String(36), primary_key=True)
    from_task_id = Column(String(36), ForeignKey("work_items.id"), nullable=False, index=True)
    to_task_id = Column(String(36), ForeignKey("work_items.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False, default=DependencyType.BLOCKS.value)

    def to_dependency(self) -> Dependency:
        return Dependency(self.id, self.from_task_id, self.to_task_id, DependencyType(self.type))


class SectionRow(Base):
    __tablename__ = "sections"

    __table_args__ = (
        Index("ix_sections_entity", "entity_type", "entity_id"),
    )

    id = Column(String(36), primary_key=True)
    entity_type = Column(String(16), nullable=False)
    entity_id = Column(String(36), ForeignKey("work_items.id"), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False, default="")
    ordinal = Column(Integer, nullable=False, default=0)

    def to_section(self) -> Section:
        return Section(
            self.id, EntityType(self.entity_type), self.entity_id,
            self.title, self.content, self.ordinal,
        )


class TransitionRow(Base):
    __tablename__ = "status_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(36), nullable=False, index=True)
    entity_type = Column(String(16), nullable=False)
    from_status = Column(String(32), nullable=False)
    to_status = Column(String(32), nullable=False)
    session_id = Column(String(64), nullable=False)
    trigger = Column(String(16), nullable=False)  # manual | cascade
    summary = Column(Text, nullable=True)
    at = Column(DateTime, nullable=False)

    def to_record(self) -> TransitionRecord:
        return TransitionRecord(
            entity_id=self.entity_id,
            entity_type=EntityType(self.entity_type),
            from_status=self.from_status,
            to_status=self.to_status,
            session_id=self.session_id,
            trigger=self.trigger,
            at=_from_db_time(self.at),
            summary=self.summary,
        )


def create_database(db_path: Path) -> tuple:
    """
    Create the database file and tables, return engine + session maker.

    Args:
        db_path: Path to the SQLite file; parent directories are created

    Returns:
        Tuple of (engine, SessionLocal)
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path.resolve().as_posix()}", connect_args={
        "check_same_thread": False,
        "timeout": 30,  # Wait up to 30s for sqlite file locks
    })
    Base.metadata.create_all(bind=engine)

    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.execute(text("PRAGMA busy_timeout=30000"))
        conn.commit()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine, SessionLocal


class SQLiteStore(EntityStore):
    """Durable store backed by an embedded SQLite file."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.engine, self._session_maker = create_database(self.db_path)

    def close(self) -> None:
        self.engine.dispose()

    def _run(self, operation: str, fn: Callable[[Session], Result]) -> Result:
        """Run fn inside a fresh session, committing on success.

        SQLAlchemy failures become Result.fail so they never escape as
        exceptions from a store call.
        """
        session = self._session_maker()
        try:
            result = fn(session)
            if result.success:
                session.commit()
            else:
                session.rollback()
            return result
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"[STORE] {operation}: constraint violation: {e.orig}")
            return Result.fail(f"{operation}: constraint violation: {e.orig}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[STORE] {operation} failed: {e}")
            return Result.fail(f"{operation} failed: {e}")
        finally:
            session.close()

    def get(self, entity_type: EntityType, entity_id: str) -> Result[WorkItem]:
        def fn(session: Session) -> Result:
            row = session.get(WorkItemRow, entity_id)
            if row is None or row.entity_type != entity_type.value:
                return Result.not_found(f"{entity_type.value} {entity_id} not found")
            return Result.ok(row.to_item())
        return self._run("get", fn)

    def find(self, entity_id: str) -> Result[WorkItem]:
        def fn(session: Session) -> Result:
            row = session.get(WorkItemRow, entity_id)
            if row is None:
                return Result.not_found(f"Entity {entity_id} not found")
            return Result.ok(row.to_item())
        return self._run("find", fn)

    def update_status(
        self, entity_type: EntityType, entity_id: str, status: str, modified_at: datetime
    ) -> Result[WorkItem]:
        def fn(session: Session) -> Result:
            row = session.get(WorkItemRow, entity_id)
            if row is None or row.entity_type != entity_type.value:
                return Result.not_found(f"{entity_type.value} {entity_id} not found")
            previous = (row.status, row.modified_at)
            row.status = status
            row.modified_at = _to_db_time(modified_at)
            try:
                item = row.to_item()
            except ValueError as e:
                row.status, row.modified_at = previous
                return Result.fail(str(e))
            return Result.ok(item)
        return self._run("update_status", fn)

    def children(self, entity_type: EntityType, parent_id: str) -> Result[list[WorkItem]]:
        child_type = CHILD_TYPE[entity_type]

        def fn(session: Session) -> Result:
            if child_type is None:
                return Result.ok([])
            rows = (
                session.query(WorkItemRow)
                .filter(WorkItemRow.entity_type == child_type.value)
                .filter(WorkItemRow.parent_id == parent_id)
                .order_by(WorkItemRow.created_at)
                .all()
            )
            return Result.ok([r.to_item() for r in rows])
        return self._run("children", fn)

    def list_projects(self) -> Result[list[WorkItem]]:
        def fn(session: Session) -> Result:
            rows = (
                session.query(WorkItemRow)
                .filter(WorkItemRow.entity_type == EntityType.PROJECT.value)
                .order_by(WorkItemRow.created_at)
                .all()
            )
            return Result.ok([r.to_item() for r in rows])
        return self._run("list_projects", fn)

    def incoming_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        def fn(session: Session) -> Result:
            rows = session.query(DependencyRow).filter(DependencyRow.to_task_id == task_id).all()
            return Result.ok([r.to_dependency() for r in rows])
        return self._run("incoming_dependencies", fn)

    def outgoing_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        def fn(session: Session) -> Result:
            rows = session.query(DependencyRow).filter(DependencyRow.from_task_id == task_id).all()
            return Result.ok([r.to_dependency() for r in rows])
        return self._run("outgoing_dependencies", fn)

    def sections(self, entity_type: EntityType, entity_id: str) -> Result[list[Section]]:
        def fn(session: Session) -> Result:
            rows = (
                session.query(SectionRow)
                .filter(SectionRow.entity_type == entity_type.value)
                .filter(SectionRow.entity_id == entity_id)
                .order_by(SectionRow.ordinal)
                .all()
            )
            return Result.ok([r.to_section() for r in rows])
        return self._run("sections", fn)

    def record_transition(self, record: TransitionRecord) -> Result[None]:
        def fn(session: Session) -> Result:
            session.add(TransitionRow(
                entity_id=record.entity_id,
                entity_type=record.entity_type.value,
                from_status=record.from_status,
                to_status=record.to_status,
                session_id=record.session_id,
                trigger=record.trigger,
                summary=record.summary,
                at=_to_db_time(record.at),
            ))
            return Result.ok()
        return self._run("record_transition", fn)

    def history(self, entity_id: str) -> Result[list[TransitionRecord]]:
        def fn(session: Session) -> Result:
            rows = (
                session.query(TransitionRow)
                .filter(TransitionRow.entity_id == entity_id)
                .order_by(TransitionRow.id)
                .all()
            )
            return Result.ok([r.to_record() for r in rows])
        return self._run("history", fn)

    def _insert_item(self, item: WorkItem) -> Result[WorkItem]:
        def fn(session: Session) -> Result:
            session.add(WorkItemRow(
                id=item.id,
                entity_type=item.entity_type.value,
                name=item.name,
                status=item.status,
                requires_verification=item.requires_verification,
                parent_id=item.parent_id,
                tags=list(item.tags),
                created_at=_to_db_time(item.created_at),
                modified_at=_to_db_time(item.modified_at),
            ))
            session.flush()
            return Result.ok(item)
        return self._run("insert_item", fn)

    def _insert_dependency(self, dep: Dependency) -> Result[Dependency]:
        def fn(session: Session) -> Result:
            session.add(DependencyRow(
                id=dep.id,
                from_task_id=dep.from_task_id,
                to_task_id=dep.to_task_id,
                type=dep.type.value,
            ))
            return Result.ok(dep)
        return self._run("insert_dependency", fn)

    def _save_section(self, section: Section) -> Result[Section]:
        def fn(session: Session) -> Result:
            existing = (
                session.query(SectionRow)
                .filter(SectionRow.entity_type == section.entity_type.value)
                .filter(SectionRow.entity_id == section.entity_id)
                .all()
            )
            for row in existing:
                if row.title.lower() == section.title.lower():
                    session.delete(row)
            session.add(SectionRow(
                id=section.id,
                entity_type=section.entity_type.value,
                entity_id=section.entity_id,
                title=section.title,
                content=section.content,
                ordinal=section.ordinal,
            ))
            return Result.ok(section)
        return self._run("save_section", fn)
