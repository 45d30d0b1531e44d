"""
Relational schema for the per-owner memory database.
"""

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class StateRow(Base):
    __tablename__ = 'state_files'
    __table_args__ = (UniqueConstraint('type', 'name', name='uq_state_type_name'),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


class JournalRow(Base):
    __tablename__ = 'journal'
    __table_args__ = (Index('idx_journal_timestamp', 'timestamp', 'seq'),)

    # Insertion order, breaks ties between entries written in the same millisecond
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    topic: Mapped[str] = mapped_column(String, nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    intent: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)


class ScheduleRow(Base):
    __tablename__ = 'schedules'

    id: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    expression: Mapped[str] = mapped_column(String, nullable=False)
    task_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default='')
    payload: Mapped[str] = mapped_column(Text, nullable=False, default='')
    model_tier: Mapped[str | None] = mapped_column(String, nullable=True)
    next_run_at: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    last_run_at: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
