"""
Schedule storage and the background loop that fires due schedules.

Due schedules are claimed before they run: cron schedules are advanced to their
next fire time and one-shot schedules are removed, so a crash or a failing
task can never make a schedule fire twice for the same slot.
"""

import threading
from concurrent.futures import Future
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional

from croniter import croniter
from sqlalchemy import select

from ..models.core import MODEL_TIERS, SCHEDULE_KINDS, TASK_TYPES, Schedule
from ..models.tables import ScheduleRow
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_iso, to_iso, utc_now
from .database import MemoryDatabase

if TYPE_CHECKING:
    from .owner_runtime import OwnerRegistry, OwnerServices

logger = get_logger(__name__)


class ScheduleError(Exception):
    """Custom exception for invalid schedule definitions."""
    pass


def next_cron_time(expression: str, after: datetime) -> datetime:
    """Next fire time of a cron expression strictly after ``after`` (UTC)."""
    return croniter(expression, after).get_next(datetime)


class ScheduleStore:
    """Durable schedule table for one owner."""

    def __init__(self, database: MemoryDatabase):
        self.db = database

    def create(self,
               schedule_id: str,
               kind: str,
               expression: str,
               task_type: str,
               description: str,
               payload: str = '',
               model_tier: Optional[str] = None,
               now: Optional[datetime] = None) -> Schedule:
        """
        Create or replace a schedule.

        Args:
            schedule_id: Caller-chosen id; an existing schedule with this id is replaced
            kind: 'cron' or 'once'
            expression: Cron expression or ISO 8601 datetime
            task_type: One of TASK_TYPES
            description: Human readable description
            payload: Extra instructions for the task
            model_tier: Optional 'fast' or 'thinking' override
            now: Reference time for the first cron fire (defaults to now)

        Returns:
            The stored schedule

        Raises:
            ScheduleError: If the definition is invalid
        """
        if not schedule_id or not schedule_id.strip():
            raise ScheduleError('Schedule id is required')
        if kind not in SCHEDULE_KINDS:
            raise ScheduleError(f"Invalid schedule kind '{kind}'")
        if task_type not in TASK_TYPES:
            raise ScheduleError(f"Invalid task type '{task_type}', expected one of: {', '.join(TASK_TYPES)}")
        if model_tier and model_tier not in MODEL_TIERS:
            raise ScheduleError(f"Invalid model tier '{model_tier}', expected one of: {', '.join(MODEL_TIERS)}")

        now = now or utc_now()
        if kind == 'cron':
            if not croniter.is_valid(expression):
                raise ScheduleError(f"Invalid cron expression '{expression}'")
            next_run = next_cron_time(expression, now)
        else:
            try:
                next_run = parse_iso(expression)
            except ValueError:
                raise ScheduleError(f"Invalid datetime '{expression}', expected ISO 8601")

        schedule = Schedule(id=schedule_id,
                            kind=kind,
                            expression=expression,
                            task_type=task_type,
                            description=description,
                            payload=payload or '',
                            model_tier=model_tier or None,
                            next_run_at=to_iso(next_run),
                            last_run_at=None,
                            created_at=to_iso(now))

        with self.db.session() as session:
            session.merge(self._schedule_to_row(schedule))
            session.commit()

        logger.info(f'Saved {kind} schedule {schedule_id} ({task_type}), next run {schedule.next_run_at}')
        return schedule

    def get(self, schedule_id: str) -> Optional[Schedule]:
        with self.db.session() as session:
            row = session.get(ScheduleRow, schedule_id)
            return self._row_to_schedule(row) if row else None

    def list(self) -> List[Schedule]:
        with self.db.session() as session:
            rows = session.scalars(select(ScheduleRow).order_by(ScheduleRow.created_at, ScheduleRow.id)).all()
            return [self._row_to_schedule(row) for row in rows]

    def cancel(self, schedule_id: str) -> bool:
        """Delete a schedule. Returns False if it did not exist."""
        with self.db.session() as session:
            row = session.get(ScheduleRow, schedule_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()

        logger.info(f'Cancelled schedule {schedule_id}')
        return True

    def claim_due(self, now: Optional[datetime] = None) -> List[Schedule]:
        """
        Claim every schedule due at ``now``.

        Cron schedules move to their next fire time, one-shot schedules are
        deleted. Returned snapshots carry ``last_run_at`` for this run.
        """
        now = now or utc_now()
        now_iso = to_iso(now)
        claimed = []

        with self.db.session() as session:
            rows = session.scalars(
                select(ScheduleRow).where(ScheduleRow.next_run_at.is_not(None),
                                          ScheduleRow.next_run_at <= now_iso).order_by(ScheduleRow.next_run_at)).all()

            for row in rows:
                schedule = self._row_to_schedule(row)
                schedule.last_run_at = now_iso

                if row.kind == 'cron':
                    try:
                        row.next_run_at = to_iso(next_cron_time(row.expression, now))
                    except (ValueError, KeyError) as e:
                        logger.error(f'Disabling schedule {row.id} with unusable cron expression: {e}')
                        row.next_run_at = None
                        continue
                    row.last_run_at = now_iso
                else:
                    session.delete(row)

                claimed.append(schedule)

            session.commit()

        if claimed:
            logger.debug(f"Claimed due schedules: {', '.join(s.id for s in claimed)}")
        return claimed

    @staticmethod
    def _schedule_to_row(schedule: Schedule) -> ScheduleRow:
        return ScheduleRow(id=schedule.id,
                           kind=schedule.kind,
                           expression=schedule.expression,
                           task_type=schedule.task_type,
                           description=schedule.description,
                           payload=schedule.payload,
                           model_tier=schedule.model_tier,
                           next_run_at=schedule.next_run_at,
                           last_run_at=schedule.last_run_at,
                           created_at=schedule.created_at)

    @staticmethod
    def _row_to_schedule(row: ScheduleRow) -> Schedule:
        return Schedule(id=row.id,
                        kind=row.kind,
                        expression=row.expression,
                        task_type=row.task_type,
                        description=row.description,
                        payload=row.payload,
                        model_tier=row.model_tier,
                        next_run_at=row.next_run_at,
                        last_run_at=row.last_run_at,
                        created_at=row.created_at)


class Scheduler:
    """Background thread that fires due schedules on each owner's actor.

    A tick never waits on an owner: claiming and running are queued together as
    one job on the owner's actor, so a busy owner only delays itself.
    """

    def __init__(self, registry: 'OwnerRegistry', tick_seconds: float = 30.0):
        self.registry = registry
        self.tick_seconds = tick_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pending: Dict[str, Future] = {}

    def run_pending(self, now: Optional[datetime] = None) -> List[Future]:
        """
        Queue a claim-and-run job for every known owner.

        Owners whose previous job has not finished are skipped for this tick.

        Returns:
            One future per queued owner, resolving to the results of the runs it fired
        """
        futures = []
        for owner_id in self.registry.known_owners():
            previous = self._pending.get(owner_id)
            if previous is not None and not previous.done():
                logger.debug(f'Owner {owner_id} is still busy, skipping this tick')
                continue

            try:
                services = self.registry.get(owner_id)
            except Exception as e:
                logger.error(f'Failed to load owner {owner_id}: {e}')
                continue

            future = services.actor.submit(self._fire_due, services, now)
            self._pending[owner_id] = future
            futures.append(future)
        return futures

    @staticmethod
    def _fire_due(services: 'OwnerServices', now: Optional[datetime]) -> List[Optional[str]]:
        try:
            due = services.schedules.claim_due(now)
        except Exception as e:
            logger.error(f'Failed to claim schedules for owner {services.owner_id}: {e}')
            return []
        return [services.runner.run_scheduled(schedule) for schedule in due]

    def _loop(self) -> None:
        logger.info(f'Scheduler started, ticking every {self.tick_seconds}s')
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f'Scheduler tick failed: {e}')
            self._stop.wait(self.tick_seconds)
        logger.info('Scheduler stopped')

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='macrodata-scheduler', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
