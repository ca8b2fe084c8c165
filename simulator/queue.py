from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from engine.errors import TransientInfraError
from storage.db import Database, SimulatorJobRow

from .config import QueueConfig

LOGGER = logging.getLogger("simulator")


def now_ms() -> int:
    return int(time.time() * 1000)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SimulatorJob:
    id: int
    game_id: str
    player_id: Optional[str]
    hand_id: int
    run_at: int
    status: JobStatus
    attempts: int
    locked_at: Optional[int]
    error: Optional[str]
    payload: Optional[Dict[str, Any]]


def _to_job(row: SimulatorJobRow) -> SimulatorJob:
    return SimulatorJob(
        id=row.id,
        game_id=row.game_id,
        player_id=row.player_id,
        hand_id=row.hand_id,
        run_at=row.run_at,
        status=JobStatus(row.status),
        attempts=row.attempts,
        locked_at=row.locked_at,
        error=row.error,
        payload=dict(row.payload) if row.payload else None,
    )


def _same_turn(game_id: str, hand_id: int, player_id: Optional[str]):
    player_match = SimulatorJobRow.player_id.is_(None) if player_id is None else SimulatorJobRow.player_id == player_id
    return and_(SimulatorJobRow.game_id == game_id, SimulatorJobRow.hand_id == hand_id, player_match)


class SimulatorJobQueue:
    """Durable bot work queue on the ``simulator_jobs`` table.

    Claims are leases: a row stuck in ``processing`` longer than ``lease_ms``
    is due again, so a crashed worker cannot strand it.
    """

    def __init__(
        self,
        db: Database,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.config = config or QueueConfig()
        self._clock = clock

    def enqueue(
        self,
        game_id: str,
        hand_id: int,
        player_id: Optional[str] = None,
        delay_ms: int = 0,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """Insert a pending job; returns None when one is already pending for this turn."""
        now = self._clock()
        try:
            with self.db.transaction() as session:
                duplicate = session.scalar(
                    select(SimulatorJobRow.id).where(
                        _same_turn(game_id, hand_id, player_id),
                        SimulatorJobRow.status == JobStatus.PENDING.value,
                    )
                )
                if duplicate is not None:
                    return None
                row = SimulatorJobRow(
                    game_id=game_id,
                    player_id=player_id,
                    hand_id=hand_id,
                    run_at=now + max(0, delay_ms),
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    payload=payload,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                job_id = row.id
        except TransientInfraError as exc:
            # Lost the race against another enqueue for the same turn.
            if isinstance(exc.__cause__, IntegrityError):
                return None
            raise
        LOGGER.debug("Enqueued job %s for %s:%s:%s in %sms", job_id, game_id, hand_id, player_id, delay_ms)
        return job_id

    def claim_due(self, limit: int = 10) -> List[SimulatorJob]:
        now = self._clock()
        lease_expired = now - self.config.lease_ms
        with self.db.transaction() as session:
            candidates = session.execute(
                select(
                    SimulatorJobRow.id,
                    SimulatorJobRow.status,
                    SimulatorJobRow.locked_at,
                    SimulatorJobRow.attempts,
                )
                .where(
                    SimulatorJobRow.run_at <= now,
                    or_(
                        SimulatorJobRow.status == JobStatus.PENDING.value,
                        and_(
                            SimulatorJobRow.status == JobStatus.PROCESSING.value,
                            SimulatorJobRow.locked_at < lease_expired,
                        ),
                    ),
                )
                .order_by(SimulatorJobRow.run_at, SimulatorJobRow.id)
                .limit(limit)
            ).all()

        claimed: List[SimulatorJob] = []
        for job_id, status, locked_at, attempts in candidates:
            # One short transaction per row: the conditional update is the lock.
            unchanged = [SimulatorJobRow.id == job_id, SimulatorJobRow.status == status]
            if locked_at is None:
                unchanged.append(SimulatorJobRow.locked_at.is_(None))
            else:
                unchanged.append(SimulatorJobRow.locked_at == locked_at)

            with self.db.transaction() as session:
                if status == JobStatus.PROCESSING.value and attempts >= self.config.max_attempts:
                    session.execute(
                        update(SimulatorJobRow)
                        .where(*unchanged)
                        .values(status=JobStatus.FAILED.value, error="lease expired", locked_at=None, updated_at=now)
                    )
                    LOGGER.warning("Job %s abandoned after %s attempts", job_id, attempts)
                    continue
                result = session.execute(
                    update(SimulatorJobRow)
                    .where(*unchanged)
                    .values(
                        status=JobStatus.PROCESSING.value,
                        locked_at=now,
                        attempts=SimulatorJobRow.attempts + 1,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    continue
                claimed.append(_to_job(session.get(SimulatorJobRow, job_id)))
        return claimed

    def complete(self, job_id: int) -> None:
        with self.db.transaction() as session:
            session.execute(
                update(SimulatorJobRow)
                .where(SimulatorJobRow.id == job_id)
                .values(status=JobStatus.COMPLETED.value, locked_at=None, updated_at=self._clock())
            )

    def fail(self, job_id: int, error: str, retry_delay_ms: Optional[int] = None) -> Optional[JobStatus]:
        now = self._clock()
        with self.db.transaction() as session:
            row = session.get(SimulatorJobRow, job_id)
            if row is None:
                return None
            retry = bool(retry_delay_ms) and row.attempts < self.config.max_attempts
            if retry:
                superseded = session.scalar(
                    select(SimulatorJobRow.id).where(
                        _same_turn(row.game_id, row.hand_id, row.player_id),
                        SimulatorJobRow.status == JobStatus.PENDING.value,
                        SimulatorJobRow.id != row.id,
                    )
                )
                if superseded is not None:
                    # Another pending job already covers this turn.
                    retry = False
                    row.status = JobStatus.COMPLETED.value
                else:
                    row.status = JobStatus.PENDING.value
                    row.run_at = now + retry_delay_ms
            if not retry and row.status != JobStatus.COMPLETED.value:
                row.status = JobStatus.FAILED.value
            row.error = error[:1000]
            row.locked_at = None
            row.updated_at = now
            status = JobStatus(row.status)
        if status == JobStatus.FAILED:
            LOGGER.error("Job %s failed permanently: %s", job_id, error)
        else:
            LOGGER.warning("Job %s -> %s (%s)", job_id, status.value, error)
        return status

    def retry_delay(self, attempts: int) -> int:
        return min(self.config.max_retry_delay_ms, 1_000 * attempts ** 2)

    def get(self, job_id: int) -> Optional[SimulatorJob]:
        with self.db.transaction() as session:
            row = session.get(SimulatorJobRow, job_id)
            return _to_job(row) if row else None

    def jobs(self, game_id: Optional[str] = None, status: Optional[JobStatus] = None) -> List[SimulatorJob]:
        query = select(SimulatorJobRow)
        if game_id is not None:
            query = query.where(SimulatorJobRow.game_id == game_id)
        if status is not None:
            query = query.where(SimulatorJobRow.status == JobStatus(status).value)
        with self.db.transaction() as session:
            return [_to_job(row) for row in session.scalars(query.order_by(SimulatorJobRow.id))]
