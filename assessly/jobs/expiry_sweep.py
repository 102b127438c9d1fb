import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from assessly.core.config import settings
from assessly.core.database import SessionLocal, utcnow
from assessly.models.orm import Assessment, AssessmentStatus
from assessly.services.assessments import expiry_cutoff

logger = logging.getLogger(__name__)


def sweep_expired_assessments(db: Session, now: Optional[datetime] = None, timeout: Optional[timedelta] = None) -> int:
    """Mark every timed-out STARTED assessment as ABANDONED in one statement.

    Rows already moved out of STARTED (by a submit or an inline expiry check)
    do not match the guard, so repeated or concurrent runs are no-ops.
    """
    cutoff = expiry_cutoff(now or utcnow(), timeout or settings.assessment_timeout)
    result = db.execute(
        update(Assessment)
        .where(Assessment.status == AssessmentStatus.STARTED, Assessment.started_at < cutoff)
        .values(status=AssessmentStatus.ABANDONED)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


class ExpirySweeper:
    """Owned background task running the sweep once at start, then every ``interval`` seconds."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, interval: Optional[float] = None,
                 timeout: Optional[timedelta] = None, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.interval = interval if interval is not None else settings.EXPIRY_SWEEP_INTERVAL_SECONDS
        self.timeout = timeout or settings.assessment_timeout
        self.clock = clock
        self.runs = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            count = sweep_expired_assessments(db, self.clock(), self.timeout)
        finally:
            db.close()
        self.runs += 1
        if count:
            logger.info(f"Expiry sweep marked {count} expired assessment(s) as ABANDONED")
        return count

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Expiry sweep run failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="assessment-expiry-sweep")
        logger.info(f"Expiry sweep started (every {self.interval}s, timeout {self.timeout})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Expiry sweep stopped")
