"""Job control interface.

The engine implements no scheduler.  An external runner (cron, a CLI call,
the web dispatch) triggers a job by name; each run executes synchronously and
its outcome is kept for inspection.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import require_role
from modqueue.errors import Conflict, ModerationError, NotFound
from modqueue.models.item import utc_now

logger = logging.getLogger(__name__)

JobFunc = Callable[[], dict[str, Any]]


@dataclass
class JobRun:
    job: str
    run_id: str
    status: str  # running | succeeded | failed
    triggered_by: str
    started_at: str
    finished_at: Optional[str] = None
    summary: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class JobControl:
    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._jobs: dict[str, JobFunc] = {}
        self._runs: dict[str, JobRun] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def register(self, name: str, func: JobFunc) -> None:
        self._jobs[name] = func

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def _func(self, name: str) -> JobFunc:
        func = self._jobs.get(name)
        if func is None:
            raise NotFound(f"Unknown job '{name}' (available: {', '.join(self.job_names)})")
        return func

    def trigger(self, session: Session, name: str) -> JobRun:
        """Run a job now.  Only admins may trigger jobs; one run per job at a time."""
        require_role(session, Role.admin)
        func = self._func(name)
        with self._lock:
            last = self._runs.get(name)
            if last is not None and last.status == "running":
                raise Conflict(f"Job '{name}' is already running")
            run = JobRun(
                job=name,
                run_id=uuid.uuid4().hex[:12],
                status="running",
                triggered_by=session.actor,
                started_at=self._clock().isoformat(),
            )
            self._runs[name] = run

        logger.info("Job %s started by %s (run %s)", name, session.actor, run.run_id)
        try:
            run.summary = func()
        except ModerationError as exc:
            run.status = "failed"
            run.error = exc.message
            logger.error("Job %s failed: %s", name, exc.message)
        except Exception as exc:
            run.status = "failed"
            run.error = str(exc) or type(exc).__name__
            logger.exception("Job %s crashed", name)
        else:
            run.status = "succeeded"
            logger.info("Job %s finished: %s", name, run.summary)
        finally:
            run.finished_at = self._clock().isoformat()
        return run

    def status(self, session: Session, name: str) -> Optional[JobRun]:
        """Most recent run of ``name``, or ``None`` if it never ran."""
        require_role(session, Role.reviewer)
        self._func(name)
        with self._lock:
            return self._runs.get(name)
