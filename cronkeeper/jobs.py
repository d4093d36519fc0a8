"""Registry of maintenance jobs polled by the keeper."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Protocol, runtime_checkable

from .errors import InvalidParam, NotFound

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], int]


@runtime_checkable
class Job(Protocol):
    """Capability pair every registered job implements."""

    def is_due(self) -> bool:  # pragma: no cover - protocol
        """Return ``True`` when the job has work to do."""

    def execute(self, args: bytes) -> None:  # pragma: no cover - protocol
        """Perform one unit of work."""


@dataclass(frozen=True, slots=True)
class WorkableJob:
    """Point-in-time view of a job for status reporting."""

    handle: str
    due: bool
    reason: Optional[str] = None


class JobNotDue(RuntimeError):
    """Raised by :class:`CooldownJob` when executed before its timer elapses."""


class CooldownJob:
    """Reference job that becomes due every ``max_duration`` ticks.

    The job owns its ``last_run`` tick; nothing outside the job records when it
    last ran.
    """

    NOT_DUE_REASON = "Timer hasn't elapsed"

    def __init__(
        self,
        clock: Clock,
        max_duration: int,
        *,
        work: Optional[Callable[[bytes], None]] = None,
    ) -> None:
        if not isinstance(max_duration, int) or max_duration <= 0:
            raise InvalidParam("max_duration", "must be a positive integer")
        self._clock = clock
        self.max_duration = max_duration
        self.last_run: Optional[int] = None
        self.runs = 0
        self._work = work

    def is_due(self) -> bool:
        if self.last_run is None:
            return True
        return self._clock() >= self.last_run + self.max_duration

    def reason(self) -> Optional[str]:
        return None if self.is_due() else self.NOT_DUE_REASON

    def execute(self, args: bytes) -> None:
        if not self.is_due():
            raise JobNotDue(self.NOT_DUE_REASON)
        if self._work is not None:
            self._work(args)
        self.last_run = self._clock()
        self.runs += 1

    def snapshot(self) -> tuple[Optional[int], int]:
        return self.last_run, self.runs

    def restore(self, state: tuple[Optional[int], int]) -> None:
        self.last_run, self.runs = state


class JobRegistry:
    """Ordered set of job handles; registration order is priority order.

    The registry stores no liveness state. Every query asks the jobs
    themselves, so two calls to :meth:`due_jobs` may disagree if a job ran in
    between.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}

    def add_job(self, handle: str, job: Job) -> None:
        """Register ``job`` under ``handle``.

        Registering a handle twice is rejected with ``InvalidParam("job")``.
        """

        if not isinstance(handle, str) or not handle:
            raise InvalidParam("job", "handle must be a non-empty string")
        if job is None or not isinstance(job, Job):
            raise InvalidParam("job", "must implement is_due() and execute()")
        if handle in self._jobs:
            raise InvalidParam("job", f"{handle!r} is already registered")
        self._jobs[handle] = job
        LOGGER.info("Registered job %s", handle)

    def remove_job(self, handle: str) -> None:
        if handle not in self._jobs:
            raise NotFound("job", handle)
        del self._jobs[handle]
        LOGGER.info("Removed job %s", handle)

    def get(self, handle: str) -> Job:
        job = self._jobs.get(handle)
        if job is None:
            raise NotFound("job", handle)
        return job

    def handles(self) -> List[str]:
        return list(self._jobs)

    def is_due(self, handle: str) -> bool:
        return bool(self.get(handle).is_due())

    def due_jobs(self) -> Iterator[str]:
        """Yield due handles lazily, in registration order."""

        for handle in list(self._jobs):
            job = self._jobs.get(handle)
            if job is not None and job.is_due():
                yield handle

    def first_due(self) -> Optional[str]:
        return next(self.due_jobs(), None)

    def workable_jobs(self) -> List[WorkableJob]:
        report: List[WorkableJob] = []
        for handle, job in self._jobs.items():
            due = bool(job.is_due())
            reason_fn = getattr(job, "reason", None)
            reason = reason_fn() if callable(reason_fn) and not due else None
            report.append(WorkableJob(handle=handle, due=due, reason=reason))
        return report

    def __contains__(self, handle: object) -> bool:
        return handle in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)


__all__ = ["CooldownJob", "Job", "JobNotDue", "JobRegistry", "WorkableJob"]
