"""Time-based triggers.

A cron trigger source binds a schedule to a zero-input workflow run. It also
answers the manual ``cron.trigger`` event so the same trigger can be exercised
on demand, without waiting for the schedule. Both paths create the run the same
way and dispatch it through the same callable.

The scheduler is a single polling thread. Sub-second precision is not a goal:
a tick fires every source whose next fire time has passed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from croniter import croniter

from ..workflow.run_store import WorkflowRun
from ..workflow.runtime import StepExecutionRuntime
from .events import InboundEvent, InboundEventData, workflow_event_name, workflow_start_path
from .forwarder import EventForwarder
from .registry import CronRegistration

logger = logging.getLogger(__name__)

Dispatch = Callable[[WorkflowRun], None]


def forwarding_dispatch(forwarder: EventForwarder) -> Dispatch:
    """Dispatch a run by forwarding a ``workflow.<id>`` event carrying its run id.

    The workflow-start handler attaches to the existing run via the correlation
    header, so scheduled and webhook-started runs share one code path.
    """

    def dispatch(run: WorkflowRun) -> None:
        event = InboundEvent(
            name=workflow_event_name(run.workflow_id),
            data=InboundEventData(
                method="POST",
                headers={"content-type": "application/json"},
                body=b"{}",
                run_id=run.run_id,
            ),
        )
        forwarder.forward(event, target_path=workflow_start_path(run.workflow_id))

    return dispatch


class CronTriggerSource:
    def __init__(
        self,
        registration: CronRegistration,
        *,
        runtime: StepExecutionRuntime,
        dispatch: Dispatch,
    ) -> None:
        self._registration = registration
        self._runtime = runtime
        self._dispatch = dispatch

    @property
    def registration(self) -> CronRegistration:
        return self._registration

    def handles(self, event_name: str) -> bool:
        return event_name == self._registration.manual_event

    def next_fire_time(self, base: datetime | None = None) -> datetime:
        start = base or datetime.now(tz=UTC)
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        next_dt: datetime = croniter(self._registration.schedule, start).get_next(datetime)
        return next_dt

    def fire(self, *, reason: str = "schedule") -> WorkflowRun:
        log_extra: dict[str, object] = {
            "trigger": self._registration.identifier,
            "workflow_id": self._registration.workflow_id,
            "schedule": self._registration.schedule,
            "reason": reason,
            "fired_at": datetime.now(tz=UTC).isoformat(),
        }
        logger.info("Cron trigger fired", extra=log_extra)
        try:
            run = self._runtime.create_run(self._registration.workflow_id, {})
            log_extra["run_id"] = run.run_id
            logger.info("Cron workflow run created", extra=log_extra)

            self._dispatch(run)
            logger.info("Cron workflow run dispatched", extra=log_extra)
            return run
        except Exception:
            logger.exception("Cron workflow dispatch failed", extra=log_extra)
            raise


class CronScheduler:
    """Fires cron sources from a background thread."""

    def __init__(
        self,
        sources: Sequence[CronTriggerSource],
        *,
        poll_seconds: float = 15.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sources = list(sources)
        self._poll_seconds = poll_seconds
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._next_fire: dict[str, datetime] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def next_fire_times(self) -> dict[str, datetime]:
        return dict(self._next_fire)

    def tick(self, now: datetime | None = None) -> list[WorkflowRun]:
        current = now or self._clock()
        fired: list[WorkflowRun] = []
        for source in self._sources:
            identifier = source.registration.identifier
            due = self._next_fire.get(identifier)
            if due is None:
                self._next_fire[identifier] = source.next_fire_time(current)
                continue
            if current < due:
                continue

            # Missed ticks collapse into one run; schedule from now, not from `due`.
            self._next_fire[identifier] = source.next_fire_time(current)
            if current - due > _drift_warning_threshold(self._poll_seconds):
                logger.warning(
                    "Cron tick fired late",
                    extra={
                        "trigger": identifier,
                        "due": due.isoformat(),
                        "now": current.isoformat(),
                    },
                )
            try:
                fired.append(source.fire(reason="schedule"))
            except Exception:
                # Already logged by the source; keep the other schedules alive.
                continue
        return fired

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self.tick()
        self._thread = threading.Thread(target=self._loop, name="cron-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Cron scheduler started",
            extra={"sources": len(self._sources), "poll_seconds": self._poll_seconds},
        )

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=self._poll_seconds + 1)
        self._thread = None
        logger.info("Cron scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self._poll_seconds):
            self.tick()


def _drift_warning_threshold(poll_seconds: float) -> timedelta:
    return timedelta(seconds=max(poll_seconds * 2, 60))
