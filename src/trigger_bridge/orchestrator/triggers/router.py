"""Entry point for event deliveries from the external scheduler."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import NonRetriableDeliveryError
from .cron import CronTriggerSource
from .events import WORKFLOW_EVENT_PREFIX, InboundEvent, workflow_start_path
from .forwarder import EventForwarder
from .registry import TriggerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    event: str
    kind: str
    target: str | None = None
    status_code: int | None = None
    run_ids: tuple[str, ...] = ()


class TriggerRouter:
    """Routes an :class:`InboundEvent` by name.

    - a webhook channel -> its forwarding function
    - the cron manual event -> every cron source listening for it
    - ``workflow.<id>`` with a run id -> the workflow-start handler
    """

    def __init__(
        self,
        *,
        registry: TriggerRegistry,
        forwarder: EventForwarder,
        cron_sources: Sequence[CronTriggerSource] = (),
    ) -> None:
        self._registry = registry
        self._forwarder = forwarder
        self._cron_sources = list(cron_sources)

    def deliver(self, event: InboundEvent) -> DeliveryResult:
        function = self._registry.forwarding_function(event.name)
        if function is not None:
            status = self._forwarder.forward(
                event, target_path=function.target_path, retry_policy=function.retry_policy
            )
            return DeliveryResult(
                event=event.name,
                kind="webhook",
                target=function.target_path,
                status_code=status,
            )

        listeners = [s for s in self._cron_sources if s.handles(event.name)]
        if listeners:
            runs = [source.fire(reason="manual") for source in listeners]
            return DeliveryResult(
                event=event.name, kind="cron", run_ids=tuple(r.run_id for r in runs)
            )

        if event.name.startswith(WORKFLOW_EVENT_PREFIX):
            workflow_id = event.name[len(WORKFLOW_EVENT_PREFIX) :]
            if not workflow_id or not event.data.run_id:
                raise NonRetriableDeliveryError(
                    f"Workflow event {event.name!r} requires a workflow id and a run id"
                )
            target = workflow_start_path(workflow_id)
            status = self._forwarder.forward(event, target_path=target)
            return DeliveryResult(
                event=event.name,
                kind="workflow",
                target=target,
                status_code=status,
                run_ids=(event.data.run_id,),
            )

        logger.warning("No trigger registered for event", extra={"event": event.name})
        raise NonRetriableDeliveryError(f"No trigger registered for event {event.name!r}")
