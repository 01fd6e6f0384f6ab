"""Boot-time wiring of stores, workflows, triggers and the forwarder.

Everything the HTTP layer and the CLI need is built here once and passed
around as a single :class:`Bridge` value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from trigger_bridge.alerts.dispatcher import AlertDispatcher
from trigger_bridge.alerts.notifier import LoggingNotifier, Notifier, WebhookNotifier
from trigger_bridge.alerts.store import AlertDedupStore
from trigger_bridge.expenses.ledger import ExpenseLedger
from trigger_bridge.expenses.workflow import (
    EXPENSE_WORKFLOW_ID,
    HOUSEKEEPING_WORKFLOW_ID,
    build_expense_workflow,
    build_housekeeping_workflow,
    expense_input_from_payload,
)
from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.orchestrator.triggers.cron import (
    CronScheduler,
    CronTriggerSource,
    forwarding_dispatch,
)
from trigger_bridge.orchestrator.triggers.forwarder import EventForwarder
from trigger_bridge.orchestrator.triggers.registry import RouteSpec, TriggerRegistry
from trigger_bridge.orchestrator.triggers.router import TriggerRouter
from trigger_bridge.orchestrator.workflow.run_store import RunStore
from trigger_bridge.orchestrator.workflow.runtime import StepExecutionRuntime
from trigger_bridge.server.config import ServerSettings

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    settings: BridgeSettings
    registry: TriggerRegistry
    runtime: StepExecutionRuntime
    forwarder: EventForwarder
    router: TriggerRouter
    scheduler: CronScheduler
    cron_sources: list[CronTriggerSource]
    notifier: Notifier
    ledger: ExpenseLedger
    alert_store: AlertDedupStore

    def close(self) -> None:
        self.scheduler.stop()
        self.runtime.close()
        self.forwarder.close()
        close_notifier = getattr(self.notifier, "close", None)
        if callable(close_notifier):
            close_notifier()


def build_notifier(settings: BridgeSettings) -> Notifier:
    if settings.notifier_url.strip():
        return WebhookNotifier(url=settings.notifier_url.strip())
    return LoggingNotifier()


def build_bridge(
    settings: BridgeSettings,
    server_settings: ServerSettings,
    *,
    notifier: Notifier | None = None,
    forwarder: EventForwarder | None = None,
) -> Bridge:
    """Build the registry, runtime and trigger sources from settings.

    The returned registry is still open; the server freezes it before it
    starts accepting traffic.
    """

    policy = settings.retry_policy()
    notifier = notifier or build_notifier(settings)

    ledger = ExpenseLedger(settings.ledger_state_file)
    alert_store = AlertDedupStore(settings.alerts_state_file)
    dispatcher = AlertDispatcher(
        store=alert_store, notifier=notifier, thresholds=settings.alert_thresholds
    )

    runtime = StepExecutionRuntime(
        store=RunStore(settings.runs_state_dir),
        workflows=[
            build_expense_workflow(
                ledger=ledger, dispatcher=dispatcher, notifier=notifier, retry_policy=policy
            ),
            build_housekeeping_workflow(
                alerts=alert_store,
                retention_periods=settings.alert_retention_periods,
                retry_policy=policy,
            ),
        ],
        default_step_timeout_seconds=settings.step_timeout_seconds,
        max_workers=settings.step_workers,
    )

    registry = TriggerRegistry(strict_channels=settings.strict_channels, delivery_policy=policy)
    registry.register_api_route(
        settings.expense_webhook_path,
        RouteSpec(workflow_id=EXPENSE_WORKFLOW_ID, build_input=expense_input_from_payload),
    )
    cron_registration = registry.register_cron_trigger(
        settings.cron_schedule, HOUSEKEEPING_WORKFLOW_ID
    )

    forwarder = forwarder or EventForwarder(
        base_url=server_settings.resolved_forward_base_url(),
        timeout_seconds=server_settings.forward_timeout_seconds,
    )
    cron_sources = [
        CronTriggerSource(
            cron_registration, runtime=runtime, dispatch=forwarding_dispatch(forwarder)
        )
    ]
    router = TriggerRouter(registry=registry, forwarder=forwarder, cron_sources=cron_sources)
    scheduler = CronScheduler(cron_sources, poll_seconds=settings.cron_poll_seconds)

    logger.info(
        "Bridge assembled",
        extra={
            "environment": settings.environment,
            "state_path": str(settings.state_path),
            "max_attempts": policy.max_attempts,
            "workflows": runtime.workflow_ids(),
            "forward_base_url": forwarder.base_url,
        },
    )
    return Bridge(
        settings=settings,
        registry=registry,
        runtime=runtime,
        forwarder=forwarder,
        router=router,
        scheduler=scheduler,
        cron_sources=cron_sources,
        notifier=notifier,
        ledger=ledger,
        alert_store=alert_store,
    )
