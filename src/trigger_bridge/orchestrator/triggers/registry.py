"""Boot-time registry of forwarding functions and cron jobs.

The registry is an explicit value built at process start and handed to the
HTTP server. Registration is single-threaded and happens before traffic is
accepted; :meth:`TriggerRegistry.freeze` enforces that.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from croniter import croniter

from ..errors import RegistrationConflictError, RegistryFrozenError
from ..retry import RetryPolicy
from .connector import channel_name_for_connector, function_identifier, resolve_connector
from .events import CRON_MANUAL_EVENT

logger = logging.getLogger(__name__)

InputAdapter = Callable[[Mapping[str, object]], Mapping[str, object] | None]

DEFAULT_CRON_IDENTIFIER = "cron-trigger"


@dataclass(frozen=True, slots=True)
class RouteSpec:
    """How a mounted webhook route turns its payload into a workflow run.

    ``build_input`` maps the provider JSON to workflow input. Returning ``None``
    acknowledges the delivery without starting a run.
    """

    workflow_id: str
    method: str = "POST"
    build_input: InputAdapter | None = None


@dataclass(frozen=True, slots=True)
class TriggerRegistration:
    """A forwarding function: one per channel."""

    identifier: str
    channel_name: str
    target_path: str
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True, slots=True)
class RouteHandle:
    path: str
    method: str
    channel_name: str
    function_identifier: str
    spec: RouteSpec


@dataclass(frozen=True, slots=True)
class CronRegistration:
    identifier: str
    schedule: str
    workflow_id: str
    manual_event: str = CRON_MANUAL_EVENT


class TriggerRegistry:
    def __init__(
        self,
        *,
        strict_channels: bool = False,
        delivery_policy: RetryPolicy | None = None,
    ) -> None:
        self._strict_channels = strict_channels
        self._delivery_policy = delivery_policy or RetryPolicy()
        self._functions: dict[str, TriggerRegistration] = {}
        self._routes: dict[str, RouteHandle] = {}
        self._cron: dict[str, CronRegistration] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True
        logger.info(
            "Trigger registry frozen",
            extra={
                "forwarding_functions": len(self._functions),
                "routes": len(self._routes),
                "cron_triggers": len(self._cron),
            },
        )

    def _ensure_open(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {what} after the server has started accepting traffic"
            )

    def register_api_route(self, path: str, spec: RouteSpec) -> RouteHandle:
        self._ensure_open(f"route {path!r}")
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        connector = resolve_connector(path)
        if not connector:
            raise ValueError(f"Route path has no connector segment: {path!r}")

        method = spec.method.upper()
        existing_route = self._routes.get(path)
        if existing_route is not None:
            if existing_route.spec == spec and existing_route.method == method:
                return existing_route
            raise RegistrationConflictError(
                f"Route {path!r} is already registered with a different handler"
            )

        channel = channel_name_for_connector(connector)
        identifier = function_identifier(connector)
        function = self._functions.get(channel)
        if function is None:
            function = TriggerRegistration(
                identifier=identifier,
                channel_name=channel,
                target_path=path,
                retry_policy=self._delivery_policy,
            )
            self._functions[channel] = function
            logger.info(
                "Registered forwarding function",
                extra={"identifier": identifier, "channel": channel, "path": path},
            )
        elif self._strict_channels:
            raise RegistrationConflictError(
                f"Route {path!r} resolves to channel {channel!r}, already served by "
                f"{function.target_path!r}"
            )
        else:
            logger.warning(
                "Route shares a channel with an existing forwarding function; "
                "handlers must disambiguate by payload",
                extra={
                    "channel": channel,
                    "path": path,
                    "forwarding_target": function.target_path,
                },
            )

        handle = RouteHandle(
            path=path,
            method=method,
            channel_name=channel,
            function_identifier=function.identifier,
            spec=spec,
        )
        self._routes[path] = handle
        return handle

    def register_cron_trigger(
        self,
        schedule: str,
        workflow_id: str,
        *,
        identifier: str = DEFAULT_CRON_IDENTIFIER,
    ) -> CronRegistration:
        self._ensure_open(f"cron trigger {identifier!r}")
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression: {schedule!r}")

        registration = CronRegistration(
            identifier=identifier, schedule=schedule, workflow_id=workflow_id
        )
        existing = self._cron.get(identifier)
        if existing is not None:
            if existing == registration:
                return existing
            raise RegistrationConflictError(
                f"Cron trigger {identifier!r} is already registered "
                f"({existing.schedule!r} -> {existing.workflow_id!r})"
            )

        self._cron[identifier] = registration
        logger.info(
            "Registered cron trigger",
            extra={"identifier": identifier, "schedule": schedule, "workflow_id": workflow_id},
        )
        return registration

    def forwarding_function(self, channel_name: str) -> TriggerRegistration | None:
        return self._functions.get(channel_name)

    def forwarding_functions(self) -> list[TriggerRegistration]:
        return list(self._functions.values())

    def routes(self) -> list[RouteHandle]:
        return list(self._routes.values())

    def cron_triggers(self) -> list[CronRegistration]:
        return list(self._cron.values())

    def describe(self) -> dict[str, object]:
        return {
            "frozen": self._frozen,
            "forwardingFunctions": [
                {
                    "identifier": f.identifier,
                    "channel": f.channel_name,
                    "targetPath": f.target_path,
                    "maxAttempts": f.retry_policy.max_attempts,
                }
                for f in self._functions.values()
            ],
            "routes": [
                {
                    "path": r.path,
                    "method": r.method,
                    "channel": r.channel_name,
                    "workflowId": r.spec.workflow_id,
                }
                for r in self._routes.values()
            ],
            "cronTriggers": [
                {
                    "identifier": c.identifier,
                    "schedule": c.schedule,
                    "workflowId": c.workflow_id,
                    "manualEvent": c.manual_event,
                }
                for c in self._cron.values()
            ],
        }
