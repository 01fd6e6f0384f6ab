"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the bridge services:
- webhook routes taken from the trigger registry
- the event delivery entry point used by the external scheduler
- the workflow-start handler that forwarded events land on
- run inspection and operator controls
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from trigger_bridge import __version__
from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.orchestrator.errors import (
    NonRetriableDeliveryError,
    ResumeMismatchError,
    RetriableDeliveryError,
    RunBusyError,
    RunCanceledError,
    RunNotFoundError,
    UnknownWorkflowError,
)
from trigger_bridge.orchestrator.triggers.events import InboundEvent
from trigger_bridge.orchestrator.triggers.registry import RouteHandle
from trigger_bridge.orchestrator.workflow.run_store import WorkflowRun
from trigger_bridge.orchestrator.workflow.runtime import StepExecutionRuntime
from trigger_bridge.orchestrator.workflow.state_machine import IllegalTransitionError, RunStatus
from trigger_bridge.server.bootstrap import Bridge, build_bridge
from trigger_bridge.server.config import ServerSettings
from trigger_bridge.server.models import (
    ApiInboundEvent,
    CancelRequest,
    DeliveryResponse,
    ResumeRequest,
    RunAccepted,
    RunView,
)

logger = logging.getLogger(__name__)


def _retry_after_header(seconds: float | None) -> dict[str, str]:
    return {"Retry-After": str(max(1, math.ceil(seconds or 0)))}


def _advance_in_background(runtime: StepExecutionRuntime, run_id: str) -> None:
    try:
        runtime.advance(run_id)
    except RunBusyError:
        # Another delivery is already driving this run.
        logger.info("Run is busy; skipping background advance", extra={"run_id": run_id})
    except RunCanceledError:
        logger.info("Run was canceled; skipping background advance", extra={"run_id": run_id})
    except Exception:
        logger.exception("Background advance failed", extra={"run_id": run_id})


def _get_run_or_404(runtime: StepExecutionRuntime, run_id: str) -> WorkflowRun:
    try:
        return runtime.get_run(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found") from None


def create_app(
    *,
    settings: BridgeSettings | None = None,
    server_settings: ServerSettings | None = None,
    bridge: Bridge | None = None,
) -> FastAPI:
    settings = settings or (bridge.settings if bridge is not None else BridgeSettings())
    server_settings = server_settings or ServerSettings()
    bridge = bridge or build_bridge(settings, server_settings)
    bridge.registry.freeze()
    runtime = bridge.runtime

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.cron_enabled:
            bridge.scheduler.start()
        try:
            yield
        finally:
            bridge.close()

    app = FastAPI(
        title="Durable Trigger Bridge",
        version=__version__,
        description="Routes webhook and cron triggers into durable, resumable workflow runs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose the bridge for request handlers and tests that want to read it.
    app.state.settings = settings
    app.state.bridge = bridge

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def accept(run: WorkflowRun, background: BackgroundTasks) -> RunAccepted:
        background.add_task(_advance_in_background, runtime, run.run_id)
        return RunAccepted(run_id=run.run_id, status=run.status.value)

    def attach(run_id: str, workflow_id: str, background: BackgroundTasks) -> RunAccepted:
        run = _get_run_or_404(runtime, run_id)
        if run.workflow_id != workflow_id:
            raise HTTPException(
                status_code=409,
                detail=f"Run {run_id} belongs to workflow {run.workflow_id!r}",
            )
        logger.info(
            "Attached delivery to existing run",
            extra={"run_id": run_id, "workflow_id": workflow_id},
        )
        return accept(run, background)

    def start(
        workflow_id: str, input_data: Mapping[str, Any], background: BackgroundTasks
    ) -> RunAccepted:
        try:
            run = runtime.create_run(workflow_id, dict(input_data))
        except UnknownWorkflowError:
            raise HTTPException(status_code=404, detail="Workflow not found") from None
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return accept(run, background)

    def webhook_endpoint(handle: RouteHandle) -> Callable[..., RunAccepted]:
        spec = handle.spec

        def endpoint(
            background: BackgroundTasks,
            payload: dict[str, Any] | None = Body(default=None),
            x_run_id: str | None = Header(default=None),
        ) -> RunAccepted:
            if x_run_id:
                return attach(x_run_id, spec.workflow_id, background)

            body = payload or {}
            try:
                input_data = spec.build_input(body) if spec.build_input is not None else body
            except ValueError as e:
                logger.warning(
                    "Webhook payload rejected",
                    extra={"path": handle.path, "channel": handle.channel_name, "error": str(e)},
                )
                raise HTTPException(status_code=422, detail=str(e)) from e
            if input_data is None:
                return RunAccepted(run_id=None, status="ignored")
            return start(spec.workflow_id, input_data, background)

        return endpoint

    for handle in bridge.registry.routes():
        app.add_api_route(
            handle.path,
            webhook_endpoint(handle),
            methods=[handle.method],
            status_code=202,
            response_model=RunAccepted,
            name=f"webhook:{handle.path}",
        )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/triggers")
    def triggers() -> dict[str, object]:
        return bridge.registry.describe()

    @app.post("/api/v1/events", response_model=DeliveryResponse)
    def deliver_event(req: ApiInboundEvent) -> DeliveryResponse:
        event = InboundEvent.from_json(req.model_dump(by_alias=True))
        try:
            result = bridge.router.deliver(event)
        except RetriableDeliveryError as e:
            raise HTTPException(
                status_code=503,
                detail=str(e),
                headers=_retry_after_header(e.retry_after_seconds),
            ) from e
        except NonRetriableDeliveryError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return DeliveryResponse(
            event=result.event,
            kind=result.kind,
            target=result.target,
            status_code=result.status_code,
            run_ids=list(result.run_ids),
        )

    @app.post(
        "/api/v1/workflows/{workflow_id}/start", status_code=202, response_model=RunAccepted
    )
    def start_workflow(
        workflow_id: str,
        background: BackgroundTasks,
        payload: dict[str, Any] | None = Body(default=None),
        x_run_id: str | None = Header(default=None),
    ) -> RunAccepted:
        if x_run_id:
            return attach(x_run_id, workflow_id, background)
        return start(workflow_id, payload or {}, background)

    @app.get("/api/v1/runs", response_model=list[RunView])
    def list_runs(status: RunStatus | None = None) -> list[RunView]:
        return [RunView.from_run(run) for run in runtime.list_runs(status=status)]

    @app.get("/api/v1/runs/{run_id}", response_model=RunView)
    def get_run(run_id: str) -> RunView:
        return RunView.from_run(_get_run_or_404(runtime, run_id))

    @app.post("/api/v1/runs/{run_id}/advance", response_model=RunView)
    def advance_run(run_id: str) -> RunView:
        try:
            run = runtime.advance(run_id)
        except RunNotFoundError:
            raise HTTPException(status_code=404, detail="Run not found") from None
        except (RunCanceledError, RunBusyError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

        retry_after = runtime.retry_after_seconds(run)
        if retry_after is not None:
            pending = run.pending_retry()
            raise HTTPException(
                status_code=503,
                detail=pending.error if pending is not None else "Retry pending",
                headers=_retry_after_header(retry_after),
            )
        return RunView.from_run(run)

    @app.post("/api/v1/runs/{run_id}/resume", response_model=RunView)
    def resume_run(run_id: str, req: ResumeRequest) -> RunView:
        try:
            run = runtime.resume(run_id, req.data, step_id=req.step_id)
        except RunNotFoundError:
            raise HTTPException(status_code=404, detail="Run not found") from None
        except (ResumeMismatchError, RunCanceledError, RunBusyError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return RunView.from_run(run)

    @app.post("/api/v1/runs/{run_id}/cancel", response_model=RunView)
    def cancel_run(run_id: str, req: CancelRequest | None = None) -> RunView:
        try:
            run = runtime.cancel(run_id, req.reason if req is not None else "")
        except RunNotFoundError:
            raise HTTPException(status_code=404, detail="Run not found") from None
        except (IllegalTransitionError, RunBusyError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return RunView.from_run(run)

    return app
