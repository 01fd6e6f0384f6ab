"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from trigger_bridge.orchestrator.workflow.run_store import WorkflowRun
from trigger_bridge.orchestrator.workflow.state_machine import RunStatus, StepStatus


class ApiEventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""
    run_id: str | None = Field(default=None, alias="runId")


class ApiInboundEvent(BaseModel):
    name: str = Field(min_length=1)
    data: ApiEventData = Field(default_factory=ApiEventData)


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event: str
    kind: str
    target: str | None = None
    status_code: int | None = Field(default=None, serialization_alias="statusCode")
    run_ids: list[str] = Field(default_factory=list, serialization_alias="runIds")


class RunAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str | None = Field(default=None, serialization_alias="runId")
    status: str


class ApiStepResult(BaseModel):
    step_id: str
    status: StepStatus
    attempt: int
    output: Any = None
    error: str | None = None
    suspend_payload: Any = None
    updated_at: str


class RunView(BaseModel):
    run_id: str
    workflow_id: str
    status: RunStatus
    input: dict[str, Any] = Field(default_factory=dict)
    steps: list[ApiStepResult] = Field(default_factory=list)
    suspended_step_id: str | None = None
    suspend_payload: Any = None
    error: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_run(cls, run: WorkflowRun) -> RunView:
        return cls(
            run_id=run.run_id,
            workflow_id=run.workflow_id,
            status=run.status,
            input=run.input,
            steps=[
                ApiStepResult.model_validate(result.model_dump(mode="json"))
                for result in run.step_results.values()
            ],
            suspended_step_id=run.suspended_step_id,
            suspend_payload=run.suspend_payload,
            error=run.error,
            created_at=run.created_at,
            updated_at=run.updated_at,
        )


class ResumeRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    step_id: str | None = None


class CancelRequest(BaseModel):
    reason: str = ""
