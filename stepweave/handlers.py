"""Transport-agnostic request handlers for running, streaming, suspending and
resuming registered workflows.

Each handler takes the workflow id from the route and the decoded JSON body,
and returns the response envelope: ``{"success": True, "data": {...}}`` or
``{"success": False, "error": {...}}``. Keys are camelCase on the wire.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from .contracts import ErrorInfo, ExecutionResult, utcnow
from .errors import ValidationError, WorkflowError
from .execute import WorkflowExecutor
from .registry import REGISTRY, WorkflowRegistry

logger = logging.getLogger(__name__)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunOptions(_WireModel):
    execution_id: Optional[str] = None
    user_context: Optional[Dict[str, Any]] = None


class RunWorkflowRequest(_WireModel):
    input: Any = None
    options: RunOptions = Field(default_factory=RunOptions)


class SuspendWorkflowRequest(_WireModel):
    execution_id: str
    reason: Optional[str] = None


class ResumeOptions(_WireModel):
    step_id: Optional[str] = None
    user_context: Optional[Dict[str, Any]] = None


class ResumeWorkflowRequest(_WireModel):
    execution_id: str
    resume_data: Any = None
    options: ResumeOptions = Field(default_factory=ResumeOptions)


Envelope = Dict[str, Any]


def _ok(data: Dict[str, Any]) -> Envelope:
    return {"success": True, "data": data}


def _error_body(error: BaseException) -> Dict[str, Any]:
    info = ErrorInfo.from_exception(error)
    body = info.model_dump(by_alias=True, exclude_none=True)
    execution_id = getattr(error, "execution_id", None)
    if execution_id:
        body["executionId"] = execution_id
    return body


def _failure(error: BaseException) -> Envelope:
    return {"success": False, "error": _error_body(error)}


def _parse(model: type[BaseModel], body: Optional[Mapping[str, Any]]) -> Any:
    try:
        return model.model_validate(body or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid request body: {e}", errors=e.errors()) from e


def _execution_data(result: ExecutionResult) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "executionId": result.execution_id,
        "startAt": result.start_at.isoformat(),
        "endAt": result.end_at.isoformat() if result.end_at else None,
        "status": result.status.value,
        "result": to_jsonable_python(result.result),
    }
    if result.suspension is not None:
        suspension = result.suspension
        data["suspension"] = {
            "suspendedAt": suspension.captured_at.isoformat(),
            "reason": suspension.reason,
            "stepId": suspension.step_id,
            "suspendData": to_jsonable_python(suspension.suspend_data),
        }
    return data


async def handle_run_workflow(
    workflow_id: str,
    body: Optional[Mapping[str, Any]],
    *,
    executor: Optional[WorkflowExecutor] = None,
    registry: Optional[WorkflowRegistry] = None,
) -> Envelope:
    """``POST /workflows/{id}/run``"""
    registry = registry if registry is not None else REGISTRY
    try:
        request = _parse(RunWorkflowRequest, body)
        workflow = registry.get(workflow_id)
        executor = executor or WorkflowExecutor(registry=registry)
        result = await executor.run(
            workflow,
            request.input,
            execution_id=request.options.execution_id,
            user_context=request.options.user_context,
        )
    except WorkflowError as e:
        logger.warning(f"Run of workflow {workflow_id} failed: {e}")
        return _failure(e)
    return _ok(_execution_data(result))


async def handle_stream_workflow(
    workflow_id: str,
    body: Optional[Mapping[str, Any]],
    *,
    executor: Optional[WorkflowExecutor] = None,
    registry: Optional[WorkflowRegistry] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """``POST /workflows/{id}/stream``

    Yields one wire event per transition, then a final ``complete`` event
    carrying the execution result, or an ``error`` event if the run failed.
    """
    registry = registry if registry is not None else REGISTRY
    try:
        request = _parse(RunWorkflowRequest, body)
        workflow = registry.get(workflow_id)
        executor = executor or WorkflowExecutor(registry=registry)
        stream = executor.stream(
            workflow,
            request.input,
            execution_id=request.options.execution_id,
            user_context=request.options.user_context,
        )
    except WorkflowError as e:
        yield {"type": "error", "error": _error_body(e)}
        return

    async for event in stream:
        yield event.to_wire()

    try:
        result = await stream.result()
    except WorkflowError as e:
        logger.warning(f"Streamed run of workflow {workflow_id} failed: {e}")
        yield {
            "type": "error",
            "executionId": stream.execution_id,
            "error": _error_body(e),
        }
        return
    yield {"type": "complete", **_execution_data(result)}


async def handle_suspend_workflow(
    workflow_id: str,
    body: Optional[Mapping[str, Any]],
    *,
    registry: Optional[WorkflowRegistry] = None,
) -> Envelope:
    """``POST /workflows/{id}/suspend``

    Requests suspension of a running execution; it pauses at its next step
    boundary.
    """
    registry = registry if registry is not None else REGISTRY
    try:
        request = _parse(SuspendWorkflowRequest, body)
        registry.get(workflow_id)
        signal = registry.signal_for(request.execution_id)
        if signal is None:
            raise WorkflowError(
                "No active execution found or workflow already completed",
                execution_id=request.execution_id,
            )
    except WorkflowError as e:
        return _failure(e)

    signal.suspend(request.reason)
    logger.info(f"Suspension requested for execution_id={request.execution_id}")
    return _ok(
        {
            "executionId": request.execution_id,
            "status": "suspended",
            "suspension": {
                "suspendedAt": utcnow().isoformat(),
                "reason": signal.reason,
            },
        }
    )


async def handle_resume_workflow(
    workflow_id: str,
    body: Optional[Mapping[str, Any]],
    *,
    executor: Optional[WorkflowExecutor] = None,
    registry: Optional[WorkflowRegistry] = None,
) -> Envelope:
    """``POST /workflows/{id}/resume``"""
    registry = registry if registry is not None else REGISTRY
    try:
        request = _parse(ResumeWorkflowRequest, body)
        workflow = registry.get(workflow_id)
        executor = executor or WorkflowExecutor(registry=registry)
        result = await executor.resume(
            workflow,
            request.execution_id,
            request.resume_data,
            step_id=request.options.step_id,
            user_context=request.options.user_context,
        )
    except WorkflowError as e:
        logger.warning(f"Resume of workflow {workflow_id} failed: {e}")
        return _failure(e)
    return _ok(_execution_data(result))
