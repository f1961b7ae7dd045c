import pytest
from pydantic import BaseModel

from stepweave import (
    ExecutionStatus,
    InvalidResumeStateError,
    WorkflowExecutor,
    create_chain,
)
from stepweave.config import StepweaveConfig
from stepweave.persistence import SQLiteSnapshotRepository
from stepweave.registry import WorkflowRegistry


class Shipping(BaseModel):
    carrier: str


def build_fulfilment():
    return (
        create_chain("fulfilment")
        .then("reserve", lambda d, ctx: {**d, "reserved": True})
        .then(
            "ship",
            lambda d, ctx: ctx.suspend("awaiting carrier") if ctx.resume_data is None else d,
            resume_schema=Shipping,
        )
        .then("notify", lambda d, ctx: {**d, "notified": ctx.get_step_data("reserve") is not None})
        .build()
    )


def make_executor(path):
    return WorkflowExecutor(
        repository=SQLiteSnapshotRepository(path),
        registry=WorkflowRegistry(),
        config=StepweaveConfig(),
    )


@pytest.mark.asyncio
async def test_suspended_execution_resumes_after_restart(tmp_path):
    path = tmp_path / "snapshots.db"

    first = make_executor(path)
    suspended = await first.run(build_fulfilment(), {"order": "o-1"})
    assert suspended.status == ExecutionStatus.SUSPENDED
    first.repository.close()

    # A new process only shares the database file.
    second = make_executor(path)
    result = await second.resume(
        build_fulfilment(), suspended.execution_id, {"carrier": "ups"}
    )

    assert result.status == ExecutionStatus.COMPLETED
    assert result.result == {
        "order": "o-1",
        "reserved": True,
        "carrier": "ups",
        "notified": True,
    }

    with pytest.raises(InvalidResumeStateError):
        await second.resume(build_fulfilment(), suspended.execution_id, {"carrier": "ups"})

    snapshot = await second.repository.load(suspended.execution_id)
    assert snapshot.status == ExecutionStatus.COMPLETED
    assert [r.step_id for r in snapshot.history] == ["reserve", "ship", "notify"]
    second.repository.close()
