import pytest

from stepweave.config import EngineConfig, StepweaveConfig
from stepweave.execute import WorkflowExecutor
from stepweave.persistence import InMemorySnapshotRepository
from stepweave.registry import WorkflowRegistry


@pytest.fixture
def repository():
    return InMemorySnapshotRepository()


@pytest.fixture
def registry():
    return WorkflowRegistry()


@pytest.fixture
def executor(repository, registry):
    return WorkflowExecutor(
        repository=repository,
        registry=registry,
        config=StepweaveConfig(engine=EngineConfig()),
    )
