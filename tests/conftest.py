"""Shared fixtures: a scripted LLM and mocked collaborators around a real code graph."""

from unittest.mock import MagicMock

import pytest

from autoflow.collaborators import CodeGraphStore
from autoflow.config import Settings
from autoflow.prompts import DEFAULT_TEMPLATES
from autoflow.schema import BuildResult, CandidateKind, CodeUnit, IndexingResult, TestResult
from autoflow.workflow import AutoFlowPipeline

ORDER_SERVICE = "src/main/java/com/acme/order/OrderService.java"
ORDER_REPOSITORY = "src/main/java/com/acme/order/OrderRepository.java"
ORDER_SERVICE_TEST = "src/test/java/com/acme/order/OrderServiceTest.java"


def prompt_kind(prompt: str) -> str:
    """Name of the default template a rendered prompt was built from."""
    for name, template in DEFAULT_TEMPLATES.items():
        if prompt.startswith(template.splitlines()[0]):
            return name
    raise AssertionError(f"Unrecognized prompt: {prompt[:80]!r}")


class ScriptedLLM:
    """TextGenerator returning canned responses per prompt template.

    A list of responses is consumed one per call, the last one repeating.
    An Exception instance is raised instead of returned.
    """

    def __init__(self, **responses):
        self.responses = responses
        self.calls: list[str] = []
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        kind = prompt_kind(prompt)
        self.calls.append(kind)
        self.prompts.append(prompt)
        if kind not in self.responses:
            raise AssertionError(f"Unexpected {kind} prompt")

        response = self.responses[kind]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, kind: str) -> int:
        return self.calls.count(kind)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(workspace_root=tmp_path / "workspaces", _env_file=None)


@pytest.fixture
def order_units() -> list[CodeUnit]:
    return [
        CodeUnit(
            id="shop:com.acme.order.OrderService",
            repo="shop",
            qualified_name="com.acme.order.OrderService",
            file_path=ORDER_SERVICE,
            domain="order",
            summary="Places and processes orders",
            dependencies=["shop:com.acme.order.OrderRepository"],
        ),
        CodeUnit(
            id="shop:com.acme.order.OrderService.process",
            repo="shop",
            qualified_name="com.acme.order.OrderService.process",
            kind=CandidateKind.METHOD,
            file_path=ORDER_SERVICE,
            domain="order",
            parent_id="shop:com.acme.order.OrderService",
        ),
        CodeUnit(
            id="shop:com.acme.order.OrderRepository",
            repo="shop",
            qualified_name="com.acme.order.OrderRepository",
            file_path=ORDER_REPOSITORY,
            domain="order",
        ),
        CodeUnit(
            id="shop:com.acme.payment.PaymentClient",
            repo="shop",
            qualified_name="com.acme.payment.PaymentClient",
            file_path="src/main/java/com/acme/payment/PaymentClient.java",
            domain="payment",
            dependencies=["shop:com.acme.order.OrderService"],
        ),
    ]


@pytest.fixture
def code_graph(order_units) -> CodeGraphStore:
    return CodeGraphStore(order_units)


@pytest.fixture
def workspace(tmp_path) -> str:
    root = tmp_path / "shop"
    for path, body in [
        (ORDER_SERVICE, "class OrderService { void process() {} }"),
        (ORDER_REPOSITORY, "interface OrderRepository {}"),
    ]:
        (root / path).parent.mkdir(parents=True, exist_ok=True)
        (root / path).write_text(body)
    return str(root)


@pytest.fixture
def collaborators(code_graph, workspace) -> dict:
    """Mocked collaborators that succeed by default."""
    embedder = MagicMock()
    embedder.embed.return_value = [1.0, 0.0, 0.0]

    search = MagicMock()
    search.search.return_value = []

    workspaces = MagicMock()
    workspaces.materialize_workspace.return_value = workspace

    builder = MagicMock()
    builder.build_and_verify.return_value = BuildResult(success=True)

    tester = MagicMock()
    tester.run_tests.return_value = TestResult(passed=12)

    publisher = MagicMock()
    publisher.open_change_request.return_value = "https://github.com/acme/shop/pull/7"

    # The graph above already holds the workspace's units
    indexer = MagicMock()
    indexer.index_workspace.return_value = IndexingResult(
        success=True, files_processed=3, units_indexed=4, edges_indexed=2
    )

    return {
        "embedder": embedder,
        "search": search,
        "graph": code_graph,
        "workspaces": workspaces,
        "builder": builder,
        "tester": tester,
        "publisher": publisher,
        "indexer": indexer,
    }


@pytest.fixture
def make_pipeline(collaborators, settings):
    """Factory building an AutoFlowPipeline around a given LLM."""

    def build(llm, **overrides) -> AutoFlowPipeline:
        return AutoFlowPipeline(llm=llm, settings=settings, **{**collaborators, **overrides})

    return build
