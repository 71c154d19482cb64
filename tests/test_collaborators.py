"""Tests for the default collaborator implementations."""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from autoflow.collaborators import (
    CodeGraphStore,
    CodeSearchIndex,
    CollaboratorError,
    ShellBuildRunner,
    ShellTestRunner,
    TextEmbedder,
    repo_name_from_ref,
)
from autoflow.collaborators.git_workspace import validate_branch
from autoflow.collaborators.github import parse_github_remote
from autoflow.collaborators.shell import extract_error_lines, parse_test_output
from autoflow.schema import CodeUnit


class TestCodeGraphStore:
    """Tests for CodeGraphStore."""

    def test_find_unit_exact_and_suffix(self, code_graph):
        assert code_graph.find_unit("com.acme.order.OrderService", "shop").id == "shop:com.acme.order.OrderService"
        assert code_graph.find_unit("OrderRepository", "shop").id == "shop:com.acme.order.OrderRepository"
        assert code_graph.find_unit("OrderService", "other-repo") is None

    def test_ambiguous_suffix_is_not_resolved(self, code_graph):
        code_graph.add_units(
            [CodeUnit(id="shop:com.acme.legacy.OrderRepository", repo="shop", qualified_name="com.acme.legacy.OrderRepository")]
        )
        assert code_graph.find_unit("OrderRepository", "shop") is None

    def test_find_by_domain_returns_types_only(self, code_graph):
        units = code_graph.find_by_domain({"ORDER"}, "shop")

        assert [unit.qualified_name for unit in units] == [
            "com.acme.order.OrderRepository",
            "com.acme.order.OrderService",
        ]

    def test_dependencies_and_dependents(self, code_graph):
        service = "shop:com.acme.order.OrderService"

        assert code_graph.direct_dependencies(service, "shop") == ["shop:com.acme.order.OrderRepository"]
        assert code_graph.direct_dependents(service, "shop") == ["shop:com.acme.payment.PaymentClient"]
        assert code_graph.direct_dependents(service, "other-repo") == []

    def test_jsonl_round_trip(self, code_graph, tmp_path):
        path = tmp_path / "graph" / "units.jsonl"
        code_graph.save_jsonl(path)

        loaded = CodeGraphStore()
        loaded.load_jsonl(path)

        assert loaded.size == code_graph.size
        assert loaded.direct_dependents("shop:com.acme.order.OrderService", "shop") == [
            "shop:com.acme.payment.PaymentClient"
        ]

    def test_remove_repo(self, code_graph):
        assert code_graph.remove_repo("shop") == 4
        assert code_graph.size == 0
        assert code_graph.units_for_repo("shop") == []


class TestCodeSearchIndex:
    """Tests for CodeSearchIndex with a stub embedder."""

    @pytest.fixture
    def index(self, order_units) -> CodeSearchIndex:
        embedder = MagicMock()
        embedder.embed_units.return_value = np.eye(4, dtype=np.float32)
        index = CodeSearchIndex(embedder=embedder)
        index.build(order_units)
        return index

    def test_search_ranks_and_scopes(self, index):
        matches = index.search([0.0, 0.0, 1.0, 0.0], "shop", top_n=2)

        assert matches[0].id == "shop:com.acme.order.OrderRepository"
        assert matches[0].score == pytest.approx(1.0)
        assert len(matches) == 2

    def test_other_repository_is_excluded(self, index):
        assert index.search([1.0, 0.0, 0.0, 0.0], "billing", top_n=5) == []

    def test_save_and_load(self, index, tmp_path):
        index.save(tmp_path / "index")

        reloaded = CodeSearchIndex(embedder=MagicMock(), index_path=tmp_path / "index")

        assert reloaded.size == 4
        assert reloaded.search([0.0, 1.0, 0.0, 0.0], "shop", top_n=1)[0].symbol_name == (
            "com.acme.order.OrderService.process"
        )

    def test_empty_build_rejected(self):
        with pytest.raises(ValueError):
            CodeSearchIndex(embedder=MagicMock()).build([])

    def test_search_before_build_rejected(self):
        with pytest.raises(ValueError):
            CodeSearchIndex(embedder=MagicMock()).search([1.0], "shop", top_n=1)

    def test_replace_repo_keeps_other_repositories(self, order_units):
        embedder = MagicMock()
        embedder.embed_units.side_effect = lambda units: np.eye(8, dtype=np.float32)[: len(units)]
        index = CodeSearchIndex(embedder=embedder)
        index.build(order_units)
        invoice = CodeUnit(id="billing:com.acme.Invoice", repo="billing", qualified_name="com.acme.Invoice")

        index.replace_repo("billing", [invoice])
        assert index.size == 5

        index.replace_repo("shop", [])
        assert index.size == 1
        assert [unit.id for unit in index.units.values()] == ["billing:com.acme.Invoice"]


class TestTextEmbedder:
    """Tests for TextEmbedder with a stub sentence-transformers model."""

    @pytest.fixture
    def embedder(self) -> TextEmbedder:
        embedder = TextEmbedder("test-model")
        embedder._model = MagicMock()
        return embedder

    def test_embed_returns_float_list(self, embedder):
        embedder._model.encode.return_value = np.array([0.6, 0.8], dtype=np.float32)

        vector = embedder.embed("retry order submission")

        assert isinstance(vector, list)
        assert vector == pytest.approx([0.6, 0.8])
        assert embedder._model.encode.call_args.kwargs["normalize_embeddings"] is True

    def test_embed_units_uses_embedding_text(self, embedder, order_units):
        embedder._model.encode.return_value = np.ones((4, 3))

        matrix = embedder.embed_units(order_units)

        assert matrix.shape == (4, 3)
        assert matrix.dtype == np.float32
        texts = embedder._model.encode.call_args.args[0]
        assert texts[0] == "com.acme.order.OrderService type Places and processes orders"

    def test_model_is_loaded_once_on_first_use(self):
        with patch("sentence_transformers.SentenceTransformer") as model_cls:
            embedder = TextEmbedder("test-model")
            model_cls.assert_not_called()

            embedder.model
            embedder.model

        model_cls.assert_called_once_with("test-model")


class TestParseTestOutput:
    """Tests for reading test runner summaries."""

    def test_maven_summary_uses_grand_total(self):
        output = "\n".join(
            [
                "Tests run: 3, Failures: 0, Errors: 0, Skipped: 0",
                "[ERROR] retries(com.acme.order.OrderServiceTest)  Time elapsed: 0.1 s  <<< FAILURE!",
                "Tests run: 12, Failures: 1, Errors: 1, Skipped: 2",
            ]
        )

        result = parse_test_output(output, exit_code=1)

        assert (result.passed, result.failed, result.skipped) == (8, 2, 2)
        assert len(result.failed_names) == 1
        assert result.all_passed is False

    def test_pytest_summary(self):
        output = "FAILED tests/test_order.py::test_retry - AssertionError\n1 failed, 9 passed, 1 skipped in 0.5s"

        result = parse_test_output(output, exit_code=1)

        assert (result.passed, result.failed, result.skipped) == (9, 1, 1)
        assert result.failed_names == ["FAILED tests/test_order.py::test_retry - AssertionError"]

    def test_clean_run(self):
        result = parse_test_output("5 passed in 0.1s", exit_code=0)
        assert result.all_passed is True


class TestShellHelpers:
    """Tests for shell runner helpers."""

    def test_extract_error_lines(self):
        log = "[INFO] Compiling\n[ERROR] OrderService.java:[12,5] cannot find symbol\n[INFO] done"
        assert extract_error_lines(log) == "[ERROR] OrderService.java:[12,5] cannot find symbol"

    def test_extract_error_lines_without_errors_keeps_tail(self):
        assert extract_error_lines("all quiet") == "all quiet"

    def test_missing_workspace_raises(self, tmp_path):
        with pytest.raises(CollaboratorError):
            ShellBuildRunner(command="true", timeout=5).build_and_verify(str(tmp_path / "missing"))
        with pytest.raises(CollaboratorError):
            ShellTestRunner(command="true", timeout=5).run_tests(str(tmp_path / "missing"))


class TestRefs:
    """Tests for repository and branch reference parsing."""

    @pytest.mark.parametrize(
        "ref,name",
        [
            ("acme/shop", "shop"),
            ("https://github.com/acme/shop.git", "shop"),
            ("git@github.com:acme/shop.git", "shop"),
            ("https://github.com/acme/shop/tree/develop", "shop"),
            ("/home/dev/projects/shop/", "shop"),
        ],
    )
    def test_repo_name_from_ref(self, ref, name):
        assert repo_name_from_ref(ref) == name

    @pytest.mark.parametrize("branch", ["main", "feature/retry-1.2", "autoflow/abc123"])
    def test_valid_branches(self, branch):
        assert validate_branch(branch) == branch

    @pytest.mark.parametrize("branch", ["", "-delete", "a..b", "main; rm -rf /"])
    def test_invalid_branches(self, branch):
        with pytest.raises(CollaboratorError):
            validate_branch(branch)

    def test_parse_github_remote(self):
        assert parse_github_remote("https://github.com/acme/shop.git") == ("acme", "shop")
        assert parse_github_remote("git@github.com:acme/shop.git") == ("acme", "shop")
        with pytest.raises(CollaboratorError):
            parse_github_remote("https://gitlab.com/acme/shop.git")
