"""LangGraph-backed pipeline engine with stage isolation and pause/resume."""

import logging
from typing import Any, Callable, Iterable, Optional, Union

from langgraph.graph import END, StateGraph

from autoflow.pipeline.decision import Decision
from autoflow.pipeline.state import PipelineState, PipelineStatus, update
from autoflow.schema import ProgressEvent

logger = logging.getLogger(__name__)

TERMINAL = END

StageFn = Callable[[PipelineState], Union[dict, PipelineState]]
Router = Callable[[PipelineState], str]
ProgressSink = Callable[[ProgressEvent], None]


class GraphCompileError(ValueError):
    """Raised when a pipeline graph definition is inconsistent."""


class RoutingError(RuntimeError):
    """Raised when a router picks a destination it did not declare."""


def as_partial(result: Union[dict, PipelineState, None]) -> dict[str, Any]:
    """Normalize a stage's return value into a partial state update."""
    if result is None:
        return {}
    if isinstance(result, PipelineState):
        return {name: getattr(result, name) for name in PipelineState.model_fields}
    unknown = set(result) - set(PipelineState.model_fields)
    if unknown:
        raise KeyError(f"Stage returned unknown state fields: {sorted(unknown)}")
    return dict(result)


class PipelineGraph:
    """Builder for a pipeline of named stages joined by fixed and conditional edges.

    Stages receive the current PipelineState and return either a partial
    update dict or a full PipelineState. ``compile()`` validates the
    definition and returns an immutable CompiledPipeline.
    """

    def __init__(self) -> None:
        self._stages: dict[str, StageFn] = {}
        self._edges: dict[str, str] = {}
        self._conditional: dict[str, tuple[Router, tuple[str, ...]]] = {}
        self._entry: Optional[str] = None

    def add_stage(self, name: str, fn: StageFn) -> "PipelineGraph":
        """Register a stage under a unique name."""
        if name in self._stages:
            raise GraphCompileError(f"Duplicate stage name: {name}")
        if name == TERMINAL:
            raise GraphCompileError(f"Stage name is reserved: {name}")
        if name in PipelineState.model_fields:
            raise GraphCompileError(f"Stage name clashes with a state field: {name}")
        self._stages[name] = fn
        return self

    def set_entry(self, name: str) -> "PipelineGraph":
        self._entry = name
        return self

    def add_edge(self, source: str, destination: str) -> "PipelineGraph":
        """Register an unconditional transition."""
        self._check_single_exit(source)
        self._edges[source] = destination
        return self

    def add_conditional_edge(
        self,
        source: str,
        router: Router,
        destinations: Optional[Iterable[str]] = None,
    ) -> "PipelineGraph":
        """Register a transition whose destination is computed from state.

        Args:
            source: Stage the edge leaves from
            router: Callable mapping state to a destination name
            destinations: Every name the router may return. Taken from
                ``router.destinations`` when omitted.
        """
        self._check_single_exit(source)
        if destinations is None:
            destinations = getattr(router, "destinations", None)
        if not destinations:
            raise GraphCompileError(f"Conditional edge from {source} declares no destinations")
        self._conditional[source] = (router, tuple(dict.fromkeys(destinations)))
        return self

    def _check_single_exit(self, source: str) -> None:
        if source in self._edges or source in self._conditional:
            raise GraphCompileError(f"Stage {source} already has an outgoing edge")

    def _resolve_entry(self) -> str:
        if self._entry is not None:
            if self._entry not in self._stages:
                raise GraphCompileError(f"Entry stage does not exist: {self._entry}")
            return self._entry

        targets: set[str] = set(self._edges.values())
        for _, destinations in self._conditional.values():
            targets.update(destinations)
        roots = [name for name in self._stages if name not in targets]
        if len(roots) != 1:
            raise GraphCompileError(f"Graph must have exactly one entry stage, found {roots}")
        return roots[0]

    def _validate(self) -> str:
        if not self._stages:
            raise GraphCompileError("Graph has no stages")

        for source, destination in self._edges.items():
            if source not in self._stages:
                raise GraphCompileError(f"Edge from unknown stage: {source}")
            if destination != TERMINAL and destination not in self._stages:
                raise GraphCompileError(f"Edge {source} -> {destination}: unknown destination")

        for source, (_, destinations) in self._conditional.items():
            if source not in self._stages:
                raise GraphCompileError(f"Conditional edge from unknown stage: {source}")
            for destination in destinations:
                if destination != TERMINAL and destination not in self._stages:
                    raise GraphCompileError(
                        f"Conditional edge {source} -> {destination}: unknown destination"
                    )

        dead_ends = [
            name for name in self._stages if name not in self._edges and name not in self._conditional
        ]
        if dead_ends:
            raise GraphCompileError(f"Stages without an outgoing edge: {dead_ends}")

        return self._resolve_entry()

    def compile(
        self,
        recursion_limit: int = 60,
        progress_order: Optional[list[str]] = None,
    ) -> "CompiledPipeline":
        """Validate the definition and compile it into an executable pipeline.

        Args:
            recursion_limit: Maximum number of stage executions per run
            progress_order: Canonical stage order used for percent-complete
                reporting (defaults to registration order)

        Returns:
            CompiledPipeline

        Raises:
            GraphCompileError: If the definition is inconsistent.
        """
        entry = self._validate()

        graph = StateGraph(PipelineState)
        for name, fn in self._stages.items():
            graph.add_node(name, _isolate_stage(name, fn))

        graph.set_entry_point(entry)

        for source, destination in self._edges.items():
            graph.add_conditional_edges(
                source,
                _halting_router(source, lambda _state, d=destination: d, (destination,)),
                _path_map((destination,)),
            )

        for source, (router, destinations) in self._conditional.items():
            graph.add_conditional_edges(
                source,
                _halting_router(source, router, destinations),
                _path_map(destinations),
            )

        return CompiledPipeline(
            graph=graph.compile(),
            entry=entry,
            stage_names=tuple(self._stages),
            recursion_limit=recursion_limit,
            progress_order=tuple(progress_order or self._stages),
        )


def _path_map(destinations: Iterable[str]) -> dict[str, str]:
    path_map = {destination: destination for destination in destinations}
    path_map[TERMINAL] = TERMINAL
    return path_map


def _isolate_stage(name: str, fn: StageFn) -> Callable[[PipelineState], dict]:
    """Wrap a stage so that any fault becomes an ERROR decision with FAILED status."""

    def run_stage(state: PipelineState) -> dict:
        logger.info("[%s] stage %s started", state.conversation_id, name)
        try:
            partial = as_partial(fn(state))
        except Exception as e:
            logger.exception("[%s] stage %s failed", state.conversation_id, name)
            return {
                "current_stage": name,
                "status": PipelineStatus.FAILED,
                "last_decision": Decision.error(f"Stage '{name}' failed: {e}"),
            }

        partial["current_stage"] = name
        decision = partial.get("last_decision")
        logger.info(
            "[%s] stage %s finished: %s",
            state.conversation_id,
            name,
            decision.kind.value if decision else "no decision",
        )
        return partial

    run_stage.__name__ = name
    return run_stage


def _halting_router(source: str, router: Router, destinations: tuple[str, ...]) -> Router:
    """Stop at TERMINAL once the run is no longer RUNNING, else defer to router."""

    def route(state: PipelineState) -> str:
        if state.status.halts:
            return TERMINAL
        destination = router(state)
        if destination != TERMINAL and destination not in destinations:
            raise RoutingError(f"Router for {source} returned undeclared stage {destination!r}")
        logger.debug("[%s] %s -> %s", state.conversation_id, source, destination)
        return destination

    return route


class CompiledPipeline:
    """Immutable executable pipeline, safe to share across concurrent runs."""

    __slots__ = ("_graph", "_entry", "_stage_names", "_recursion_limit", "_progress_order")

    def __init__(
        self,
        graph: Any,
        entry: str,
        stage_names: tuple[str, ...],
        recursion_limit: int,
        progress_order: tuple[str, ...],
    ):
        self._graph = graph
        self._entry = entry
        self._stage_names = stage_names
        self._recursion_limit = recursion_limit
        self._progress_order = progress_order

    @property
    def entry(self) -> str:
        return self._entry

    @property
    def stage_names(self) -> tuple[str, ...]:
        return self._stage_names

    def _percent_for(self, stage: str, state: PipelineState, previous: int) -> int:
        if state.status.halts:
            return 100
        if stage in self._progress_order:
            position = self._progress_order.index(stage) + 1
            return max(previous, round(100 * position / len(self._progress_order)))
        return previous

    def run(
        self,
        initial_state: PipelineState,
        progress_sink: Optional[ProgressSink] = None,
    ) -> PipelineState:
        """Drive stages until a terminal stage is reached or the run halts.

        Never raises for faults inside stages or routers; those end the run
        with ``status = FAILED`` and an ERROR decision.

        Args:
            initial_state: Fresh or resumed state
            progress_sink: Called once per stage transition

        Returns:
            Final PipelineState
        """
        latest = initial_state
        percent = 0
        completed: list[str] = []
        config = {"recursion_limit": self._recursion_limit}

        try:
            for mode, chunk in self._graph.stream(
                initial_state, config=config, stream_mode=["updates", "values"]
            ):
                if mode == "updates":
                    completed.extend(chunk.keys())
                    continue

                latest = chunk if isinstance(chunk, PipelineState) else PipelineState.model_validate(chunk)
                for stage in completed:
                    percent = self._percent_for(stage, latest, percent)
                    _notify(progress_sink, _progress_event(stage, percent, latest))
                completed.clear()

        except Exception as e:
            logger.exception("[%s] pipeline run aborted", initial_state.conversation_id)
            return update(
                latest,
                {
                    "status": PipelineStatus.FAILED,
                    "last_decision": Decision.error(f"Pipeline aborted: {e}"),
                },
            )

        return latest


def _notify(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.warning("Progress sink failed for stage %s", event.stage_name, exc_info=True)


def _progress_event(stage: str, percent: int, state: PipelineState) -> ProgressEvent:
    decision = state.last_decision
    message = f"Finished {stage}"
    if decision and decision.explanation.strip():
        message = decision.explanation.strip().splitlines()[0]
    return ProgressEvent(
        conversation_id=state.conversation_id,
        stage_name=stage,
        percent_complete=percent,
        message=message,
    )
