"""Decision-to-stage routing shared by every conditional edge."""

from typing import Optional

from autoflow.pipeline.decision import DecisionKind
from autoflow.pipeline.engine import TERMINAL
from autoflow.pipeline.state import PipelineState

PAUSE_STAGE = "pause"


class DecisionRouter:
    """Translate a stage's last Decision into the next stage name.

    PROCEED goes to the next stage in canonical order, RETRY to the stage
    being retried, ASK_HUMAN and ERROR to the pause stage, END to TERMINAL.
    A RETRY with no retry target configured is treated as ASK_HUMAN.
    """

    def __init__(
        self,
        on_proceed: str,
        on_retry: Optional[str] = None,
        pause: str = PAUSE_STAGE,
        on_end: str = TERMINAL,
    ):
        self.on_proceed = on_proceed
        self.on_retry = on_retry
        self.pause = pause
        self.on_end = on_end

    @property
    def destinations(self) -> tuple[str, ...]:
        names = [self.on_proceed, self.pause, self.on_end]
        if self.on_retry:
            names.append(self.on_retry)
        return tuple(dict.fromkeys(names))

    def __call__(self, state: PipelineState) -> str:
        decision = state.last_decision
        if decision is None:
            return self.pause

        if decision.kind == DecisionKind.PROCEED:
            return self.on_proceed
        if decision.kind == DecisionKind.RETRY and self.on_retry:
            return self.on_retry
        if decision.kind == DecisionKind.END:
            return self.on_end
        return self.pause
