"""Decision protocol returned by every pipeline stage."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionKind(str, Enum):
    """Tagged outcome of a stage."""

    PROCEED = "proceed"
    RETRY = "retry"
    ASK_HUMAN = "ask_human"
    ERROR = "error"
    END = "end"


class Decision(BaseModel):
    """Outcome of a stage; drives routing to the next stage.

    Always built through one of the factory classmethods so that every
    decision is complete when created.
    """

    model_config = ConfigDict(frozen=True)

    kind: DecisionKind
    explanation: str = ""
    questions: list[str] = Field(default_factory=list)

    @classmethod
    def proceed(cls, explanation: str = "") -> "Decision":
        return cls(kind=DecisionKind.PROCEED, explanation=explanation)

    @classmethod
    def retry(cls, explanation: str) -> "Decision":
        return cls(kind=DecisionKind.RETRY, explanation=explanation)

    @classmethod
    def ask_human(cls, explanation: str, questions: Optional[list[str]] = None) -> "Decision":
        return cls(kind=DecisionKind.ASK_HUMAN, explanation=explanation, questions=questions or [])

    @classmethod
    def error(cls, explanation: str) -> "Decision":
        return cls(kind=DecisionKind.ERROR, explanation=explanation)

    @classmethod
    def end(cls, explanation: str = "") -> "Decision":
        return cls(kind=DecisionKind.END, explanation=explanation)

    @property
    def needs_human(self) -> bool:
        return self.kind in (DecisionKind.ASK_HUMAN, DecisionKind.ERROR)
