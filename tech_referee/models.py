"""Dataclasses for the Tech Referee debate pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

CONSTRAINT_TYPES = ("budget", "scale", "timeline", "must-have", "nice-to-have", "avoid")
QUESTION_TYPES = ("single", "multi", "text")
VERDICTS = ("confirmed", "disputed", "unverifiable")
CONFIDENCE_LEVELS = ("high", "medium", "low")


@dataclass(frozen=True)
class Constraint:
    type: str              # one of CONSTRAINT_TYPES
    description: str
    value: str | None = None


@dataclass(frozen=True)
class ComparisonAxis:
    name: str
    description: str
    weight: int            # 1-10


@dataclass(frozen=True)
class AdvocateAssignment:
    option: str
    advocate_id: str


@dataclass(frozen=True)
class ComparisonPlan:
    options: tuple[str, ...]
    constraints: tuple[Constraint, ...]
    axes: tuple[ComparisonAxis, ...]
    assignments: tuple[AdvocateAssignment, ...]


@dataclass
class ClarificationQuestion:
    id: str
    question: str
    type: str              # one of QUESTION_TYPES
    options: list[str] = field(default_factory=list)
    allow_custom: bool = True


@dataclass
class Source:
    title: str
    url: str
    snippet: str
    published_date: str | None = None


@dataclass
class FactCheck:
    verdict: str           # one of VERDICTS
    evidence: str


@dataclass
class Challenge:
    target_option: str
    claim: str
    critique: str
    fact_check: FactCheck | None = None


@dataclass
class AdvocateResult:
    option: str
    argument: str
    sources: list[Source] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class CrossExamResult:
    option: str
    challenges: list[Challenge] = field(default_factory=list)
    defense: str = ""
    error: str | None = None
    content: str = ""      # full streamed markdown


@dataclass
class AxisScore:
    axis: str
    scores: dict[str, int] = field(default_factory=dict)


@dataclass
class Tradeoff:
    condition: str
    recommendation: str


@dataclass
class Recommendation:
    option: str
    reasoning: str
    confidence: str        # one of CONFIDENCE_LEVELS


@dataclass
class RefereeResult:
    summary: str
    scores: list[AxisScore]
    tradeoffs: list[Tradeoff]
    recommendation: Recommendation
    caveats: list[str] = field(default_factory=list)
    error: str | None = None


class SessionStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    CLARIFYING = "clarifying"
    ADVOCATING = "advocating"
    CROSS_EXAMINING = "cross-examining"
    REFEREEING = "refereeing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class TranscriptEntry:
    id: str
    timestamp: datetime
    type: str              # user_query, planning_result, advocate_argument, ...
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    id: str
    query: str
    created_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    clarifications: list[ClarificationQuestion] = field(default_factory=list)
    answers: dict[str, str | list[str]] = field(default_factory=dict)
    plan: ComparisonPlan | None = None
    arguments: list[AdvocateResult] | None = None
    cross_examinations: list[CrossExamResult] | None = None
    result: RefereeResult | None = None
    transcript: list[TranscriptEntry] = field(default_factory=list)
    error: dict[str, Any] | None = None    # PipelineError.to_dict()
    completed_phases: list[str] = field(default_factory=list)
    completed_at: datetime | None = None
