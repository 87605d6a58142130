"""Planning phase: turn a free-text query into a ComparisonPlan or clarification questions."""

import logging
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from tech_referee.agent import AgentInvoker
from tech_referee.errors import PlanningFailed
from tech_referee.models import (
    AdvocateAssignment,
    ClarificationQuestion,
    ComparisonAxis,
    ComparisonPlan,
    Constraint,
)
from tech_referee.prompts import merge_answers

logger = logging.getLogger(__name__)

MAX_OPTIONS = 3


# --- model output schemas (validated at the boundary, then converted to dataclasses) ---


class ConstraintOut(BaseModel):
    type: Literal["budget", "scale", "timeline", "must-have", "nice-to-have", "avoid"]
    description: str
    value: str | None = None


class AxisOut(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    weight: int = Field(ge=1, le=10)


class AssignmentOut(BaseModel):
    option: str
    advocate_id: str


class PlanOut(BaseModel):
    options: list[str] = Field(max_length=MAX_OPTIONS)
    constraints: list[ConstraintOut] = Field(default_factory=list)
    axes: list[AxisOut] = Field(default_factory=list)
    assignments: list[AssignmentOut] = Field(default_factory=list)


class QuestionOut(BaseModel):
    id: str
    question: str
    type: Literal["single", "multi", "text"] = "single"
    options: list[str] = Field(default_factory=list)
    allow_custom: bool = True


class PlannerOutput(BaseModel):
    needs_clarification: bool = False
    clarifications: list[QuestionOut] = Field(default_factory=list)
    plan: PlanOut | None = None


@dataclass
class PlanningOutcome:
    """Exactly one of plan / clarifications is populated."""

    plan: ComparisonPlan | None = None
    clarifications: list[ClarificationQuestion] = field(default_factory=list)

    @property
    def needs_clarification(self) -> bool:
        return self.plan is None


def to_plan(raw: PlanOut) -> ComparisonPlan:
    """Enforce plan invariants and freeze the result.

    Raises:
        PlanningFailed: No options, duplicate options, no axes, or assignments that
            do not map one-to-one onto the options.
    """
    options = tuple(o.strip() for o in raw.options if o.strip())
    if not options:
        raise PlanningFailed("The planner could not identify comparison options")
    if len(set(options)) != len(options):
        raise PlanningFailed("The planner returned duplicate options", ", ".join(options))
    if not raw.axes:
        raise PlanningFailed("The planner did not define any comparison axes")

    assignments = tuple(AdvocateAssignment(option=a.option.strip(), advocate_id=a.advocate_id) for a in raw.assignments)
    if not assignments:
        # Advocate ids are opaque; number them when the model left them out entirely
        assignments = tuple(
            AdvocateAssignment(option=o, advocate_id=f"advocate-{i}") for i, o in enumerate(options, start=1)
        )
        logger.info("Planner omitted advocate assignments; generated %d", len(assignments))
    assigned = [a.option for a in assignments]
    if sorted(assigned) != sorted(options):
        raise PlanningFailed(
            "Advocate assignments do not match the plan options",
            f"options={list(options)} assignments={assigned}",
        )

    return ComparisonPlan(
        options=options,
        constraints=tuple(Constraint(type=c.type, description=c.description, value=c.value) for c in raw.constraints),
        axes=tuple(ComparisonAxis(name=a.name, description=a.description, weight=a.weight) for a in raw.axes),
        assignments=assignments,
    )


def to_questions(raw: list[QuestionOut]) -> list[ClarificationQuestion]:
    return [
        ClarificationQuestion(
            id=q.id,
            question=q.question,
            type=q.type,
            options=list(q.options),
            allow_custom=q.allow_custom,
        )
        for q in raw
    ]


async def run_planning(
    invoker: AgentInvoker,
    system_prompt: str,
    query: str,
    answers: dict[str, str | list[str]] | None = None,
    max_steps: int = 5,
) -> PlanningOutcome:
    """Run the planner agent once.

    Args:
        invoker: Agent invoker bound to the request's provider and research tool.
        system_prompt: Planner system prompt from settings.
        query: The user's comparison request.
        answers: Answers to earlier clarification questions, keyed by question id.
        max_steps: Tool-use step budget.

    Returns:
        A PlanningOutcome with either a plan or clarification questions.

    Raises:
        PlanningFailed: Output is neither a usable plan nor a clarification request.
        AgentCallFailed, AgentOutputInvalid: From the invoker.
    """
    prompt = merge_answers(query, answers)
    output = await invoker.generate_object(system_prompt, prompt, PlannerOutput, max_steps=max_steps)

    if output.needs_clarification and output.clarifications:
        logger.info("Planner asked %d clarification questions", len(output.clarifications))
        return PlanningOutcome(clarifications=to_questions(output.clarifications))

    if output.plan is not None:
        plan = to_plan(output.plan)
        logger.info("Planner produced %d options and %d axes", len(plan.options), len(plan.axes))
        return PlanningOutcome(plan=plan)

    raise PlanningFailed("The planner did not return a plan or clarification questions")
