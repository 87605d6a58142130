"""Build the per-phase user prompts from prior-phase outputs.

System prompts live in config/settings.yaml; these functions only assemble the
context each agent sees.
"""

from tech_referee.models import AdvocateResult, ComparisonPlan, CrossExamResult

_NO_CONSTRAINTS = "No specific constraints provided."


def inject_option(template: str, option: str) -> str:
    """Fill every {option} placeholder. Other braces in the template are left alone."""
    return template.replace("{option}", option)


def merge_answers(query: str, answers: dict[str, str | list[str]] | None) -> str:
    if not answers:
        return query
    lines = []
    for key, value in answers.items():
        text = ", ".join(value) if isinstance(value, list) else value
        lines.append(f"{key}: {text}")
    return f"{query}\n\nUser provided clarifications:\n" + "\n".join(lines)


def format_constraints(plan: ComparisonPlan, bold: bool = False) -> str:
    lines = []
    for c in plan.constraints:
        label = f"**{c.type}**" if bold else c.type
        suffix = f" ({c.value})" if c.value else ""
        lines.append(f"- {label}: {c.description}{suffix}")
    return "\n".join(lines) or _NO_CONSTRAINTS


def format_axes(plan: ComparisonPlan, bold: bool = False) -> str:
    return "\n".join(
        f"- {'**' + a.name + '**' if bold else a.name} (weight: {a.weight}/10): {a.description}"
        for a in plan.axes
    )


def format_argument(result: AdvocateResult, snippet_chars: int = 0) -> str:
    """One advocate's case as it is shown to later phases."""
    if result.sources:
        if snippet_chars:
            sources = "\n".join(f"- [{s.title}]({s.url}): {s.snippet[:snippet_chars]}..." for s in result.sources)
        else:
            sources = "\n".join(f"- [{s.title}]({s.url})" for s in result.sources)
    else:
        sources = "No sources cited"
    weaknesses = "\n".join(f"- {w}" for w in result.weaknesses) or "No weaknesses acknowledged"

    return (
        f"### Advocate for {result.option}\n\n"
        f"**Argument:**\n{result.argument}\n\n"
        f"**Sources Cited:**\n{sources}\n\n"
        f"**Acknowledged Weaknesses:**\n{weaknesses}"
    )


def format_cross_examination(result: CrossExamResult) -> str:
    blocks = []
    for ch in result.challenges:
        text = f'**Target:** {ch.target_option}\n**Claim:** "{ch.claim}"\n**Critique:** {ch.critique}'
        if ch.fact_check:
            text += f"\n**Fact-Check:** {ch.fact_check.verdict} - {ch.fact_check.evidence}"
        blocks.append(text)
    challenges = "\n\n".join(blocks) or "No challenges raised"

    return (
        f"### Cross-Examination by {result.option} Advocate\n\n"
        f"**Challenges to Opponents:**\n{challenges}\n\n"
        f"**Defense:**\n{result.defense}"
    )


def build_advocate_prompt(plan: ComparisonPlan, option: str) -> str:
    others = [o for o in plan.options if o != option]
    options_text = "\n".join(f"- {o}{' (YOUR OPTION)' if o == option else ''}" for o in plan.options)
    compare_line = (
        f"6. Compare against {' and '.join(others)} where relevant\n" if others else ""
    )

    return f"""## Comparison Context

You are advocating for: **{option}**

### Options Being Compared
{options_text}

### User Constraints
{format_constraints(plan)}

### Comparison Axes (Evaluation Criteria)
{format_axes(plan)}

### Your Task
Build the strongest possible case for {option}. Research thoroughly using web search, address each comparison axis, explain how {option} meets the user's constraints, and acknowledge any weaknesses honestly.

Remember to:
1. Use web search to find current, accurate information
2. Cite sources for every factual claim with URLs
3. Address ALL comparison axes listed above
4. Explain how {option} handles the user's constraints
5. Be honest about weaknesses - this builds credibility
{compare_line}
Format your response in clear markdown with sections for each axis."""


def build_cross_exam_prompt(
    plan: ComparisonPlan,
    own: AdvocateResult,
    opponents: list[AdvocateResult],
) -> str:
    opponents_text = "\n\n---\n\n".join(format_argument(a) for a in opponents) or "No opponent arguments available."
    option = own.option

    return f"""## Cross-Examination Context

You are cross-examining on behalf of: **{option}**

### Comparison Plan
**Options Being Compared:** {", ".join(plan.options)}

**User Constraints:**
{format_constraints(plan)}

**Comparison Axes:**
{format_axes(plan)}

---

## YOUR ARGUMENT (for {option})

{format_argument(own)}

---

## OPPONENT ARGUMENTS TO CHALLENGE

{opponents_text}

---

## Your Cross-Examination Task

1. **Challenge Weak Claims**: quote opponent claims that are misleading, outdated, incomplete or unsupported
2. **Expose Omissions**: point out important information opponents left out
3. **Fact-Check**: use web search to verify suspicious claims and give evidence
4. **Defend {option}**: counter criticism of {option} with evidence

Only challenge these options: {", ".join(o.option for o in opponents)}."""


def build_referee_prompt(
    plan: ComparisonPlan,
    arguments: list[AdvocateResult],
    cross_examinations: list[CrossExamResult],
) -> str:
    table_key = ",".join(f"{a.name.replace(' ', '_')}:number" for a in plan.axes)
    header = " | ".join(a.name for a in plan.axes)
    rows = "\n".join(f"| {o} | " + " | ".join("[score]" for _ in plan.axes) + " |" for o in plan.options)
    score_keys = "\n".join(
        f"_Score{{{a.name.replace(' ', '_')}:"
        + ",".join(f"{o.replace(' ', '_')}=[score]" for o in plan.options)
        + "}"
        for a in plan.axes
    )
    arguments_text = "\n\n---\n\n".join(format_argument(a, snippet_chars=100) for a in arguments)
    cross_text = "\n\n---\n\n".join(format_cross_examination(c) for c in cross_examinations)

    return f"""## Referee Synthesis Task

You are synthesizing a technical comparison debate. Review all evidence and provide a neutral, evidence-based recommendation.

---

## COMPARISON PLAN

**Options Being Compared:** {", ".join(plan.options)}

### User Constraints
{format_constraints(plan, bold=True)}

### Comparison Axes (Evaluation Criteria)
{format_axes(plan, bold=True)}

---

## ADVOCATE ARGUMENTS

{arguments_text}

---

## CROSS-EXAMINATIONS

{cross_text}

---

## YOUR SYNTHESIS TASK

### 1. Comparison Table
Score each option on each axis (1-10):
_Table{{Option:string,{table_key}}}
| Option | {header} |
{rows}

### 2. Score Visualization
One line per axis:
{score_keys}

### 3. Trade-off Analysis
- "If [condition], choose [option] because [reason]"

### 4. Recommendation
The recommended option (one of: {", ".join(plan.options)}), reasoning tied to the user's constraints, and a confidence level (high/medium/low).

### 5. Caveats
Conditions under which your recommendation would change."""
