"""Syllabind generation prompts — planning, week fill, regeneration, URL repair.

Static rule blocks are combined at runtime with the course basics and the
curriculum outline via the ``build_*`` functions below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from models.syllabind import WeekPlan


@dataclass(frozen=True)
class CourseBasics:
    title: str
    description: str
    audience_level: str
    duration_weeks: int


@dataclass(frozen=True)
class MissingUrlStep:
    step_id: int
    week_index: int
    title: str
    author: str | None = None
    media_type: str | None = None


WEEK_CONTENT_RULES = """\
Rules:
- 3 readings + 1 exercise (exercise last). Max 5 hours/week.
- EVERY reading MUST have a url found via web search. Do NOT invent or guess URLs.
- EVERY reading MUST have a note (1-2 sentence context for the learner).
- EVERY step MUST have estimatedMinutes (typical: 15-30 for readings, 30-60 for exercises).
- EVERY exercise MUST have a promptText (~500 chars). Be concise: focus on the core task, not lengthy preambles.
- Include 1+ academic source per week (jstor, arxiv, scholar.google, .edu, worldcat, academia.edu).
- No Wikipedia links.
- Use mediaType "Book" for book chapters, "Journal Article" for papers.
- EVERY reading MUST have creationDate in YYYY-MM-DD format. Extract from search results; if unknown, use best estimate.
- Exercises: creative, open-ended, producing real outputs.
- Tailor difficulty to {audience_level} (Beginner=middle school, Intermediate=college, Advanced=post-grad)."""


def build_outline(weeks: Iterable[WeekPlan]) -> str:
    """One line per week: ``Week 2: "Title" - description``."""
    return "\n".join(f'Week {w.week_index}: "{w.title}" - {w.description}' for w in weeks)


# ── Planning ────────────────────────────────────────────────


def build_planning_prompt(basics: CourseBasics) -> str:
    n = basics.duration_weeks
    return f"""\
You are a curriculum designer. Plan a {n}-week Syllabind outline for "{basics.title}" ({basics.audience_level}).

Description: {basics.description}

Rules:
- Generate exactly {n} weeks, weekIndex 1 to {n}.
- Each week MUST have a DISTINCT topic. No two weeks should cover the same theme.
- Titles should form a logical learning arc (foundations, then intermediate, then advanced/synthesis).
- Descriptions should be 1-2 sentences explaining the week's focus.
- Call the plan_curriculum tool with all {n} weeks at once."""


def build_planning_request(basics: CourseBasics) -> str:
    return (
        f"Plan the {basics.duration_weeks}-week curriculum outline. "
        "Call the plan_curriculum tool."
    )


# ── Week fill ───────────────────────────────────────────────


def build_week_prompt(basics: CourseBasics, week: WeekPlan, outline: str) -> str:
    """System prompt for one week of a full generation.

    Title and description come from the plan; the model only fills steps.
    """
    i = week.week_index
    topic = f'Topic for Week {i}: "{week.title}"'
    if week.description:
        topic += f" - {week.description}"
    return f"""\
You are a Syllabind designer. Generate readings and exercises for Week {i} of "{basics.title}" ({basics.audience_level}).

Description: {basics.description}

FULL CURRICULUM OUTLINE (for context; do NOT duplicate content across weeks):
{outline}

You are generating Week {i} ONLY. The week title and description are already set. Generate ONLY the readings and exercises.
{topic}

{WEEK_CONTENT_RULES.format(audience_level=basics.audience_level)}
- Do NOT include title or description in finalize_week; they are pre-set.

Process: Search for resources first (~2-3 searches), then call finalize_week with weekIndex {i}."""


def build_regeneration_prompt(
    basics: CourseBasics,
    week_index: int,
    outline: str,
    title: str = "",
    description: str = "",
) -> str:
    """System prompt for regenerating a single week.

    When the week already has a title the model is told it is optional, so
    the stored title/description survive unless deliberately replaced.
    """
    outline_section = (
        f"\nOther weeks in this course (do NOT duplicate their content):\n{outline}\n"
        if outline
        else ""
    )
    if title:
        topic = f'\nThis week\'s topic: "{title}"'
        if description:
            topic += f" - {description}"
        topic += (
            "\nThe week title and description are already set. Generate ONLY the readings "
            "and exercises. Do NOT include title or description in finalize_week."
        )
    else:
        topic = "\nThis week has no title yet. Include a title and a 1-2 sentence description in finalize_week."
    return f"""\
You are a Syllabind designer regenerating Week {week_index} for "{basics.title}" ({basics.audience_level}).

Description: {basics.description}
Week {week_index} of {basics.duration_weeks} total.
{outline_section}{topic}

Generate Week {week_index} ONLY.
{WEEK_CONTENT_RULES.format(audience_level=basics.audience_level)}

Process: Search for resources first (~2-3 searches), then call finalize_week."""


def build_week_request(week_index: int) -> str:
    return f"Generate readings and exercises for Week {week_index}."


def build_finalize_nudge(week_index: int, title_preset: bool = True) -> str:
    if title_preset:
        return (
            f"Please call the finalize_week tool to complete Week {week_index}. "
            f"Use weekIndex: {week_index} and exactly 4 steps (title/description are pre-set)."
        )
    return (
        f"Please call the finalize_week tool to complete Week {week_index}. "
        f"Use weekIndex: {week_index}, a title, and exactly 4 steps."
    )


# ── URL repair ──────────────────────────────────────────────


def _describe_missing(step: MissingUrlStep) -> str:
    line = f'- stepId: {step.step_id} | "{step.title}"'
    if step.author:
        line += f" by {step.author}"
    if step.media_type:
        line += f" ({step.media_type})"
    return line


def build_repair_prompt(missing: list[MissingUrlStep]) -> str:
    step_list = "\n".join(_describe_missing(s) for s in missing)
    return f"""\
You are a URL finder. Your ONLY job: search for URLs, then call the provide_urls tool.

Readings needing URLs:
{step_list}

Instructions:
1. Search for each reading by title and author
2. After searching, you MUST call the provide_urls tool with ALL URLs found
3. Do NOT output text explanations; ONLY use tools (web_search and provide_urls)
4. No Wikipedia links
5. If you cannot find a URL for a reading, omit it from the provide_urls call"""


def build_repair_request(count: int) -> str:
    return (
        f"Find URLs for the {count} readings listed in your instructions. "
        "Search, then call provide_urls."
    )


REPAIR_NUDGE = (
    "Now call the provide_urls tool with the URLs you found. "
    "You MUST call the provide_urls tool."
)
