"""
Agentic review of stage output by a reviewer agent.
"""

import re
from dataclasses import dataclass

from ..agents.base import Agent
from .models import TaskInput


@dataclass(frozen=True)
class ReviewVerdict:
    approved: bool
    text: str


_VERDICT_RE = re.compile(r"^\W*(approved?|rejected?)\b", re.IGNORECASE)


def parse_verdict(text: str) -> bool:
    """Approved only when the reply opens with APPROVE. Anything else rejects."""
    match = _VERDICT_RE.match(text)
    return match is not None and match.group(1).lower().startswith("approve")


def build_review_prompt(stage_id: str, description: str, output: str) -> str:
    lines = [f"Review the output of stage '{stage_id}'."]
    if description:
        lines.append(f"Stage goal: {description}")
    lines.append("Start your reply with APPROVE if it meets the goal, otherwise with REJECT and specific feedback.")
    lines.append("")
    lines.append("Output under review:")
    lines.append(output)
    return "\n".join(lines)


async def review_output(reviewer: Agent, stage_id: str, description: str, output: str) -> ReviewVerdict:
    result = await reviewer.execute(TaskInput(prompt=build_review_prompt(stage_id, description, output)))
    return ReviewVerdict(approved=parse_verdict(result.output), text=result.output.strip())
