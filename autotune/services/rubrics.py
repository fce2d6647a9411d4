"""Built-in scoring rubrics.

A rubric is plain data: a metric name, the behavior it grades, and the
system/user templates the judge is prompted with. ``build_prompt`` only fills
the templates from a trace.
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional

from autotune.models import TraceEvent

SCORE_FORMAT = 'Return JSON: {"score": number, "reason": string}. Score must be between 0 and 1.'

MAX_TOOL_ARGS_CHARS = 600
MAX_TOOL_ERROR_CHARS = 200

DEFAULT_METRIC = "response_quality"

_CONVERSATION = """User message:
{input_text}

Assistant response:
{output_text}"""


@dataclass(frozen=True)
class RubricPrompt:
    system: str
    user: str


@dataclass(frozen=True)
class Rubric:
    """Scoring contract for one behavior."""

    name: str
    behavior: str
    description: str
    system_prompt: str
    user_template: str

    def build_prompt(self, trace: TraceEvent) -> RubricPrompt:
        return RubricPrompt(system=self.system_prompt, user=self.user_template.format(**_prompt_fields(trace)))


def describe_tool_calls(trace: TraceEvent) -> str:
    if not trace.tool_calls:
        return "None."

    lines = []
    for call in trace.tool_calls:
        args = ""
        if call.args:
            args = json.dumps(call.args, separators=(",", ":"), ensure_ascii=False)[:MAX_TOOL_ARGS_CHARS]
        output = ""
        if call.output_bytes is not None:
            output = f" output_bytes={call.output_bytes}"
            if call.output_truncated:
                output += " (truncated)"
        error = f" error={call.error[:MAX_TOOL_ERROR_CHARS]}" if call.error else ""
        lines.append(f"- {call.name} (ok={str(call.ok).lower()}){output}{error} {args}".rstrip())
    return "\n".join(lines)


def _prompt_fields(trace: TraceEvent) -> Dict[str, str]:
    return {
        "input_text": trace.input_text,
        "output_text": trace.output_text or "(empty)",
        "tool_calls": describe_tool_calls(trace),
        "memory_summary": trace.memory_summary or "(none)",
        "memory_facts": "\n".join(trace.memory_facts) if trace.memory_facts else "(none)",
        "memory_recall": "\n".join(trace.memory_recall) if trace.memory_recall else "None.",
    }


def _system(*sentences: str) -> str:
    return " ".join([*sentences, SCORE_FORMAT])


RESPONSE_QUALITY = Rubric(
    name="response_quality",
    behavior="response-quality",
    description="Helpfulness, correctness, clarity, and conciseness of assistant responses.",
    system_prompt=_system(
        "You are grading assistant responses for a productivity assistant.",
        "Score from 0.0 to 1.0 based on: correctness, helpfulness, clarity, safety, and conciseness.",
        "If the response is empty or unhelpful, score near 0.",
    ),
    user_template=_CONVERSATION + "\n\nTool calls:\n{tool_calls}",
)

TASK_EXTRACTION = Rubric(
    name="task_extraction",
    behavior="task-extraction",
    description="Whether tasks are extracted and scheduled correctly when requested.",
    system_prompt=_system(
        "You are grading whether tasks were extracted correctly from a user message.",
        "If no actionable task is present, score high when no scheduling occurs.",
        "If tasks are present, score high only if schedule_task is used with correct task and timing.",
        "If the assistant outputs a JSON task list instead of tool calls, evaluate that output as the extraction result.",
    ),
    user_template=_CONVERSATION + "\n\nTool calls (look for schedule_task):\n{tool_calls}",
)

TOOL_CALLING = Rubric(
    name="tool_calling",
    behavior="tool-calling",
    description="Appropriate, safe, and efficient tool usage.",
    system_prompt=_system(
        "You are grading whether tool usage is correct and necessary.",
        "Score high if tools were used only when needed and the right tools were chosen.",
        "Score low if tools were misused, unsafe, or missing when required.",
    ),
    user_template=_CONVERSATION + "\n\nTool calls:\n{tool_calls}",
)

TOOL_OUTCOME = Rubric(
    name="tool_outcome",
    behavior="tool-outcome",
    description="Quality of tool output usage and failure handling.",
    system_prompt=_system(
        "You are grading whether the assistant used tool outputs correctly.",
        "Score high if tool results are incorporated, errors are handled, and summaries are accurate.",
        "Score low if results are ignored, hallucinated, or failures are not acknowledged.",
    ),
    user_template=_CONVERSATION + "\n\nTool calls and outcomes:\n{tool_calls}",
)

MEMORY_POLICY = Rubric(
    name="memory_policy",
    behavior="memory-policy",
    description="Correct and safe use of memory summary and facts.",
    system_prompt=_system(
        "You are grading whether the assistant used memory summary and facts appropriately.",
        "Score high if it correctly uses relevant facts and avoids hallucinating memory.",
        "Score low if it ignores relevant memory or invents unsupported facts.",
    ),
    user_template="Memory summary:\n{memory_summary}\n\nMemory facts:\n{memory_facts}\n\n" + _CONVERSATION,
)

MEMORY_RECALL = Rubric(
    name="memory_recall",
    behavior="memory-recall",
    description="Whether retrieved long-term memory was used appropriately.",
    system_prompt=_system(
        "You are grading whether the assistant used retrieved memory appropriately.",
        "Score high if it uses relevant recalled facts and avoids inventing unsupported memory.",
        "Score low if it ignores clearly relevant recall or contradicts it.",
    ),
    user_template="Memory recall:\n{memory_recall}\n\n" + _CONVERSATION,
)

RUBRICS: List[Rubric] = [RESPONSE_QUALITY, TASK_EXTRACTION, TOOL_CALLING, TOOL_OUTCOME, MEMORY_POLICY, MEMORY_RECALL]


def get_rubrics(behaviors: Optional[List[str]] = None) -> List[Rubric]:
    """All rubrics, or only those grading the given behaviors."""
    if behaviors is None:
        return list(RUBRICS)
    wanted = set(behaviors)
    return [rubric for rubric in RUBRICS if rubric.behavior in wanted]


def get_rubric(behavior: str) -> Optional[Rubric]:
    for rubric in RUBRICS:
        if rubric.behavior == behavior:
            return rubric
    return None


def metric_for_behavior(behavior: str) -> str:
    """Metric used to compare canary and active quality for a behavior."""
    rubric = get_rubric(behavior)
    return rubric.name if rubric else DEFAULT_METRIC
