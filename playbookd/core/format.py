"""Markdown rendering of contrastive results for an LLM context window."""

from .contrastive import ContrastiveResults
from .search import SearchResult


def _positive_entry(num: int, result: SearchResult) -> list[str]:
    pb = result.playbook
    lines = [
        f"**{num}. {pb.name}** (confidence: {pb.confidence * 100:.0f}%, "
        f"executions: {pb.total_executions})",
        "",
    ]
    if pb.steps:
        lines.append("Steps:")
        lines.extend(f"  {step.order}. {step.action}" for step in pb.steps)
        lines.append("")
    if pb.lessons:
        lines.append("Lessons learned:")
        lines.extend(f"  - {lesson.content}" for lesson in pb.lessons)
        lines.append("")
    return lines


def _negative_entry(num: int, result: SearchResult) -> list[str]:
    pb = result.playbook
    total = pb.total_executions
    failure_rate = pb.failure_count / total * 100 if total else 0.0
    lines = [
        f"**{num}. {pb.name}** (confidence: {pb.confidence * 100:.0f}%, "
        f"failure rate: {failure_rate:.0f}%)",
        "",
    ]
    if pb.lessons:
        lines.append("What failed:")
        lines.extend(f"  - {lesson.content}" for lesson in pb.lessons)
        lines.append("")
    return lines


def format_for_context(results: ContrastiveResults | None) -> str:
    """Render proven and failed approaches as Markdown.

    Returns "" for None and a short "no results" line when neither group has
    entries. Neutral results are not rendered.
    """
    if results is None:
        return ""
    if not results.positive and not results.negative:
        return f"No relevant playbooks found for: {results.query}"

    lines = [f"## Playbook Context: {results.query}", ""]

    if results.positive:
        lines.extend(["### Proven Approaches (Follow These)", ""])
        for i, r in enumerate(results.positive, start=1):
            lines.extend(_positive_entry(i, r))

    if results.negative:
        lines.extend(["### Failed Approaches (Avoid These)", ""])
        for i, r in enumerate(results.negative, start=1):
            lines.extend(_negative_entry(i, r))

    if results.positive and results.negative:
        lines.append("---")
        lines.append("Follow the proven approaches. Avoid the patterns described in failed approaches.")

    return "\n".join(lines) + "\n"
