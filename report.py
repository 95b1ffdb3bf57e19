"""Review report: the structured result of a run and its renderers."""

import logging
from collections.abc import Callable, Iterable
from typing import Literal

from pydantic import BaseModel, Field

from errors import RenderError
from models import (
    DeduplicatedFinding,
    ReviewContext,
    ReviewerIdentity,
    ReviewOutcome,
    Severity,
    Verdict,
)

logger = logging.getLogger(__name__)

SEVERITY_ICONS: dict[Severity, str] = {
    Severity.BLOCKING: "🔴",
    Severity.IMPORTANT: "🟠",
    Severity.SUGGESTION: "🔵",
    Severity.NIT: "⚪",
}

_VERDICT_LABELS: dict[Verdict, str] = {
    Verdict.APPROVE: "✅ Approve",
    Verdict.REQUEST_CHANGES: "❌ Request changes",
    Verdict.NEEDS_DISCUSSION: "💬 Needs discussion",
    Verdict.INCONCLUSIVE: "❓ Inconclusive",
}


# ---------------------------------------------------------------------------
# Report model
# ---------------------------------------------------------------------------
class ReviewerStatus(BaseModel):
    """How one reviewer's task ended."""

    reviewer: ReviewerIdentity
    display_name: str
    completed: bool
    finding_count: int = 0
    failure_kind: Literal["timeout", "error"] | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def notice(self) -> str | None:
        if self.completed:
            return None
        return f"{self.display_name} did not complete: {self.error}"


class ReviewReport(BaseModel):
    """Everything a renderer needs, losslessly."""

    verdict: Verdict
    summary: str
    findings: list[DeduplicatedFinding] = Field(default_factory=list)
    reviewers: list[ReviewerStatus] = Field(default_factory=list)
    caveats: list[str] = Field(default_factory=list)
    raw_finding_count: int = 0
    is_protocol_critical: bool = False
    title: str = ""
    repo: str | None = None
    pr_number: int | None = None

    @property
    def failures(self) -> list[ReviewerStatus]:
        return [status for status in self.reviewers if not status.completed]

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity is severity)


def sort_findings(findings: Iterable[DeduplicatedFinding]) -> list[DeduplicatedFinding]:
    """Severity descending, then file path, then line."""
    return sorted(
        findings,
        key=lambda f: (
            -f.severity.rank,
            f.path,
            f.location.start_line or 0,
            f.location.end_line or 0,
            f.concern,
        ),
    )


def _summary(findings: list[DeduplicatedFinding], raw_count: int) -> str:
    if not findings:
        return "No issues found."

    parts = [
        f"{SEVERITY_ICONS[severity]} {count} {severity.value}"
        for severity in sorted(Severity, reverse=True)
        if (count := sum(1 for f in findings if f.severity is severity))
    ]
    summary = f"Found {len(findings)} issue(s): " + ", ".join(parts)
    deduped = raw_count - len(findings)
    if deduped:
        summary += f" ({deduped} duplicate(s) merged)"
    return summary


def build_report(
    findings: Iterable[DeduplicatedFinding],
    verdict: Verdict,
    outcomes: Iterable[ReviewOutcome],
    context: ReviewContext | None = None,
) -> ReviewReport:
    """Assemble the report. Failed reviewers are always listed, never dropped."""
    findings = sort_findings(findings)
    outcomes = list(outcomes)

    statuses = [
        ReviewerStatus(
            reviewer=outcome.reviewer,
            display_name=outcome.reviewer.display_name,
            completed=outcome.succeeded,
            finding_count=len(outcome.findings),
            failure_kind=outcome.failure_kind,
            error=outcome.error,
            duration_seconds=round(outcome.duration_seconds, 3),
        )
        for outcome in outcomes
    ]
    raw_count = sum(status.finding_count for status in statuses)

    caveats: list[str] = []
    completed = sum(1 for status in statuses if status.completed)
    if not statuses:
        caveats.append("No reviewers were configured; nothing was reviewed.")
    elif completed == 0:
        caveats.append(
            "No reviewer completed. The absence of findings is not an approval."
        )
    elif completed < len(statuses):
        caveats.append(
            f"{len(statuses) - completed} of {len(statuses)} reviewer(s) did not complete; "
            "their findings are missing from this report."
        )

    metadata = context.metadata if context is not None else {}
    critical = bool(context is not None and context.is_protocol_critical)
    if critical:
        caveats.append("This change touches protocol-critical code.")

    return ReviewReport(
        verdict=verdict,
        summary=_summary(findings, raw_count),
        findings=findings,
        reviewers=statuses,
        caveats=caveats,
        raw_finding_count=raw_count,
        is_protocol_critical=critical,
        title=str(metadata.get("title") or ""),
        repo=metadata.get("repo"),
        pr_number=metadata.get("pr_number"),
    )


def verdict_to_review_event(verdict: Verdict) -> str:
    """GitHub review event for a verdict. The panel never auto-approves."""
    if verdict is Verdict.REQUEST_CHANGES:
        return "REQUEST_CHANGES"
    return "COMMENT"


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------
def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return (text[:limit] + "...") if len(text) > limit else text


def _cell(text: str) -> str:
    return text.replace("|", "\\|")


def render_markdown(report: ReviewReport) -> str:
    """Format the report as a markdown review body."""
    lines: list[str] = []
    lines.append("## 🤖 PRPanel Review\n")
    lines.append(f"**Verdict: {_VERDICT_LABELS[report.verdict]}**\n")
    lines.append(f"{report.summary}\n")

    for caveat in report.caveats:
        lines.append(f"> ⚠️ {caveat}")
    if report.caveats:
        lines.append("")

    if report.findings:
        lines.append("\n### Findings\n")
        lines.append("| Severity | File | Line | Concern | Issue | Reviewers | Fix |")
        lines.append("|----------|------|------|---------|-------|-----------|-----|")
        for f in report.findings:
            loc = f.location
            if loc.is_file_level:
                line = "-"
            elif loc.start_line == loc.end_line:
                line = str(loc.start_line)
            else:
                line = f"{loc.start_line}-{loc.end_line}"
            reviewers = ", ".join(r.display_name for r in f.reviewers)
            fix = _truncate(f.suggested_fix, 40) if f.suggested_fix else "-"
            lines.append(
                f"| {SEVERITY_ICONS[f.severity]} **{f.severity.value}** | {_cell(f.path)} "
                f"| {line} | {_cell(f.concern)} | {_cell(_truncate(f.description, 80))} "
                f"| {reviewers} | {_cell(fix)} |"
            )

    lines.append("\n### Reviewers\n")
    for status in report.reviewers:
        if status.completed:
            lines.append(
                f"- ✅ {status.display_name}: {status.finding_count} finding(s) "
                f"in {status.duration_seconds:.1f}s"
            )
        else:
            lines.append(f"- ⚠️ {status.notice}")
    if not report.reviewers:
        lines.append("- _none_")

    lines.append("\n---")
    lines.append("*Generated by PRPanel 🤖*")

    return "\n".join(lines)


def render_json(report: ReviewReport) -> str:
    """Lossless JSON rendering of the report."""
    return report.model_dump_json(indent=2)


def render_console(report: ReviewReport) -> str:
    """Plain-text rendering for terminals."""
    out: list[str] = []
    out.append(f"\n{'=' * 60}")
    heading = "📋 REVIEW"
    if report.repo and report.pr_number:
        heading += f": {report.repo} #{report.pr_number}"
    out.append(heading)
    out.append(f"{'=' * 60}")
    if report.title:
        out.append(f"Title: {report.title}")
    out.append(f"Verdict: {_VERDICT_LABELS[report.verdict]}")
    out.append(report.summary)
    for caveat in report.caveats:
        out.append(f"  ⚠️  {caveat}")

    for f in report.findings:
        out.append(f"\n  {SEVERITY_ICONS[f.severity]} [{f.severity.value.upper()}] {f.location} ({f.concern})")
        out.append(f"     {f.description}")
        if f.suggested_fix:
            out.append(f"     💡 Fix: {f.suggested_fix}")
        out.append(f"     👥 {', '.join(r.display_name for r in f.reviewers)}")

    out.append(f"\n{'─' * 60}")
    for status in report.reviewers:
        if status.completed:
            out.append(f"  ✅ {status.display_name}: {status.finding_count} finding(s)")
        else:
            out.append(f"  ⚠️  {status.notice}")
    out.append(f"{'=' * 60}\n")
    return "\n".join(out)


RENDERERS: dict[str, Callable[[ReviewReport], str]] = {
    "markdown": render_markdown,
    "json": render_json,
    "console": render_console,
}


def render(report: ReviewReport, fmt: str = "markdown") -> str:
    """
    Render *report* in format *fmt*.

    Raises:
        RenderError: Unknown format or the renderer failed. The report itself
            is untouched and can be rendered again in another format.
    """
    renderer = RENDERERS.get(fmt)
    if renderer is None:
        raise RenderError(f"Unknown report format {fmt!r}. Expected one of: {', '.join(RENDERERS)}")
    try:
        return renderer(report)
    except Exception as e:
        logger.error("Rendering %s report failed: %s", fmt, e)
        raise RenderError(f"Could not render {fmt} report: {e}") from e
