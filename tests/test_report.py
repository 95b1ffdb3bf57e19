import json

import pytest

from dedup import deduplicate
from errors import RenderError
import report as report_module
from models import ReviewContext, ReviewerIdentity, ReviewOutcome, Severity, Verdict
from report import (
    ReviewReport,
    build_report,
    render,
    render_console,
    render_markdown,
    sort_findings,
    verdict_to_review_event,
)

ARCHITECT = ReviewerIdentity.ARCHITECT
SKEPTIC = ReviewerIdentity.SKEPTIC
SIMPLIFIER = ReviewerIdentity.SIMPLIFIER


@pytest.fixture
def report(make_finding, context):
    raw = [
        make_finding(reviewer=SIMPLIFIER, line=2, concern="dead code",
                     description="sys is imported but never used", severity=Severity.NIT),
        make_finding(reviewer=ARCHITECT, line=4, severity=Severity.BLOCKING,
                     fix="value = event.get('key')"),
        make_finding(reviewer=SIMPLIFIER, line=4, severity=Severity.SUGGESTION,
                     description="Missing key | crash"),
    ]
    outcomes = [
        ReviewOutcome.success(ARCHITECT, [raw[1]], duration_seconds=1.25),
        ReviewOutcome.failure(SKEPTIC, "did not finish within 5s", kind="timeout", duration_seconds=5),
        ReviewOutcome.success(SIMPLIFIER, [raw[0], raw[2]]),
    ]
    return build_report(deduplicate(raw), Verdict.REQUEST_CHANGES, outcomes, context)


def test_build_report(report):
    assert report.verdict is Verdict.REQUEST_CHANGES
    assert report.raw_finding_count == 3
    assert [f.severity for f in report.findings] == [Severity.BLOCKING, Severity.NIT]
    assert report.summary.startswith("Found 2 issue(s)")
    assert "(1 duplicate(s) merged)" in report.summary
    assert [s.reviewer for s in report.reviewers] == [ARCHITECT, SKEPTIC, SIMPLIFIER]


def test_failed_reviewers_are_listed(report):
    (failure,) = report.failures
    assert failure.reviewer is SKEPTIC
    assert failure.failure_kind == "timeout"
    assert failure.notice == "Skeptic did not complete: did not finish within 5s"
    assert any("1 of 3 reviewer(s) did not complete" in c for c in report.caveats)


def test_empty_report():
    report = build_report([], Verdict.APPROVE, [ReviewOutcome.success(ARCHITECT)])
    assert report.summary == "No issues found."
    assert report.caveats == []


def test_all_failed_caveat():
    report = build_report([], Verdict.INCONCLUSIVE, [ReviewOutcome.failure(ARCHITECT, "boom")])
    assert report.caveats == ["No reviewer completed. The absence of findings is not an approval."]


def test_protocol_critical_caveat():
    report = build_report([], Verdict.APPROVE, [ReviewOutcome.success(ARCHITECT)],
                          ReviewContext(is_protocol_critical=True))
    assert report.is_protocol_critical
    assert "protocol-critical" in report.caveats[-1]


def test_sort_findings(make_merged):
    findings = [
        make_merged(path="b.py", line=1, severity=Severity.IMPORTANT),
        make_merged(path="a.py", line=9, severity=Severity.IMPORTANT),
        make_merged(path="a.py", line=3, severity=Severity.IMPORTANT),
        make_merged(path="z.py", line=1, severity=Severity.BLOCKING),
    ]
    assert [str(f.location) for f in sort_findings(findings)] == ["z.py:1", "a.py:3", "a.py:9", "b.py:1"]


def test_render_markdown(report):
    text = render_markdown(report)
    assert "**Verdict: ❌ Request changes**" in text
    assert "| 🔴 **blocking** | app/service.py | 4 |" in text
    assert "Architect, Simplifier" in text
    assert "⚠️ Skeptic did not complete: did not finish within 5s" in text
    assert text.rstrip().endswith("*Generated by PRPanel 🤖*")


def test_render_markdown_escapes_pipes(make_finding):
    finding = make_finding(description="a | b")
    report = build_report(deduplicate([finding]), Verdict.APPROVE, [ReviewOutcome.success(SKEPTIC, [finding])])
    assert "a \\| b" in render_markdown(report)


def test_render_json_is_lossless(report):
    text = render(report, "json")
    data = json.loads(text)
    assert data["verdict"] == "request_changes"
    assert data["findings"][0]["reviewers"] == ["architect", "simplifier"]
    assert ReviewReport.model_validate_json(text) == report


def test_render_console(report):
    text = render_console(report)
    assert "Verdict: ❌ Request changes" in text
    assert "app/service.py:4" in text
    assert "Fix: value = event.get('key')" in text


def test_unknown_format(report):
    with pytest.raises(RenderError, match="Unknown report format"):
        render(report, "html")


def test_renderer_failure_is_wrapped(report, monkeypatch):
    def broken(r):
        raise KeyError("verdict")

    monkeypatch.setitem(report_module.RENDERERS, "markdown", broken)
    with pytest.raises(RenderError, match="Could not render markdown report"):
        render(report, "markdown")
    # the report survives and renders in another format
    assert render(report, "json")


def test_verdict_to_review_event():
    assert verdict_to_review_event(Verdict.REQUEST_CHANGES) == "REQUEST_CHANGES"
    assert verdict_to_review_event(Verdict.APPROVE) == "COMMENT"
    assert verdict_to_review_event(Verdict.NEEDS_DISCUSSION) == "COMMENT"
    assert verdict_to_review_event(Verdict.INCONCLUSIVE) == "COMMENT"
