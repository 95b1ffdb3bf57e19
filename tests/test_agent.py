import threading

import pytest

import agent
from agent import build_inline_comments, run_review
from config import ReviewSettings
from conftest import SAMPLE_DIFF, FakeFetcher
from context_builder import ReviewScope
from errors import AmbiguousScope, FetchError, ReviewCancelled
from models import ReviewerIdentity, Severity, Verdict
from report import render_markdown

ARCHITECT = ReviewerIdentity.ARCHITECT
SKEPTIC = ReviewerIdentity.SKEPTIC
SIMPLIFIER = ReviewerIdentity.SIMPLIFIER
RULES = ReviewerIdentity.RULE_REVIEWER

DIFF_SCOPE = ReviewScope(diff_text=SAMPLE_DIFF)


@pytest.fixture
def settings():
    return ReviewSettings(task_timeout=5)


@pytest.fixture
def release():
    # Lets stalled capabilities finish so no worker outlives the test
    event = threading.Event()
    yield event
    event.set()


def panel(**overrides):
    """Capabilities for every reviewer; unspecified reviewers find nothing."""
    capabilities = {identity: (lambda context: []) for identity in ReviewerIdentity}
    capabilities.update({ReviewerIdentity(k): v for k, v in overrides.items()})
    return capabilities


def finds(*findings):
    return lambda context: list(findings)


def fails(message):
    def capability(context):
        raise RuntimeError(message)

    return capability


def test_clean_change_is_approved(settings):
    report = run_review(DIFF_SCOPE, settings=settings, fetcher=FakeFetcher(), capabilities=panel())

    assert report.verdict is Verdict.APPROVE
    assert report.summary == "No issues found."
    assert [s.reviewer for s in report.reviewers] == list(ReviewerIdentity)
    assert all(s.completed for s in report.reviewers)


def test_agreeing_reviewers_are_merged_and_block(settings, make_finding):
    blocking = make_finding(reviewer=ARCHITECT, concern="race condition", severity=Severity.BLOCKING)
    important = make_finding(reviewer=SKEPTIC, concern="race_condition", severity=Severity.IMPORTANT)

    report = run_review(
        DIFF_SCOPE,
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities=panel(architect=finds(blocking), skeptic=finds(important)),
    )

    assert report.verdict is Verdict.REQUEST_CHANGES
    (finding,) = report.findings
    assert finding.severity is Severity.BLOCKING
    assert finding.reviewers == (ARCHITECT, SKEPTIC)
    assert report.raw_finding_count == 2


def test_lower_ranked_reviewer_raises_the_severity(settings, make_finding):
    important = make_finding(reviewer=ARCHITECT, concern="naming", severity=Severity.IMPORTANT)
    blocking = make_finding(reviewer=RULES, concern="naming", severity=Severity.BLOCKING)

    report = run_review(
        DIFF_SCOPE,
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities=panel(architect=finds(important), rule_reviewer=finds(blocking)),
    )

    assert report.verdict is Verdict.REQUEST_CHANGES
    (finding,) = report.findings
    assert finding.severity is Severity.BLOCKING
    assert finding.reviewers == (ARCHITECT, RULES)


def test_two_important_findings_need_discussion(settings, make_finding):
    report = run_review(
        DIFF_SCOPE,
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities=panel(
            skeptic=finds(make_finding(line=2, concern="edge case", description="sys shadows a local")),
            rule_reviewer=finds(
                make_finding(reviewer=RULES, path="app/util.py", line=1, concern="naming",
                             description="helper is too generic a name")
            ),
        ),
    )
    assert report.verdict is Verdict.NEEDS_DISCUSSION
    assert len(report.findings) == 2


def test_failed_reviewer_does_not_sink_the_review(settings, make_finding):
    report = run_review(
        DIFF_SCOPE,
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities=panel(
            skeptic=fails("quota exhausted"),
            simplifier=finds(make_finding(reviewer=SIMPLIFIER, severity=Severity.NIT)),
        ),
    )

    assert report.verdict is Verdict.APPROVE
    assert len(report.findings) == 1
    (failure,) = report.failures
    assert failure.reviewer is SKEPTIC
    assert "quota exhausted" in failure.error
    assert report.caveats


def test_timed_out_reviewer_is_reported(release):
    def stalls(context):
        release.wait(5)
        return []

    report = run_review(
        DIFF_SCOPE,
        settings=ReviewSettings(task_timeout=0.2),
        fetcher=FakeFetcher(),
        capabilities=panel(simplifier=stalls),
    )

    assert report.verdict is Verdict.APPROVE
    assert [s.reviewer for s in report.reviewers if s.completed] == [ARCHITECT, SKEPTIC, RULES]
    (failure,) = report.failures
    assert failure.reviewer is SIMPLIFIER
    assert failure.failure_kind == "timeout"
    assert failure.notice == "Simplifier did not complete: did not finish within 0.2s"
    assert failure.notice in render_markdown(report)


def test_all_reviewers_failing_is_inconclusive(settings):
    report = run_review(
        DIFF_SCOPE,
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities={identity: fails("offline") for identity in ReviewerIdentity},
    )
    assert report.verdict is Verdict.INCONCLUSIVE
    assert len(report.failures) == 4


def test_configured_subset_of_reviewers():
    settings = ReviewSettings(reviewers=(SIMPLIFIER, ARCHITECT), task_timeout=5)
    report = run_review(DIFF_SCOPE, settings=settings, fetcher=FakeFetcher(), capabilities=panel())
    assert [s.reviewer for s in report.reviewers] == [SIMPLIFIER, ARCHITECT]


def test_ambiguous_scope_dispatches_nothing(settings):
    called = []

    def spy(context):
        called.append(context)
        return []

    with pytest.raises(AmbiguousScope):
        run_review(
            ReviewScope(repo="octo/app", pr_number=3, base="main", head="feature"),
            settings=settings,
            fetcher=FakeFetcher(),
            capabilities={identity: spy for identity in ReviewerIdentity},
        )
    assert called == []


def test_fetch_failure_raises(settings):
    with pytest.raises(FetchError, match="not found"):
        run_review(
            ReviewScope(repo="octo/app", pr_number=3),
            settings=settings,
            fetcher=FakeFetcher(error=FetchError("PR #3 not found in octo/app")),
            capabilities=panel(),
        )


def test_cancelled_review_produces_no_report(settings):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ReviewCancelled):
        run_review(
            DIFF_SCOPE,
            settings=settings,
            fetcher=FakeFetcher(),
            capabilities=panel(),
            cancel_event=cancel,
        )


def test_reviewer_stopping_on_cancel_produces_no_report():
    cancel = threading.Event()

    def stops(context):
        cancel.wait(5)
        raise ReviewCancelled("stopped")

    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(ReviewCancelled):
            run_review(
                DIFF_SCOPE,
                settings=ReviewSettings(reviewers=(SKEPTIC,), task_timeout=5),
                fetcher=FakeFetcher(),
                capabilities=panel(skeptic=stops),
                cancel_event=cancel,
            )
    finally:
        timer.cancel()


def test_pr_review_is_posted(settings, make_finding, monkeypatch):
    posted = []

    def fake_post(repo, pr_number, review):
        posted.append((repo, pr_number, review))
        return {"review_id": 99, "fallback": False}

    monkeypatch.setattr(agent, "post_review_with_fallback", fake_post)
    finding = make_finding(reviewer=ARCHITECT, line=4, severity=Severity.BLOCKING)

    report = run_review(
        ReviewScope(repo="octo/app", pr_number=42),
        settings=settings,
        fetcher=FakeFetcher(),
        capabilities=panel(architect=finds(finding)),
        post=True,
    )

    assert report.title == "Add event handler"
    assert report.pr_number == 42
    ((repo, pr_number, review),) = posted
    assert (repo, pr_number) == ("octo/app", 42)
    assert review.event == "REQUEST_CHANGES"
    assert "PRPanel Review" in review.body
    (comment,) = review.comments
    assert (comment.path, comment.line) == ("app/service.py", 4)
    assert "Raised by: Architect" in comment.body


def test_diff_review_is_never_posted(settings, monkeypatch):
    def fail_post(*args):
        raise AssertionError("should not post without a PR")

    monkeypatch.setattr(agent, "post_review_with_fallback", fail_post)
    report = run_review(DIFF_SCOPE, settings=settings, fetcher=FakeFetcher(), capabilities=panel(), post=True)
    assert report.verdict is Verdict.APPROVE


def test_inline_comments_skip_unmappable_findings(context, make_merged):
    comments = build_inline_comments(
        [
            make_merged(line=5),
            make_merged(line=None, concern="module size"),
            make_merged(path="app/util.py", line=40),
        ],
        context,
    )
    assert [(c.path, c.line) for c in comments] == [("app/service.py", 5)]
