import pytest

from models import ReviewerIdentity, ReviewOutcome, Severity, Verdict
from verdict import compute_verdict, decide_verdict, is_security_concern

B, I, S, N = Severity.BLOCKING, Severity.IMPORTANT, Severity.SUGGESTION, Severity.NIT


@pytest.fixture
def findings(make_merged):
    def _build(*specs):
        # spec: severity, or (severity, concern)
        out = []
        for line, spec in enumerate(specs, start=1):
            severity, concern = spec if isinstance(spec, tuple) else (spec, "correctness")
            out.append(make_merged(line=line * 10, severity=severity, concern=concern))
        return out

    return _build


@pytest.mark.parametrize(
    "specs, expected",
    [
        ((), Verdict.APPROVE),
        ((N, N, S, S, S), Verdict.APPROVE),
        ((I,), Verdict.APPROVE),
        ((I, N, S), Verdict.APPROVE),
        ((I, I), Verdict.NEEDS_DISCUSSION),
        (((I, "SQL-Injection"),), Verdict.NEEDS_DISCUSSION),
        (((I, "security hardening"),), Verdict.NEEDS_DISCUSSION),
        (((N, "security"), (S, "xss")), Verdict.APPROVE),
        ((B,), Verdict.REQUEST_CHANGES),
        ((N, B, I, I), Verdict.REQUEST_CHANGES),
        (((B, "security"), I), Verdict.REQUEST_CHANGES),
    ],
)
def test_decision_table(findings, specs, expected):
    assert compute_verdict(findings(*specs)) is expected


def test_important_threshold(findings):
    assert compute_verdict(findings(I, I), important_threshold=3) is Verdict.APPROVE
    assert compute_verdict(findings(I), important_threshold=1) is Verdict.NEEDS_DISCUSSION


def test_rejects_threshold_below_one(findings):
    with pytest.raises(ValueError):
        compute_verdict(findings(I), important_threshold=0)


def test_custom_security_concerns(findings):
    assert compute_verdict(findings((I, "licensing")), security_concerns={"licensing"}) is (
        Verdict.NEEDS_DISCUSSION
    )


def test_is_security_concern():
    assert is_security_concern("Path_Traversal")
    assert is_security_concern("security")
    assert not is_security_concern("naming")
    assert not is_security_concern("securityish")


def test_inconclusive_when_no_reviewer_completed(findings):
    failed = [
        ReviewOutcome.failure(ReviewerIdentity.ARCHITECT, "boom"),
        ReviewOutcome.failure(ReviewerIdentity.SKEPTIC, "did not finish within 5s", kind="timeout"),
    ]
    assert decide_verdict([], failed) is Verdict.INCONCLUSIVE
    assert decide_verdict([], []) is Verdict.INCONCLUSIVE


def test_partial_failure_still_decides(findings):
    outcomes = [
        ReviewOutcome.failure(ReviewerIdentity.ARCHITECT, "boom"),
        ReviewOutcome.success(ReviewerIdentity.SKEPTIC),
    ]
    assert decide_verdict([], outcomes) is Verdict.APPROVE
    assert decide_verdict(findings(B), outcomes) is Verdict.REQUEST_CHANGES
