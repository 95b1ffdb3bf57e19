"""Verdict engine: a fixed decision table over the merged findings."""

from collections.abc import Iterable

from config import DEFAULT_IMPORTANT_THRESHOLD, DEFAULT_SECURITY_CONCERNS
from dedup import normalise_concern
from models import DeduplicatedFinding, ReviewOutcome, Severity, Verdict


def is_security_concern(concern: str, security_concerns: Iterable[str] = DEFAULT_SECURITY_CONCERNS) -> bool:
    """True if *concern* names a security issue ('Security', 'sql-injection', ...)."""
    tag = normalise_concern(concern)
    known = {normalise_concern(c) for c in security_concerns}
    return tag in known or "security" in tag.split()


def compute_verdict(
    findings: Iterable[DeduplicatedFinding],
    important_threshold: int = DEFAULT_IMPORTANT_THRESHOLD,
    security_concerns: Iterable[str] = DEFAULT_SECURITY_CONCERNS,
) -> Verdict:
    """
    Derive the recommendation from the final findings.

    - any blocking finding -> request_changes
    - at least *important_threshold* important findings, or an important
      finding with a security concern -> needs_discussion
    - otherwise (including no findings at all) -> approve

    Nits and suggestions never change the verdict.
    """
    if important_threshold < 1:
        raise ValueError(f"important_threshold must be >= 1, got {important_threshold}")

    security_concerns = list(security_concerns)
    important = 0
    important_security = False

    for finding in findings:
        if finding.severity is Severity.BLOCKING:
            return Verdict.REQUEST_CHANGES
        if finding.severity is Severity.IMPORTANT:
            important += 1
            if is_security_concern(finding.concern, security_concerns):
                important_security = True

    if important >= important_threshold or important_security:
        return Verdict.NEEDS_DISCUSSION
    return Verdict.APPROVE


def decide_verdict(
    findings: Iterable[DeduplicatedFinding],
    outcomes: Iterable[ReviewOutcome],
    important_threshold: int = DEFAULT_IMPORTANT_THRESHOLD,
    security_concerns: Iterable[str] = DEFAULT_SECURITY_CONCERNS,
) -> Verdict:
    """Like compute_verdict, but inconclusive when no reviewer actually completed."""
    if not any(outcome.succeeded for outcome in outcomes):
        return Verdict.INCONCLUSIVE
    return compute_verdict(findings, important_threshold, security_concerns)
