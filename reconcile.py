"""Severity reconciliation: a merged finding is as severe as its most severe source."""

import logging
from collections.abc import Iterable

from models import DeduplicatedFinding, Severity

logger = logging.getLogger(__name__)


def max_severity(severities: Iterable[Severity]) -> Severity:
    """Return the highest severity. Raises ValueError on empty input."""
    highest: Severity | None = None
    for severity in severities:
        if highest is None or severity > highest:
            highest = severity
    if highest is None:
        raise ValueError("cannot reconcile an empty set of severities")
    return highest


def reconcile_severities(findings: Iterable[DeduplicatedFinding]) -> list[DeduplicatedFinding]:
    """
    Set each finding's severity to the maximum of its contributing findings.

    Any reviewer marking a location ``blocking`` makes the merged finding
    ``blocking``, however many other reviewers rated it lower. Findings that
    already satisfy this are returned unchanged.
    """
    reconciled: list[DeduplicatedFinding] = []

    for finding in findings:
        expected = max_severity(source.severity for source in finding.sources)
        if finding.severity != expected:
            logger.warning(
                "Severity of %s (%s) corrected from %s to %s",
                finding.location,
                finding.concern,
                finding.severity.value,
                expected.value,
            )
            finding = finding.model_copy(update={"severity": expected})
        reconciled.append(finding)

    return reconciled
