import logging

import pytest

from models import DeduplicatedFinding, ReviewerIdentity, Severity
from reconcile import max_severity, reconcile_severities


def test_max_severity():
    assert max_severity([Severity.NIT, Severity.BLOCKING, Severity.IMPORTANT]) is Severity.BLOCKING
    assert max_severity(iter([Severity.SUGGESTION])) is Severity.SUGGESTION


def test_max_severity_rejects_empty():
    with pytest.raises(ValueError):
        max_severity([])


def test_corrects_understated_severity(make_finding, caplog):
    nit = make_finding(reviewer=ReviewerIdentity.SIMPLIFIER, severity=Severity.NIT)
    blocking = make_finding(reviewer=ReviewerIdentity.ARCHITECT, severity=Severity.BLOCKING)
    understated = DeduplicatedFinding(
        location=nit.location,
        concern=nit.concern,
        description=nit.description,
        severity=Severity.NIT,
        reviewers=(ReviewerIdentity.ARCHITECT, ReviewerIdentity.SIMPLIFIER),
        sources=(blocking, nit),
    )

    with caplog.at_level(logging.WARNING):
        (reconciled,) = reconcile_severities([understated])

    assert reconciled.severity is Severity.BLOCKING
    assert understated.severity is Severity.NIT
    assert "corrected from nit to blocking" in caplog.text


def test_leaves_consistent_findings_alone(make_merged):
    finding = make_merged(severity=Severity.IMPORTANT)
    assert reconcile_severities([finding])[0] is finding
