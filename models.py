"""Data models for reviewers, findings, outcomes and verdicts."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from diff_parser import DiffHunk


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------
class Severity(str, Enum):
    """How blocking an issue is. Totally ordered: nit < suggestion < important < blocking."""

    NIT = "nit"
    SUGGESTION = "suggestion"
    IMPORTANT = "important"
    BLOCKING = "blocking"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.NIT: 0,
    Severity.SUGGESTION: 1,
    Severity.IMPORTANT: 2,
    Severity.BLOCKING: 3,
}


# ---------------------------------------------------------------------------
# Reviewer identities
# ---------------------------------------------------------------------------
class ReviewerIdentity(str, Enum):
    """The closed set of reviewer roles a review can dispatch."""

    ARCHITECT = "architect"
    SKEPTIC = "skeptic"
    SIMPLIFIER = "simplifier"
    RULE_REVIEWER = "rule_reviewer"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def allowed_severities(self) -> frozenset[Severity]:
        return _ALLOWED_SEVERITIES[self]


_DISPLAY_NAMES: dict[ReviewerIdentity, str] = {
    ReviewerIdentity.ARCHITECT: "Architect",
    ReviewerIdentity.SKEPTIC: "Skeptic",
    ReviewerIdentity.SIMPLIFIER: "Simplifier",
    ReviewerIdentity.RULE_REVIEWER: "RuleReviewer",
}

_ALL_SEVERITIES = frozenset(Severity)

# Rule violations are either worth fixing or blocking; there are no rule nits.
_ALLOWED_SEVERITIES: dict[ReviewerIdentity, frozenset[Severity]] = {
    ReviewerIdentity.ARCHITECT: _ALL_SEVERITIES,
    ReviewerIdentity.SKEPTIC: _ALL_SEVERITIES,
    ReviewerIdentity.SIMPLIFIER: _ALL_SEVERITIES,
    ReviewerIdentity.RULE_REVIEWER: frozenset({Severity.IMPORTANT, Severity.BLOCKING}),
}

DEFAULT_REVIEWERS: tuple[ReviewerIdentity, ...] = tuple(ReviewerIdentity)


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------
class Location(BaseModel):
    """File path plus an optional line range. No lines means file-level."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    start_line: int | None = Field(default=None, ge=1)
    end_line: int | None = Field(default=None, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _default_end_line(cls, data):
        if (
            isinstance(data, dict)
            and data.get("start_line") is not None
            and data.get("end_line") is None
        ):
            data = {**data, "end_line": data["start_line"]}
        return data

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_line is None and self.end_line is not None:
            raise ValueError("end_line given without start_line")
        if (
            self.start_line is not None
            and self.end_line is not None
            and self.end_line < self.start_line
        ):
            raise ValueError(
                f"end_line ({self.end_line}) must be >= start_line ({self.start_line})"
            )
        return self

    @property
    def is_file_level(self) -> bool:
        return self.start_line is None

    def __str__(self) -> str:
        if self.start_line is None:
            return self.path
        if self.start_line == self.end_line:
            return f"{self.path}:{self.start_line}"
        return f"{self.path}:{self.start_line}-{self.end_line}"


class Finding(BaseModel):
    """A single issue reported by one reviewer."""

    model_config = ConfigDict(frozen=True)

    location: Location
    concern: str = Field(description="Short category tag, e.g. 'dead code'")
    description: str = Field(description="What the issue is")
    severity: Severity
    suggested_fix: str | None = Field(default=None, description="Suggested fix or code snippet")
    source_reviewer: ReviewerIdentity

    @field_validator("concern")
    @classmethod
    def _concern_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("concern must not be blank")
        return value

    @model_validator(mode="after")
    def _severity_in_vocabulary(self):
        if self.severity not in self.source_reviewer.allowed_severities:
            raise ValueError(
                f"{self.source_reviewer.display_name} may not emit "
                f"severity {self.severity.value!r}"
            )
        return self

    @property
    def path(self) -> str:
        return self.location.path


class DeduplicatedFinding(BaseModel):
    """One or more equivalent findings merged across reviewers."""

    model_config = ConfigDict(frozen=True)

    location: Location
    concern: str
    description: str
    severity: Severity
    suggested_fix: str | None = None
    reviewers: tuple[ReviewerIdentity, ...] = Field(min_length=1)
    sources: tuple[Finding, ...] = Field(min_length=1)

    @classmethod
    def from_finding(cls, finding: Finding) -> "DeduplicatedFinding":
        return cls(
            location=finding.location,
            concern=finding.concern,
            description=finding.description,
            severity=finding.severity,
            suggested_fix=finding.suggested_fix,
            reviewers=(finding.source_reviewer,),
            sources=(finding,),
        )

    @property
    def path(self) -> str:
        return self.location.path


# ---------------------------------------------------------------------------
# Outcomes & verdicts
# ---------------------------------------------------------------------------
class ReviewOutcome(BaseModel):
    """Terminal result of one reviewer task."""

    model_config = ConfigDict(frozen=True)

    reviewer: ReviewerIdentity
    status: Literal["success", "failure"]
    findings: tuple[Finding, ...] = ()
    failure_kind: Literal["timeout", "error"] | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    @model_validator(mode="after")
    def _check_shape(self):
        if self.status == "failure":
            if self.findings:
                raise ValueError("a failed outcome carries no findings")
            if not self.error or self.failure_kind is None:
                raise ValueError("a failed outcome needs an error and a failure_kind")
        elif self.error is not None or self.failure_kind is not None:
            raise ValueError("a successful outcome carries no error")
        return self

    @classmethod
    def success(cls, reviewer, findings=(), duration_seconds: float = 0.0) -> "ReviewOutcome":
        return cls(
            reviewer=reviewer,
            status="success",
            findings=tuple(findings),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failure(
        cls,
        reviewer,
        error: str,
        kind: Literal["timeout", "error"] = "error",
        duration_seconds: float = 0.0,
    ) -> "ReviewOutcome":
        return cls(
            reviewer=reviewer,
            status="failure",
            failure_kind=kind,
            error=error,
            duration_seconds=duration_seconds,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class Verdict(str, Enum):
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    NEEDS_DISCUSSION = "needs_discussion"
    INCONCLUSIVE = "inconclusive"


# ---------------------------------------------------------------------------
# Review context
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ReviewContext:
    """Immutable input bundle shared by every reviewer task."""

    diff: tuple[DiffHunk, ...] = ()
    files: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, object] = field(default_factory=dict)
    is_protocol_critical: bool = False

    def __post_init__(self):
        # Freeze containers so reviewers running in parallel cannot mutate them
        object.__setattr__(self, "diff", tuple(self.diff))
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def changed_paths(self) -> list[str]:
        """Paths touched by the diff, in diff order."""
        seen: dict[str, None] = {}
        for hunk in self.diff:
            seen.setdefault(hunk.path, None)
        return list(seen)

    def hunks_for(self, path: str) -> list[DiffHunk]:
        return [hunk for hunk in self.diff if hunk.path == path]


# ---------------------------------------------------------------------------
# LLM wire schema
# ---------------------------------------------------------------------------
class RawFinding(BaseModel):
    """A finding as returned by an LLM reviewer, before validation."""

    severity: str = Field(default="suggestion", description="nit, suggestion, important, blocking")
    concern: str = Field(default="general", description="Short category tag")
    line: int | None = Field(default=None, description="First line number in the file")
    end_line: int | None = Field(default=None, description="Last line number, if a range")
    description: str = Field(description="What the issue is")
    fix: str = Field(default="", description="Suggested fix or code snippet")


class ReviewerResponse(BaseModel):
    """Complete output from a single LLM reviewer call."""

    findings: list[RawFinding] = Field(default_factory=list)
    summary: str = Field(default="", description="Brief overall summary")
