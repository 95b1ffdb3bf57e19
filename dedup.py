"""Merge findings that several reviewers raised about the same location and concern."""

import logging
import re
from collections.abc import Iterable, Sequence

from config import DEFAULT_LINE_SLACK, DEFAULT_SIMILARITY_THRESHOLD
from models import (
    DEFAULT_REVIEWERS,
    DeduplicatedFinding,
    Finding,
    Location,
    ReviewerIdentity,
)
from reconcile import max_severity

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Similarity helpers
# ---------------------------------------------------------------------------
def _normalise(text: str) -> str:
    """Lower-case, collapse whitespace, strip punctuation for fuzzy matching."""
    text = text.lower().strip()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text)


def _words(text: str) -> set[str]:
    """Return the set of meaningful words (length >= 3) in *text*."""
    return {w for w in _normalise(text).split() if len(w) >= 3}


def is_similar(desc_a: str, desc_b: str, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> bool:
    """Check whether two descriptions are similar using word-overlap ratio.

    The ratio is shared words over the smaller word set, so the check is
    symmetric.
    """
    words_a = _words(desc_a)
    words_b = _words(desc_b)
    if not words_a or not words_b:
        return desc_a[:50] == desc_b[:50]
    overlap = len(words_a & words_b)
    smaller = min(len(words_a), len(words_b))
    return (overlap / smaller) >= threshold


def normalise_concern(tag: str) -> str:
    """'Race-Condition', 'race_condition' and 'race condition' are the same tag."""
    return _normalise(tag.replace("_", " ").replace("-", " "))


def locations_overlap(a: Location, b: Location, slack: int = 0) -> bool:
    """Same file and line ranges within *slack* lines of each other.

    File-level locations only overlap other file-level locations.
    """
    if a.path != b.path:
        return False
    if a.is_file_level or b.is_file_level:
        return a.is_file_level and b.is_file_level
    return a.start_line <= b.end_line + slack and b.start_line <= a.end_line + slack


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------
class _ReviewerRank:
    """Dispatch position of each reviewer; unknown reviewers sort after, by declaration."""

    def __init__(self, order: Sequence[ReviewerIdentity] | None):
        self.order = list(order) if order else list(DEFAULT_REVIEWERS)
        self._declared = list(ReviewerIdentity)

    def __call__(self, identity: ReviewerIdentity) -> int:
        if identity in self.order:
            return self.order.index(identity)
        return len(self.order) + self._declared.index(identity)


def _source_key(finding: Finding, rank: _ReviewerRank) -> tuple:
    loc = finding.location
    return (
        rank(finding.source_reviewer),
        loc.path,
        loc.start_line or 0,
        loc.end_line or 0,
        normalise_concern(finding.concern),
        finding.concern,
        finding.severity.rank,
        finding.description,
        finding.suggested_fix or "",
    )


def _output_key(finding: DeduplicatedFinding) -> tuple:
    loc = finding.location
    return (
        loc.path,
        loc.start_line or 0,
        loc.end_line or 0,
        normalise_concern(finding.concern),
        -finding.severity.rank,
        finding.description,
    )


def _linked(
    a: DeduplicatedFinding,
    b: DeduplicatedFinding,
    similarity_threshold: float,
    line_slack: int,
) -> bool:
    if not locations_overlap(a.location, b.location, line_slack):
        return False
    if normalise_concern(a.concern) == normalise_concern(b.concern):
        return True
    return is_similar(a.description, b.description, similarity_threshold)


def _groups(
    items: list[DeduplicatedFinding],
    similarity_threshold: float,
    line_slack: int,
) -> list[list[DeduplicatedFinding]]:
    """Connected components of the link relation (union-find per file)."""
    parent = list(range(len(items)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    by_path: dict[str, list[int]] = {}
    for i, item in enumerate(items):
        by_path.setdefault(item.path, []).append(i)

    for indices in by_path.values():
        for pos, i in enumerate(indices):
            for j in indices[pos + 1:]:
                if _linked(items[i], items[j], similarity_threshold, line_slack):
                    root_i, root_j = find(i), find(j)
                    if root_i != root_j:
                        parent[max(root_i, root_j)] = min(root_i, root_j)

    components: dict[int, list[DeduplicatedFinding]] = {}
    for i, item in enumerate(items):
        components.setdefault(find(i), []).append(item)
    return list(components.values())


def _pick_text(candidates: list[tuple[str, Finding]], rank: _ReviewerRank) -> tuple[str, Finding] | None:
    """Longest non-empty text; ties go to the earlier reviewer, then text order."""
    non_empty = [(text, src) for text, src in candidates if text and text.strip()]
    if not non_empty:
        return None
    return min(
        non_empty,
        key=lambda pair: (-len(pair[0]), rank(pair[1].source_reviewer), pair[0], _source_key(pair[1], rank)),
    )


def _merge(group: list[DeduplicatedFinding], rank: _ReviewerRank) -> DeduplicatedFinding:
    sources = sorted(
        (source for item in group for source in item.sources),
        key=lambda f: _source_key(f, rank),
    )

    path = group[0].path
    lined = [item.location for item in group if not item.location.is_file_level]
    if lined:
        location = Location(
            path=path,
            start_line=min(loc.start_line for loc in lined),
            end_line=max(loc.end_line for loc in lined),
        )
    else:
        location = Location(path=path)

    chosen = _pick_text([(s.description, s) for s in sources], rank)
    if chosen is None:
        description, representative = "", sources[0]
    else:
        description, representative = chosen

    fix = _pick_text([(s.suggested_fix or "", s) for s in sources], rank)
    reviewers = sorted({s.source_reviewer for s in sources}, key=rank)

    return DeduplicatedFinding(
        location=location,
        concern=representative.concern,
        description=description,
        severity=max_severity(s.severity for s in sources),
        suggested_fix=fix[0] if fix else None,
        reviewers=tuple(reviewers),
        sources=tuple(sources),
    )


def deduplicate(
    findings: Iterable[Finding | DeduplicatedFinding],
    reviewer_order: Sequence[ReviewerIdentity] | None = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    line_slack: int = DEFAULT_LINE_SLACK,
) -> list[DeduplicatedFinding]:
    """
    Merge equivalent findings into DeduplicatedFindings.

    Two findings are equivalent when they are in the same file, their line
    ranges overlap (within *line_slack* lines) and either their concern tags
    match after normalisation or their descriptions are similar. Equivalence
    is closed transitively, and merging repeats until nothing else links, so
    the result is a fixed point: deduplicating it again changes nothing.

    The result does not depend on the order of *findings*.

    Args:
        findings: Raw findings (or already deduplicated ones)
        reviewer_order: Dispatch order, used to order contributors and break ties
        similarity_threshold: Word-overlap ratio for similar descriptions
        line_slack: Extra distance at which line ranges still overlap

    Returns:
        Deduplicated findings sorted by path, line and concern
    """
    rank = _ReviewerRank(reviewer_order)
    items = [
        f if isinstance(f, DeduplicatedFinding) else DeduplicatedFinding.from_finding(f)
        for f in findings
    ]
    total = sum(len(item.sources) for item in items)

    while True:
        merged = [_merge(group, rank) for group in _groups(items, similarity_threshold, line_slack)]
        if len(merged) == len(items):
            break
        items = merged

    merged.sort(key=_output_key)
    if total != len(merged):
        logger.info("🔀 Merged %d finding(s) into %d", total, len(merged))
    return merged
