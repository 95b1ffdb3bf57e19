"""Resolve a review scope into the immutable ReviewContext handed to reviewers."""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from config import validate_repo
from diff_parser import filter_files, parse_diff, parse_hunks
from errors import AmbiguousScope
from models import ReviewContext

logger = logging.getLogger(__name__)

# Paths and keywords that mark consensus-sensitive code. The flag is advisory:
# it is computed here once and handed to reviewers unchanged.
PROTOCOL_CRITICAL_PATH_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(^|/)consensus/",
        r"(^|/)protocol/",
        r"(^|/)crypto/",
        r"(^|/)p2p/",
        r"(^|/)state_transition",
        r"(^|/)fork_choice",
        r"(^|/)validator",
        r"(^|/)ledger/",
    )
)

PROTOCOL_CRITICAL_KEYWORDS: tuple[str, ...] = (
    "consensus",
    "fork choice",
    "fork_choice",
    "finality",
    "state root",
    "block header",
    "signature verification",
    "verify_signature",
    "slashing",
)


# ---------------------------------------------------------------------------
# Scope & fetch capability
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ReviewScope:
    """What to review: a PR, a base...head range, or an already materialised diff."""

    repo: str | None = None
    pr_number: int | None = None
    base: str | None = None
    head: str | None = None
    diff_text: str | None = None
    # Only used with diff_text: full contents of changed files, if known
    files: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, object] = field(default_factory=dict)


class SourceFetcher(Protocol):
    """Capability that materialises diffs and file contents from a source host."""

    def fetch_pull_request(self, repo: str, pr_number: int): ...

    def fetch_comparison(self, repo: str, base: str, head: str) -> str: ...

    def default_branch(self, repo: str) -> str | None: ...

    def fetch_file(self, repo: str, path: str, ref: str) -> str | None: ...


@dataclass(frozen=True)
class _ResolvedScope:
    kind: str  # "pr", "range" or "diff"
    repo: str | None = None
    pr_number: int | None = None
    base: str | None = None
    head: str | None = None


def resolve_scope(scope: ReviewScope, fetcher: SourceFetcher | None = None) -> _ResolvedScope:
    """Decide unambiguously what *scope* refers to, or raise AmbiguousScope."""
    if scope.diff_text is not None:
        if scope.pr_number is not None or scope.base or scope.head:
            raise AmbiguousScope("a diff was supplied together with a PR or ref range")
        return _ResolvedScope(kind="diff", repo=scope.repo)

    if scope.pr_number is not None:
        if scope.base or scope.head:
            raise AmbiguousScope("both a PR number and a ref range were given")
        if not scope.repo:
            raise AmbiguousScope(f"PR #{scope.pr_number} given without a repository")
        return _ResolvedScope(kind="pr", repo=validate_repo(scope.repo), pr_number=scope.pr_number)

    if scope.head:
        if not scope.repo:
            raise AmbiguousScope(f"ref {scope.head!r} given without a repository")
        repo = validate_repo(scope.repo)
        base = scope.base
        if not base:
            base = fetcher.default_branch(repo) if fetcher is not None else None
            if not base:
                raise AmbiguousScope("no base branch specified and none inferable")
            logger.info("Using default branch %r as review base", base)
        if base == scope.head:
            raise AmbiguousScope(f"base and head are both {base!r}")
        return _ResolvedScope(kind="range", repo=repo, base=base, head=scope.head)

    if scope.base:
        raise AmbiguousScope(f"base {scope.base!r} given without a head ref or PR")

    raise AmbiguousScope("no PR, ref range or diff given")


# ---------------------------------------------------------------------------
# Protocol-critical heuristic
# ---------------------------------------------------------------------------
def is_protocol_critical(paths: list[str], contents: Mapping[str, str] | None = None) -> bool:
    """Return True if any changed path or file content looks consensus-sensitive."""
    for path in paths:
        if any(pattern.search(path) for pattern in PROTOCOL_CRITICAL_PATH_PATTERNS):
            return True

    for text in (contents or {}).values():
        lowered = text.lower()
        if any(keyword in lowered for keyword in PROTOCOL_CRITICAL_KEYWORDS):
            return True

    return False


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------
def build_context(
    scope: ReviewScope,
    fetcher: SourceFetcher | None = None,
    include_deletions: bool = False,
) -> ReviewContext:
    """
    Build the ReviewContext for *scope*.

    Args:
        scope: What to review
        fetcher: Fetch capability; required for PR and ref-range scopes
        include_deletions: Also review deleted files and pure deletions

    Returns:
        ReviewContext shared read-only by every reviewer

    Raises:
        AmbiguousScope: If the scope cannot be resolved unambiguously
    """
    resolved = resolve_scope(scope, fetcher)
    metadata: dict[str, object] = dict(scope.metadata)

    if resolved.kind != "diff" and fetcher is None:
        raise ValueError(f"A fetcher is required to review a {resolved.kind} scope")

    if resolved.kind == "pr":
        logger.info("📥 Fetching PR #%d from %s...", resolved.pr_number, resolved.repo)
        snapshot = fetcher.fetch_pull_request(resolved.repo, resolved.pr_number)
        diff_text = snapshot.diff
        pr = snapshot.metadata
        ref = pr.head_sha or pr.head_branch
        metadata.update(
            repo=resolved.repo,
            pr_number=pr.number,
            title=pr.title,
            description=pr.description or "",
            author=pr.author,
            base_branch=pr.base_branch,
            head_branch=pr.head_branch,
            commit_messages=tuple(pr.commit_messages),
        )
    elif resolved.kind == "range":
        logger.info(
            "📥 Fetching %s...%s from %s...", resolved.base, resolved.head, resolved.repo
        )
        diff_text = fetcher.fetch_comparison(resolved.repo, resolved.base, resolved.head)
        ref = resolved.head
        metadata.update(repo=resolved.repo, base_branch=resolved.base, head_branch=resolved.head)
    else:
        diff_text = scope.diff_text
        ref = None
        if resolved.repo:
            metadata.setdefault("repo", resolved.repo)

    all_files = parse_diff(diff_text) if diff_text.strip() else []
    reviewable = filter_files(all_files, include_deletions=include_deletions)
    paths = [f.filename for f in reviewable]
    logger.info("   Found %d files, %d to review", len(all_files), len(paths))

    hunks = parse_hunks(diff_text, paths=set(paths)) if paths else []

    if resolved.kind == "diff":
        files = {path: scope.files[path] for path in paths if path in scope.files}
    else:
        files = {}
        for file in reviewable:
            if file.status == "deleted":
                continue
            content = fetcher.fetch_file(resolved.repo, file.filename, ref)
            if content is None:
                logger.warning("   Could not fetch %s, reviewing diff only", file.filename)
                continue
            files[file.filename] = content

    critical = is_protocol_critical(paths, files)
    if critical:
        logger.info("   ⚠️  Change touches protocol-critical code")

    return ReviewContext(
        diff=tuple(hunks),
        files=files,
        metadata=metadata,
        is_protocol_critical=critical,
    )
