"""GitHub API client: fetch capability for review scopes, and review posting."""

import os
import logging
import functools
from dataclasses import dataclass, field

import requests
import requests.exceptions
from github import Auth, Github
from github.GithubException import GithubException

from config import validate_repo, with_retry
from errors import FetchError

logger = logging.getLogger(__name__)

_API_URL = "https://api.github.com"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass
class PRMetadata:
    """What the reviewers are told about a PR besides its diff."""

    number: int
    title: str
    author: str
    draft: bool
    state: str
    base_branch: str
    head_branch: str
    head_sha: str
    description: str | None
    commit_messages: list[str] = field(default_factory=list)


@dataclass
class PullRequestSnapshot:
    """Everything needed to review a PR: metadata plus its raw diff."""

    metadata: PRMetadata
    diff: str


@dataclass
class ReviewComment:
    """An inline comment anchored to a line of the new file version."""

    path: str
    line: int
    body: str
    side: str = "RIGHT"  # LEFT would target the old version

    def as_payload(self) -> dict:
        return {"path": self.path, "line": self.line, "side": self.side, "body": self.body}


@dataclass
class ReviewSubmission:
    """Rendered report, GitHub review event and inline comments for one PR."""

    body: str = ""
    event: str = "COMMENT"  # REQUEST_CHANGES or COMMENT; the panel never approves
    comments: list[ReviewComment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Cached GitHub client
# ---------------------------------------------------------------------------
def _get_token() -> str:
    token = os.getenv("GITHUB_TOKEN")
    if not token:
        raise ValueError(
            "GITHUB_TOKEN not found. Set it in .env file.\n"
            "Get your token at: https://github.com/settings/tokens"
        )
    return token


@functools.lru_cache(maxsize=1)
def get_github_client() -> Github:
    """Create or return a cached GitHub client."""
    return Github(auth=Auth.Token(_get_token()))


def _api_message(e: GithubException) -> str:
    data = getattr(e, "data", None)
    if isinstance(data, dict):
        return data.get("message", str(e))
    return str(e)


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------
def fetch_pr_metadata(repo: str, pr_number: int) -> PRMetadata:
    """
    Fetch title, branches, head commit and commit messages of a PR.

    Raises:
        FetchError: If the PR does not exist or GitHub refuses access
    """
    try:
        pr = _get_pull(repo, pr_number)
        return PRMetadata(
            number=pr.number,
            title=pr.title,
            author=pr.user.login,
            draft=pr.draft,
            state=pr.state,
            base_branch=pr.base.ref,
            head_branch=pr.head.ref,
            head_sha=pr.head.sha,
            description=pr.body,
            commit_messages=[c.commit.message for c in pr.get_commits()],
        )
    except GithubException as e:
        if e.status == 404:
            raise FetchError(f"PR #{pr_number} not found in {repo}") from e
        raise FetchError(f"GitHub API error: {_api_message(e)}") from e


@with_retry(
    max_retries=3,
    base_delay=1.0,
    retryable=(
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
    ),
)
def _fetch_diff(url: str, not_found: str) -> str:
    headers = {
        "Authorization": f"token {_get_token()}",
        "Accept": "application/vnd.github.v3.diff",
    }

    response = requests.get(url, headers=headers, timeout=30)

    if response.status_code == 404:
        raise FetchError(not_found)
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise FetchError(f"GitHub API error: {e}") from e

    return response.text


def fetch_raw_diff(repo: str, pr_number: int) -> str:
    """
    Fetch the raw unified diff for the entire PR.

    This uses the REST API directly because PyGithub doesn't expose
    the raw diff format. The diff includes all files in one string.
    """
    repo = validate_repo(repo)
    return _fetch_diff(
        f"{_API_URL}/repos/{repo}/pulls/{pr_number}",
        f"PR #{pr_number} not found in {repo}",
    )


def fetch_compare_diff(repo: str, base: str, head: str) -> str:
    """Fetch the raw unified diff between two refs (three-dot comparison)."""
    repo = validate_repo(repo)
    return _fetch_diff(
        f"{_API_URL}/repos/{repo}/compare/{base}...{head}",
        f"Cannot compare {base}...{head} in {repo}",
    )


def fetch_default_branch(repo: str) -> str | None:
    """Return the repository's default branch, or None if it cannot be determined."""
    repo = validate_repo(repo)
    try:
        return get_github_client().get_repo(repo).default_branch or None
    except GithubException as e:
        logger.warning("Could not read default branch of %s: %s", repo, _api_message(e))
        return None


def fetch_file_content(repo: str, path: str, ref: str) -> str | None:
    """Return the content of *path* at *ref*, or None if it is missing or not a file."""
    repo = validate_repo(repo)
    try:
        contents = get_github_client().get_repo(repo).get_contents(path, ref=ref)
    except GithubException as e:
        logger.warning("Could not fetch %s@%s: %s", path, ref, _api_message(e))
        return None

    if isinstance(contents, list):
        return None
    return contents.decoded_content.decode("utf-8", errors="replace")


class GitHubFetcher:
    """Fetch capability backed by the GitHub API."""

    def fetch_pull_request(self, repo: str, pr_number: int) -> PullRequestSnapshot:
        return PullRequestSnapshot(
            metadata=fetch_pr_metadata(repo, pr_number),
            diff=fetch_raw_diff(repo, pr_number),
        )

    def fetch_comparison(self, repo: str, base: str, head: str) -> str:
        return fetch_compare_diff(repo, base, head)

    def default_branch(self, repo: str) -> str | None:
        return fetch_default_branch(repo)

    def fetch_file(self, repo: str, path: str, ref: str) -> str | None:
        return fetch_file_content(repo, path, ref)


# ---------------------------------------------------------------------------
# Write operations
# ---------------------------------------------------------------------------
def _get_pull(repo: str, pr_number: int):
    return get_github_client().get_repo(validate_repo(repo)).get_pull(pr_number)


def post_pr_comment(repo: str, pr_number: int, body: str) -> int:
    """
    Post *body* to the PR conversation and return the comment ID.

    Raises:
        ValueError: If GitHub rejects the comment
    """
    try:
        comment = _get_pull(repo, pr_number).create_issue_comment(body)
    except GithubException as e:
        raise ValueError(f"Failed to post comment: {_api_message(e)}") from e

    logger.info("💬 Posted comment %d on PR #%d", comment.id, pr_number)
    return comment.id


def post_review(repo: str, pr_number: int, review: ReviewSubmission) -> int:
    """
    Submit *review* (summary, event and inline comments) against the PR head.

    Returns:
        Review ID

    Raises:
        ValueError: If GitHub rejects the review, e.g. a comment on a line
            outside the diff
    """
    try:
        pr = _get_pull(repo, pr_number)
        submitted = pr.create_review(
            commit=pr.get_commits().reversed[0],
            body=review.body,
            event=review.event,
            comments=[comment.as_payload() for comment in review.comments],
        )
    except GithubException as e:
        message = _api_message(e)
        logger.error("Failed to post review: %s", message)
        data = getattr(e, "data", None)
        for error in data.get("errors", []) if isinstance(data, dict) else []:
            logger.error("  - %s", error)
        raise ValueError(f"Failed to post review: {message}") from e

    logger.info(
        "📝 Posted %s review %d on PR #%d with %d inline comment(s)",
        review.event,
        submitted.id,
        pr_number,
        len(review.comments),
    )
    return submitted.id


def _inline_fallback_body(review: ReviewSubmission) -> str:
    parts = [review.body] if review.body else []
    if review.comments:
        parts.append(
            "## Inline Comments\n\n_Could not post as inline comments. Listing here instead:_"
        )
        parts.extend(
            f"**{comment.path}** (line {comment.line}):\n> {comment.body}"
            for comment in review.comments
        )
    return "\n\n".join(parts)


def post_review_with_fallback(
    repo: str,
    pr_number: int,
    review: ReviewSubmission,
) -> dict:
    """
    Post *review*; if GitHub rejects it, post everything as one PR comment.

    A plain COMMENT review without inline comments goes straight to the PR
    conversation. Anything carrying a verdict (REQUEST_CHANGES) goes through
    the review API so the verdict is recorded.

    Returns:
        Dict with 'review_id' or 'comment_id', plus a 'fallback' flag
    """
    repo = validate_repo(repo)

    if not review.comments and review.event == "COMMENT":
        result: dict = {"fallback": False}
        if review.body:
            result["comment_id"] = post_pr_comment(repo, pr_number, review.body)
        return result

    try:
        return {"fallback": False, "review_id": post_review(repo, pr_number, review)}
    except ValueError as e:
        logger.warning("Review failed, falling back to general comment: %s", e)

    comment_id = post_pr_comment(repo, pr_number, _inline_fallback_body(review))
    return {"fallback": True, "comment_id": comment_id}
