"""
PRPanel Agent - LangGraph-based review pipeline

This module implements the review workflow as a state machine using LangGraph.
The review context is built once, a panel of reviewers (Architect, Skeptic,
Simplifier, RuleReviewer) runs in parallel against it, their findings are
deduplicated and reconciled, a verdict is derived, and the report is
optionally posted to GitHub.
"""

import logging
import threading
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph

from config import ReviewSettings
from context_builder import ReviewScope, SourceFetcher, build_context
from dedup import deduplicate
from diff_parser import anchor_to_diff, build_line_mapping
from dispatcher import Dispatcher
from errors import AmbiguousScope, FetchError
from github_client import (
    GitHubFetcher,
    ReviewComment,
    ReviewSubmission,
    post_review_with_fallback,
)
from models import (
    DeduplicatedFinding,
    ReviewContext,
    ReviewerIdentity,
    ReviewOutcome,
    Verdict,
)
from reconcile import reconcile_severities
from report import (
    SEVERITY_ICONS,
    ReviewReport,
    build_report,
    render_markdown,
    verdict_to_review_event,
)
from reviewers import Capability, build_panel
from verdict import decide_verdict

logger = logging.getLogger(__name__)


# =============================================================================
# STATE DEFINITION
# =============================================================================
@dataclass
class ReviewState:
    """
    State that flows through the review graph.

    Each node can read any field and return updates to specific fields.
    LangGraph automatically merges the updates into the state.
    """

    # Input (required)
    scope: ReviewScope
    post: bool = False  # Post the report to the PR when done

    # Intermediate data (populated by nodes)
    context: ReviewContext | None = None
    outcomes: list[ReviewOutcome] = field(default_factory=list)
    findings: list[DeduplicatedFinding] = field(default_factory=list)
    verdict: Verdict | None = None

    # Output
    report: ReviewReport | None = None
    review_posted: bool = False  # Whether we posted to GitHub
    review_id: int | None = None  # GitHub review ID if posted
    error: str | None = None  # Error message if something failed


# =============================================================================
# HELPERS
# =============================================================================
def _get(state, key: str, default=None):
    # LangGraph may pass state as dict or dataclass
    if isinstance(state, dict):
        return state.get(key, default)
    return getattr(state, key, default)


def format_inline_comment(finding: DeduplicatedFinding) -> str:
    """Markdown body for a finding posted next to the code."""
    body = (
        f"{SEVERITY_ICONS[finding.severity]} **{finding.severity.value}** "
        f"({finding.concern}): {finding.description}"
    )
    if finding.suggested_fix:
        body += f"\n\n💡 **Fix:** {finding.suggested_fix}"
    body += "\n\n_Raised by: " + ", ".join(r.display_name for r in finding.reviewers) + "_"
    return body


def build_inline_comments(
    findings: list[DeduplicatedFinding],
    context: ReviewContext,
) -> list[ReviewComment]:
    """Inline comments for findings that map onto lines present in the diff."""
    mappings = build_line_mapping(list(context.diff))
    candidates = [
        {"path": f.path, "line": f.location.end_line, "body": format_inline_comment(f)}
        for f in findings
        if not f.location.is_file_level
    ]
    anchored, unanchored = anchor_to_diff(candidates, mappings)
    if unanchored:
        logger.info("   %d finding(s) only appear in the summary", len(unanchored))
    return [ReviewComment(path=c["path"], line=c["line"], body=c["body"]) for c in anchored]


# =============================================================================
# GRAPH CONSTRUCTION
# =============================================================================
def build_review_graph(
    settings: ReviewSettings | None = None,
    fetcher: SourceFetcher | None = None,
    capabilities: dict[ReviewerIdentity, Capability] | None = None,
    cancel_event: threading.Event | None = None,
) -> StateGraph:
    """Build the review workflow graph.

    Args:
        settings: Review options (defaults from the environment)
        fetcher: Source fetch capability (defaults to GitHub)
        capabilities: Per-reviewer capability overrides (default: Gemini)
        cancel_event: Set it to abort a running review; no report is produced
    """
    settings = settings or ReviewSettings.from_env()
    fetcher = fetcher or GitHubFetcher()

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------
    def build_context_node(state: ReviewState) -> dict:
        """
        Node 1: Resolve the scope and build the shared ReviewContext.

        Reads: scope
        Updates: context, error
        """
        try:
            return {"context": build_context(state.scope, fetcher)}
        except AmbiguousScope:
            # Ask the caller; never guess what to review
            raise
        except Exception as e:
            logger.error("Failed to build review context: %s", e)
            return {"error": str(e)}

    def dispatch_node(state: ReviewState) -> dict:
        """
        Node 2: Fan out to every reviewer and join all outcomes.

        Reads: context
        Updates: outcomes
        """
        tasks = build_panel(settings, cancel_event=cancel_event, capabilities=capabilities)
        dispatcher = Dispatcher(tasks, timeout=settings.task_timeout)
        return {"outcomes": dispatcher.dispatch(state.context, cancel_event=cancel_event)}

    def merge_findings(state: ReviewState) -> dict:
        """
        Node 3: Deduplicate findings across reviewers and reconcile severities.

        Reads: outcomes
        Updates: findings
        """
        logger.info("🔀 Merging findings from all reviewers...")
        raw = [f for outcome in state.outcomes if outcome.succeeded for f in outcome.findings]
        merged = deduplicate(
            raw,
            reviewer_order=settings.reviewers,
            similarity_threshold=settings.similarity_threshold,
            line_slack=settings.line_slack,
        )
        return {"findings": reconcile_severities(merged)}

    def verdict_node(state: ReviewState) -> dict:
        """
        Node 4: Derive the verdict and assemble the report.

        Reads: findings, outcomes, context
        Updates: verdict, report
        """
        verdict = decide_verdict(
            state.findings,
            state.outcomes,
            important_threshold=settings.important_threshold,
            security_concerns=settings.security_concerns,
        )
        report = build_report(state.findings, verdict, state.outcomes, state.context)
        logger.info("⚖️  Verdict: %s - %s", verdict.value, report.summary)
        return {"verdict": verdict, "report": report}

    def post_review_node(state: ReviewState) -> dict:
        """
        Node 5: Post the report to the pull request.

        Reads: scope, report, findings, context
        Updates: review_posted, review_id, error
        """
        logger.info("📝 Posting review to GitHub...")
        scope = state.scope

        try:
            review = ReviewSubmission(
                body=render_markdown(state.report),
                event=verdict_to_review_event(state.report.verdict),
                comments=build_inline_comments(state.findings, state.context),
            )
            result = post_review_with_fallback(scope.repo, scope.pr_number, review)
            logger.info("   ✅ Posted review (%s)", result)
            return {"review_posted": True, "review_id": result.get("review_id")}

        except Exception as e:
            logger.error("   ❌ Failed to post review: %s", e)
            return {"review_posted": False, "error": str(e)}

    # -------------------------------------------------------------------------
    # Decision functions (for conditional edges)
    # -------------------------------------------------------------------------
    def should_dispatch(state: ReviewState) -> str:
        if _get(state, "context") is None:
            logger.info("🔀 Decision: no review context -> ending")
            return "end"
        return "dispatch"

    def should_post_review(state: ReviewState) -> str:
        scope = _get(state, "scope")
        if not _get(state, "post"):
            return "end"
        if scope is None or not scope.repo or scope.pr_number is None:
            logger.warning("🔀 Decision: posting needs a PR scope -> ending")
            return "end"
        logger.info("🔀 Decision: posting review to %s #%d", scope.repo, scope.pr_number)
        return "post_review"

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------
    graph = StateGraph(ReviewState)

    graph.add_node("build_context", build_context_node)
    graph.add_node("dispatch_reviewers", dispatch_node)
    graph.add_node("merge_findings", merge_findings)
    graph.add_node("decide_verdict", verdict_node)
    graph.add_node("post_review", post_review_node)

    graph.add_edge(START, "build_context")
    graph.add_conditional_edges(
        "build_context",
        should_dispatch,
        {"dispatch": "dispatch_reviewers", "end": END},
    )
    # Merging starts only after the dispatcher has joined every reviewer
    graph.add_edge("dispatch_reviewers", "merge_findings")
    graph.add_edge("merge_findings", "decide_verdict")
    graph.add_conditional_edges(
        "decide_verdict",
        should_post_review,
        {"post_review": "post_review", "end": END},
    )
    graph.add_edge("post_review", END)

    return graph


def create_agent(**kwargs):
    """Create and compile the review agent. Accepts build_review_graph's arguments."""
    return build_review_graph(**kwargs).compile()


def run_review(
    scope: ReviewScope,
    settings: ReviewSettings | None = None,
    fetcher: SourceFetcher | None = None,
    capabilities: dict[ReviewerIdentity, Capability] | None = None,
    post: bool = False,
    cancel_event: threading.Event | None = None,
) -> ReviewReport:
    """
    Review *scope* end to end and return the report.

    Raises:
        AmbiguousScope: The scope needs clarification; nothing was dispatched
        ReviewCancelled: *cancel_event* was set; no report is produced
        FetchError: The change could not be fetched, so nothing was reviewed
    """
    agent = create_agent(
        settings=settings,
        fetcher=fetcher,
        capabilities=capabilities,
        cancel_event=cancel_event,
    )
    final_state = agent.invoke(ReviewState(scope=scope, post=post))

    report = final_state.get("report")
    error = final_state.get("error")
    if report is None:
        raise FetchError(error or "review produced no report")
    if error:
        logger.error("❌ %s", error)
    return report
