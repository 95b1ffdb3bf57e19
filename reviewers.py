"""Reviewer tasks - one uniform contract for every reviewer, plus the Gemini-backed reviewer."""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from pydantic import ValidationError

from config import (
    DEFAULT_MODEL,
    USE_MOCK,
    ReviewSettings,
    call_gemini,
    parse_llm_json,
)
from diff_parser import extract_hunk_code
from errors import ReviewCancelled, ReviewerError
from mock_data import MOCK_RESPONSES
from models import (
    Finding,
    Location,
    ReviewContext,
    ReviewerIdentity,
    ReviewerResponse,
    ReviewOutcome,
)
from prompts import build_prompt

logger = logging.getLogger(__name__)

# Token limits (conservative estimates)
# Gemini 2.5 Flash has ~1M context, but we keep chunks small for better results
MAX_LINES_PER_CHUNK = 200  # Max lines to send in one request
MAX_CHARS_PER_CHUNK = 15000  # Max characters (~3750 tokens)
MAX_SUMMARY_CHARS = 2000  # PR title + description passed to reviewers

# A reviewer capability: ReviewContext -> findings, or raise
Capability = Callable[[ReviewContext], Sequence[Finding]]


# ---------------------------------------------------------------------------
# Reviewer task contract
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ReviewerTask:
    """One reviewer's invocation: an identity bound to the capability backing it."""

    identity: ReviewerIdentity
    capability: Capability
    timeout: float | None = None  # None = dispatcher default

    def run(self, context: ReviewContext) -> ReviewOutcome:
        """Invoke the capability and turn whatever happens into a ReviewOutcome.

        Never raises for capability errors; timeouts are the dispatcher's job.
        """
        name = self.identity.display_name
        started = time.monotonic()
        try:
            findings = list(self.capability(context))
            _check_findings(self.identity, findings)
        except ReviewCancelled:
            raise
        except Exception as e:
            elapsed = time.monotonic() - started
            logger.error("   ❌ %s failed after %.1fs: %s", name, elapsed, e)
            return ReviewOutcome.failure(
                self.identity, _describe(e), kind="error", duration_seconds=elapsed
            )

        elapsed = time.monotonic() - started
        logger.info("   ✅ %s found %d issue(s) in %.1fs", name, len(findings), elapsed)
        return ReviewOutcome.success(self.identity, findings, duration_seconds=elapsed)


def _describe(exc: Exception) -> str:
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _check_findings(identity: ReviewerIdentity, findings: list) -> None:
    for finding in findings:
        if not isinstance(finding, Finding):
            raise ReviewerError(
                f"capability returned {type(finding).__name__}, expected Finding"
            )
        if finding.source_reviewer != identity:
            raise ReviewerError(
                f"finding attributed to {finding.source_reviewer.display_name} "
                f"returned by {identity.display_name}"
            )


# ---------------------------------------------------------------------------
# Chunking helpers
# ---------------------------------------------------------------------------
def chunk_code(
    code: str,
    max_lines: int = MAX_LINES_PER_CHUNK,
    max_chars: int = MAX_CHARS_PER_CHUNK,
) -> list[str]:
    """
    Split large code into reviewable chunks.

    Each chunk preserves line numbers from the original.

    Args:
        code: Code string with line numbers (e.g., "   1| def foo():")
        max_lines: Maximum lines per chunk
        max_chars: Maximum characters per chunk

    Returns:
        List of code chunks, each small enough for one API call
    """
    lines = code.split("\n")

    if len(lines) <= max_lines and len(code) <= max_chars:
        return [code]

    chunks: list[str] = []
    current_chunk: list[str] = []
    current_chars = 0

    for line in lines:
        line_with_newline = line + "\n"

        would_exceed_lines = len(current_chunk) >= max_lines
        would_exceed_chars = current_chars + len(line_with_newline) > max_chars

        if current_chunk and (would_exceed_lines or would_exceed_chars):
            chunks.append("\n".join(current_chunk))
            current_chunk = []
            current_chars = 0

        current_chunk.append(line)
        current_chars += len(line_with_newline)

    if current_chunk:
        chunks.append("\n".join(current_chunk))

    return chunks


def to_findings(
    response: ReviewerResponse,
    path: str,
    identity: ReviewerIdentity,
) -> list[Finding]:
    """Convert an LLM response into validated Findings, dropping invalid ones."""
    findings: list[Finding] = []

    for raw in response.findings:
        # Line 0 or below means a file-level issue
        start = raw.line if raw.line is not None and raw.line > 0 else None
        end = raw.end_line if start is not None and raw.end_line and raw.end_line > 0 else None
        try:
            findings.append(
                Finding(
                    location=Location(path=path, start_line=start, end_line=end),
                    concern=raw.concern or "general",
                    description=raw.description,
                    severity=raw.severity.strip().lower(),
                    suggested_fix=raw.fix or None,
                    source_reviewer=identity,
                )
            )
        except ValidationError as e:
            logger.warning(
                "%s: dropping invalid finding in %s: %s",
                identity.display_name,
                path,
                e.errors()[0]["msg"] if e.errors() else e,
            )

    return findings


# ---------------------------------------------------------------------------
# Gemini-backed reviewer
# ---------------------------------------------------------------------------
class GeminiReviewer:
    """
    Reviewer capability that asks Gemini to review every changed file.

    The reviewer's checklist comes from ``prompts.CHECKLISTS``; large files
    are split into chunks. Any malformed response fails the whole reviewer.
    If *cancel_event* is set, the reviewer stops before its next API call.
    """

    def __init__(
        self,
        identity: ReviewerIdentity,
        model: str = DEFAULT_MODEL,
        cancel_event: threading.Event | None = None,
    ):
        self.identity = identity
        self.model = model
        self.cancel_event = cancel_event

    def __call__(self, context: ReviewContext) -> list[Finding]:
        findings: list[Finding] = []
        summary = _change_summary(context)

        for path in context.changed_paths:
            code = extract_hunk_code(context.hunks_for(path), include_line_numbers=True)
            if not code.strip():
                continue

            chunks = chunk_code(code)
            if len(chunks) > 1:
                logger.info(
                    "  %s: large file %s - splitting into %d chunks",
                    self.identity.display_name,
                    path,
                    len(chunks),
                )

            for i, chunk in enumerate(chunks, 1):
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise ReviewCancelled(f"{self.identity.display_name} cancelled")
                chunk_info = f"chunk {i}/{len(chunks)}" if len(chunks) > 1 else ""
                response = self._review_chunk(chunk, path, chunk_info, context, summary)
                findings.extend(to_findings(response, path, self.identity))

        return findings

    def _review_chunk(
        self,
        code: str,
        path: str,
        chunk_info: str,
        context: ReviewContext,
        summary: str,
    ) -> ReviewerResponse:
        if USE_MOCK:
            text = MOCK_RESPONSES[self.identity]
        else:
            prompt = build_prompt(
                self.identity,
                code,
                path,
                chunk_info=chunk_info,
                protocol_critical=context.is_protocol_critical,
                change_summary=summary,
            )
            text = call_gemini(prompt, self.model)

        response = parse_llm_json(text)
        if response is None:
            raise ReviewerError(f"malformed response while reviewing {path}")
        return response


def _change_summary(context: ReviewContext) -> str:
    title = str(context.metadata.get("title") or "")
    description = str(context.metadata.get("description") or "")
    summary = "\n".join(part for part in (title, description) if part)
    return summary[:MAX_SUMMARY_CHARS]


def build_panel(
    settings: ReviewSettings,
    cancel_event: threading.Event | None = None,
    capabilities: dict[ReviewerIdentity, Capability] | None = None,
) -> list[ReviewerTask]:
    """Create one ReviewerTask per configured reviewer, in dispatch order.

    *capabilities* overrides the Gemini reviewer for specific identities.
    """
    capabilities = capabilities or {}
    return [
        ReviewerTask(
            identity=identity,
            capability=capabilities.get(identity)
            or GeminiReviewer(identity, model=settings.model, cancel_event=cancel_event),
        )
        for identity in settings.reviewers
    ]
