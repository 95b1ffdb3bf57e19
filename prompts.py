"""Prompt templates and checklists for the reviewer panel."""

from models import ReviewerIdentity

# =============================================================================
# SHARED PREAMBLE - injected into every reviewer prompt
# =============================================================================

_SEVERITY_GUIDE = (
    "Severity definitions (use these exactly):\n"
    "- blocking: Must be fixed before merge"
    " (broken behaviour, data loss, security hole, rule violation that breaks the build)\n"
    "- important: Should be fixed in this change; will cause bugs or real maintenance cost\n"
    "- suggestion: Worth considering; improves the code but is optional\n"
    "- nit: Cosmetic preference, minor polish\n"
)

_DIFF_CONTEXT = (
    "This code comes from a change under review. "
    "Lines are prefixed with their number (e.g. '  42| code'). "
    "Use the EXACT line number in your findings; "
    "use 'line' and 'end_line' for a range.\n"
    "Focus on newly added/changed lines. "
    "Do NOT flag pre-existing patterns unless they introduce a new risk.\n"
)

_CONFIDENCE = (
    "Only report issues you are CONFIDENT about. "
    "Do NOT speculate or report theoretical issues "
    "that require unlikely conditions.\n"
)

_FIX_QUALITY = (
    "Fixes must be concrete and actionable. "
    "Include a short code snippet when possible. "
    "Do NOT give vague advice like 'improve this' or 'consider refactoring'.\n"
)

_CONCERN_TAGS = (
    "Give every finding a short lower-case 'concern' tag naming the kind of issue "
    "(e.g. 'race condition', 'dead code', 'naming', 'error handling', 'security').\n"
)

_OUTPUT_RULES = (
    "Respond with ONLY valid JSON. No markdown, no explanation, no extra text.\n"
)

_EMPTY_RESULT = (
    'If no issues found, return: {{"findings":[],"summary":"No issues found"}}\n'
)

_PROTOCOL_CRITICAL_NOTE = (
    "NOTE: This change touches protocol-critical code (consensus, cryptography, "
    "networking). Hold it to a stricter standard: anything that could make two "
    "nodes disagree is blocking.\n"
)


def _response_format(severities: str) -> str:
    return (
        "Required format:\n"
        '{{"findings":[{{"severity":"' + severities + '",'
        '"concern":"tag","line":1,"end_line":1,'
        '"description":"issue","fix":"solution"}}],'
        '"summary":"one line"}}\n'
    )


# =============================================================================
# ARCHITECT - structure, boundaries, design
# =============================================================================

ARCHITECT_CHECKLIST = (
    "You are the ARCHITECT on a code review panel. "
    "Review this change for design and structure ONLY.\n"
    "\n"
    "Focus on:\n"
    "- Module boundaries and layering (does code live where it belongs?)\n"
    "- Coupling between components, leaking abstractions\n"
    "- Public API shape: confusing signatures, missing invariants\n"
    "- Data flow and ownership of state\n"
    "- Extension points: will the next change of this kind be easy?\n"
    "- Consistency with the surrounding codebase's patterns\n"
    "\n"
    "IGNORE: formatting, individual bugs, micro-optimisations.\n"
)

# =============================================================================
# SKEPTIC - correctness, edge cases, failure modes
# =============================================================================

SKEPTIC_CHECKLIST = (
    "You are the SKEPTIC on a code review panel. "
    "Assume this change is wrong and try to prove it.\n"
    "\n"
    "Focus on:\n"
    "- Edge cases: empty input, zero, None, boundaries, overflow\n"
    "- Error handling: swallowed exceptions, missing cleanup, partial failure\n"
    "- Concurrency: race conditions, shared mutable state, deadlocks\n"
    "- Security: injection, unvalidated input, secrets, unsafe deserialization\n"
    "- Behaviour changes the description does not mention\n"
    "- Missing or misleading tests for the new behaviour\n"
    "\n"
    "IGNORE: naming, style, structure preferences.\n"
)

# =============================================================================
# SIMPLIFIER - complexity, duplication, dead code
# =============================================================================

SIMPLIFIER_CHECKLIST = (
    "You are the SIMPLIFIER on a code review panel. "
    "Look for what this change could do with less.\n"
    "\n"
    "Focus on:\n"
    "- Dead code, unused variables, unreachable branches\n"
    "- Duplicated logic that already exists nearby\n"
    "- Needless indirection, premature abstraction, speculative options\n"
    "- Deep nesting or long functions that could be flattened\n"
    "- Standard library or existing helpers that replace hand-written code\n"
    "\n"
    "IGNORE: security, correctness bugs, formatting.\n"
)

# =============================================================================
# RULE REVIEWER - project conventions, never nits
# =============================================================================

RULE_REVIEWER_CHECKLIST = (
    "You are the RULE REVIEWER on a code review panel. "
    "Check this change against the project's written rules ONLY.\n"
    "\n"
    "Focus on:\n"
    "- Naming conventions for files, types, functions and variables\n"
    "- Required error-handling and logging patterns\n"
    "- Forbidden constructs (panics/asserts in library code, unchecked casts)\n"
    "- Required tests and documentation for public APIs\n"
    "- Commit and changelog requirements\n"
    "\n"
    "Only report definite rule violations. "
    "Severity MUST be 'important' or 'blocking'; never 'suggestion' or 'nit'.\n"
)

CHECKLISTS: dict[ReviewerIdentity, str] = {
    ReviewerIdentity.ARCHITECT: ARCHITECT_CHECKLIST,
    ReviewerIdentity.SKEPTIC: SKEPTIC_CHECKLIST,
    ReviewerIdentity.SIMPLIFIER: SIMPLIFIER_CHECKLIST,
    ReviewerIdentity.RULE_REVIEWER: RULE_REVIEWER_CHECKLIST,
}

_missing = set(ReviewerIdentity) - set(CHECKLISTS)
if _missing:
    raise RuntimeError(f"No checklist for reviewer(s): {sorted(m.value for m in _missing)}")


def _escape(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


def build_prompt(
    identity: ReviewerIdentity,
    code: str,
    filename: str,
    chunk_info: str = "",
    protocol_critical: bool = False,
    change_summary: str = "",
) -> str:
    """Assemble the full prompt for one reviewer on one (chunk of a) file."""
    severities = "|".join(
        s.value for s in sorted(identity.allowed_severities, reverse=True)
    )
    chunk_note = f" ({chunk_info})" if chunk_info else ""

    parts = [
        CHECKLISTS[identity],
        "\n",
        _DIFF_CONTEXT,
        "\n",
        _SEVERITY_GUIDE,
        "\n",
        _CONFIDENCE,
        _FIX_QUALITY,
        _CONCERN_TAGS,
        "\n",
    ]
    if protocol_critical:
        parts += [_PROTOCOL_CRITICAL_NOTE, "\n"]
    if change_summary:
        parts += [f"The author describes the change as:\n{_escape(change_summary)}\n", "\n"]

    parts += [
        f"File: '{_escape(filename)}'{_escape(chunk_note)}\n",
        "```\n",
        "{code}\n",
        "```\n",
        "\n",
        _OUTPUT_RULES,
        _EMPTY_RESULT,
        "\n",
        _response_format(severities),
    ]
    return "".join(parts).format(code=code)
