"""Exception types raised by PRPanel."""


class PRPanelError(Exception):
    """Base class for PRPanel errors."""


class AmbiguousScope(PRPanelError, ValueError):
    """The review scope cannot be resolved without asking the caller."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Ambiguous review scope: {reason}. Please clarify what to review.")


class FetchError(PRPanelError):
    """Diff or file contents could not be fetched from the source host."""


class ReviewerError(PRPanelError):
    """A reviewer capability failed (malformed output, unavailable backend)."""


class ReviewerTimeout(ReviewerError):
    """A reviewer task exceeded its time budget."""


class ReviewCancelled(PRPanelError):
    """The caller aborted the review while reviewers were still running."""


class RenderError(PRPanelError):
    """A report could not be serialised to the requested format."""
