"""Shared configuration and utilities for PRPanel."""

import functools
import json
import logging
import os
import re
import time

from dotenv import load_dotenv
from google import genai
from google.api_core.exceptions import (
    DeadlineExceeded,
    InternalServerError,
    ServiceUnavailable,
    TooManyRequests,
)
from google.genai import errors as genai_errors
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from models import DEFAULT_REVIEWERS, ReviewerIdentity, ReviewerResponse

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USE_MOCK: bool = os.getenv("USE_MOCK", "false").lower() == "true"
DEFAULT_MODEL: str = "gemini-2.5-flash-lite"

DEFAULT_TASK_TIMEOUT: float = 300.0  # seconds per reviewer task
DEFAULT_SIMILARITY_THRESHOLD: float = 0.6  # word-overlap ratio for "same concern"
DEFAULT_LINE_SLACK: int = 3  # lines apart that still count as the same location
DEFAULT_IMPORTANT_THRESHOLD: int = 2  # important findings that need discussion

# Concern tags that make a single important finding worth discussing
DEFAULT_SECURITY_CONCERNS: frozenset[str] = frozenset({
    "security",
    "vulnerability",
    "injection",
    "sql injection",
    "command injection",
    "xss",
    "ssrf",
    "authentication",
    "authorization",
    "auth bypass",
    "hardcoded secret",
    "secret",
    "path traversal",
    "insecure deserialization",
    "deserialization",
    "cryptography",
    "weak crypto",
    "data exposure",
})

# Repo format: "owner/repo"
_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")

# Gemini errors worth retrying (transient / rate-limit)
_RETRYABLE_GEMINI_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    TooManyRequests,
    DeadlineExceeded,
    InternalServerError,
    genai_errors.ServerError,
)


# ---------------------------------------------------------------------------
# Review settings
# ---------------------------------------------------------------------------
class ReviewSettings(BaseModel):
    """Tunable options for one review run. Every field has a documented default."""

    model_config = ConfigDict(frozen=True)

    reviewers: tuple[ReviewerIdentity, ...] = Field(
        default=DEFAULT_REVIEWERS,
        description="Reviewers to dispatch, in dispatch order",
    )
    task_timeout: float = Field(
        default=DEFAULT_TASK_TIMEOUT, gt=0, description="Seconds each reviewer may run"
    )
    similarity_threshold: float = Field(
        default=DEFAULT_SIMILARITY_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Description word-overlap ratio treated as the same concern",
    )
    line_slack: int = Field(
        default=DEFAULT_LINE_SLACK, ge=0, description="Line distance still treated as overlapping"
    )
    important_threshold: int = Field(
        default=DEFAULT_IMPORTANT_THRESHOLD,
        ge=1,
        description="Number of important findings that triggers needs_discussion",
    )
    security_concerns: frozenset[str] = Field(default=DEFAULT_SECURITY_CONCERNS)
    model: str = Field(default=DEFAULT_MODEL, description="Gemini model for LLM reviewers")

    @field_validator("reviewers")
    @classmethod
    def _unique_reviewers(cls, value: tuple[ReviewerIdentity, ...]):
        if len(set(value)) != len(value):
            raise ValueError("each reviewer may be dispatched only once")
        return value

    @classmethod
    def from_env(cls, **overrides) -> "ReviewSettings":
        """Build settings from PRPANEL_* environment variables, then *overrides*."""
        values: dict = {}

        reviewers = os.getenv("PRPANEL_REVIEWERS")
        if reviewers:
            values["reviewers"] = tuple(
                parse_reviewer(name) for name in reviewers.split(",") if name.strip()
            )

        for env_name, key, convert in (
            ("PRPANEL_TASK_TIMEOUT", "task_timeout", float),
            ("PRPANEL_SIMILARITY_THRESHOLD", "similarity_threshold", float),
            ("PRPANEL_LINE_SLACK", "line_slack", int),
            ("PRPANEL_IMPORTANT_THRESHOLD", "important_threshold", int),
        ):
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                values[key] = convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid {env_name}: {raw!r}") from e

        model = os.getenv("GEMINI_MODEL")
        if model:
            values["model"] = model

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def parse_reviewer(name: str) -> ReviewerIdentity:
    """Resolve a reviewer from its value ('rule_reviewer') or display name ('RuleReviewer')."""
    wanted = name.strip().lower().replace("-", "_")
    for identity in ReviewerIdentity:
        if wanted in (identity.value, identity.display_name.lower()):
            return identity
    choices = ", ".join(identity.value for identity in ReviewerIdentity)
    raise ValueError(f"Unknown reviewer {name!r}. Expected one of: {choices}")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def validate_repo(repo: str) -> str:
    """Validate repository string matches 'owner/repo' format.

    Returns *repo* unchanged on success; raises ``ValueError`` otherwise.
    """
    if not _REPO_PATTERN.match(repo):
        raise ValueError(
            f"Invalid repo format: {repo!r}. Expected 'owner/repo' "
            f"(e.g. 'octocat/hello-world')."
        )
    return repo


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------
def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
):
    """Decorator: retry a function with exponential back-off."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exc: Exception | None = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    last_exc = exc
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Attempt %d/%d for %s failed: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            exc,
                            delay,
                        )
                        time.sleep(delay)
            raise last_exc  # type: ignore[misc]

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Cached API clients
# ---------------------------------------------------------------------------
@functools.lru_cache(maxsize=1)
def get_gemini_client() -> genai.Client:
    """Return a cached Gemini client (created once per process)."""
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError("GEMINI_API_KEY not found. Set it in .env file.")
    return genai.Client(api_key=api_key)


# ---------------------------------------------------------------------------
# Gemini API call (with retry)
# ---------------------------------------------------------------------------
@with_retry(max_retries=3, base_delay=2.0, retryable=_RETRYABLE_GEMINI_ERRORS)
def call_gemini(prompt: str, model: str = DEFAULT_MODEL) -> str:
    """Call Gemini and return the raw response text.

    Retries automatically on transient API errors.
    """
    client = get_gemini_client()
    response = client.models.generate_content(
        model=model,
        contents=prompt,
        config={"response_mime_type": "application/json"},
    )
    return response.text


# ---------------------------------------------------------------------------
# LLM response parsing
# ---------------------------------------------------------------------------
def parse_llm_json(text: str) -> ReviewerResponse | None:
    """Extract the first JSON object from *text* and validate as ReviewerResponse."""
    start = text.find("{")
    if start == -1:
        logger.warning("No JSON object found in LLM response")
        return None

    try:
        decoder = json.JSONDecoder()
        obj, _ = decoder.raw_decode(text[start:])
        return ReviewerResponse.model_validate(obj)
    except json.JSONDecodeError as e:
        logger.warning("JSON decode error: %s", e)
        return None
    except ValidationError as e:
        logger.warning("Pydantic validation error: %s", e)
        return None
