"""PRPanel command line interface."""

import logging
import threading
from pathlib import Path
from typing import List, Optional

import typer

from agent import run_review
from config import ReviewSettings, parse_reviewer
from context_builder import ReviewScope
from diff_parser import parse_diff
from errors import AmbiguousScope, FetchError, RenderError, ReviewCancelled
from models import ReviewerIdentity, Verdict
from report import RENDERERS, render

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Review a change with a panel of AI reviewers")

# Exit codes for --gate
GATE_EXIT_CODES: dict[Verdict, int] = {
    Verdict.APPROVE: 0,
    Verdict.NEEDS_DISCUSSION: 1,
    Verdict.REQUEST_CHANGES: 2,
    Verdict.INCONCLUSIVE: 3,
}
EXIT_AMBIGUOUS_SCOPE = 4
EXIT_ERROR = 5
EXIT_CANCELLED = 130


def load_local_files(diff_text: str, root: Path) -> dict[str, str]:
    """Read the current contents of every file the diff touches, relative to *root*."""
    files: dict[str, str] = {}
    for file in parse_diff(diff_text):
        path = root / file.filename
        if path.is_file():
            files[file.filename] = path.read_text(encoding="utf-8", errors="replace")
    return files


@app.command("review")
def review(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository as owner/repo"),
    pr: Optional[int] = typer.Option(None, "--pr", help="Pull request number"),
    base: Optional[str] = typer.Option(None, "--base", help="Base ref (default: repo default branch)"),
    head: Optional[str] = typer.Option(None, "--head", help="Head ref to review"),
    diff_file: Optional[Path] = typer.Option(
        None, "--diff-file", exists=True, dir_okay=False, help="Review a local unified diff"
    ),
    root: Optional[Path] = typer.Option(
        None, "--root", file_okay=False, help="Working tree for --diff-file file contents"
    ),
    reviewer: Optional[List[str]] = typer.Option(
        None, "--reviewer", "-m", help="Reviewer to dispatch (repeatable)"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds per reviewer"),
    fmt: str = typer.Option("console", "--format", "-f", help="console, markdown or json"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the report here"),
    post: bool = typer.Option(False, help="Post the report to the pull request"),
    gate: bool = typer.Option(False, help="Exit with a code derived from the verdict"),
):
    """Review a pull request, a ref range or a local diff."""
    if fmt not in RENDERERS:
        typer.echo(f"Unknown format {fmt!r}. Expected one of: {', '.join(RENDERERS)}", err=True)
        raise typer.Exit(code=EXIT_ERROR)

    try:
        settings = ReviewSettings.from_env(
            reviewers=tuple(parse_reviewer(name) for name in reviewer) if reviewer else None,
            task_timeout=timeout,
        )
    except ValueError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_ERROR)

    diff_text = None
    files: dict[str, str] = {}
    if diff_file is not None:
        diff_text = diff_file.read_text(encoding="utf-8")
        if root is not None:
            files = load_local_files(diff_text, root)

    scope = ReviewScope(
        repo=repo,
        pr_number=pr,
        base=base,
        head=head,
        diff_text=diff_text,
        files=files,
    )

    cancel_event = threading.Event()
    try:
        report = run_review(scope, settings=settings, post=post, cancel_event=cancel_event)
    except AmbiguousScope as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=EXIT_AMBIGUOUS_SCOPE)
    except (KeyboardInterrupt, ReviewCancelled):
        cancel_event.set()
        typer.echo("Review cancelled; no report produced.", err=True)
        raise typer.Exit(code=EXIT_CANCELLED)
    except (FetchError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_ERROR)

    try:
        text = render(report, fmt)
    except RenderError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=EXIT_ERROR)

    if output is not None:
        output.write_text(text, encoding="utf-8")
        logger.info("Report written to %s", output)
    else:
        typer.echo(text)

    if gate:
        raise typer.Exit(code=GATE_EXIT_CODES[report.verdict])


@app.command("reviewers")
def list_reviewers():
    """List the reviewers on the panel and the severities each may use."""
    for identity in ReviewerIdentity:
        severities = ", ".join(s.value for s in sorted(identity.allowed_severities))
        typer.echo(f"- {identity.value} ({identity.display_name}): {severities}")


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
