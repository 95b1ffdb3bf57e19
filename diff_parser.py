"""Unified diff parsing (via unidiff): files, hunks and the lines GitHub can comment on."""

from dataclasses import dataclass, field

from unidiff import PatchSet


@dataclass
class DiffLineMapping:
    """Lines of one file that can carry an inline comment."""
    filename: str
    line_to_position: dict[int, int] = field(default_factory=dict)  # new-file line -> diff position
    valid_lines: set[int] = field(default_factory=set)


@dataclass
class FileDiff:
    """One changed file: its status and every added and removed line."""
    filename: str
    status: str  # added, deleted, modified or renamed
    additions: int
    deletions: int
    added_lines: list[tuple[int, str]] = field(default_factory=list)  # (new line, content)
    deleted_lines: list[tuple[int, str]] = field(default_factory=list)  # (old line, content)
    patch: str = ""


@dataclass(frozen=True)
class DiffHunk:
    """One hunk of a unified diff, with line numbers already resolved."""
    path: str
    source_start: int
    source_length: int
    target_start: int
    target_length: int
    section_header: str = ""
    added_lines: tuple[tuple[int, str], ...] = ()     # (target line, content)
    removed_lines: tuple[tuple[int, str], ...] = ()   # (source line, content)
    context_lines: tuple[tuple[int, str], ...] = ()   # (target line, content)
    text: str = ""

    @property
    def header(self) -> str:
        header = (
            f"@@ -{self.source_start},{self.source_length} "
            f"+{self.target_start},{self.target_length} @@"
        )
        if self.section_header:
            header += f" {self.section_header}"
        return header

    @property
    def commentable_lines(self) -> set[int]:
        """Lines of the new file that appear in this hunk."""
        return {num for num, _ in self.added_lines} | {num for num, _ in self.context_lines}


def _file_status(patched_file) -> str:
    if patched_file.is_added_file:
        return "added"
    if patched_file.is_removed_file:
        return "deleted"
    if patched_file.is_rename:
        return "renamed"
    return "modified"


def _to_hunk(path: str, hunk) -> DiffHunk:
    added, removed, context = [], [], []
    for line in hunk:
        content = line.value.rstrip('\n')
        if line.is_added:
            added.append((line.target_line_no, content))
        elif line.is_removed:
            removed.append((line.source_line_no, content))
        elif line.is_context:
            context.append((line.target_line_no, content))

    return DiffHunk(
        path=path,
        source_start=hunk.source_start,
        source_length=hunk.source_length,
        target_start=hunk.target_start,
        target_length=hunk.target_length,
        section_header=(hunk.section_header or "").strip(),
        added_lines=tuple(added),
        removed_lines=tuple(removed),
        context_lines=tuple(context),
        text=str(hunk),
    )


def parse_diff(diff_text: str) -> list[FileDiff]:
    """
    Parse a unified diff into one FileDiff per changed file.

    Args:
        diff_text: Raw unified diff string

    Returns:
        List of FileDiff objects, in diff order
    """
    files = []

    for patched_file in PatchSet(diff_text):
        hunks = [_to_hunk(patched_file.path, hunk) for hunk in patched_file]
        files.append(FileDiff(
            filename=patched_file.path,
            status=_file_status(patched_file),
            additions=patched_file.added,
            deletions=patched_file.removed,
            added_lines=[line for h in hunks for line in h.added_lines],
            deleted_lines=[line for h in hunks for line in h.removed_lines],
            patch=str(patched_file),
        ))

    return files


def parse_hunks(diff_text: str, paths: set[str] | None = None) -> list[DiffHunk]:
    """
    Parse a unified diff into DiffHunk objects, in diff order.

    Args:
        diff_text: Raw unified diff string
        paths: If given, only hunks of these files are returned
    """
    return [
        _to_hunk(patched_file.path, hunk)
        for patched_file in PatchSet(diff_text)
        if paths is None or patched_file.path in paths
        for hunk in patched_file
    ]


def build_line_mapping(hunks: list[DiffHunk]) -> dict[str, DiffLineMapping]:
    """
    Map every commentable line of each file to its position in the diff.

    Inline review comments are posted by line number (``line`` + ``side``),
    which GitHub only accepts for lines that appear in a hunk. The mapping
    records those lines, plus the legacy 1-based ``position`` of each, for
    every file in *hunks*.
    """
    mappings: dict[str, DiffLineMapping] = {}
    positions: dict[str, int] = {}

    for hunk in hunks:
        mapping = mappings.setdefault(hunk.path, DiffLineMapping(filename=hunk.path))
        # Position counts every diff line, including the hunk header of
        # every hunk after the first one
        position = positions.get(hunk.path, -1) + 1

        source_no, target_no = hunk.source_start, hunk.target_start
        for raw in hunk.text.splitlines()[1:]:
            if raw.startswith('\\'):
                continue
            position += 1
            if raw.startswith('-'):
                source_no += 1
                continue
            # Added and context lines exist in the new version of the file
            mapping.line_to_position[target_no] = position
            mapping.valid_lines.add(target_no)
            if not raw.startswith('+'):
                source_no += 1
            target_no += 1

        positions[hunk.path] = position

    return mappings


def find_nearest_valid_line(
    mapping: DiffLineMapping,
    target_line: int,
    max_distance: int = 5
) -> int | None:
    """Closest line to *target_line* that GitHub accepts a comment on.

    Reviewers often point at context just outside the hunk. Lines below
    the target win ties. Returns None if nothing is within *max_distance*.
    """
    for distance in range(max_distance + 1):
        for line in (target_line + distance, target_line - distance):
            if line in mapping.valid_lines:
                return line
    return None


def anchor_to_diff(
    comments: list[dict],
    mappings: dict[str, DiffLineMapping],
    max_distance: int = 5
) -> tuple[list[dict], list[dict]]:
    """
    Move each comment onto a line that is part of the diff.

    Args:
        comments: Dicts with 'path' and 'line' keys
        mappings: Dict of filename -> DiffLineMapping
        max_distance: How far to search for nearest valid line

    Returns:
        (anchored, unanchored). Anchored comments carry the adjusted 'line'
        and, if it moved, the 'original_line'. Unanchored ones have no
        line, touch a file outside the diff, or are too far from any hunk.
    """
    anchored, unanchored = [], []

    for comment in comments:
        line = comment.get("line")
        mapping = mappings.get(comment.get("path", ""))
        nearest = None
        if line is not None and mapping is not None:
            nearest = find_nearest_valid_line(mapping, line, max_distance)

        if nearest is None:
            unanchored.append(comment)
            continue

        moved = {**comment, "line": nearest}
        if nearest != line:
            moved["original_line"] = line
        anchored.append(moved)

    return anchored, unanchored


# File extensions to skip during review
SKIP_EXTENSIONS = {
    '.md', '.txt', '.rst', '.adoc',           # Docs
    '.lock',                                   # Lock files
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.webp',  # Images
    '.woff', '.woff2', '.ttf', '.eot',        # Fonts
    '.csv', '.json', '.xml', '.yaml', '.yml', '.toml',  # Data
    '.min.js', '.min.css', '.map',            # Build artifacts
    '.exe', '.dll', '.so', '.dylib', '.pyc',  # Binary
    '.zip', '.tar', '.gz', '.pdf',            # Archives/docs
}

SKIP_FILENAMES = {
    'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml',
    'Pipfile.lock', 'poetry.lock', 'composer.lock',
    'Gemfile.lock', 'Cargo.lock', 'uv.lock',
    '.gitignore', '.gitattributes', '.editorconfig',
    'LICENSE', 'LICENSE.md', 'LICENSE.txt',
}

SKIP_DIRECTORIES = {'node_modules/', 'vendor/', 'dist/', 'build/', '.git/', '__pycache__/', '.venv/'}


def should_review_file(filename: str) -> bool:
    """False for docs, data, lock files, binaries and vendored or generated trees."""
    path = '/' + filename
    if any(f'/{skip_dir}' in path for skip_dir in SKIP_DIRECTORIES):
        return False
    if filename.rsplit('/', 1)[-1] in SKIP_FILENAMES:
        return False
    return not filename.lower().endswith(tuple(SKIP_EXTENSIONS))


def filter_files(files: list[FileDiff], include_deletions: bool = False) -> list[FileDiff]:
    """
    Keep the files worth sending to reviewers.

    Unless *include_deletions* is set, deleted files and changes that only
    remove lines are dropped: there is no new code to comment on.
    """
    return [
        file for file in files
        if should_review_file(file.filename)
        and (include_deletions or (file.status != 'deleted' and file.added_lines))
    ]


def extract_hunk_code(hunks: list[DiffHunk], include_line_numbers: bool = True) -> str:
    """
    Extract the added lines of some hunks as a code string.

    Hunks are separated by their ``@@`` headers so line numbers stay
    meaningful to the reader.

    Args:
        hunks: Hunks of a single file
        include_line_numbers: If True, prefix each line with its line number

    Returns:
        String containing only the new code, ready for review
    """
    blocks = []

    for hunk in hunks:
        if not hunk.added_lines:
            continue
        lines = [hunk.header]
        for line_num, content in hunk.added_lines:
            if include_line_numbers:
                lines.append(f"{line_num:4}| {content}")
            else:
                lines.append(content)
        blocks.append("\n".join(lines))

    return "\n".join(blocks)
