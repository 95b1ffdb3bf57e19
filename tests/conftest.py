import pytest

from context_builder import ReviewScope, build_context
from github_client import PRMetadata, PullRequestSnapshot
from models import DeduplicatedFinding, Finding, Location, ReviewerIdentity, Severity

SAMPLE_DIFF = """\
diff --git a/app/service.py b/app/service.py
index 1111111..2222222 100644
--- a/app/service.py
+++ b/app/service.py
@@ -1,4 +1,6 @@
 import os
+import sys
 def handler(event):
-    return None
+    value = event["key"]
+    return value
 # end
diff --git a/app/util.py b/app/util.py
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/app/util.py
@@ -0,0 +1,2 @@
+def helper():
+    return 42
diff --git a/README.md b/README.md
index 4444444..5555555 100644
--- a/README.md
+++ b/README.md
@@ -1 +1 @@
-old
+new
"""

SERVICE_SOURCE = 'import os\nimport sys\ndef handler(event):\n    value = event["key"]\n    return value\n# end\n'
UTIL_SOURCE = "def helper():\n    return 42\n"


class FakeFetcher:
    """In-memory SourceFetcher that records what it was asked for."""

    def __init__(self, diff=SAMPLE_DIFF, files=None, default_branch="main", error=None):
        self.diff = diff
        self.files = files if files is not None else {
            "app/service.py": SERVICE_SOURCE,
            "app/util.py": UTIL_SOURCE,
        }
        self._default_branch = default_branch
        self.error = error
        self.calls = []

    def fetch_pull_request(self, repo, pr_number):
        self.calls.append(("pr", repo, pr_number))
        if self.error is not None:
            raise self.error
        metadata = PRMetadata(
            number=pr_number,
            title="Add event handler",
            author="octocat",
            draft=False,
            state="open",
            base_branch="main",
            head_branch="feature/handler",
            head_sha="abc123",
            description="Reads the key from the event.",
            commit_messages=["add handler", "add helper"],
        )
        return PullRequestSnapshot(metadata=metadata, diff=self.diff)

    def fetch_comparison(self, repo, base, head):
        self.calls.append(("compare", repo, base, head))
        if self.error is not None:
            raise self.error
        return self.diff

    def default_branch(self, repo):
        self.calls.append(("default_branch", repo))
        return self._default_branch

    def fetch_file(self, repo, path, ref):
        self.calls.append(("file", path, ref))
        return self.files.get(path)


@pytest.fixture
def sample_diff():
    return SAMPLE_DIFF


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def context():
    return build_context(
        ReviewScope(
            diff_text=SAMPLE_DIFF,
            files={"app/service.py": SERVICE_SOURCE, "app/util.py": UTIL_SOURCE},
        )
    )


@pytest.fixture
def make_finding():
    def _make(
        reviewer=ReviewerIdentity.SKEPTIC,
        path="app/service.py",
        line=4,
        end_line=None,
        concern="edge case",
        description="Missing key raises KeyError when the event is empty",
        severity=Severity.IMPORTANT,
        fix=None,
    ):
        return Finding(
            location=Location(path=path, start_line=line, end_line=end_line),
            concern=concern,
            description=description,
            severity=severity,
            suggested_fix=fix,
            source_reviewer=reviewer,
        )

    return _make


@pytest.fixture
def make_merged(make_finding):
    def _make(**kwargs):
        return DeduplicatedFinding.from_finding(make_finding(**kwargs))

    return _make
