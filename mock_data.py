"""Mock reviewer responses for running without API calls (USE_MOCK=true)."""

from models import ReviewerIdentity

MOCK_RESPONSES: dict[ReviewerIdentity, str] = {
    ReviewerIdentity.ARCHITECT: """```json
{
  "findings": [],
  "summary": "No structural issues found"
}
```""",
    ReviewerIdentity.SKEPTIC: """```json
{
  "findings": [
    {
      "severity": "important",
      "concern": "edge case",
      "line": 1,
      "description": "Mock finding: division by len(numbers) raises ZeroDivisionError when the list is empty.",
      "fix": "if not numbers: return 0"
    }
  ],
  "summary": "1 edge case found"
}
```""",
    ReviewerIdentity.SIMPLIFIER: """```json
{
  "findings": [
    {
      "severity": "nit",
      "concern": "dead code",
      "line": 1,
      "description": "Mock finding: unused import.",
      "fix": ""
    }
  ],
  "summary": "1 nit"
}
```""",
    ReviewerIdentity.RULE_REVIEWER: """```json
{
  "findings": [],
  "summary": "No rule violations"
}
```""",
}
