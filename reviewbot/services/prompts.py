"""Prompt builders for whole-diff and per-file review generation."""

from typing import Dict, List, Optional

from reviewbot.models.github import ChangedFile, PullRequestInfo

SYSTEM_PROMPT = """You are an expert code reviewer providing constructive feedback on pull requests.

Your role is to:
1. Identify potential bugs, security issues, and performance problems
2. Suggest improvements for code quality and maintainability
3. Acknowledge good patterns and well-written code

Guidelines:
- Be specific and keep feedback concise and actionable
- Prioritize issues by severity (critical, important, minor)
- Don't nitpick on style unless it significantly impacts readability
- Only comment on lines that appear in the diff, using new-file line numbers

Respond with JSON only, using this schema:
{
  "summary": {
    "verdict": "approve" | "request_changes" | "comment",
    "confidence": 0.0-1.0,
    "mainIssues": ["issue1", "issue2"],
    "positives": ["positive1", "positive2"]
  },
  "comments": [
    {
      "file": "path/to/file",
      "line": number,
      "severity": "critical" | "important" | "minor",
      "category": "bug" | "security" | "performance" | "style" | "improvement",
      "message": "Your feedback here",
      "suggestion": "Optional replacement code"
    }
  ],
  "overallFeedback": "General feedback about the PR"
}"""


def _system_message(custom_instructions: Optional[str]) -> Dict[str, str]:
    content = SYSTEM_PROMPT
    if custom_instructions:
        content += f"\n\nRepository-specific instructions:\n{custom_instructions}"
    return {"role": "system", "content": content}


def _context_lines(pr: PullRequestInfo) -> str:
    return (
        f"**Title**: {pr.title}\n"
        f"**Description**: {pr.body or 'No description provided'}\n"
        f"**Author**: {pr.author}\n"
        f"**Target Branch**: {pr.base_ref}"
    )


def build_review_messages(
    pr: PullRequestInfo,
    diff: str,
    custom_instructions: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Messages for reviewing the whole pull request diff in one call."""
    user = (
        "Please review this pull request:\n\n"
        f"{_context_lines(pr)}\n\n"
        f"**Changes**:\n```diff\n{diff}\n```"
    )
    return [_system_message(custom_instructions), {"role": "user", "content": user}]


def build_file_review_messages(
    pr: PullRequestInfo,
    changed_file: ChangedFile,
    custom_instructions: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Messages for reviewing a single file of a pull request too large to review at once."""
    user = (
        "Please review one file of this pull request. "
        "The pull request is too large to review at once, so other files are reviewed separately.\n\n"
        f"{_context_lines(pr)}\n"
        f"**File**: {changed_file.filename} ({changed_file.status})\n\n"
        f"**Changes**:\n```diff\n{changed_file.patch or ''}\n```"
    )
    return [_system_message(custom_instructions), {"role": "user", "content": user}]
