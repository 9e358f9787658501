"""
Parsing of LLM review output into review models.

The model is asked for JSON, but replies are often wrapped in a markdown
fence or prefixed with prose, and sometimes are not JSON at all. Text that
cannot be parsed is kept verbatim as the overall feedback, so whatever the
model produced is still published.
"""

import json
import re
from typing import Any, Dict, List, Optional

from reviewbot.models.review import (
    FileReview,
    FileVerdict,
    ReviewComment,
    ReviewMetadata,
    ReviewResult,
    ReviewSummary,
    Severity,
    Verdict,
)
from reviewbot.utils.logging import get_logger

logger = get_logger(__name__)

UNPARSED_CONFIDENCE = 0.5

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_SEVERITY_MAP = {
    "critical": Severity.CRITICAL,
    "important": Severity.WARNING,
    "minor": Severity.INFO,
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "info": Severity.INFO,
}

_SEVERITY_EMOJI = {
    Severity.CRITICAL: "🔴",
    Severity.ERROR: "🔴",
    Severity.WARNING: "🟡",
    Severity.INFO: "🟢",
}

_CATEGORY_EMOJI = {
    "bug": "🐛",
    "security": "🔒",
    "performance": "⚡",
    "style": "✨",
    "improvement": "💡",
}


def extract_json(content: str) -> Optional[Dict[str, Any]]:
    """Return the outermost JSON object in ``content``, or None."""
    match = _JSON_OBJECT.search(content)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _verdict(value: Any) -> Verdict:
    try:
        return Verdict(str(value).lower())
    except ValueError:
        return Verdict.COMMENT


def _confidence(value: Any) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return UNPARSED_CONFIDENCE


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item]


def _text(value: Any) -> Optional[str]:
    """Scalar reply fields as text; lists, objects and blanks become None."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    text = str(value)
    return text if text.strip() else None


def _comment_body(severity: Severity, raw_severity: str, category: Optional[str], message: str,
                  suggestion: Optional[str]) -> str:
    prefix = " ".join(
        part for part in (_SEVERITY_EMOJI[severity], _CATEGORY_EMOJI.get(category or "", "")) if part
    )
    body = f"{prefix} **{raw_severity.upper()}**: {message}"
    if suggestion:
        body += f"\n\n**Suggestion:**\n```suggestion\n{suggestion}\n```"
    return body


def parse_comments(raw_comments: Any, default_path: Optional[str] = None) -> List[ReviewComment]:
    """
    Convert raw comment objects into inline review comments.

    Comments without a message, a path, or a positive integer line are dropped.
    """
    if not isinstance(raw_comments, list):
        return []

    comments = []
    for raw in raw_comments:
        if not isinstance(raw, dict):
            continue

        path = _text(raw.get("file")) or _text(raw.get("path")) or default_path
        message = _text(raw.get("message")) or _text(raw.get("body"))
        try:
            line = int(raw.get("line"))
        except (TypeError, ValueError):
            line = 0

        if not path or not message or line < 1:
            logger.debug("Dropping inline comment without a usable anchor", extra={"comment": raw})
            continue

        raw_severity = (_text(raw.get("severity")) or "minor").lower()
        severity = _SEVERITY_MAP.get(raw_severity, Severity.INFO)
        category = _text(raw.get("category"))

        comments.append(ReviewComment(
            path=path,
            line=line,
            body=_comment_body(severity, raw_severity, category, message, _text(raw.get("suggestion"))),
            severity=severity,
            category=category,
        ))

    return comments


def parse_review_response(
    content: str,
    model: str,
    tokens_used: int = 0,
    processing_time_ms: int = 0,
) -> ReviewResult:
    """
    Build a ReviewResult from a whole-diff review reply.

    Args:
        content: Raw completion text
        model: Model that produced it
        tokens_used: Tokens consumed
        processing_time_ms: Generation time

    Returns:
        ReviewResult; unparseable text becomes the overall feedback
    """
    metadata = ReviewMetadata(model=model, tokens_used=tokens_used, processing_time_ms=processing_time_ms)
    data = extract_json(content)

    if data is None or not isinstance(data.get("summary"), dict):
        logger.warning(
            "LLM response is not structured JSON, publishing it verbatim",
            extra={"response_length": len(content), "response_preview": content[:200]}
        )
        return ReviewResult(
            summary=ReviewSummary(verdict=Verdict.COMMENT, confidence=UNPARSED_CONFIDENCE),
            overall_feedback=content.strip(),
            metadata=metadata,
        )

    summary = data["summary"]
    return ReviewResult(
        summary=ReviewSummary(
            verdict=_verdict(summary.get("verdict")),
            confidence=_confidence(summary.get("confidence")),
            main_issues=_string_list(summary.get("mainIssues", summary.get("main_issues"))),
            positives=_string_list(summary.get("positives")),
        ),
        comments=parse_comments(data.get("comments")),
        overall_feedback=str(data.get("overallFeedback") or data.get("overall_feedback") or ""),
        metadata=metadata,
    )


def parse_file_review(path: str, content: str) -> FileReview:
    """
    Build a FileReview from a per-file review reply.

    A file with any critical inline comment is rated critical regardless
    of the verdict the model gave.
    """
    data = extract_json(content)

    if data is None or not isinstance(data.get("summary"), dict):
        return FileReview(
            path=path,
            verdict=FileVerdict.COMMENT,
            confidence=UNPARSED_CONFIDENCE,
            summary=content.strip(),
        )

    summary = data["summary"]
    comments = parse_comments(data.get("comments"), default_path=path)
    # Comments must anchor to the file that was reviewed
    comments = [c.model_copy(update={"path": path}) for c in comments]

    if any(c.severity is Severity.CRITICAL for c in comments):
        verdict = FileVerdict.CRITICAL
    else:
        verdict = FileVerdict(_verdict(summary.get("verdict")).value)

    return FileReview(
        path=path,
        verdict=verdict,
        confidence=_confidence(summary.get("confidence")),
        issues=_string_list(summary.get("mainIssues", summary.get("main_issues"))),
        summary=str(data.get("overallFeedback") or data.get("overall_feedback") or ""),
        comments=comments,
    )
