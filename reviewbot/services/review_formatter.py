"""
Review formatting and size-limit handling.

GitHub rejects comment bodies above 65,536 bytes. A rendered review that
exceeds the limit is split into a main body plus ordered continuation
comments. Splitting prefers header sections, then paragraphs, then lines,
then words, and only then cuts at a UTF-8 character boundary. Every part
respects the byte limit and the parts, stripped of their banners and
headers, concatenate back to the original body.
"""

import re
from typing import Iterable, List, Tuple

from reviewbot.models.review import (
    FileReview,
    FileVerdict,
    FormattedReview,
    ReviewResult,
    SkipReason,
    Verdict,
)

GITHUB_COMMENT_LIMIT = 65536
MAX_CONTINUATION_COMMENTS = 6

REVIEW_HEADER = "# 🤖 AI Code Review"
SUPERSEDED_MARKER = "<!-- reviewbot:superseded -->"

SIZE_LIMIT_BANNER = (
    "\n\n---\n\n📋 **Note**: This review exceeds GitHub's comment size limit. "
    "See continuation in follow-up comments below."
)
REVIEW_TRUNCATED_NOTICE = (
    "\n\n⚠️ **Review truncated**: remaining content omitted due to size constraints."
)
COMMENT_TRUNCATED_NOTICE = (
    "\n\n---\n\n⚠️ **Comment truncated**: This comment was too large to display in full. "
    "The most important findings are shown above."
)

_VERDICT_EMOJI = {
    Verdict.APPROVE: "✅",
    Verdict.REQUEST_CHANGES: "❌",
    Verdict.COMMENT: "💬",
}

_FILE_VERDICT_EMOJI = {
    FileVerdict.CRITICAL: "🔴",
    FileVerdict.REQUEST_CHANGES: "❌",
    FileVerdict.COMMENT: "💬",
    FileVerdict.APPROVE: "✅",
}

_SKIP_REASON_TEXT = {
    SkipReason.TOO_LARGE: "too large for the model",
    SkipReason.NOT_REACHED: "not reached, review stopped early",
    SkipReason.FAILED: "review failed",
    SkipReason.FILE_LIMIT: "over the per-review file limit",
}

# Cut points, coarsest first. Each cuts immediately after the matched text,
# except sections, which start at a markdown header.
_SECTION_BOUNDARY = re.compile(r"(?m)^(?=#)")
_PARAGRAPH_BOUNDARY = re.compile(r"\n\n+")
_LINE_BOUNDARY = re.compile(r"\n")
_WORD_BOUNDARY = re.compile(r"[ \t]+")


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def is_comment_too_large(body: str, limit: int = GITHUB_COMMENT_LIMIT) -> bool:
    """Return True if ``body`` exceeds the GitHub comment limit in UTF-8 bytes."""
    return byte_length(body) > limit


def continuation_header(part_number: int) -> str:
    return (
        f"## 📋 Review Continuation (Part {part_number})\n\n"
        "*This is a continuation of the code review from the previous comment.*\n\n"
    )


def _cut_after(text: str, boundary: re.Pattern) -> List[str]:
    pieces = []
    start = 0
    for match in boundary.finditer(text):
        end = match.end()
        if end > start and end < len(text):
            pieces.append(text[start:end])
            start = end
    pieces.append(text[start:])
    return pieces


def _cut_sections(text: str) -> List[str]:
    return [piece for piece in _SECTION_BOUNDARY.split(text) if piece]


def _cut_bytes(text: str, max_bytes: int) -> List[str]:
    """Cut ``text`` into runs of at most ``max_bytes`` without splitting a character."""
    pieces = []
    current: List[str] = []
    size = 0
    for char in text:
        char_size = byte_length(char)
        if size + char_size > max_bytes and current:
            pieces.append("".join(current))
            current, size = [], 0
        current.append(char)
        size += char_size
    if current:
        pieces.append("".join(current))
    return pieces


def _atomize(text: str, max_bytes: int, level: int = 0) -> List[str]:
    """Break ``text`` into pieces no larger than ``max_bytes``, using the coarsest boundaries that work."""
    if byte_length(text) <= max_bytes:
        return [text]

    cutters = (
        _cut_sections,
        lambda t: _cut_after(t, _PARAGRAPH_BOUNDARY),
        lambda t: _cut_after(t, _LINE_BOUNDARY),
        lambda t: _cut_after(t, _WORD_BOUNDARY),
    )

    for depth in range(level, len(cutters)):
        pieces = cutters[depth](text)
        if len(pieces) > 1:
            result: List[str] = []
            for piece in pieces:
                result.extend(_atomize(piece, max_bytes, depth + 1))
            return result

    return _cut_bytes(text, max_bytes)


def _pack(pieces: List[str], capacities: Iterable[int]) -> Tuple[List[str], bool]:
    """
    Greedily fill parts with consecutive pieces.

    Returns:
        The filled parts and whether pieces were left over
    """
    parts: List[str] = []
    index = 0
    for capacity in capacities:
        if index >= len(pieces):
            break
        current: List[str] = []
        size = 0
        while index < len(pieces):
            piece_size = byte_length(pieces[index])
            if size + piece_size > capacity and current:
                break
            current.append(pieces[index])
            size += piece_size
            index += 1
        parts.append("".join(current))
    return parts, index < len(pieces)


def split_large_review(
    body: str,
    limit: int = GITHUB_COMMENT_LIMIT,
    max_continuations: int = MAX_CONTINUATION_COMMENTS,
) -> FormattedReview:
    """
    Split a review body into a main body and continuation comments.

    A body within ``limit`` is returned unchanged. Otherwise the main part
    ends with a size-limit banner and continuation N (starting at Part 2)
    opens with a continuation header. Content beyond ``max_continuations``
    is dropped and the last kept part ends with a truncation notice.

    Args:
        body: Rendered review markdown
        limit: Maximum UTF-8 byte length of each part
        max_continuations: Maximum number of continuation comments

    Returns:
        FormattedReview with main_body and continuation_bodies
    """
    if not is_comment_too_large(body, limit):
        return FormattedReview(main_body=body)

    notice_size = byte_length(REVIEW_TRUNCATED_NOTICE)
    main_capacity = limit - byte_length(SIZE_LIMIT_BANNER) - notice_size
    continuation_capacities = [
        limit - byte_length(continuation_header(n)) - notice_size
        for n in range(2, max_continuations + 2)
    ]
    if min([main_capacity] + continuation_capacities) <= 0:
        raise ValueError(f"Comment limit {limit} is too small to hold split markers")

    pieces = _atomize(body, min([main_capacity] + continuation_capacities))
    parts, truncated = _pack(pieces, [main_capacity] + continuation_capacities)

    if truncated:
        parts[-1] += REVIEW_TRUNCATED_NOTICE

    main_body = parts[0]
    if len(parts) > 1:
        main_body += SIZE_LIMIT_BANNER

    continuation_bodies = [
        continuation_header(n) + content
        for n, content in enumerate(parts[1:], start=2)
    ]

    return FormattedReview(main_body=main_body, continuation_bodies=continuation_bodies)


def truncate_comment(body: str, limit: int = GITHUB_COMMENT_LIMIT) -> str:
    """
    Fit a single comment within ``limit`` by keeping its leading lines.

    Args:
        body: Comment body
        limit: Maximum UTF-8 byte length

    Returns:
        ``body`` unchanged if it fits, else its leading lines plus a truncation notice
    """
    if not is_comment_too_large(body, limit):
        return body

    budget = limit - byte_length(COMMENT_TRUNCATED_NOTICE)
    kept: List[str] = []
    size = 0
    for line in body.splitlines(keepends=True):
        line_size = byte_length(line)
        if size + line_size > budget:
            if not kept:
                kept = _cut_bytes(line, budget)[:1]
            break
        kept.append(line)
        size += line_size

    return "".join(kept).rstrip() + COMMENT_TRUNCATED_NOTICE


class ReviewFormatter:
    """Renders ReviewResults into GitHub review bodies."""

    def __init__(self, limit: int = GITHUB_COMMENT_LIMIT, max_continuations: int = MAX_CONTINUATION_COMMENTS):
        self.limit = limit
        self.max_continuations = max_continuations

    def render_body(self, result: ReviewResult) -> str:
        """Render the full review body, before any size handling."""
        summary = result.summary
        lines = [
            REVIEW_HEADER,
            "",
            f"## {_VERDICT_EMOJI[summary.verdict]} Review Summary",
            "",
            f"**Verdict**: {summary.verdict.value.replace('_', ' ').upper()}",
            f"**Confidence**: {round(summary.confidence * 100)}%",
            "",
        ]

        if summary.positives:
            lines.append("### ✨ What looks good:")
            lines.extend(f"- {positive}" for positive in summary.positives)
            lines.append("")

        if summary.main_issues:
            lines.append("### 🔍 Main concerns:")
            lines.extend(f"- {issue}" for issue in summary.main_issues)
            lines.append("")

        if result.overall_feedback:
            lines.extend(["### 💭 Overall Feedback", result.overall_feedback, ""])

        if result.chunked:
            lines.extend(self._render_chunked(result))

        lines.extend(["---", self._render_footer(result)])
        return "\n".join(lines)

    def _render_chunked(self, result: ReviewResult) -> List[str]:
        features = result.metadata.features
        lines: List[str] = []

        if result.file_reviews:
            lines.extend([
                "### 📄 File Review Results",
                "",
                "| File | Status | Issues |",
                "|------|--------|--------|",
            ])
            for review in result.file_reviews:
                issues = len(review.issues) or "✓"
                lines.append(f"| {_escape_cell(review.path)} | {_FILE_VERDICT_EMOJI[review.verdict]} | {issues} |")
            lines.append("")

        lines.extend([
            f"Files reviewed: {features.files_analyzed}",
            f"Files skipped: {features.files_skipped}",
            "",
        ])

        if features.skipped_files:
            lines.append("### ⚠️ Skipped Files")
            lines.extend(
                f"- `{skipped.path}` ({_SKIP_REASON_TEXT[skipped.reason]})"
                for skipped in features.skipped_files
            )
            lines.append("")

        if result.file_reviews:
            lines.extend(["### 📝 Detailed Review", ""])
            for review in result.file_reviews:
                lines.extend(self._render_file_review(review))

        return lines

    @staticmethod
    def _render_file_review(review: FileReview) -> List[str]:
        lines = [f"#### {_FILE_VERDICT_EMOJI[review.verdict]} `{review.path}`", ""]
        if review.summary:
            lines.extend([review.summary, ""])
        if review.issues:
            lines.append("**🔍 Issues found:**")
            lines.extend(f"- {issue}" for issue in review.issues)
            lines.append("")
        if review.comments:
            lines.extend([f"*{len(review.comments)} inline comment(s) on this file.*", ""])
        return lines

    @staticmethod
    def _render_footer(result: ReviewResult) -> str:
        metadata = result.metadata
        parts = [
            f"🤖 Reviewed using {metadata.model}",
            f"⚡ {metadata.processing_time_ms}ms",
            f"🎯 {metadata.tokens_used} tokens",
        ]
        if metadata.review_iteration and metadata.review_iteration > 1:
            parts.append(f"🔄 Review #{metadata.review_iteration}")
        if result.chunked:
            features = metadata.features
            parts.append(f"📊 {features.files_analyzed} files analyzed, {features.files_skipped} skipped")
        return f"<sub>{' • '.join(parts)}</sub>"

    def split_large_review(self, body: str) -> FormattedReview:
        return split_large_review(body, self.limit, self.max_continuations)

    def truncate_comment(self, body: str) -> str:
        return truncate_comment(body, self.limit)

    def format_review(self, result: ReviewResult) -> FormattedReview:
        """
        Render and size a review for publishing.

        Returns:
            FormattedReview whose bodies and inline comments all fit the limit
        """
        formatted = self.split_large_review(self.render_body(result))
        return formatted.model_copy(update={
            "main_body": self.truncate_comment(formatted.main_body),
            "comments": [
                comment.model_copy(update={"body": self.truncate_comment(comment.body)})
                for comment in result.comments
            ],
        })

    @staticmethod
    def render_superseded_body(new_iteration: int) -> str:
        """Body that replaces a COMMENTED review once a newer review is posted."""
        return (
            f"{REVIEW_HEADER}\n\n{SUPERSEDED_MARKER}\n"
            f"*This review was superseded by Review #{new_iteration}.*"
        )


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|")
