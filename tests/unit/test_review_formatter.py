"""
Unit tests for review rendering and size-limit splitting.
"""

import pytest

from reviewbot.models.review import (
    FileReview,
    FileVerdict,
    ReviewComment,
    ReviewFeatures,
    ReviewMetadata,
    ReviewResult,
    ReviewSummary,
    SkippedFile,
    SkipReason,
    Verdict,
)
from reviewbot.services.review_formatter import (
    COMMENT_TRUNCATED_NOTICE,
    GITHUB_COMMENT_LIMIT,
    REVIEW_HEADER,
    REVIEW_TRUNCATED_NOTICE,
    SIZE_LIMIT_BANNER,
    ReviewFormatter,
    byte_length,
    continuation_header,
    is_comment_too_large,
    split_large_review,
    truncate_comment,
)


def reassemble(formatted) -> str:
    """Strip split markers and join the parts back together."""
    main = formatted.main_body
    if formatted.continuation_bodies:
        assert main.endswith(SIZE_LIMIT_BANNER)
        main = main[:-len(SIZE_LIMIT_BANNER)]
    content = [main]
    for n, body in enumerate(formatted.continuation_bodies, start=2):
        header = continuation_header(n)
        assert body.startswith(header)
        content.append(body[len(header):])
    return "".join(content)


def all_parts(formatted):
    return [formatted.main_body] + formatted.continuation_bodies


def sectioned_body(sections: int, paragraph: str) -> str:
    return "".join(f"## Section {i}\n\n{paragraph}\n\n" for i in range(sections))


class TestSizeChecks:

    def test_limit_is_measured_in_utf8_bytes(self):
        body = "é" * 40_000  # 80,000 bytes in 40,000 characters

        assert is_comment_too_large(body) is True
        assert is_comment_too_large("a" * GITHUB_COMMENT_LIMIT) is False
        assert is_comment_too_large("a" * (GITHUB_COMMENT_LIMIT + 1)) is True


class TestSplitLargeReview:

    def test_small_body_is_unchanged(self):
        formatted = split_large_review("short review")

        assert formatted.main_body == "short review"
        assert formatted.continuation_bodies == []

    def test_70k_body_becomes_main_plus_part_2(self):
        body = "word " * 14_000
        assert byte_length(body) == 70_000

        formatted = split_large_review(body)

        assert len(formatted.continuation_bodies) == 1
        assert formatted.main_body.endswith(SIZE_LIMIT_BANNER)
        assert formatted.continuation_bodies[0].startswith("## 📋 Review Continuation (Part 2)")
        assert reassemble(formatted) == body
        assert all(byte_length(part) <= GITHUB_COMMENT_LIMIT for part in all_parts(formatted))

    def test_70k_body_with_header_and_two_sections(self):
        intro = "# Header\n\nSummary of the change.\n\n"
        section = "paragraph of findings " * 1500
        body = intro + f"## Section A\n\n{section}\n\n## Section B\n\n{section}\n\n"
        body += "x" * (70_000 - byte_length(body))
        assert byte_length(body) == 70_000

        formatted = split_large_review(body)

        assert formatted.main_body.startswith("# Header")
        assert formatted.main_body.endswith(SIZE_LIMIT_BANNER)
        assert len(formatted.continuation_bodies) >= 1
        assert "Part 2" in formatted.continuation_bodies[0]
        assert reassemble(formatted) == body
        assert all(byte_length(part) <= GITHUB_COMMENT_LIMIT for part in all_parts(formatted))

    def test_split_prefers_section_boundaries(self):
        body = sectioned_body(40, "x" * 3000)

        formatted = split_large_review(body)

        assert reassemble(formatted) == body
        for continuation in formatted.continuation_bodies:
            assert continuation[len(continuation_header(2)):].startswith("## Section")

    @pytest.mark.parametrize("body", [
        "a" * 200_000,  # no boundaries at all
        "ü€😀" * 20_000,  # multi-byte characters without boundaries
        "line of text\n" * 15_000,
        sectioned_body(60, "para one\n\npara two " * 200),
    ])
    def test_parts_fit_and_reassemble(self, body):
        formatted = split_large_review(body)

        for part in all_parts(formatted):
            assert byte_length(part) <= GITHUB_COMMENT_LIMIT
            part.encode("utf-8").decode("utf-8")
        assert reassemble(formatted) == body

    def test_split_is_deterministic(self):
        body = sectioned_body(50, "lorem ipsum " * 300)

        assert split_large_review(body) == split_large_review(body)

    def test_overflow_is_truncated_with_notice(self):
        body = "z" * (GITHUB_COMMENT_LIMIT * 4)

        formatted = split_large_review(body, max_continuations=2)

        assert len(formatted.continuation_bodies) == 2
        assert formatted.continuation_bodies[-1].endswith(REVIEW_TRUNCATED_NOTICE)
        assert all(byte_length(part) <= GITHUB_COMMENT_LIMIT for part in all_parts(formatted))

    def test_smaller_limit(self):
        body = "paragraph text here\n\n" * 200

        formatted = split_large_review(body, limit=1000, max_continuations=20)

        assert all(byte_length(part) <= 1000 for part in all_parts(formatted))
        assert reassemble(formatted) == body

    def test_limit_too_small_for_markers(self):
        with pytest.raises(ValueError):
            split_large_review("x" * 500, limit=100)


class TestTruncateComment:

    def test_fitting_comment_is_unchanged(self):
        assert truncate_comment("fine") == "fine"

    def test_keeps_leading_lines(self):
        body = "".join(f"finding {i}\n" for i in range(10_000))

        truncated = truncate_comment(body, limit=2000)

        assert byte_length(truncated) <= 2000
        assert truncated.startswith("finding 0\nfinding 1\n")
        assert truncated.endswith(COMMENT_TRUNCATED_NOTICE)

    def test_single_huge_line(self):
        truncated = truncate_comment("é" * 5000, limit=1000)

        assert byte_length(truncated) <= 1000
        assert truncated.endswith(COMMENT_TRUNCATED_NOTICE)


def make_result(**overrides) -> ReviewResult:
    fields = dict(
        summary=ReviewSummary(
            verdict=Verdict.REQUEST_CHANGES,
            confidence=0.82,
            main_issues=["Unchecked None"],
            positives=["Clear naming"],
        ),
        overall_feedback="Needs a null check.",
        metadata=ReviewMetadata(model="gpt-4o-mini", tokens_used=1234, processing_time_ms=2500),
    )
    fields.update(overrides)
    return ReviewResult(**fields)


class TestRenderBody:

    def test_standard_review(self):
        body = ReviewFormatter().render_body(make_result())

        assert body.startswith(REVIEW_HEADER)
        assert "## ❌ Review Summary" in body
        assert "**Verdict**: REQUEST CHANGES" in body
        assert "**Confidence**: 82%" in body
        assert "- Clear naming" in body
        assert "- Unchecked None" in body
        assert "Needs a null check." in body
        assert "<sub>🤖 Reviewed using gpt-4o-mini • ⚡ 2500ms • 🎯 1234 tokens</sub>" in body

    def test_iteration_in_footer(self):
        result = make_result(metadata=ReviewMetadata(model="m", review_iteration=3))

        assert "🔄 Review #3" in ReviewFormatter().render_body(result)

    def test_chunked_review(self):
        features = ReviewFeatures(
            chunked=True,
            files_analyzed=2,
            files_skipped=1,
            skipped_files=[SkippedFile(path="big.sql", reason=SkipReason.TOO_LARGE)],
        )
        result = make_result(
            metadata=ReviewMetadata(model="m", features=features),
            file_reviews=[
                FileReview(path="a.py", verdict=FileVerdict.CRITICAL, confidence=0.9, issues=["Leak"]),
                FileReview(path="b.py", verdict=FileVerdict.APPROVE, confidence=0.8),
            ],
        )

        body = ReviewFormatter().render_body(result)

        assert "| a.py | 🔴 | 1 |" in body
        assert "| b.py | ✅ | ✓ |" in body
        assert "Files reviewed: 2" in body
        assert "Files skipped: 1" in body
        assert "### ⚠️ Skipped Files" in body
        assert "- `big.sql` (too large for the model)" in body
        assert "#### 🔴 `a.py`" in body
        assert "📊 2 files analyzed, 1 skipped" in body


class TestFormatReview:

    def test_inline_comments_are_truncated(self):
        comment = ReviewComment(path="a.py", line=1, body="x\n" * 40_000)
        formatted = ReviewFormatter().format_review(make_result(comments=[comment]))

        assert byte_length(formatted.comments[0].body) <= GITHUB_COMMENT_LIMIT
        assert formatted.continuation_bodies == []

    def test_large_review_is_split(self):
        result = make_result(overall_feedback="detail paragraph. " * 5000)

        formatted = ReviewFormatter().format_review(result)

        assert formatted.continuation_bodies
        assert formatted.main_body.startswith(REVIEW_HEADER)

    def test_superseded_body(self):
        body = ReviewFormatter.render_superseded_body(4)

        assert body.startswith(REVIEW_HEADER)
        assert "<!-- reviewbot:superseded -->" in body
        assert "Review #4" in body
