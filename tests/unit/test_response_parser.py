"""
Unit tests for parsing LLM review output.
"""

import json

from reviewbot.models.review import FileVerdict, Severity, Verdict
from reviewbot.services.response_parser import (
    extract_json,
    parse_comments,
    parse_file_review,
    parse_review_response,
)


STRUCTURED = {
    "summary": {
        "verdict": "request_changes",
        "confidence": 0.85,
        "mainIssues": ["SQL built with string formatting"],
        "positives": ["Good test coverage"],
    },
    "comments": [
        {
            "file": "src/db.py",
            "line": 12,
            "severity": "critical",
            "category": "security",
            "message": "Use a parameterized query",
            "suggestion": "cursor.execute(sql, params)",
        },
        {"file": "src/db.py", "line": 0, "severity": "minor", "message": "No anchor"},
        {"file": "src/db.py", "line": 20, "severity": "minor"},
    ],
    "overallFeedback": "Solid change apart from the query.",
}


def test_extract_json_from_fenced_reply():
    content = "Here is my review:\n```json\n" + json.dumps({"summary": {"verdict": "approve"}}) + "\n```"

    assert extract_json(content) == {"summary": {"verdict": "approve"}}


def test_extract_json_rejects_invalid_text():
    assert extract_json("no json here") is None
    assert extract_json("{ broken") is None


def test_parse_structured_review():
    result = parse_review_response(json.dumps(STRUCTURED), model="gpt-4o-mini", tokens_used=900)

    assert result.summary.verdict is Verdict.REQUEST_CHANGES
    assert result.summary.confidence == 0.85
    assert result.summary.main_issues == ["SQL built with string formatting"]
    assert result.summary.positives == ["Good test coverage"]
    assert result.overall_feedback == "Solid change apart from the query."
    assert result.metadata.tokens_used == 900

    # Comments without a positive line or a message are dropped
    assert len(result.comments) == 1
    comment = result.comments[0]
    assert comment.path == "src/db.py"
    assert comment.line == 12
    assert comment.severity is Severity.CRITICAL
    assert comment.body.startswith("🔴 🔒 **CRITICAL**: Use a parameterized query")
    assert "```suggestion\ncursor.execute(sql, params)\n```" in comment.body


def test_non_json_reply_is_published_verbatim():
    content = "Looks fine to me, ship it when ready.  "
    assert len(content.strip()) < 50

    result = parse_review_response(content, model="gpt-4o-mini")

    assert result.summary.verdict is Verdict.COMMENT
    assert result.summary.confidence == 0.5
    assert result.overall_feedback == content.strip()
    assert result.comments == []


def test_unknown_verdict_and_confidence_are_normalized():
    content = json.dumps({"summary": {"verdict": "lgtm", "confidence": "very"}})

    result = parse_review_response(content, model="m")

    assert result.summary.verdict is Verdict.COMMENT
    assert result.summary.confidence == 0.5


def test_confidence_is_clamped():
    content = json.dumps({"summary": {"verdict": "approve", "confidence": 7}})

    assert parse_review_response(content, model="m").summary.confidence == 1.0


def test_severity_mapping():
    comments = parse_comments([
        {"file": "a.py", "line": 1, "severity": "important", "message": "x"},
        {"file": "a.py", "line": 2, "severity": "minor", "message": "y"},
        {"file": "a.py", "line": 3, "severity": "unheard-of", "message": "z"},
    ])

    assert [c.severity for c in comments] == [Severity.WARNING, Severity.INFO, Severity.INFO]


def test_parse_file_review_critical_comment_escalates_verdict():
    content = json.dumps({
        "summary": {"verdict": "comment", "confidence": 0.7, "mainIssues": ["Secret committed"]},
        "comments": [{"file": "wrong/path.py", "line": 4, "severity": "critical", "message": "Remove key"}],
    })

    review = parse_file_review("config/settings.py", content)

    assert review.verdict is FileVerdict.CRITICAL
    assert review.issues == ["Secret committed"]
    assert review.comments[0].path == "config/settings.py"


def test_parse_file_review_uses_model_verdict():
    content = json.dumps({"summary": {"verdict": "approve", "confidence": 0.9}, "comments": []})

    review = parse_file_review("src/app.py", content)

    assert review.verdict is FileVerdict.APPROVE
    assert review.confidence == 0.9


def test_parse_file_review_unstructured_reply():
    review = parse_file_review("src/app.py", "This file looks good.")

    assert review.verdict is FileVerdict.COMMENT
    assert review.summary == "This file looks good."


def test_comment_fields_of_the_wrong_type_are_ignored():
    comments = parse_comments([
        {"file": 12, "line": 3, "message": "Check bounds", "category": {"kind": "bug"},
         "severity": ["critical"], "suggestion": ["x = 1"]},
        {"path": ["a.py"], "line": 4, "message": "No anchor"},
        {"path": "a.py", "line": 5, "message": {"text": "not a message"}},
    ])

    assert len(comments) == 1
    comment = comments[0]
    assert comment.path == "12"
    assert comment.category is None
    assert comment.severity is Severity.INFO
    assert "```suggestion" not in comment.body


def test_suggestion_indentation_is_preserved():
    comments = parse_comments([
        {"file": "a.py", "line": 1, "message": "Indent", "suggestion": "    return x"},
    ])

    assert "```suggestion\n    return x\n```" in comments[0].body
