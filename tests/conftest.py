"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import json
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mockforge.generation.client import GenerationResponse, UsageStats  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Documents
# =============================================================================


def make_exam(count, section="Quantitative Ability", start=1, title="Sample Mock"):
    """Build a valid exam-layout document with ``count`` questions."""
    questions = [
        {
            "questionNumber": n,
            "questionText": f"What is {n} + {n}?",
            "options": [
                {"label": "A", "text": str(2 * n)},
                {"label": "B", "text": str(2 * n + 1)},
                {"label": "C", "text": str(2 * n - 1)},
                {"label": "D", "text": str(n)},
            ],
            "solution": {"answer": "A", "steps": [f"{n} + {n} = {2 * n}"]},
        }
        for n in range(start, start + count)
    ]
    return {
        "examTitle": title,
        "examDetails": {"totalQuestions": count, "timeAllotted": "60 minutes", "maxMarks": count * 3},
        "instructions": {"title": "Instructions", "points": ["Each question carries 3 marks."]},
        "sections": [
            {
                "sectionTitle": section,
                "questionSets": [
                    {
                        "type": "standalone",
                        "directions": {"title": "Directions", "text": "Answer the following."},
                        "questions": questions,
                    }
                ],
            }
        ],
    }


def make_question_sets(count, set_title="Set 1"):
    """Build a valid question_sets-layout document with ``count`` questions."""
    return {
        "title": "DI Practice",
        "totalQuestions": count,
        "instructions": ["Use the table to answer."],
        "questionSets": [
            {
                "setTitle": set_title,
                "directions": "Study the table below.",
                "dataTitle": "Sales by region",
                "tableHeaders": ["Region", "Sales"],
                "tableRows": [["North", "120"], ["South", "80"]],
                "questions": [
                    {
                        "qNum": n,
                        "question": f"Question {n}?",
                        "optA": "10",
                        "optB": "20",
                        "optC": "30",
                        "optD": "40",
                        "answer": "B",
                        "explanation": "Read the table.",
                    }
                    for n in range(1, count + 1)
                ],
            }
        ],
    }


@pytest.fixture
def exam_factory():
    """Factory for exam-layout documents."""
    return make_exam


@pytest.fixture
def question_set_factory():
    """Factory for question_sets-layout documents."""
    return make_question_sets


@pytest.fixture
def sample_exam():
    """A small valid exam document."""
    return make_exam(3)


# =============================================================================
# Fakes
# =============================================================================


class FakeClient:
    """
    Scripted ``GenerativeClient``.

    Each script entry is either response text, a dict (sent as JSON) or an
    exception instance to raise. Requests are recorded for inspection.
    """

    def __init__(self, script, usage=None):
        self.script = list(script)
        self.requests = []
        self.usage = usage or UsageStats(prompt_tokens=100, output_tokens=50)

    async def generate(self, request):
        self.requests.append(request)
        if not self.script:
            raise AssertionError("FakeClient ran out of scripted responses")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, dict):
            entry = json.dumps(entry)
        return GenerationResponse(
            text=entry,
            usage=UsageStats(self.usage.prompt_tokens, self.usage.output_tokens, self.usage.thinking_tokens),
            finish_reason="STOP",
        )

    def follow_ups(self, request_number):
        """Text parts appended after the user prompt for the n-th request (1-based)."""
        request = self.requests[request_number - 1]
        texts = [part.text for part in request.contents if part.text is not None]
        marker = texts.index("--- USER INSTRUCTIONS ---") if "--- USER INSTRUCTIONS ---" in texts else -1
        return texts[marker + 2:] if marker >= 0 else []


class FakeRenderer:
    """Renderer that records documents and writes a marker file."""

    suffix = ".fake"

    def __init__(self, fail=False):
        self.fail = fail
        self.rendered = []

    def render(self, document, output_path):
        if self.fail:
            raise OSError("disk full")
        self.rendered.append((document, output_path))
        output_path.write_text("rendered", encoding="utf-8")
        return output_path


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_client_factory():
    """Build a FakeClient from a script."""
    return FakeClient


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def no_sleep():
    """Record delays instead of sleeping."""
    return SleepRecorder()
