"""Pytest fixtures for the question-bank deduplication tests."""

import pytest


def question(text=None, *, qtype="multichoice", name="q", feedback=None, extra=""):
    """Build one <question> element the way Moodle exports it."""
    parts = [f"\n    <name>\n      <text>{name}</text>\n    </name>"]
    if text is not None:
        parts.append(
            f'\n    <questiontext format="html">\n'
            f"      <text><![CDATA[{text}]]></text>\n"
            f"    </questiontext>"
        )
    if feedback is not None:
        parts.append(
            f'\n    <generalfeedback format="html">\n'
            f"      <text>{feedback}</text>\n"
            f"    </generalfeedback>"
        )
    parts.append(extra)
    return f'<question type="{qtype}">' + "".join(parts) + "\n  </question>"


def quiz(*questions, header=True):
    body = "".join(f"\n  {q}" for q in questions)
    decl = '<?xml version="1.0" encoding="UTF-8"?>\n' if header else ""
    return (decl + f"<quiz>{body}\n</quiz>\n").encode("utf-8")


@pytest.fixture
def make_question():
    return question


@pytest.fixture
def make_quiz():
    return quiz


@pytest.fixture
def sample_bank() -> bytes:
    """Four questions, the third repeating the first with different layout."""
    return quiz(
        '<question type="category">\n    <category>\n      <text>$course$/Biology</text>\n    </category>\n  </question>',
        question("<p>What is DNA?</p>", name="dna-1"),
        question("<p>Name a purine &amp; a pyrimidine.</p>", name="bases"),
        question("<p>What is\n   DNA?</p>\n", name="dna-2"),
    )
