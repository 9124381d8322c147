"""
Question Segmenter
==================
Splits reconstructed lines into question records using line-prefix
anchors ("Question 3", "1.", "2)", "1.2", "(a)").

Spans never cross a page: each page starts with no open question, while
the question index keeps counting across the whole document.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import ParsedLine, ParsedPage, Question

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# "Question 1", "QUESTION 12"
QUESTION_WORD_PATTERN = re.compile(r"^question\s+\d+", re.IGNORECASE)

# "1.", "2)", "3 ."
NUMBERED_PATTERN = re.compile(r"^\d+\s*[.)]")

# "1.2", "4.10"
SUBNUMBERED_PATTERN = re.compile(r"^\d+\.\d+")

# "(a)", "(B)"
LETTERED_PATTERN = re.compile(r"^\([a-z]\)", re.IGNORECASE)

START_PATTERNS = [
    QUESTION_WORD_PATTERN,
    NUMBERED_PATTERN,
    SUBNUMBERED_PATTERN,
    LETTERED_PATTERN,
]

LABEL_TOKENS = 3


def starts_question(line: str) -> bool:
    """Whether a line opens a new question."""
    s = (line or "").strip()
    if not s:
        return False
    return any(p.match(s) for p in START_PATTERNS)


def question_label(line: str) -> str:
    """First three whitespace-separated tokens of a line."""
    return " ".join(line.split()[:LABEL_TOKENS])


class QuestionSegmenter:
    """
    Walks pages top to bottom and emits a Question for every span that
    starts with an anchor line and runs until the next anchor or the end
    of the page.
    """

    def __init__(self):
        self.questions: list[Question] = []
        self._next_index = 0
        self._current_start: Optional[int] = None
        self._current_label = ""

    def reset(self):
        """Reset for a fresh document."""
        self.questions = []
        self._next_index = 0
        self._current_start = None
        self._current_label = ""

    def segment(self, pages: list[ParsedPage]) -> list[Question]:
        """Segment all pages into globally indexed questions."""
        self.reset()

        for page in pages:
            self._current_start = None
            self._current_label = ""

            for i, line in enumerate(page.lines):
                if starts_question(line.text):
                    self._flush(page, i)
                    self._current_start = i
                    self._current_label = question_label(line.text)

            self._flush(page, len(page.lines))

        logger.info(f"Segmented {len(self.questions)} questions from {len(pages)} pages")
        return self.questions

    def _flush(self, page: ParsedPage, end_exclusive: int):
        """Close the open span ``[start, end_exclusive)`` if there is one."""
        if self._current_start is None:
            return

        start = self._current_start
        label = self._current_label
        self._current_start = None
        self._current_label = ""

        lines: list[ParsedLine] = page.lines[start:end_exclusive]
        text = "\n".join(line.text for line in lines).strip()
        if not text:
            return

        index = self._next_index
        self._next_index += 1

        self.questions.append(Question(
            index=index,
            label=label or f"Q{index + 1}",
            page_number=page.page_number,
            start_line=start,
            end_line=max(start, end_exclusive - 1),
            text=text,
        ))
        logger.debug(f"Question {index} ({label!r}) on page {page.page_number}")


def segment_questions(pages: list[ParsedPage]) -> list[Question]:
    """Convenience wrapper around QuestionSegmenter."""
    return QuestionSegmenter().segment(pages)
