"""
Validation Engine
=================
Post-parse validation and reporting.

After each parse, produces a report with:
    - Pages, lines, diagrams and questions extracted
    - Diagrams without a nearest line
    - Questions per page
    - Invariant violations (caps, line references, question ordering)

Never silently ignores failures: every violation is listed and logged.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from .models import ParsedResult, ValidationReport

logger = logging.getLogger(__name__)


class ResultValidator:
    """
    Validates a ParsedResult and produces a summary report.
    Caps are only checked when given.
    """

    def __init__(
        self,
        max_pages: Optional[int] = None,
        max_diagrams_per_page: Optional[int] = None,
    ):
        self.max_pages = max_pages
        self.max_diagrams_per_page = max_diagrams_per_page

    def validate(self, result: ParsedResult) -> ValidationReport:
        """
        Run full validation on a parse result.

        Args:
            result: The result to check.

        Returns:
            ValidationReport with counts and detected issues.
        """
        issues: list[str] = []

        if self.max_pages is not None and len(result.pages) > self.max_pages:
            issues.append(
                f"{len(result.pages)} pages exceed the limit of {self.max_pages}"
            )

        total_lines = 0
        total_diagrams = 0
        orphan_diagrams = 0

        for page in result.pages:
            total_lines += len(page.lines)
            total_diagrams += len(page.diagrams)

            if (
                self.max_diagrams_per_page is not None
                and len(page.diagrams) > self.max_diagrams_per_page
            ):
                issues.append(
                    f"Page {page.page_number}: {len(page.diagrams)} diagrams "
                    f"exceed the limit of {self.max_diagrams_per_page}"
                )

            for i, diagram in enumerate(page.diagrams):
                if diagram.nearest_line_index is None:
                    orphan_diagrams += 1
                elif diagram.nearest_line_index >= len(page.lines):
                    issues.append(
                        f"Page {page.page_number}: diagram {i} points at "
                        f"missing line {diagram.nearest_line_index}"
                    )

        issues.extend(self._check_questions(result))

        report = ValidationReport(
            total_pages=len(result.pages),
            total_lines=total_lines,
            total_diagrams=total_diagrams,
            total_questions=len(result.questions),
            diagrams_without_line=orphan_diagrams,
            questions_per_page=dict(
                sorted(Counter(q.page_number for q in result.questions).items())
            ),
            issues=issues,
        )

        self._log_report(report)
        return report

    def _check_questions(self, result: ParsedResult) -> list[str]:
        issues: list[str] = []
        line_counts = {p.page_number: len(p.lines) for p in result.pages}
        last_end: dict[int, int] = {}

        for expected, q in enumerate(result.questions):
            if q.index != expected:
                issues.append(f"Question index {q.index} out of order (expected {expected})")

            if q.start_line > q.end_line:
                issues.append(
                    f"Question {q.index}: start line {q.start_line} "
                    f"after end line {q.end_line}"
                )

            count = line_counts.get(q.page_number)
            if count is None:
                issues.append(f"Question {q.index}: unknown page {q.page_number}")
            elif q.end_line >= count:
                issues.append(
                    f"Question {q.index}: end line {q.end_line} beyond "
                    f"{count} lines on page {q.page_number}"
                )

            previous_end = last_end.get(q.page_number)
            if previous_end is not None and q.start_line <= previous_end:
                issues.append(
                    f"Question {q.index} overlaps the previous question "
                    f"on page {q.page_number}"
                )
            last_end[q.page_number] = q.end_line

        return issues

    def _log_report(self, report: ValidationReport):
        logger.info(
            f"Validation: {report.total_pages} pages, {report.total_lines} lines, "
            f"{report.total_diagrams} diagrams "
            f"({report.diagrams_without_line} without a line), "
            f"{report.total_questions} questions"
        )
        for issue in report.issues:
            logger.warning(f"Validation issue: {issue}")
