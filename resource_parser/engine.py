"""
Resource Parser Engine
======================
Main orchestrator that runs line reconstruction, diagram extraction and
question segmentation over a PDF and assembles the ParsedResult.

Usage:
    engine = ParserEngine(config)
    result = engine.parse("res_123", "GRADE_10", pdf_bytes)
    # result is an immutable ParsedResult, ready for JSON persistence

Architecture:
    PDF bytes → ContentReader → (per page) LineReconstructor →
    DiagramExtractor → ParsedPage[] → QuestionSegmenter → ParsedResult
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .content import ContentReader
from .diagram_extractor import DEFAULT_MAX_DIAGRAMS_PER_PAGE, DiagramExtractor
from .encoder import PngEncoder
from .fitz_reader import FitzContentReader
from .line_builder import DEFAULT_MERGE_RATIO, LineReconstructor
from .models import ParsedPage, ParsedResult, ValidationReport
from .segmenter import QuestionSegmenter
from .storage import (
    BLOB_API_URL_ENV,
    BLOB_TOKEN_ENV,
    DEFAULT_BLOB_API_URL,
    DEFAULT_KEY_PREFIX,
    Storage,
    storage_from_env,
)
from .validator import ResultValidator

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 35

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Limits
    max_pages: int = DEFAULT_MAX_PAGES
    max_diagrams_per_page: int = DEFAULT_MAX_DIAGRAMS_PER_PAGE

    # Layout
    line_merge_ratio: float = DEFAULT_MERGE_RATIO

    # Storage
    public_dir: str = "public"
    key_prefix: str = DEFAULT_KEY_PREFIX
    blob_token: Optional[str] = field(
        default_factory=lambda: os.environ.get(BLOB_TOKEN_ENV)
    )
    blob_api_url: str = field(
        default_factory=lambda: os.environ.get(BLOB_API_URL_ENV, DEFAULT_BLOB_API_URL)
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ParserEngine:
    """
    Main PDF parsing engine.

    Orchestrates the full pipeline:
        1. Open the document with the content reader
        2. Per page, in order: line reconstruction, then diagram extraction
        3. Question segmentation over all pages
        4. Validation summary

    Collaborators are injected so they can be swapped, e.g. in tests:
        reader_factory: bytes -> ContentReader
        encoder: RawImage -> PNG bytes
        storage: stores encoded images and returns their locator
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        reader_factory: Optional[Callable[[bytes], ContentReader]] = None,
        encoder=None,
        storage: Optional[Storage] = None,
    ):
        self.config = config or ParserConfig()
        self._setup_logging()
        self.reader_factory = reader_factory or FitzContentReader.open
        self.encoder = encoder or PngEncoder()
        self.storage = storage or storage_from_env(
            public_dir=self.config.public_dir,
            token=self.config.blob_token,
            api_url=self.config.blob_api_url,
        )

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        package_logger = logging.getLogger("resource_parser")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.config.log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(file_handler)

    def parse(
        self,
        resource_id: str,
        grade: str,
        pdf_bytes: bytes,
        max_pages: Optional[int] = None,
        max_diagrams_per_page: Optional[int] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ParsedResult:
        """
        Parse a PDF into lines, diagrams and questions.
        See ``parse_with_report`` for the arguments.
        """
        result, _ = self.parse_with_report(
            resource_id,
            grade,
            pdf_bytes,
            max_pages=max_pages,
            max_diagrams_per_page=max_diagrams_per_page,
            progress_callback=progress_callback,
        )
        return result

    def parse_with_report(
        self,
        resource_id: str,
        grade: str,
        pdf_bytes: bytes,
        max_pages: Optional[int] = None,
        max_diagrams_per_page: Optional[int] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> tuple[ParsedResult, ValidationReport]:
        """
        Parse a PDF and return the result with its validation report.

        Args:
            resource_id: Opaque resource identifier (storage-key component).
            grade: Category label (storage-key component).
            pdf_bytes: Raw PDF content.
            max_pages: Page cap, defaults to ``config.max_pages``.
            max_diagrams_per_page: Diagram cap, defaults to
                ``config.max_diagrams_per_page``.
            progress_callback: Callback(page_num, total_pages) after each page.

        Returns:
            (ParsedResult, ValidationReport). The report is also logged.

        Raises:
            PdfLoadError: If the PDF cannot be opened.
            EncodingError: If a diagram cannot be encoded.
            StorageError: If a diagram cannot be stored.
        """
        max_pages = self.config.max_pages if max_pages is None else max_pages
        max_diagrams = (
            self.config.max_diagrams_per_page
            if max_diagrams_per_page is None
            else max_diagrams_per_page
        )

        start_time = time.time()
        logger.info(f"Starting parse of resource {resource_id} ({len(pdf_bytes)} bytes)")

        reader = self.reader_factory(pdf_bytes)
        try:
            total_pages = min(reader.page_count, max(0, max_pages))
            if reader.page_count > total_pages:
                logger.info(
                    f"Document has {reader.page_count} pages, "
                    f"processing the first {total_pages}"
                )

            lines_builder = LineReconstructor(
                compose=reader.compose,
                merge_ratio=self.config.line_merge_ratio,
            )
            extractor = DiagramExtractor(
                compose=reader.compose,
                apply=reader.apply,
                encoder=self.encoder,
                storage=self.storage,
                max_diagrams_per_page=max_diagrams,
                key_prefix=self.config.key_prefix,
            )

            pages: list[ParsedPage] = []
            for page_number in range(1, total_pages + 1):
                content = reader.load_page(page_number)

                lines = lines_builder.build(
                    content.text_runs,
                    content.viewport,
                    content.width,
                    content.height,
                )
                diagrams = extractor.extract(content, lines, grade, resource_id)

                pages.append(ParsedPage(
                    page_number=page_number,
                    width=content.width,
                    height=content.height,
                    lines=lines,
                    diagrams=diagrams,
                ))
                logger.info(
                    f"Page {page_number}/{total_pages}: "
                    f"{len(lines)} lines, {len(diagrams)} diagrams"
                )

                if progress_callback:
                    progress_callback(page_number, total_pages)
        finally:
            reader.close()

        questions = QuestionSegmenter().segment(pages)

        result = ParsedResult(
            resource_id=resource_id,
            extracted_at=datetime.now(timezone.utc).isoformat(),
            pages=pages,
            questions=questions,
        )

        report = ResultValidator(
            max_pages=max_pages,
            max_diagrams_per_page=max_diagrams,
        ).validate(result)

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s: "
            f"{len(pages)} pages, {len(questions)} questions"
        )

        return result, report
