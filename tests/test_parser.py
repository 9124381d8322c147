"""
Test Suite for the Resource Parser
==================================
Unit tests for models, geometry, line reconstruction, diagram extraction,
question segmentation, storage, encoding and validation.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import requests
from pydantic import ValidationError

from resource_parser.content import Operator, PageContent, RawImage, TextRun
from resource_parser.diagram_extractor import DiagramExtractor, nearest_line_index
from resource_parser.encoder import PngEncoder
from resource_parser.exceptions import EncodingError, StorageError
from resource_parser.geometry import (
    FitzGeometry,
    PixelBox,
    clamp01,
    normalize_bbox,
    project_unit_square,
)
from resource_parser.line_builder import LineReconstructor, collapse_whitespace
from resource_parser.models import (
    NormalizedBBox,
    ParsedDiagram,
    ParsedLine,
    ParsedPage,
    ParsedResult,
    Question,
)
from resource_parser.segmenter import (
    QuestionSegmenter,
    question_label,
    segment_questions,
    starts_question,
)
from resource_parser.storage import (
    BLOB_TOKEN_ENV,
    DEFAULT_BLOB_API_URL,
    BlobStorage,
    LocalFileStorage,
    StoredObject,
    diagram_key,
    storage_from_env,
)
from resource_parser.validator import ResultValidator

IDENTITY = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


# ─── Test Doubles ─────────────────────────────────────────────────────────────


def compose(outer, inner):
    """Plain affine composition: apply ``inner`` first, then ``outer``."""
    oa, ob, oc, od, oe, of = outer
    ia, ib, ic, id_, ie, if_ = inner
    return (
        oa * ia + oc * ib,
        ob * ia + od * ib,
        oa * ic + oc * id_,
        ob * ic + od * id_,
        oa * ie + oc * if_ + oe,
        ob * ie + od * if_ + of,
    )


def apply(m, point):
    x, y = point
    return (m[0] * x + m[2] * y + m[4], m[1] * x + m[3] * y + m[5])


class FakeEncoder:
    content_type = "image/png"

    def __init__(self, error=None):
        self.error = error
        self.encoded = []

    def encode(self, image):
        if self.error:
            raise self.error
        self.encoded.append(image)
        return b"PNG" + bytes([image.width, image.height])


class FakeStorage:
    def __init__(self, error=None):
        self.error = error
        self.stored = {}

    def store(self, key, data, content_type):
        if self.error:
            raise self.error
        self.stored[key] = (data, content_type)
        return StoredObject(url=f"/{key}", path=key)


def run(text, x, baseline, size=12.0, width=40.0):
    return TextRun(text=text, transform=(1.0, 0.0, 0.0, size, x, baseline), width=width)


def line(text, y, h=0.02):
    return ParsedLine(text=text, bbox=NormalizedBBox(x=0.1, y=y, w=0.5, h=h))


def page_of(number, texts):
    return ParsedPage(
        page_number=number,
        width=600,
        height=800,
        lines=[line(t, min(0.9, 0.05 * (i + 1))) for i, t in enumerate(texts)],
    )


PIXEL = RawImage(width=1, height=1, data=b"\x10\x20\x30\xff", channels=4, alpha=True)


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestModels:
    """Test the output models."""

    def test_camel_case_serialization(self):
        diagram = ParsedDiagram(
            url="/resource-bank/g/parsed/r/p1_img0.png",
            storage_path="resource-bank/g/parsed/r/p1_img0.png",
            bbox=NormalizedBBox(x=0.1, y=0.2, w=0.3, h=0.4),
            nearest_line_index=2,
        )
        data = diagram.model_dump(by_alias=True)
        assert data["storagePath"] == "resource-bank/g/parsed/r/p1_img0.png"
        assert data["nearestLineIndex"] == 2
        assert "storage_path" not in data

    def test_populate_by_alias(self):
        q = Question.model_validate({
            "index": 0,
            "label": "1. Solve",
            "pageNumber": 2,
            "startLine": 1,
            "endLine": 3,
            "text": "1. Solve\nfor x",
        })
        assert q.page_number == 2
        assert q.start_line == 1
        assert q.end_line == 3

    def test_models_are_frozen(self):
        bbox = NormalizedBBox(x=0, y=0, w=1, h=1)
        with pytest.raises(ValidationError):
            bbox.x = 0.5

    def test_bbox_range_enforced(self):
        with pytest.raises(ValidationError):
            NormalizedBBox(x=1.5, y=0, w=0, h=0)
        with pytest.raises(ValidationError):
            NormalizedBBox(x=0, y=-0.1, w=0, h=0)

    def test_center_y(self):
        assert NormalizedBBox(x=0, y=0.2, w=0.1, h=0.4).center_y == pytest.approx(0.4)

    def test_result_json(self):
        result = ParsedResult(
            resource_id="res_1",
            extracted_at="2024-01-01T00:00:00+00:00",
            pages=[page_of(1, ["1. What is 2+2?"])],
            questions=segment_questions([page_of(1, ["1. What is 2+2?"])]),
        )
        parsed = json.loads(result.to_json())

        assert parsed["version"] == 1
        assert parsed["kind"] == "pdf"
        assert parsed["resourceId"] == "res_1"
        assert parsed["extractedAt"] == "2024-01-01T00:00:00+00:00"
        assert parsed["pages"][0]["pageNumber"] == 1
        assert parsed["questions"][0]["startLine"] == 0

        assert ParsedResult.model_validate_json(result.to_json()) == result


# ═══════════════════════════════════════════════════════════════════════════════
# GEOMETRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestGeometry:
    """Test normalization and projection."""

    def test_normalize_scenario(self):
        bbox = normalize_bbox(PixelBox(50, 50, 150, 150), 200, 200)
        assert bbox.x == pytest.approx(0.25)
        assert bbox.y == pytest.approx(0.25)
        assert bbox.w == pytest.approx(0.5)
        assert bbox.h == pytest.approx(0.5)

    def test_reversed_corners(self):
        bbox = normalize_bbox(PixelBox(150, 150, 50, 50), 200, 200)
        assert bbox.x == pytest.approx(0.25)
        assert bbox.w == pytest.approx(0.5)

    def test_partially_off_page_keeps_on_page_extent(self):
        # x1 clamps to 0 before the width is derived
        bbox = normalize_bbox(PixelBox(-50, 0, 50, 100), 100, 100)
        assert bbox.x == 0
        assert bbox.w == pytest.approx(0.5)
        assert bbox.h == pytest.approx(1.0)

    def test_fully_off_page(self):
        bbox = normalize_bbox(PixelBox(150, 150, 250, 250), 100, 100)
        assert bbox.x == 1.0
        assert bbox.y == 1.0
        assert bbox.w == 0
        assert bbox.h == 0

    def test_zero_page_size_treated_as_one(self):
        bbox = normalize_bbox(PixelBox(0, 0, 0.5, 0.5), 0, 0)
        assert bbox.w == pytest.approx(0.5)
        assert bbox.h == pytest.approx(0.5)

    def test_clamp01(self):
        assert clamp01(-1) == 0
        assert clamp01(2) == 1
        assert clamp01(0.3) == 0.3
        assert clamp01(float("nan")) == 0
        assert clamp01(float("inf")) == 0

    def test_project_unit_square(self):
        box = project_unit_square((100, 0, 0, 50, 20, 10), apply)
        assert (box.x1, box.y1, box.x2, box.y2) == (20, 10, 120, 60)

    def test_fitz_compose_applies_inner_first(self):
        scale = (2.0, 0.0, 0.0, 2.0, 0.0, 0.0)
        shift = (1.0, 0.0, 0.0, 1.0, 10.0, 0.0)
        m = FitzGeometry.compose(scale, shift)
        assert FitzGeometry.apply(m, (0.0, 0.0)) == pytest.approx((20.0, 0.0))
        assert FitzGeometry.apply(m, (1.0, 1.0)) == pytest.approx((22.0, 2.0))

    def test_fitz_matches_plain_affine(self):
        outer = (1.0, 0.0, 0.0, -1.0, 0.0, 800.0)
        inner = (100.0, 0.0, 0.0, 50.0, 20.0, 10.0)
        expected = apply(compose(outer, inner), (1.0, 1.0))
        actual = FitzGeometry.apply(FitzGeometry.compose(outer, inner), (1.0, 1.0))
        assert actual == pytest.approx(expected)


# ═══════════════════════════════════════════════════════════════════════════════
# LINE RECONSTRUCTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLineReconstructor:
    """Test grouping of text runs into lines."""

    def setup_method(self):
        self.builder = LineReconstructor(compose=compose)

    def test_collapse_whitespace(self):
        assert collapse_whitespace("  a \t  b\n c ") == "a b c"
        assert collapse_whitespace("   ") == ""

    def test_runs_within_threshold_merge(self):
        # threshold = 0.012 * 1000 = 12px
        runs = [run("world", 60, 105), run("Hello", 10, 100)]
        lines = self.builder.build(runs, IDENTITY, 1000, 1000)

        assert len(lines) == 1
        assert lines[0].text == "Hello world"
        bbox = lines[0].bbox
        assert bbox.x == pytest.approx(0.010)
        assert bbox.y == pytest.approx(0.088)
        assert bbox.w == pytest.approx(0.090)
        assert bbox.h == pytest.approx(0.017)

    def test_runs_beyond_threshold_split(self):
        runs = [run("First", 10, 100), run("Second", 10, 130)]
        lines = self.builder.build(runs, IDENTITY, 1000, 1000)
        assert [l.text for l in lines] == ["First", "Second"]

    def test_lines_sorted_top_to_bottom(self):
        runs = [run("Bottom", 10, 500), run("Top", 10, 100)]
        lines = self.builder.build(runs, IDENTITY, 1000, 1000)
        assert [l.text for l in lines] == ["Top", "Bottom"]

    def test_bucket_compares_against_bucket_top(self):
        # Each run is within 12px of the previous one, but the third is
        # 20px from the first run that opened the bucket.
        runs = [run("a", 10, 100), run("b", 60, 110), run("c", 110, 120)]
        lines = self.builder.build(runs, IDENTITY, 1000, 1000)
        assert [l.text for l in lines] == ["a b", "c"]

    def test_empty_and_whitespace_runs_skipped(self):
        runs = [run("   ", 10, 100), run("", 10, 200), run("Text", 10, 300)]
        lines = self.builder.build(runs, IDENTITY, 1000, 1000)
        assert [l.text for l in lines] == ["Text"]

    def test_non_finite_run_skipped(self):
        bad = TextRun(text="NaN", transform=(1.0, 0.0, 0.0, 12.0, float("nan"), 100.0))
        lines = self.builder.build([bad, run("Good", 10, 100)], IDENTITY, 1000, 1000)
        assert [l.text for l in lines] == ["Good"]

    def test_height_falls_back_to_hint(self):
        flat = TextRun(
            text="flat", transform=(1.0, 0.0, 0.0, 0.0, 10.0, 100.0),
            width=20.0, height_hint=9.0,
        )
        placed = self.builder.place_run(flat, IDENTITY)
        assert placed.box.y1 == pytest.approx(91.0)
        assert placed.box.y2 == pytest.approx(100.0)

    def test_minimum_size_is_one_pixel(self):
        tiny = TextRun(text="x", transform=(1.0, 0.0, 0.0, 0.0, 10.0, 100.0))
        placed = self.builder.place_run(tiny, IDENTITY)
        assert placed.box.x2 - placed.box.x1 == pytest.approx(1.0)
        assert placed.box.y2 - placed.box.y1 == pytest.approx(1.0)

    def test_viewport_applied(self):
        # PDF space (y up) to pixel space (y down) on an 800px page
        viewport = (1.0, 0.0, 0.0, -1.0, 0.0, 800.0)
        flipped = TextRun(text="Up", transform=(1.0, 0.0, 0.0, -12.0, 10.0, 700.0), width=20)
        lines = self.builder.build([flipped], viewport, 600, 800)
        assert lines[0].bbox.y == pytest.approx((100 - 12) / 800)

    def test_no_runs(self):
        assert self.builder.build([], IDENTITY, 600, 800) == []


# ═══════════════════════════════════════════════════════════════════════════════
# DIAGRAM EXTRACTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDiagramExtractor:
    """Test the operator walk, caps and nearest-line linking."""

    def setup_method(self):
        self.encoder = FakeEncoder()
        self.storage = FakeStorage()
        self.resolved = []

    def _extractor(self, max_diagrams=25, encoder=None, storage=None):
        return DiagramExtractor(
            compose=compose,
            apply=apply,
            encoder=encoder or self.encoder,
            storage=storage or self.storage,
            max_diagrams_per_page=max_diagrams,
        )

    def _page(self, operators, images=None, viewport=IDENTITY, size=200):
        images = {"Im1": PIXEL} if images is None else images

        def resolve(name):
            self.resolved.append(name)
            return images.get(name)

        return PageContent(
            page_number=1,
            width=size,
            height=size,
            viewport=viewport,
            operators=operators,
            resolve_named_object=resolve,
        )

    def test_single_image_bbox(self):
        page = self._page([
            Operator.transform((100, 0, 0, 100, 50, 50)),
            Operator.paint_image("Im1"),
        ])
        diagrams = self._extractor().extract(page, [], "GRADE_10", "res_1")

        assert len(diagrams) == 1
        bbox = diagrams[0].bbox
        assert (bbox.x, bbox.y) == (pytest.approx(0.25), pytest.approx(0.25))
        assert (bbox.w, bbox.h) == (pytest.approx(0.5), pytest.approx(0.5))
        assert diagrams[0].storage_path == "resource-bank/GRADE_10/parsed/res_1/p1_img0.png"
        assert diagrams[0].url == "/resource-bank/GRADE_10/parsed/res_1/p1_img0.png"
        assert self.encoder.encoded == [PIXEL]

    def test_viewport_flips_y(self):
        page = self._page(
            [Operator.transform((100, 0, 0, 50, 20, 10)), Operator.paint_image("Im1")],
            viewport=(1, 0, 0, -1, 0, 200),
        )
        bbox = self._extractor().extract(page, [], "g", "r")[0].bbox
        assert bbox.x == pytest.approx(0.1)
        assert bbox.y == pytest.approx(0.7)
        assert bbox.w == pytest.approx(0.5)
        assert bbox.h == pytest.approx(0.25)

    def test_restore_reverts_transform(self):
        page = self._page([
            Operator.save(),
            Operator.transform((100, 0, 0, 100, 50, 50)),
            Operator.restore(),
            Operator.paint_image("Im1"),
        ])
        bbox = self._extractor().extract(page, [], "g", "r")[0].bbox
        assert bbox.x == 0
        assert bbox.w == pytest.approx(1 / 200)

    def test_transforms_accumulate(self):
        page = self._page([
            Operator.transform((1, 0, 0, 1, 50, 50)),
            Operator.transform((100, 0, 0, 100, 0, 0)),
            Operator.paint_image("Im1"),
        ])
        bbox = self._extractor().extract(page, [], "g", "r")[0].bbox
        assert bbox.x == pytest.approx(0.25)
        assert bbox.w == pytest.approx(0.5)

    def test_unbalanced_restore_resets_to_identity(self):
        page = self._page([
            Operator.transform((100, 0, 0, 100, 50, 50)),
            Operator.restore(),
            Operator.paint_image("Im1"),
        ])
        bbox = self._extractor().extract(page, [], "g", "r")[0].bbox
        assert bbox.x == 0

    def test_cap_drops_extra_images(self):
        page = self._page([Operator.paint_image("Im1")] * 3)
        diagrams = self._extractor(max_diagrams=2).extract(page, [], "g", "r")

        assert len(diagrams) == 2
        assert sorted(self.storage.stored) == [
            "resource-bank/g/parsed/r/p1_img0.png",
            "resource-bank/g/parsed/r/p1_img1.png",
        ]

    def test_cap_checked_before_resolving(self):
        page = self._page([Operator.paint_image("Im1")] * 3)
        self._extractor(max_diagrams=1).extract(page, [], "g", "r")
        assert self.resolved == ["Im1"]

    def test_unresolvable_image_skipped(self):
        page = self._page([Operator.paint_image("Missing"), Operator.paint_image("Im1")])
        diagrams = self._extractor().extract(page, [], "g", "r")

        assert len(diagrams) == 1
        assert diagrams[0].storage_path.endswith("p1_img0.png")

    def test_empty_image_skipped(self):
        empty = RawImage(width=0, height=0, data=b"")
        page = self._page([Operator.paint_image("Im1")], images={"Im1": empty})
        assert self._extractor().extract(page, [], "g", "r") == []

    def test_inline_image(self):
        page = self._page([
            Operator.paint_inline_image(PIXEL),
            Operator.paint_inline_image(None),
        ])
        diagrams = self._extractor().extract(page, [], "g", "r")
        assert len(diagrams) == 1
        assert self.resolved == []

    def test_nearest_line(self):
        lines = [line("top", 0.05), line("middle", 0.45), line("bottom", 0.85)]
        page = self._page([
            Operator.transform((40, 0, 0, 20, 0, 90)),
            Operator.paint_image("Im1"),
        ])
        diagram = self._extractor().extract(page, lines, "g", "r")[0]
        assert diagram.nearest_line_index == 1

    def test_nearest_line_tie_prefers_first(self):
        bbox = NormalizedBBox(x=0, y=0.25, w=0.1, h=0.5)
        lines = [line("above", 0.25, h=0.0), line("below", 0.75, h=0.0)]
        assert nearest_line_index(bbox, lines) == 0

    def test_no_lines_gives_none(self):
        page = self._page([Operator.paint_image("Im1")])
        diagram = self._extractor().extract(page, [], "g", "r")[0]
        assert diagram.nearest_line_index is None

    def test_encoding_error_propagates(self):
        encoder = FakeEncoder(error=EncodingError(1, 1, cause=ValueError("bad")))
        page = self._page([Operator.paint_image("Im1")])
        with pytest.raises(EncodingError):
            self._extractor(encoder=encoder).extract(page, [], "g", "r")

    def test_storage_error_propagates(self):
        storage = FakeStorage(error=StorageError("k"))
        page = self._page([Operator.paint_image("Im1")])
        with pytest.raises(StorageError):
            self._extractor(storage=storage).extract(page, [], "g", "r")


# ═══════════════════════════════════════════════════════════════════════════════
# QUESTION SEGMENTATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStartPatterns:
    """Test question anchor detection."""

    @pytest.mark.parametrize("text", [
        "Question 1",
        "QUESTION 12: Algebra",
        "1. Solve",
        "2) Simplify",
        "3 . Factorise",
        "1.2 Calculate",
        "(a) Sub part",
        "(B) Sub part",
        "   4. Leading spaces",
    ])
    def test_matches(self, text):
        assert starts_question(text)

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "Questions about",
        "a) no parenthesis",
        "(ab) too long",
        "Answer below",
        "Page 1 of 3",
    ])
    def test_no_match(self, text):
        assert not starts_question(text)

    def test_label_is_first_three_tokens(self):
        assert question_label("1.   Solve for   x now") == "1. Solve for"
        assert question_label("(a)") == "(a)"


class TestQuestionSegmenter:
    """Test splitting lines into questions."""

    def test_question_with_continuation(self):
        pages = [page_of(1, ["Question 1: What is 2+2?", "Answer below"])]
        questions = segment_questions(pages)

        assert len(questions) == 1
        q = questions[0]
        assert q.index == 0
        # Label is the first three whitespace tokens of the anchor line,
        # so the first word of the question text is included.
        assert q.label == "Question 1: What"
        assert q.page_number == 1
        assert (q.start_line, q.end_line) == (0, 1)
        assert q.text == "Question 1: What is 2+2?\nAnswer below"

    def test_sub_parts_are_separate_questions(self):
        pages = [page_of(1, ["1. Main question", "(a) sub part one", "(b) sub part two"])]
        questions = segment_questions(pages)

        assert len(questions) == 3
        assert [q.start_line for q in questions] == [0, 1, 2]
        assert [q.end_line for q in questions] == [0, 1, 2]
        assert [q.label for q in questions] == [
            "1. Main question", "(a) sub part", "(b) sub part",
        ]

    def test_lines_before_first_anchor_dropped(self):
        pages = [page_of(1, ["Instructions", "Read carefully", "1. First", "more"])]
        questions = segment_questions(pages)

        assert len(questions) == 1
        assert (questions[0].start_line, questions[0].end_line) == (2, 3)
        assert "Instructions" not in questions[0].text

    def test_questions_do_not_cross_pages(self):
        pages = [
            page_of(1, ["1. First", "continues"]),
            page_of(2, ["still first?", "2. Second"]),
        ]
        questions = segment_questions(pages)

        assert [q.index for q in questions] == [0, 1]
        assert [q.page_number for q in questions] == [1, 2]
        assert questions[0].text == "1. First\ncontinues"
        assert (questions[1].start_line, questions[1].end_line) == (1, 1)

    def test_no_anchors(self):
        assert segment_questions([page_of(1, ["Just prose", "More prose"])]) == []

    def test_empty_pages(self):
        assert segment_questions([page_of(1, []), page_of(2, [])]) == []

    def test_segmenter_resets_between_documents(self):
        segmenter = QuestionSegmenter()
        segmenter.segment([page_of(1, ["1. A", "2. B"])])
        again = segmenter.segment([page_of(1, ["1. A"])])
        assert [q.index for q in again] == [0]


# ═══════════════════════════════════════════════════════════════════════════════
# STORAGE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStorage:
    """Test storage keys and backends."""

    def test_diagram_key(self):
        assert diagram_key("GRADE_10", "res_1", 3, 2) == (
            "resource-bank/GRADE_10/parsed/res_1/p3_img2.png"
        )

    def test_diagram_key_sanitizes_segments(self):
        key = diagram_key("grade 10", "a/../b", 1, 0)
        parts = key.split("/")
        assert len(parts) == 5
        assert parts[1] == "grade_10"
        assert "/" not in parts[3]
        assert diagram_key("", "..", 1, 0) == "resource-bank/_/parsed/_/p1_img0.png"

    def test_local_storage_writes_file(self, tmp_path):
        storage = LocalFileStorage(public_dir=str(tmp_path))
        key = diagram_key("g", "r", 1, 0)
        stored = storage.store(key, b"\x89PNG", "image/png")

        assert stored.url == f"/{key}"
        assert stored.path == key
        assert (tmp_path / key).read_bytes() == b"\x89PNG"

    def test_local_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        storage = LocalFileStorage(public_dir=str(blocker))

        with pytest.raises(StorageError) as exc_info:
            storage.store("a/b.png", b"x", "image/png")
        assert exc_info.value.key == "a/b.png"

    def test_blob_storage_upload(self):
        session = MagicMock()
        session.put.return_value.json.return_value = {
            "url": "https://blob.example/resource-bank/g/parsed/r/p1_img0.png",
            "pathname": "resource-bank/g/parsed/r/p1_img0.png",
        }
        storage = BlobStorage(token="tok", api_url="https://blob.example/", session=session)

        stored = storage.store("resource-bank/g/parsed/r/p1_img0.png", b"png", "image/png")

        assert stored.url == "https://blob.example/resource-bank/g/parsed/r/p1_img0.png"
        assert stored.path == "resource-bank/g/parsed/r/p1_img0.png"
        args, kwargs = session.put.call_args
        assert args[0] == "https://blob.example/resource-bank/g/parsed/r/p1_img0.png"
        assert kwargs["data"] == b"png"
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["x-content-type"] == "image/png"
        assert kwargs["headers"]["x-add-random-suffix"] == "0"

    def test_blob_storage_network_error(self):
        session = MagicMock()
        session.put.side_effect = requests.ConnectionError("down")
        storage = BlobStorage(token="tok", session=session)

        with pytest.raises(StorageError) as exc_info:
            storage.store("k.png", b"png", "image/png")
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_blob_storage_missing_url(self):
        session = MagicMock()
        session.put.return_value.json.return_value = {}
        storage = BlobStorage(token="tok", session=session)

        with pytest.raises(StorageError):
            storage.store("k.png", b"png", "image/png")

    def test_storage_from_env_local(self, monkeypatch, tmp_path):
        monkeypatch.delenv(BLOB_TOKEN_ENV, raising=False)
        storage = storage_from_env(public_dir=str(tmp_path))
        assert isinstance(storage, LocalFileStorage)

    def test_storage_from_env_blob(self, monkeypatch):
        monkeypatch.setenv(BLOB_TOKEN_ENV, "secret")
        monkeypatch.delenv("BLOB_API_URL", raising=False)
        storage = storage_from_env()
        assert isinstance(storage, BlobStorage)
        assert storage.token == "secret"
        assert storage.api_url == DEFAULT_BLOB_API_URL


# ═══════════════════════════════════════════════════════════════════════════════
# ENCODER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPngEncoder:
    """Test PNG encoding through PyMuPDF."""

    def setup_method(self):
        self.encoder = PngEncoder()

    def test_rgba(self):
        image = RawImage(width=2, height=2, data=bytes(range(16)), channels=4, alpha=True)
        assert self.encoder.encode(image).startswith(b"\x89PNG")

    def test_gray(self):
        image = RawImage(width=3, height=1, data=b"\x00\x80\xff", channels=1, alpha=False)
        assert self.encoder.encode(image).startswith(b"\x89PNG")

    def test_cmyk_converted(self):
        image = RawImage(width=1, height=1, data=b"\x00\xff\xff\x00", channels=4, alpha=False)
        assert self.encoder.encode(image).startswith(b"\x89PNG")

    def test_wrong_buffer_size(self):
        image = RawImage(width=2, height=2, data=b"\x00" * 3, channels=4, alpha=True)
        with pytest.raises(EncodingError) as exc_info:
            self.encoder.encode(image)
        assert (exc_info.value.width, exc_info.value.height) == (2, 2)

    def test_unsupported_channels(self):
        image = RawImage(width=1, height=1, data=b"\x00\x00", channels=2, alpha=False)
        with pytest.raises(EncodingError):
            self.encoder.encode(image)


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestResultValidator:
    """Test post-parse validation."""

    def _result(self, pages, questions=None):
        return ParsedResult(
            resource_id="r",
            extracted_at="2024-01-01T00:00:00+00:00",
            pages=pages,
            questions=segment_questions(pages) if questions is None else questions,
        )

    def test_clean_result(self):
        pages = [page_of(1, ["1. A", "text"]), page_of(2, ["2. B", "3. C"])]
        report = ResultValidator(max_pages=5).validate(self._result(pages))

        assert report.is_valid
        assert report.total_pages == 2
        assert report.total_lines == 4
        assert report.total_questions == 3
        assert report.questions_per_page == {1: 1, 2: 2}

    def test_orphan_diagrams_counted(self):
        diagram = ParsedDiagram(
            url="/x.png", storage_path="x.png",
            bbox=NormalizedBBox(x=0, y=0, w=0.1, h=0.1),
        )
        page = ParsedPage(page_number=1, width=100, height=100, diagrams=[diagram])
        report = ResultValidator().validate(self._result([page]))

        assert report.total_diagrams == 1
        assert report.diagrams_without_line == 1
        assert report.is_valid

    def test_page_cap_violation(self):
        pages = [page_of(i, []) for i in range(1, 4)]
        report = ResultValidator(max_pages=2).validate(self._result(pages))
        assert not report.is_valid

    def test_dangling_line_reference(self):
        diagram = ParsedDiagram(
            url="/x.png", storage_path="x.png",
            bbox=NormalizedBBox(x=0, y=0, w=0.1, h=0.1),
            nearest_line_index=5,
        )
        page = ParsedPage(page_number=1, width=100, height=100, diagrams=[diagram])
        report = ResultValidator().validate(self._result([page]))
        assert any("missing line 5" in issue for issue in report.issues)

    def test_question_problems(self):
        bad = [
            Question(index=1, label="x", page_number=1, start_line=0, end_line=0, text="x"),
            Question(index=1, label="y", page_number=1, start_line=2, end_line=1, text="y"),
            Question(index=2, label="z", page_number=9, start_line=0, end_line=0, text="z"),
        ]
        report = ResultValidator().validate(self._result([page_of(1, ["a", "b"])], bad))

        issues = "\n".join(report.issues)
        assert "out of order" in issues
        assert "after end line" in issues
        assert "unknown page 9" in issues


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
