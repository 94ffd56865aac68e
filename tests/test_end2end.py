"""
End-to-end integration tests for the page pipeline.

Rendering and recognition are replaced by fakes so the tests need neither
poppler nor an OCR backend.
"""

import pytest
import numpy as np
import threading
import time
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeEngine:
    """Layout engine that returns two lines and a formula for every page."""

    name = "fake"
    returns_layout = True

    def __init__(self, fail_pages=(), delay=0.0, page_delays=None):
        from ocr2md.utils.layout import BoundingBox
        from ocr2md.utils.ocr_text import OcrBlock

        self._block = OcrBlock
        self._bbox = BoundingBox
        self.fail_pages = set(fail_pages)
        self.delay = delay
        self.page_delays = page_delays or {}
        self.calls = 0
        self._lock = threading.Lock()

    def recognize(self, image, languages):
        from ocr2md.errors import RecognitionError

        with self._lock:
            self.calls += 1

        # Page identity is encoded in the top-left pixel by the fake renderer
        page_num = int(image[0, 0]) if image.ndim == 2 else int(image[0, 0, 0])
        if page_num in self.fail_pages:
            raise RecognitionError(f"engine failed on page {page_num}")
        delay = self.page_delays.get(page_num, self.delay)
        if delay:
            time.sleep(delay)

        if languages.startswith("equ"):
            return [self._block("x^2 + y^2 = z^2", 0.9)]

        return [
            self._block("second line", 0.8, self._bbox(20, 200, 300, 30)),
            self._block("x^2+y^2=z^2", 0.7, self._bbox(20, 300, 200, 40)),
            self._block(f"Page {page_num} heading", 0.9, self._bbox(20, 40, 400, 40)),
        ]


def make_renderer(fail_pages=(), calls=None):
    from ocr2md.errors import RenderError

    def render(source, page_index, dpi):
        page_num = page_index + 1
        if calls is not None:
            calls.append(page_num)
        if page_num in fail_pages:
            raise RenderError(f"cannot render page {page_num}")
        img = np.full((600, 500, 4), 255, dtype=np.uint8)
        img[0, 0, :3] = page_num
        img[100:110, 50:300, :3] = 0
        return img

    return render


@pytest.fixture
def config(tmp_path):
    from ocr2md.config import PipelineConfig

    config = PipelineConfig()
    config.ocr.detect_language = False
    config.image.preprocess = False
    config.cache.dir = tmp_path / "cache"
    config.threads = 1
    return config


def make_assembler(config, engine=None, renderer=None):
    from ocr2md.utils.assembler import DocumentAssembler

    return DocumentAssembler(
        config,
        engine=engine or FakeEngine(),
        renderer=renderer or make_renderer()
    )


class TestEndToEnd:
    """End-to-end integration tests."""

    def test_single_page(self, config):
        """Blocks come back in reading order with formulas refined."""
        from ocr2md.utils.layout import BlockType
        from ocr2md.utils.assembler import PageState

        assembler = make_assembler(config)
        result = assembler.process_page("doc.pdf", 1)

        texts = [b.text for b in result.page.blocks]
        assert texts[0] == "Page 1 heading"
        assert texts[1] == "second line"
        assert result.page.blocks[2].block_type == BlockType.FORMULA
        assert texts[2] == "$$\nx^2 + y^2 = z^2\n$$"
        assert (result.image_width, result.image_height) == (500, 600)
        assert assembler.page_state(1) == PageState.DONE

    def test_layout_and_math_disabled(self, config):
        config.layout.enabled = False
        config.math.enabled = False

        result = make_assembler(config).process_page("doc.pdf", 1)

        assert [b.text for b in result.page.blocks] == [
            "second line", "x^2+y^2=z^2", "Page 1 heading"
        ]

    def test_failed_render_isolated(self, config):
        """A page that fails to render does not abort the document."""
        from ocr2md.utils.assembler import PageState

        assembler = make_assembler(config, renderer=make_renderer(fail_pages={2}))
        document = assembler.process_document("doc.pdf", [1, 2])

        assert [p.page_num for p in document.pages] == [1]
        assert len(document.failures) == 1
        failure = document.failures[0]
        assert failure.page_num == 2
        assert failure.stage == PageState.RENDERING
        assert failure.error_type == "RenderError"
        assert assembler.page_state(2) == PageState.FAILED

    def test_failed_recognition_isolated(self, config):
        from ocr2md.utils.assembler import PageState

        config.threads = 3
        engine = FakeEngine(fail_pages={2})
        document = make_assembler(config, engine=engine).process_document("doc.pdf", [1, 2, 3])

        assert [p.page_num for p in document.pages] == [1, 3]
        assert document.failures[0].stage == PageState.RECOGNIZING
        assert document.pages_requested == 3

    def test_parallel_output_sorted(self, config):
        """Pages come back sorted whatever order the workers finish in."""
        config.threads = 4
        engine = FakeEngine(delay=0.01)
        document = make_assembler(config, engine=engine).process_document("doc.pdf", [5, 3, 1, 4, 2, 3])

        assert [p.page_num for p in document.pages] == [1, 2, 3, 4, 5]
        for page in document.pages:
            assert page.page.blocks[0].text == f"Page {page.page_num} heading"

    def test_empty_page_list(self, config):
        document = make_assembler(config).process_document("doc.pdf", [])

        assert document.pages == []
        assert document.failures == []

    def test_configuration_error_is_fatal(self, config):
        """Configuration errors abort the run instead of failing one page."""
        from ocr2md.errors import ConfigurationError

        def render(source, page_index, dpi):
            raise ConfigurationError("poppler missing")

        assembler = make_assembler(config, renderer=render)

        with pytest.raises(ConfigurationError):
            assembler.process_document("doc.pdf", [1, 2])

    def test_page_timeout(self, config):
        """A page over its time budget is recorded as failed."""
        config.page_timeout = 0.05
        engine = FakeEngine(delay=0.5)

        document = make_assembler(config, engine=engine).process_document("doc.pdf", [1])

        assert document.pages == []
        assert document.failures[0].error_type == "TimeoutError"

    def test_timeout_counts_from_page_start(self, config):
        """A page queued behind a slow one is not charged for the wait."""
        from ocr2md.utils.assembler import PageState

        config.threads = 1
        config.page_timeout = 0.3
        engine = FakeEngine(page_delays={1: 1.0, 2: 0.05})

        document = make_assembler(config, engine=engine).process_document("doc.pdf", [1, 2])

        assert [f.page_num for f in document.failures] == [1]
        assert document.failures[0].stage == PageState.RECOGNIZING
        assert [p.page_num for p in document.pages] == [2]

    def test_progress_logged(self, config, caplog):
        """Every finished page is reported with a running count."""
        import logging

        assembler = make_assembler(config, renderer=make_renderer(fail_pages={2}))
        with caplog.at_level(logging.INFO, logger="ocr2md.utils.assembler"):
            assembler.process_document("doc.pdf", [1, 2, 3])

        messages = [r.getMessage() for r in caplog.records]
        assert "[1/3] Page 1 done" in messages
        assert "[2/3] Page 2 failed" in messages
        assert "[3/3] Page 3 done" in messages

    def test_language_detection(self, config):
        """Detected language is merged into the hint and tagged on blocks."""
        pytest.importorskip("langdetect")
        from ocr2md.utils.ocr_text import OcrBlock

        class EnglishEngine:
            name = "english"
            returns_layout = False

            def __init__(self):
                self.hints = []

            def recognize(self, image, languages):
                self.hints.append(languages)
                return [OcrBlock(
                    "This is an ordinary English paragraph about the weather "
                    "and the garden, long enough for reliable detection."
                )]

        config.ocr.detect_language = True
        config.ocr.languages = "chi_sim"
        config.math.enabled = False
        engine = EnglishEngine()

        result = make_assembler(config, engine=engine).process_page("doc.pdf", 1)

        assert engine.hints == ["chi_sim", "eng+chi_sim"]
        assert result.page.language == "eng"
        assert result.page.blocks[0].language == "eng"


class TestCaching:
    """Test cache interaction."""

    def test_second_run_hits_cache(self, config):
        engine = FakeEngine()
        first = make_assembler(config, engine=engine).process_document("doc.pdf", [1, 2])
        calls_after_first = engine.calls

        second = make_assembler(config, engine=engine).process_document("doc.pdf", [1, 2])

        assert engine.calls == calls_after_first
        assert second.cached_pages == 2
        assert [p.page for p in second.pages] == [p.page for p in first.pages]

    def test_preprocessed_images_cached(self, config):
        from ocr2md.utils.cache import CacheManager

        config.image.preprocess = True
        make_assembler(config).process_document("doc.pdf", [1])

        cache = CacheManager(config.cache)
        assert len(list(cache.preprocess_dir.glob("*.png"))) == 1
        assert len(list(cache.ocr_dir.glob("*.json"))) == 1

    def test_config_change_misses(self, config):
        engine = FakeEngine()
        make_assembler(config, engine=engine).process_document("doc.pdf", [1])
        calls = engine.calls

        config.layout.row_tolerance = 30
        document = make_assembler(config, engine=engine).process_document("doc.pdf", [1])

        assert engine.calls > calls
        assert document.cached_pages == 0

    def test_cache_disabled(self, config):
        engine = FakeEngine()
        config.cache.enabled = False

        make_assembler(config, engine=engine).process_document("doc.pdf", [1])
        calls = engine.calls
        make_assembler(config, engine=engine).process_document("doc.pdf", [1])

        assert engine.calls == 2 * calls
        assert not config.cache.dir.exists()

    def test_corrupt_entry_is_a_miss(self, config):
        """An unreadable cache entry is recomputed and overwritten."""
        from ocr2md.utils.cache import CacheManager

        engine = FakeEngine()
        make_assembler(config, engine=engine).process_document("doc.pdf", [1])
        calls = engine.calls

        entry = next(CacheManager(config.cache).ocr_dir.glob("*.json"))
        entry.write_text("{broken", encoding="utf-8")

        document = make_assembler(config, engine=engine).process_document("doc.pdf", [1])

        assert len(document.pages) == 1
        assert document.cached_pages == 0
        assert engine.calls > calls
        assert entry.read_text(encoding="utf-8").startswith("{\"page_num\"")
