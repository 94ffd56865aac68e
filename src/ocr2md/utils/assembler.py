"""
Page pipeline coordinator for the OCR pipeline.

Provides:
- Page / document result data model
- Per-page pipeline: render, cache lookup, normalize, recognize, order,
  refine formulas
- Document orchestration across a worker pool with per-page failure isolation
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Callable, Iterable, Union
import numpy as np

from ..config import PipelineConfig
from ..errors import CacheError, ConfigurationError
from .cache import CacheManager
from .images import normalize, image_bytes
from .io import render_page
from .language import LanguageResolver
from .layout import sort_by_reading_order
from .ocr_math import FormulaRefiner
from .ocr_text import OcrDispatcher, OcrEngine, OcrPage, create_engine

logger = logging.getLogger(__name__)

Renderer = Callable[[Union[str, Path], int, int], np.ndarray]


# ============================================================================
# Data Classes
# ============================================================================

class PageState(Enum):
    """Pipeline states of a single page."""
    PENDING = "pending"
    RENDERING = "rendering"
    CACHE_LOOKUP = "cache_lookup"
    NORMALIZING = "normalizing"
    RECOGNIZING = "recognizing"
    ORDERING = "ordering"
    FORMULA_REFINING = "formula_refining"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PageResult:
    """Recognized content of one page."""
    page_num: int
    page: OcrPage
    image_width: int
    image_height: int
    from_cache: bool = field(default=False, compare=False)

    @property
    def text(self) -> str:
        return self.page.text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_num": self.page_num,
            "image_width": self.image_width,
            "image_height": self.image_height,
            "page": self.page.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageResult':
        return cls(
            page_num=int(data["page_num"]),
            page=OcrPage.from_dict(data["page"]),
            image_width=int(data["image_width"]),
            image_height=int(data["image_height"]),
        )


@dataclass
class PageFailure:
    """A page that did not make it through the pipeline."""
    page_num: int
    stage: PageState
    error: str
    error_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_num": self.page_num,
            "stage": self.stage.value,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class DocumentResult:
    """Outcome of a whole run."""
    source: str
    pages: List[PageResult] = field(default_factory=list)
    failures: List[PageFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def pages_requested(self) -> int:
        return len(self.pages) + len(self.failures)

    @property
    def cached_pages(self) -> int:
        return sum(1 for p in self.pages if p.from_cache)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "pages": [p.to_dict() for p in self.pages],
            "failures": [f.to_dict() for f in self.failures],
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the page recognition pipeline.

    Coordinates:
    - Rendering
    - Content cache lookups and stores
    - Image normalization
    - Language hint resolution and OCR
    - Reading order and formula refinement
    """

    def __init__(
        self,
        config: PipelineConfig,
        engine: Optional[OcrEngine] = None,
        renderer: Optional[Renderer] = None,
        cache: Optional[CacheManager] = None
    ):
        """
        Raises:
            ConfigurationError: if the configured engine cannot be created
        """
        self.config = config
        self.engine = engine if engine is not None else create_engine(config)
        self.renderer = renderer or render_page
        self.cache = cache if cache is not None else CacheManager(config.cache)

        self.dispatcher = OcrDispatcher(self.engine)
        self.language_resolver = LanguageResolver(
            self.dispatcher,
            enabled=config.ocr.detect_language,
            thumbnail_max_side=config.image.thumbnail_max_side,
            sample_chars=config.ocr.language_sample_chars
        )
        self.formula_refiner = FormulaRefiner(
            self.dispatcher,
            languages=config.math.languages,
            ratio_threshold=config.math.symbol_ratio_threshold,
            delimiter=config.math.delimiter
        )

        self._fingerprint = config.fingerprint()
        self._states: Dict[int, PageState] = {}
        self._started: Dict[int, float] = {}
        self._state_lock = threading.Lock()

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------

    def _set_state(self, page_num: int, state: PageState):
        with self._state_lock:
            if self._states.get(page_num) == PageState.FAILED:
                return
            self._states[page_num] = state
        logger.debug(f"Page {page_num}: {state.value}")

    def page_state(self, page_num: int) -> PageState:
        with self._state_lock:
            return self._states.get(page_num, PageState.PENDING)

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _key(self, source: Union[str, Path], page_num: int, image: np.ndarray) -> str:
        return self.cache.compute_key(
            source, page_num, self.config.image.dpi, self._fingerprint, image_bytes(image)
        )

    def _cache_load(self, loader: Callable, key: str, page_num: int, what: str):
        try:
            return loader(key)
        except CacheError as e:
            logger.warning(f"Page {page_num}: ignoring unreadable cached {what}: {e}")
            return None

    def _cache_store(self, storer: Callable, key: str, value: Any, page_num: int, what: str):
        try:
            storer(key, value)
        except CacheError as e:
            logger.warning(f"Page {page_num}: could not cache {what}: {e}")

    # ------------------------------------------------------------------
    # Page pipeline
    # ------------------------------------------------------------------

    def process_page(self, source: Union[str, Path], page_num: int) -> PageResult:
        """
        Run the full pipeline for one page.

        Args:
            source: PDF path
            page_num: 1-based page number

        Returns:
            PageResult

        Raises:
            RenderError, RecognitionError: page-level failures
        """
        start_time = time.time()
        dpi = self.config.image.dpi

        self._set_state(page_num, PageState.RENDERING)
        raw = self.renderer(source, page_num - 1, dpi)

        self._set_state(page_num, PageState.CACHE_LOOKUP)
        image = raw
        if self.config.image.preprocess:
            pre_key = self._key(source, page_num, raw)
            cached_image = self._cache_load(
                self.cache.load_preprocessed, pre_key, page_num, "preprocessed image"
            )
            if cached_image is not None:
                image = cached_image
            else:
                self._set_state(page_num, PageState.NORMALIZING)
                image = normalize(raw)
                self._cache_store(
                    self.cache.store_preprocessed, pre_key, image, page_num, "preprocessed image"
                )

        ocr_key = self._key(source, page_num, image)
        cached_result = self._cache_load(
            self.cache.load_recognition, ocr_key, page_num, "recognition result"
        )
        if cached_result is not None:
            cached_result.from_cache = True
            self._set_state(page_num, PageState.DONE)
            logger.info(f"Page {page_num} loaded from cache")
            return cached_result

        self._set_state(page_num, PageState.RECOGNIZING)
        hint, detected = self.language_resolver.resolve(image, self.config.ocr.languages)
        ocr_page = self.dispatcher.recognize(image, hint, detected)

        if self.config.layout.enabled:
            self._set_state(page_num, PageState.ORDERING)
            sort_by_reading_order(ocr_page.blocks, self.config.layout.row_tolerance)

        if self.config.math.enabled:
            self._set_state(page_num, PageState.FORMULA_REFINING)
            self.formula_refiner.detect_and_refine(ocr_page.blocks, image)

        h, w = image.shape[:2]
        result = PageResult(page_num=page_num, page=ocr_page, image_width=w, image_height=h)
        self._cache_store(
            self.cache.store_recognition, ocr_key, result, page_num, "recognition result"
        )

        self._set_state(page_num, PageState.DONE)
        elapsed = time.time() - start_time
        logger.info(f"Page {page_num} processed in {elapsed:.2f}s ({len(ocr_page.blocks)} blocks)")
        return result

    def _run_page(self, source: Union[str, Path], page_num: int) -> Union[PageResult, PageFailure]:
        """Run one page, turning any page-level error into a PageFailure."""
        with self._state_lock:
            self._started[page_num] = time.monotonic()
        try:
            return self.process_page(source, page_num)
        except ConfigurationError:
            raise
        except Exception as e:
            return self._fail(page_num, e)

    def _fail(self, page_num: int, error: Exception) -> PageFailure:
        stage = self.page_state(page_num)
        self._set_state(page_num, PageState.FAILED)
        logger.error(f"Page {page_num} failed during {stage.value}: {error}")
        return PageFailure(
            page_num=page_num,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__
        )

    def _time_left(self, page_num: int, timeout: float) -> Optional[float]:
        """Seconds left in a page's budget, None if no worker has picked it up yet."""
        with self._state_lock:
            started = self._started.get(page_num)
        if started is None:
            return None
        return timeout - (time.monotonic() - started)

    def _collect(
        self,
        futures: Dict[Future, int],
        timeout: Optional[float],
        record: Callable[[Union[PageResult, PageFailure]], None]
    ):
        """
        Wait for page futures, failing pages that run past their time budget.

        The budget of a page starts when a worker picks it up, so pages still
        queued behind a slow one are never charged for the wait.
        """
        pending = set(futures)
        while pending:
            wait_for = None
            if timeout is not None:
                remaining = [
                    left for left in (self._time_left(futures[f], timeout) for f in pending)
                    if left is not None
                ]
                # Nothing running yet: check again once a budget could have expired
                wait_for = max(min(remaining), 0.0) if remaining else timeout

            done, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
            for future in done:
                record(future.result())

            if timeout is None:
                continue
            for future in list(pending):
                page_num = futures[future]
                left = self._time_left(page_num, timeout)
                if left is not None and left <= 0:
                    pending.discard(future)
                    record(self._fail(
                        page_num, TimeoutError(f"page exceeded {timeout:.1f}s time budget")
                    ))

    # ------------------------------------------------------------------
    # Document pipeline
    # ------------------------------------------------------------------

    def process_document(
        self,
        source: Union[str, Path],
        page_numbers: Iterable[int]
    ) -> DocumentResult:
        """
        Process a set of pages of one document.

        A failing page never aborts the run; it is recorded and the remaining
        pages continue. Progress is logged as each page finishes.

        Args:
            source: PDF path
            page_numbers: 1-based page numbers

        Returns:
            DocumentResult with pages and failures sorted by page number
        """
        start_time = time.time()
        pages = sorted(set(page_numbers))
        timeout = self.config.page_timeout

        with self._state_lock:
            self._states = {p: PageState.PENDING for p in pages}
            self._started = {}

        outcomes: List[Union[PageResult, PageFailure]] = []

        def record(outcome: Union[PageResult, PageFailure]):
            outcomes.append(outcome)
            status = "failed" if isinstance(outcome, PageFailure) else "done"
            logger.info(f"[{len(outcomes)}/{len(pages)}] Page {outcome.page_num} {status}")

        workers = min(max(self.config.threads, 1), max(len(pages), 1))

        if workers == 1 and timeout is None:
            for page_num in pages:
                record(self._run_page(source, page_num))
        else:
            executor = ThreadPoolExecutor(max_workers=workers)
            try:
                futures = {
                    executor.submit(self._run_page, source, page_num): page_num
                    for page_num in pages
                }
                self._collect(futures, timeout, record)
            finally:
                # Timed-out pages cannot be interrupted; do not wait for them
                executor.shutdown(wait=timeout is None, cancel_futures=True)

        result = DocumentResult(source=str(source))
        result.pages = sorted(
            (o for o in outcomes if isinstance(o, PageResult)), key=lambda r: r.page_num
        )
        result.failures = sorted(
            (o for o in outcomes if isinstance(o, PageFailure)), key=lambda f: f.page_num
        )
        result.elapsed_seconds = time.time() - start_time

        if result.failures:
            logger.warning(f"Errors occurred on {len(result.failures)} page(s):")
            for failure in result.failures:
                logger.warning(f"  Page {failure.page_num}: {failure.error}")

        logger.info(
            f"Processed {len(result.pages)}/{len(pages)} page(s) in {result.elapsed_seconds:.2f}s "
            f"({result.cached_pages} from cache)"
        )
        return result
