"""
Text OCR module for the OCR pipeline.

Provides:
- Recognized block / page data model
- Tesseract engine (whole-page text)
- PaddleOCR engine (located text lines)
- A dispatcher that runs the configured engine and tags its output
"""

import abc
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any, Set, Union
import numpy as np

from ..config import EngineKind, PipelineConfig
from ..errors import ConfigurationError, RecognitionError
from .images import to_grayscale
from .layout import BlockType, BoundingBox

logger = logging.getLogger(__name__)

# Tesseract reports no usable confidence for plain text output
SENTINEL_CONFIDENCE = 1.0


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class OcrBlock:
    """A recognized text fragment."""
    text: str
    confidence: float = SENTINEL_CONFIDENCE
    bbox: Optional[BoundingBox] = None  # None for whole-page engines
    block_type: BlockType = BlockType.TEXT
    language: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict() if self.bbox else None,
            "type": self.block_type.value,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OcrBlock':
        bbox = data.get("bbox")
        return cls(
            text=data["text"],
            confidence=float(data["confidence"]),
            bbox=BoundingBox.from_dict(bbox) if bbox else None,
            block_type=BlockType(data.get("type", BlockType.TEXT.value)),
            language=data.get("language"),
        )


@dataclass
class OcrPage:
    """Recognized blocks of one page, in reading order once sorted."""
    blocks: List[OcrBlock] = field(default_factory=list)
    language: Optional[str] = None

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocks": [b.to_dict() for b in self.blocks],
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OcrPage':
        return cls(
            blocks=[OcrBlock.from_dict(b) for b in data.get("blocks", [])],
            language=data.get("language"),
        )


# ============================================================================
# Engine Interface
# ============================================================================

class OcrEngine(abc.ABC):
    """
    A recognition backend.

    Engines return blocks with type TEXT and no language tag; tagging is done
    by the dispatcher.
    """

    name: str = ""
    # True when the engine locates each fragment on the page
    returns_layout: bool = False

    @abc.abstractmethod
    def recognize(self, image: np.ndarray, languages: str) -> List[OcrBlock]:
        """
        Recognize text in an image.

        Args:
            image: Page or region image (RGBA, RGB or grayscale)
            languages: Tesseract-style hint such as "eng+chi_sim"

        Raises:
            RecognitionError: if the backend call fails
        """
        raise NotImplementedError


# ============================================================================
# Tesseract Engine
# ============================================================================

class TesseractEngine(OcrEngine):
    """
    Whole-page OCR using Tesseract.

    pytesseract starts a fresh tesseract process for every call, so one
    instance can be shared by all workers without locking.
    """

    name = "tesseract"
    returns_layout = False

    def __init__(
        self,
        tessdata_dir: Optional[Union[str, Path]] = None,
        config: str = "--oem 3 --psm 3"
    ):
        try:
            import pytesseract
            self.pytesseract = pytesseract
        except ImportError as e:
            raise ConfigurationError(
                "pytesseract not available. Install with: pip install pytesseract"
            ) from e

        try:
            pytesseract.get_tesseract_version()
        except Exception as e:
            raise ConfigurationError(
                f"Tesseract not available: {e}\n"
                "Install Tesseract: https://github.com/tesseract-ocr/tesseract"
            ) from e

        self._data_config = ""
        if tessdata_dir is not None:
            tessdata_dir = Path(tessdata_dir)
            if not tessdata_dir.is_dir():
                raise ConfigurationError(f"tessdata directory not found: {tessdata_dir}")
            self._data_config = f'--tessdata-dir "{tessdata_dir}"'

        try:
            languages = pytesseract.get_languages(config=self._data_config)
        except Exception as e:
            raise ConfigurationError(f"Could not list Tesseract languages: {e}") from e

        self.available_languages: Set[str] = {l for l in languages if l != "osd"}
        if not self.available_languages:
            raise ConfigurationError(
                "No Tesseract language data found. Make sure *.traineddata files are "
                "installed or point --tessdata-dir / TESSDATA_PREFIX at them"
            )

        self.config = f"{config} {self._data_config}".strip()
        self._warned: Set[str] = set()
        logger.info(f"Initialized Tesseract with languages: {sorted(self.available_languages)}")

    def _usable_languages(self, languages: str) -> str:
        """Drop hint tokens that have no traineddata installed."""
        tokens = [t for t in languages.split("+") if t]
        usable = [t for t in tokens if t in self.available_languages]

        for token in tokens:
            if token not in self.available_languages and token not in self._warned:
                self._warned.add(token)
                logger.warning(f"Tesseract has no data for '{token}', skipping it")

        if not usable:
            raise RecognitionError(f"No installed Tesseract language in hint '{languages}'")
        return "+".join(usable)

    def recognize(self, image: np.ndarray, languages: str) -> List[OcrBlock]:
        """Recognize the whole image as a single text block."""
        gray = to_grayscale(image)
        lang = self._usable_languages(languages)

        try:
            text = self.pytesseract.image_to_string(gray, lang=lang, config=self.config)
        except Exception as e:
            raise RecognitionError(f"Tesseract error: {e}") from e

        return [OcrBlock(text=text, confidence=SENTINEL_CONFIDENCE)]


# ============================================================================
# PaddleOCR Engine
# ============================================================================

class PaddleOCREngine(OcrEngine):
    """
    Detection + recognition using PaddleOCR.

    The predictor holds model state that is not safe for concurrent calls;
    every call takes the instance lock.
    """

    name = "paddle"
    returns_layout = True

    def __init__(
        self,
        model_dir: Optional[Union[str, Path]] = None,
        language: str = "ch",
        use_angle_cls: bool = True,
        use_gpu: bool = False,
        padding: int = 50,
        max_side: int = 1024,
        box_threshold: float = 0.5,
        pixel_threshold: float = 0.3,
        unclip_ratio: float = 1.6,
        predictor: Any = None
    ):
        self.language = language
        self.use_angle_cls = use_angle_cls
        self.padding = max(0, int(padding))
        self._lock = threading.Lock()

        if predictor is not None:
            self.ocr = predictor
            return

        model_kwargs = {}
        if model_dir is not None:
            model_dir = Path(model_dir)
            required = {"det": model_dir / "det", "rec": model_dir / "rec"}
            if use_angle_cls:
                required["cls"] = model_dir / "cls"
            missing = [str(p) for p in required.values() if not p.is_dir()]
            if missing:
                raise ConfigurationError(
                    f"Invalid PaddleOCR model directory {model_dir}, missing: {', '.join(missing)}"
                )
            for kind, path in required.items():
                model_kwargs[f"{kind}_model_dir"] = str(path)

        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise ConfigurationError(
                "PaddleOCR not available. Install with: pip install 'ocr2md[paddle]'"
            ) from e

        # Suppress PaddleOCR logging
        logging.getLogger('ppocr').setLevel(logging.WARNING)

        try:
            self.ocr = PaddleOCR(
                use_angle_cls=use_angle_cls,
                lang=language,
                use_gpu=use_gpu,
                det_limit_side_len=max_side,
                det_limit_type="max",
                det_db_thresh=pixel_threshold,
                det_db_box_thresh=box_threshold,
                det_db_unclip_ratio=unclip_ratio,
                **model_kwargs
            )
        except Exception as e:
            raise ConfigurationError(f"Failed to initialize PaddleOCR: {e}") from e

        logger.info(f"Initialized PaddleOCR (lang={language}, gpu={use_gpu})")

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        """Convert to 3-channel BGR and pad with a white margin."""
        import cv2

        if len(image.shape) == 2:
            bgr = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            bgr = cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
        else:
            bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

        if self.padding:
            p = self.padding
            bgr = cv2.copyMakeBorder(bgr, p, p, p, p, cv2.BORDER_CONSTANT, value=(255, 255, 255))
        return bgr

    def recognize(self, image: np.ndarray, languages: str) -> List[OcrBlock]:
        """
        Recognize located text lines.

        The language model is fixed when the engine is built, so the hint is
        only logged.
        """
        h, w = image.shape[:2]
        prepared = self._prepare(image)
        logger.debug(f"PaddleOCR call (hint '{languages}' handled by lang={self.language})")

        with self._lock:
            try:
                result = self.ocr.ocr(prepared, cls=self.use_angle_cls)
            except Exception as e:
                raise RecognitionError(f"PaddleOCR error: {e}") from e

        if not result or not result[0]:
            return []

        blocks = []
        for line_data in result[0]:
            try:
                points, (text, score) = line_data[0], line_data[1]
                # Back to unpadded page coordinates
                shifted = [(p[0] - self.padding, p[1] - self.padding) for p in points]
                bbox = BoundingBox.from_polygon(shifted, image_width=w, image_height=h)
                confidence = min(max(float(score), 0.0), 1.0)
            except (TypeError, ValueError, IndexError) as e:
                raise RecognitionError(f"Unexpected PaddleOCR result line {line_data!r}: {e}") from e

            blocks.append(OcrBlock(text=str(text), confidence=confidence, bbox=bbox))

        return blocks


# ============================================================================
# Engine Factory and Dispatcher
# ============================================================================

def create_engine(config: PipelineConfig) -> OcrEngine:
    """
    Build the configured recognition engine.

    Raises:
        ConfigurationError: if the backend or its assets are unavailable
    """
    ocr = config.ocr
    if ocr.engine == EngineKind.TESSERACT:
        return TesseractEngine(tessdata_dir=ocr.tessdata_dir, config=ocr.tesseract_config)
    elif ocr.engine == EngineKind.PADDLE:
        return PaddleOCREngine(
            model_dir=ocr.paddle_model_dir,
            language=ocr.paddle_lang,
            use_angle_cls=ocr.use_angle_cls,
            use_gpu=ocr.use_gpu,
            padding=ocr.det_padding,
            max_side=ocr.det_max_side,
            box_threshold=ocr.det_box_threshold,
            pixel_threshold=ocr.det_pixel_threshold,
            unclip_ratio=ocr.det_unclip_ratio,
        )
    raise ConfigurationError(f"Unknown OCR engine: {ocr.engine}")


class OcrDispatcher:
    """Runs the configured engine and normalizes its output into an OcrPage."""

    def __init__(self, engine: OcrEngine):
        self.engine = engine

    def recognize(
        self,
        image: np.ndarray,
        effective_hint: str,
        detected_language: Optional[str] = None
    ) -> OcrPage:
        """
        Recognize one page.

        Whole-page engines tag their block with the detected language, or the
        hint when nothing was detected. Layout engines carry the detected
        language only.
        """
        blocks = self.engine.recognize(image, effective_hint)

        if self.engine.returns_layout:
            tag = detected_language
        else:
            tag = detected_language or effective_hint
        for block in blocks:
            block.language = tag

        return OcrPage(blocks=blocks, language=detected_language)

    def recognize_text(self, image: np.ndarray, languages: str) -> str:
        """Plain text of a recognition pass, fragments joined by newlines."""
        blocks = self.engine.recognize(image, languages)
        return "\n".join(b.text for b in blocks)
