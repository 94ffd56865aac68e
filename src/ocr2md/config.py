"""
Configuration and constants for the OCR pipeline.

This module provides:
- Processing configuration grouped by pipeline stage
- The configuration fingerprint used by the content cache
- Environment overrides, resolved once at startup by get_config()
"""

import json
import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any
from pathlib import Path

logger = logging.getLogger("ocr2md")


# ============================================================================
# Constants
# ============================================================================

TOOL_NAME = "ocr2md"

# Bump when the meaning of a cached artifact changes
FINGERPRINT_VERSION = 1

DEFAULT_CACHE_DIR = Path(".cache") / "ocr2md"


class EngineKind(Enum):
    """The two supported recognition backends."""
    TESSERACT = "tesseract"
    PADDLE = "paddle"


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class ImageConfig:
    """Rendering and preprocessing configuration."""
    dpi: int = 300
    preprocess: bool = True  # grayscale + Otsu binarization + median denoise
    thumbnail_max_side: int = 640  # language detection sample


@dataclass
class OCRConfig:
    """OCR configuration."""
    engine: EngineKind = EngineKind.PADDLE
    # Tesseract-style hint, tokens joined by '+'
    languages: str = "eng+chi_sim+equ"
    detect_language: bool = True
    language_sample_chars: int = 400
    # Tesseract
    tessdata_dir: Optional[Path] = None
    tesseract_config: str = "--oem 3 --psm 3"
    # PaddleOCR (det/cls/rec model folders live under paddle_model_dir)
    paddle_model_dir: Optional[Path] = None
    paddle_lang: str = "ch"
    det_padding: int = 50
    det_max_side: int = 1024
    det_box_threshold: float = 0.5
    det_pixel_threshold: float = 0.3
    det_unclip_ratio: float = 1.6
    use_angle_cls: bool = True
    use_gpu: bool = False


@dataclass
class LayoutConfig:
    """Reading-order configuration."""
    enabled: bool = True
    # Blocks whose top edges differ by at most this many pixels share a row.
    # Tuned at 300 DPI.
    row_tolerance: int = 12


@dataclass
class MathOCRConfig:
    """Formula detection and re-recognition configuration."""
    enabled: bool = True
    symbol_ratio_threshold: float = 0.25
    languages: str = "equ+eng+chi_sim"
    delimiter: str = "$$"


@dataclass
class CacheConfig:
    """Content cache configuration."""
    enabled: bool = True
    dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    preprocess: bool = True  # cache normalized page images
    ocr: bool = True  # cache recognition results


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    image: ImageConfig = field(default_factory=ImageConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    math: MathOCRConfig = field(default_factory=MathOCRConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    threads: int = field(default_factory=lambda: os.cpu_count() or 1)
    page_timeout: Optional[float] = None  # seconds, None = unlimited

    def fingerprint(self) -> str:
        """
        Serialize every setting that changes pixel or text output.

        Two configs with the same fingerprint must produce identical cache
        artifacts for the same page.
        """
        data: Dict[str, Any] = {
            "version": FINGERPRINT_VERSION,
            "dpi": self.image.dpi,
            "preprocess": self.image.preprocess,
            "languages": self.ocr.languages,
            "detect_language": self.ocr.detect_language,
            "language_sample_chars": self.ocr.language_sample_chars,
            "engine": self.ocr.engine.value,
            "layout": self.layout.enabled,
            "row_tolerance": self.layout.row_tolerance,
            "math_ocr": self.math.enabled,
            "math_threshold": self.math.symbol_ratio_threshold,
            "math_languages": self.math.languages,
        }
        if self.ocr.engine == EngineKind.TESSERACT:
            data.update({
                "tesseract_config": self.ocr.tesseract_config,
                "tessdata_dir": str(self.ocr.tessdata_dir or ""),
            })
        else:
            data.update({
                "paddle_model_dir": str(self.ocr.paddle_model_dir or ""),
                "paddle_lang": self.ocr.paddle_lang,
                "det_padding": self.ocr.det_padding,
                "det_max_side": self.ocr.det_max_side,
                "det_box_threshold": self.ocr.det_box_threshold,
                "det_pixel_threshold": self.ocr.det_pixel_threshold,
                "det_unclip_ratio": self.ocr.det_unclip_ratio,
                "use_angle_cls": self.ocr.use_angle_cls,
            })
        return json.dumps(data, sort_keys=True, separators=(",", ":"))


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("OCR2MD_USE_GPU", "").lower() == "true":
        config.ocr.use_gpu = True

    if os.environ.get("OCR2MD_NO_CACHE", "").lower() == "true":
        config.cache.enabled = False

    cache_dir = os.environ.get("OCR2MD_CACHE_DIR")
    if cache_dir:
        config.cache.dir = Path(cache_dir)

    tessdata = os.environ.get("TESSDATA_PREFIX")
    if tessdata:
        config.ocr.tessdata_dir = Path(tessdata)

    paddle_dir = os.environ.get("OCR2MD_PADDLE_MODEL_DIR")
    if paddle_dir:
        config.ocr.paddle_model_dir = Path(paddle_dir)

    return config


# ============================================================================
# Utility Functions
# ============================================================================

def check_gpu_available() -> bool:
    """Check if PaddlePaddle was built with CUDA and sees a device."""
    try:
        import paddle
        return paddle.device.is_compiled_with_cuda() and paddle.device.cuda.device_count() > 0
    except ImportError:
        return False
