"""
Language detection for OCR language hints.

A quick recognition pass over a page thumbnail gives a text sample; its
dominant language is mapped to an OCR language code and merged into the
configured hint.
"""

import logging
import threading
from typing import Optional, Tuple, TYPE_CHECKING
import numpy as np

from ..errors import RecognitionError
from .images import make_thumbnail

if TYPE_CHECKING:
    from .ocr_text import OcrDispatcher

logger = logging.getLogger(__name__)

# langdetect code -> OCR language code
LANGUAGE_CODES = {
    "en": "eng",
    "zh-cn": "chi_sim",
    "zh-tw": "chi_sim",
    "ja": "jpn",
    "ko": "kor",
    "es": "spa",
    "fr": "fra",
}

_detect_lock = threading.Lock()


class LanguageDetector:
    """Classify text into one of the supported OCR languages."""

    def __init__(self):
        from langdetect import DetectorFactory
        # Fixed seed, otherwise langdetect is non-deterministic
        DetectorFactory.seed = 0

    def detect(self, text: str) -> Optional[str]:
        """Return an OCR language code such as 'eng', or None."""
        from langdetect import detect
        from langdetect.lang_detect_exception import LangDetectException

        if not text or not text.strip():
            return None

        try:
            # Profile loading in langdetect is not thread-safe
            with _detect_lock:
                lang = detect(text)
        except LangDetectException:
            return None

        return LANGUAGE_CODES.get(lang)

    @staticmethod
    def merge_with_hint(existing: str, detected: str) -> str:
        """
        Merge a detected code into a hint like "eng+chi_sim".

        The hint is unchanged if it already lists the code, otherwise the code
        is put in front.
        """
        if detected in existing.split("+"):
            return existing
        if not existing:
            return detected
        return f"{detected}+{existing}"


class LanguageResolver:
    """Work out the effective language hint for a page."""

    def __init__(
        self,
        dispatcher: 'OcrDispatcher',
        enabled: bool = True,
        thumbnail_max_side: int = 640,
        sample_chars: int = 400
    ):
        self.dispatcher = dispatcher
        self.enabled = enabled
        self.thumbnail_max_side = thumbnail_max_side
        self.sample_chars = sample_chars
        self.detector = LanguageDetector() if enabled else None

    def resolve(self, image: np.ndarray, configured_hint: str) -> Tuple[str, Optional[str]]:
        """
        Args:
            image: Page image
            configured_hint: Hint from the configuration

        Returns:
            (effective_hint, detected_language)
        """
        if not self.enabled:
            return configured_hint, None

        thumbnail = make_thumbnail(image, self.thumbnail_max_side)
        try:
            text = self.dispatcher.recognize_text(thumbnail, configured_hint)
        except RecognitionError as e:
            logger.warning(f"Language detection pass failed, keeping '{configured_hint}': {e}")
            return configured_hint, None

        sample = text[:self.sample_chars]
        detected = self.detector.detect(sample)
        if detected is None:
            logger.debug("No supported language detected")
            return configured_hint, None

        effective = self.detector.merge_with_hint(configured_hint, detected)
        logger.debug(f"Detected language '{detected}', hint '{effective}'")
        return effective, detected
