"""
Formula detection and re-recognition.

Blocks whose text looks mathematical are cropped from the page and run
through the recognizer again with a math-biased language hint. The result
is wrapped in display-math delimiters.
"""

import logging
from typing import List, Optional, TYPE_CHECKING
import numpy as np

from ..errors import RecognitionError
from .images import crop_region
from .layout import BlockType

if TYPE_CHECKING:
    from .ocr_text import OcrBlock, OcrDispatcher

logger = logging.getLogger(__name__)

MATH_SYMBOLS = frozenset(
    "+-=/*^_%∞∑∫≈≠∂√πλθβαγ\\{}[]≤≥"
)

LATEX_MARKERS = ("\\frac", "\\sum", "\\int")

DEFAULT_RATIO_THRESHOLD = 0.25


# ============================================================================
# Detection
# ============================================================================

def math_symbol_ratio(text: str) -> float:
    """Fraction of characters that are math symbols."""
    if not text:
        return 0.0
    count = sum(1 for c in text if c in MATH_SYMBOLS)
    return count / len(text)


def is_formula_candidate(text: str, ratio_threshold: float = DEFAULT_RATIO_THRESHOLD) -> bool:
    """
    Heuristically decide whether a block's text is a formula.

    True when more than ratio_threshold of the characters are math symbols,
    or when the text contains a LaTeX fraction, sum or integral command.
    """
    text = text.strip()
    if not text:
        return False

    if math_symbol_ratio(text) > ratio_threshold:
        return True
    return any(marker in text for marker in LATEX_MARKERS)


def detect_formula_candidates(
    blocks: List['OcrBlock'],
    ratio_threshold: float = DEFAULT_RATIO_THRESHOLD
) -> List[int]:
    """Indices of blocks that look like formulas."""
    return [
        idx for idx, block in enumerate(blocks)
        if is_formula_candidate(block.text, ratio_threshold)
    ]


def wrap_formula(text: str, delimiter: str = "$$") -> str:
    """Wrap text in display-math delimiters."""
    return f"{delimiter}\n{text.strip()}\n{delimiter}"


# ============================================================================
# Re-recognition
# ============================================================================

class FormulaRefiner:
    """Re-recognize formula candidates with a math language hint."""

    def __init__(
        self,
        dispatcher: 'OcrDispatcher',
        languages: str = "equ+eng+chi_sim",
        ratio_threshold: float = DEFAULT_RATIO_THRESHOLD,
        delimiter: str = "$$"
    ):
        self.dispatcher = dispatcher
        self.languages = languages
        self.ratio_threshold = ratio_threshold
        self.delimiter = delimiter

    def _refine_text(self, block: 'OcrBlock', image: np.ndarray) -> Optional[str]:
        region = crop_region(image, block.bbox)
        if region is None:
            return None

        try:
            text = self.dispatcher.recognize_text(region, self.languages)
        except RecognitionError as e:
            logger.warning(f"Formula re-recognition failed, keeping original text: {e}")
            return None

        return text.strip() or None

    def detect_and_refine(self, blocks: List['OcrBlock'], source_image: np.ndarray) -> List['OcrBlock']:
        """
        Retype and re-recognize formula candidates in place.

        Args:
            blocks: Recognized blocks of one page
            source_image: Image the bounding boxes refer to

        Returns:
            The same list
        """
        candidates = detect_formula_candidates(blocks, self.ratio_threshold)

        for idx in candidates:
            block = blocks[idx]
            if block.bbox is None:
                # Nothing to crop
                block.block_type = BlockType.FORMULA
                continue

            refined = self._refine_text(block, source_image)
            block.text = wrap_formula(refined if refined is not None else block.text, self.delimiter)
            block.block_type = BlockType.FORMULA

        if candidates:
            logger.debug(f"Refined {len(candidates)} formula block(s)")
        return blocks
