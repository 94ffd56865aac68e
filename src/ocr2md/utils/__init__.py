"""
Pipeline components for ocr2md.
"""

from .io import render_page, get_pdf_page_count, save_json
from .images import normalize, to_grayscale, otsu_threshold, binarize, median_denoise
from .layout import BoundingBox, BlockType, sort_by_reading_order
from .cache import CacheManager
from .language import LanguageDetector, LanguageResolver
from .ocr_text import OcrBlock, OcrPage, OcrEngine, TesseractEngine, PaddleOCREngine, OcrDispatcher, create_engine
from .ocr_math import FormulaRefiner, is_formula_candidate, detect_formula_candidates, wrap_formula
from .assembler import DocumentAssembler, DocumentResult, PageResult, PageFailure, PageState
from .export import MarkdownExporter

__all__ = [
    # IO
    "render_page", "get_pdf_page_count", "save_json",
    # Images
    "normalize", "to_grayscale", "otsu_threshold", "binarize", "median_denoise",
    # Layout
    "BoundingBox", "BlockType", "sort_by_reading_order",
    # Cache
    "CacheManager",
    # Language
    "LanguageDetector", "LanguageResolver",
    # OCR
    "OcrBlock", "OcrPage", "OcrEngine", "TesseractEngine", "PaddleOCREngine",
    "OcrDispatcher", "create_engine",
    # Math
    "FormulaRefiner", "is_formula_candidate", "detect_formula_candidates", "wrap_formula",
    # Assembly
    "DocumentAssembler", "DocumentResult", "PageResult", "PageFailure", "PageState",
    # Export
    "MarkdownExporter",
]
