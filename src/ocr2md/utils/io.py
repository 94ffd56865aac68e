"""
I/O utilities for the OCR pipeline.

Handles:
- Rendering single PDF pages to images (pdf2image / poppler backend)
- PDF page counting
- JSON export
"""

import json
import logging
from pathlib import Path
from typing import Union, Any
from dataclasses import asdict
from enum import Enum

import numpy as np

from ..errors import ConfigurationError, RenderError

logger = logging.getLogger(__name__)


# ============================================================================
# PDF to Image Conversion
# ============================================================================

def render_page(
    pdf_path: Union[str, Path],
    page_index: int,
    dpi: int = 300
) -> np.ndarray:
    """
    Render one PDF page.

    The output size is the page geometry times dpi/72.

    Args:
        pdf_path: Path to the PDF file
        page_index: 0-based page index
        dpi: Render resolution

    Returns:
        RGBA image as a (height, width, 4) uint8 array

    Raises:
        RenderError: if the page cannot be rasterized
    """
    try:
        from pdf2image import convert_from_path
    except ImportError as e:
        raise ConfigurationError(
            "pdf2image is required. Install with: pip install pdf2image\n"
            "Also ensure poppler is installed on your system."
        ) from e

    page_number = page_index + 1
    try:
        pil_images = convert_from_path(
            str(pdf_path),
            dpi=dpi,
            first_page=page_number,
            last_page=page_number
        )
    except Exception as e:
        raise RenderError(f"Failed to render page {page_number} of {pdf_path}: {e}") from e

    if not pil_images:
        raise RenderError(f"Page {page_number} of {pdf_path} produced no image")

    image = np.array(pil_images[0].convert("RGBA"))
    logger.debug(f"Rendered page {page_number} at {dpi} DPI: {image.shape[1]}x{image.shape[0]}")
    return image


def get_pdf_page_count(pdf_path: Union[str, Path]) -> int:
    """
    Get the number of pages in a PDF file.

    Raises:
        ConfigurationError: if poppler is not installed
        RenderError: if the file cannot be read as a PDF
    """
    from pdf2image import pdfinfo_from_path
    from pdf2image.exceptions import PDFInfoNotInstalledError

    try:
        info = pdfinfo_from_path(str(pdf_path))
    except PDFInfoNotInstalledError as e:
        raise ConfigurationError(
            "Poppler is not installed. Install with:\n"
            "  macOS: brew install poppler\n"
            "  Linux: sudo apt-get install poppler-utils"
        ) from e
    except Exception as e:
        raise RenderError(f"Failed to read PDF {pdf_path}: {e}") from e

    return int(info.get("Pages", 0))


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, enums, paths and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path
