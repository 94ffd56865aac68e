"""
Image preprocessing utilities for the OCR pipeline.

Provides:
- Grayscale conversion
- Otsu binarization
- 3x3 median denoising
- Thumbnails and region crops for the recognition stages

Page images are numpy arrays: RGBA (h, w, 4) as rendered, or
single-channel (h, w) once normalized.
"""

import logging
from typing import Optional
import numpy as np

from .layout import BoundingBox

logger = logging.getLogger(__name__)


# ============================================================================
# Core Preprocessing Functions
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert image to single-channel luminance.

    Args:
        image: Input image (RGBA, RGB or grayscale)

    Returns:
        Grayscale image
    """
    import cv2

    if len(image.shape) == 2:
        return image
    elif len(image.shape) == 3:
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        elif image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze(axis=2)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def otsu_threshold(gray: np.ndarray) -> int:
    """
    Compute a binarization threshold with Otsu's method.

    For each candidate t the between-class variance is
    n_below * n_at_or_above * (mean_below - mean_above)^2. The smallest t
    reaching the maximum wins; an image with a single gray level yields 0.

    Args:
        gray: Single-channel uint8 image

    Returns:
        Threshold in [0, 255]
    """
    hist = np.bincount(gray.ravel(), minlength=256)[:256].astype(np.float64)
    levels = np.arange(256, dtype=np.float64)

    total = hist.sum()
    weighted_total = (hist * levels).sum()

    # Pixels strictly below each candidate threshold
    n_below = np.concatenate(([0.0], np.cumsum(hist)[:-1]))
    sum_below = np.concatenate(([0.0], np.cumsum(hist * levels)[:-1]))
    n_above = total - n_below

    valid = (n_below > 0) & (n_above > 0)
    variance = np.zeros(256, dtype=np.float64)
    mean_below = sum_below[valid] / n_below[valid]
    mean_above = (weighted_total - sum_below[valid]) / n_above[valid]
    variance[valid] = n_below[valid] * n_above[valid] * (mean_below - mean_above) ** 2

    # argmax returns the first maximum
    return int(np.argmax(variance))


def binarize(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Map pixels below threshold to 0 and the rest to 255."""
    return np.where(gray < threshold, 0, 255).astype(np.uint8)


def median_denoise(binary: np.ndarray) -> np.ndarray:
    """
    Apply a 3x3 median filter to the interior of the image.

    Border rows and columns have no full neighborhood and are copied
    unchanged from the input.
    """
    import cv2

    h, w = binary.shape[:2]
    if h < 3 or w < 3:
        return binary.copy()

    denoised = cv2.medianBlur(np.ascontiguousarray(binary), 3)
    denoised[0, :] = binary[0, :]
    denoised[-1, :] = binary[-1, :]
    denoised[:, 0] = binary[:, 0]
    denoised[:, -1] = binary[:, -1]
    return denoised


# ============================================================================
# Main Preprocessing Pipeline
# ============================================================================

def normalize(image: np.ndarray) -> np.ndarray:
    """
    Normalize a rendered page for recognition.

    Grayscale -> Otsu binarization -> median denoise. Pure function, the
    input is left untouched.

    Args:
        image: Rendered page (RGBA, RGB or grayscale, uint8)

    Returns:
        Single-channel binarized image with the same dimensions
    """
    gray = to_grayscale(image)
    threshold = otsu_threshold(gray)
    binary = binarize(gray, threshold)
    denoised = median_denoise(binary)

    logger.debug(f"Normalized {gray.shape[1]}x{gray.shape[0]} image (otsu threshold={threshold})")
    return denoised


# ============================================================================
# Region Helpers
# ============================================================================

def make_thumbnail(image: np.ndarray, max_side: int = 640) -> np.ndarray:
    """
    Downscale an image to fit in max_side x max_side, keeping aspect ratio.

    Images already within the bound are returned unchanged.
    """
    from PIL import Image

    h, w = image.shape[:2]
    if w <= max_side and h <= max_side:
        return image

    pil_image = Image.fromarray(image)
    pil_image.thumbnail((max_side, max_side))
    return np.asarray(pil_image)


def crop_region(image: np.ndarray, bbox: BoundingBox) -> Optional[np.ndarray]:
    """
    Cut a bounding box out of an image.

    The box is clipped to the image; returns None when nothing is left.
    """
    h, w = image.shape[:2]
    x1 = min(max(bbox.x, 0), w)
    y1 = min(max(bbox.y, 0), h)
    x2 = min(bbox.x + bbox.width, w)
    y2 = min(bbox.y + bbox.height, h)

    if x2 <= x1 or y2 <= y1:
        return None
    return image[y1:y2, x1:x2].copy()


def image_bytes(image: np.ndarray) -> bytes:
    """Raw pixel bytes used as cache-key payload."""
    return np.ascontiguousarray(image).tobytes()
