"""
ocr2md
======

Multi-page PDF to Markdown conversion through OCR.

Main components:
- Image normalization (grayscale, Otsu binarization, median denoise)
- Content-addressed cache for normalized images and recognition results
- Language hint detection
- Tesseract / PaddleOCR recognition
- Reading-order sorting and formula re-recognition
- Page pipeline with per-page failure isolation
"""

__version__ = "0.1.0"
