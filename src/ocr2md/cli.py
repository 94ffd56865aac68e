#!/usr/bin/env python
"""
Command-line interface for ocr2md.

Usage:
    ocr2md <input.pdf> [--output out.md] [options]

Examples:
    # Convert a PDF with the default PaddleOCR backend
    ocr2md document.pdf

    # Tesseract, pages 1 to 5, 4 workers
    ocr2md document.pdf --engine tesseract --pages 1-5 --threads 4

    # Skip the cache and dump the raw result as JSON too
    ocr2md document.pdf --no-cache --json
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import EngineKind, PipelineConfig, get_config, check_gpu_available, TOOL_NAME
from .errors import OCR2MDError

logger = logging.getLogger("ocr2md")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description="Convert a PDF to Markdown with OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Convert a PDF:
    ocr2md document.pdf

  Use Tesseract on pages 2 to 8:
    ocr2md document.pdf --engine tesseract --pages 2-8

  Fixed language hint, no detection:
    ocr2md document.pdf --languages eng+equ --no-detect-language
        """
    )

    parser.add_argument(
        "input",
        help="Input PDF file"
    )

    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Output Markdown file (default: input with .md extension)"
    )

    parser.add_argument(
        "--threads", "-t",
        type=int,
        default=None,
        help="Number of worker threads (default: CPU cores)"
    )

    parser.add_argument(
        "--dpi", "-d",
        type=int,
        default=300,
        help="DPI for PDF rendering (default: 300)"
    )

    parser.add_argument(
        "--languages", "-l",
        default="eng+chi_sim+equ",
        help="OCR language hint (default: eng+chi_sim+equ)"
    )

    parser.add_argument(
        "--engine",
        choices=[kind.value for kind in EngineKind],
        default=EngineKind.PADDLE.value,
        help="OCR backend (default: paddle)"
    )

    parser.add_argument(
        "--pages",
        default="all",
        help="Pages to process, e.g. 'all', '3', '1-10' or '1,3,5-7' (default: all)"
    )

    parser.add_argument("--no-preprocess", action="store_true", help="Disable image normalization")
    parser.add_argument("--no-detect-language", action="store_true", help="Disable language detection")
    parser.add_argument("--no-layout", action="store_true", help="Keep recognition order instead of reading order")
    parser.add_argument("--no-math", action="store_true", help="Disable formula detection")

    parser.add_argument(
        "--cache-dir",
        default=None,
        help="Cache directory (default: .cache/ocr2md)"
    )

    parser.add_argument("--no-cache", action="store_true", help="Disable the disk cache")

    parser.add_argument(
        "--paddle-model-dir",
        default=None,
        help="Directory with det/rec/cls PaddleOCR models"
    )

    parser.add_argument(
        "--tessdata-dir",
        default=None,
        help="Tesseract language data directory"
    )

    parser.add_argument(
        "--use-gpu",
        action="store_true",
        help="Use GPU for PaddleOCR if available"
    )

    parser.add_argument(
        "--page-timeout",
        type=float,
        default=None,
        help="Fail a page that takes longer than this many seconds"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Also write the full result as JSON next to the Markdown output"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_page_range(page_str: str, total_pages: int) -> List[int]:
    """
    Parse a page selection into sorted 1-based page numbers.

    Raises:
        ValueError: on malformed input or pages outside 1..total_pages
    """
    page_str = page_str.strip().lower()
    if page_str == "all":
        return list(range(1, total_pages + 1))

    pages = set()
    for part in page_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Invalid page range format: {page_str}")

        if "-" in part:
            bounds = part.split("-")
            if len(bounds) != 2:
                raise ValueError(f"Invalid page range format: {part}")
            start, end = int(bounds[0]), int(bounds[1])
            if start < 1 or end > total_pages or start > end:
                raise ValueError(f"Invalid page range: {part} (document has {total_pages} pages)")
            pages.update(range(start, end + 1))
        else:
            page = int(part)
            if page < 1 or page > total_pages:
                raise ValueError(f"Page {page} out of range (1-{total_pages})")
            pages.add(page)

    return sorted(pages)


def build_config(args) -> PipelineConfig:
    """Resolve the pipeline configuration from environment and arguments."""
    config = get_config()

    config.image.dpi = args.dpi
    config.image.preprocess = not args.no_preprocess
    config.ocr.engine = EngineKind(args.engine)
    config.ocr.languages = args.languages
    config.ocr.detect_language = not args.no_detect_language
    config.layout.enabled = not args.no_layout
    config.math.enabled = not args.no_math
    config.page_timeout = args.page_timeout

    if args.threads is not None:
        config.threads = max(1, args.threads)
    if args.no_cache:
        config.cache.enabled = False
    if args.cache_dir:
        config.cache.dir = Path(args.cache_dir)
    if args.paddle_model_dir:
        config.ocr.paddle_model_dir = Path(args.paddle_model_dir)
    if args.tessdata_dir:
        config.ocr.tessdata_dir = Path(args.tessdata_dir)
    if args.use_gpu:
        config.ocr.use_gpu = True

    return config


def run_pipeline(args) -> int:
    """Run the OCR pipeline."""
    from .utils.io import get_pdf_page_count, save_json
    from .utils.assembler import DocumentAssembler
    from .utils.export import MarkdownExporter

    start_time = time.time()

    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file does not exist: {input_path}")
        return 1
    if input_path.suffix.lower() != ".pdf":
        logger.error(f"Input file must be a PDF: {input_path}")
        return 1

    config = build_config(args)

    if config.ocr.use_gpu and not check_gpu_available():
        logger.warning("GPU requested but not available, using CPU")
        config.ocr.use_gpu = False

    total_pages = get_pdf_page_count(input_path)
    logger.info(f"Total pages: {total_pages}")

    try:
        page_numbers = parse_page_range(args.pages, total_pages)
    except ValueError as e:
        logger.error(str(e))
        return 2

    logger.info(
        f"Config: {config.image.dpi} DPI, {config.threads} threads, "
        f"engine {config.ocr.engine.value}, languages {config.ocr.languages}"
    )

    # Fails here, before any page work, if the backend is unusable
    assembler = DocumentAssembler(config)
    document = assembler.process_document(input_path, page_numbers)

    output_path = Path(args.output) if args.output else input_path.with_suffix(".md")
    MarkdownExporter().export(document, output_path)

    if args.json:
        json_path = output_path.with_suffix(".json")
        save_json(document.to_dict(), json_path)
        logger.info(f"Saved JSON: {json_path}")

    elapsed = time.time() - start_time

    if not args.quiet:
        print("\n" + "=" * 60)
        print("OCR COMPLETE")
        print("=" * 60)
        print(f"Source: {input_path}")
        print(f"Output: {output_path}")
        print(f"Pages processed: {len(document.pages)}/{len(page_numbers)} "
              f"({document.cached_pages} from cache)")
        print(f"Time: {elapsed:.2f}s")
        if elapsed > 0:
            print(f"Speed: {len(page_numbers) / elapsed:.2f} pages/sec")
        if document.failures:
            print(f"Failed pages: {len(document.failures)}")
            for failure in document.failures:
                print(f"  Page {failure.page_num} ({failure.stage.value}): {failure.error}")
        print("=" * 60)

    if page_numbers and not document.pages:
        return 1
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = setup_argparser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    try:
        exit_code = run_pipeline(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except OCR2MDError as e:
        logger.error(f"Error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
