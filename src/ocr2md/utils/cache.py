"""
Content-addressed disk cache for the OCR pipeline.

Two namespaces live under the cache directory:
- preprocess/<key>.png  normalized page images (lossless)
- ocr/<key>.json        recognition results

Keys are SHA-256 digests of everything that influences the cached value,
so a stale configuration can never hit.
"""

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union, TYPE_CHECKING
import numpy as np

from ..config import CacheConfig
from ..errors import CacheError

if TYPE_CHECKING:
    from .assembler import PageResult

logger = logging.getLogger(__name__)

OCR_NAMESPACE = "ocr"
PREPROCESS_NAMESPACE = "preprocess"


class CacheManager:
    """
    Disk cache for normalized images and recognition results.

    Every load returns None and every store does nothing when the cache (or
    the kind being accessed) is disabled. I/O and decoding problems raise
    CacheError; callers decide whether that matters.
    """

    def __init__(self, config: CacheConfig):
        self.config = config
        self.root = Path(config.dir)
        self.ocr_dir = self.root / OCR_NAMESPACE
        self.preprocess_dir = self.root / PREPROCESS_NAMESPACE

        if config.enabled:
            try:
                if config.ocr:
                    self.ocr_dir.mkdir(parents=True, exist_ok=True)
                if config.preprocess:
                    self.preprocess_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                # Retried lazily on first store
                logger.warning(f"Could not create cache directory {self.root}: {e}")

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def ocr_enabled(self) -> bool:
        return self.config.enabled and self.config.ocr

    @property
    def preprocess_enabled(self) -> bool:
        return self.config.enabled and self.config.preprocess

    @staticmethod
    def compute_key(
        source_id: Union[str, Path],
        page_num: int,
        dpi: int,
        config_fingerprint: str,
        payload: bytes
    ) -> str:
        """
        Derive a cache key.

        Args:
            source_id: Source document path
            page_num: 1-based page number
            dpi: Render resolution
            config_fingerprint: PipelineConfig.fingerprint()
            payload: Bytes of the image the entry is cached against

        Returns:
            64-character hex digest
        """
        hasher = hashlib.sha256()
        hasher.update(str(source_id).encode("utf-8"))
        hasher.update(int(page_num).to_bytes(8, "little"))
        hasher.update(int(dpi).to_bytes(8, "little"))
        hasher.update(config_fingerprint.encode("utf-8"))
        hasher.update(payload)
        return hasher.hexdigest()

    # ------------------------------------------------------------------
    # Preprocessed images
    # ------------------------------------------------------------------

    def _preprocess_path(self, key: str) -> Path:
        return self.preprocess_dir / f"{key}.png"

    def load_preprocessed(self, key: str) -> Optional[np.ndarray]:
        """Load a cached normalized image, None on miss."""
        if not self.preprocess_enabled:
            return None

        path = self._preprocess_path(key)
        if not path.exists():
            return None

        import cv2

        try:
            data = np.frombuffer(path.read_bytes(), dtype=np.uint8)
        except OSError as e:
            raise CacheError(f"Failed to read {path}: {e}") from e

        image = cv2.imdecode(data, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise CacheError(f"Could not decode cached image: {path}")
        return image

    def store_preprocessed(self, key: str, image: np.ndarray) -> None:
        """Store a normalized image as PNG."""
        if not self.preprocess_enabled:
            return

        import cv2

        ok, buffer = cv2.imencode(".png", image)
        if not ok:
            raise CacheError(f"Could not encode image for cache key {key}")
        self._write_atomic(self._preprocess_path(key), buffer.tobytes())

    # ------------------------------------------------------------------
    # Recognition results
    # ------------------------------------------------------------------

    def _ocr_path(self, key: str) -> Path:
        return self.ocr_dir / f"{key}.json"

    def load_recognition(self, key: str) -> Optional['PageResult']:
        """Load a cached recognition result, None on miss."""
        if not self.ocr_enabled:
            return None

        path = self._ocr_path(key)
        if not path.exists():
            return None

        from .assembler import PageResult

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return PageResult.from_dict(data)
        except OSError as e:
            raise CacheError(f"Failed to read {path}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise CacheError(f"Corrupt cache entry {path}: {e}") from e

    def store_recognition(self, key: str, result: 'PageResult') -> None:
        """Store a recognition result as JSON."""
        if not self.ocr_enabled:
            return

        try:
            data = json.dumps(result.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Could not serialize page {result.page_num}: {e}") from e
        self._write_atomic(self._ocr_path(key), data.encode("utf-8"))

    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """Write through a temp file so concurrent writers never tear a file."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CacheError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Cached {path.name}")
