"""
Tests for the content cache.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def make_result(page_num=1):
    from ocr2md.utils.assembler import PageResult
    from ocr2md.utils.ocr_text import OcrBlock, OcrPage
    from ocr2md.utils.layout import BoundingBox, BlockType

    page = OcrPage(
        blocks=[
            OcrBlock("Hello 世界", 0.95, BoundingBox(10, 20, 100, 30), language="eng"),
            OcrBlock("$$\nx=1\n$$", 0.8, BoundingBox(10, 80, 60, 20), BlockType.FORMULA),
        ],
        language="eng"
    )
    return PageResult(page_num=page_num, page=page, image_width=600, image_height=800)


@pytest.fixture
def cache(tmp_path):
    from ocr2md.config import CacheConfig
    from ocr2md.utils.cache import CacheManager

    return CacheManager(CacheConfig(dir=tmp_path / "cache"))


class TestCacheKey:
    """Test key derivation."""

    BASE = ("doc.pdf", 1, 300, "fp", b"\x00\x01\x02")

    def test_deterministic(self):
        from ocr2md.utils.cache import CacheManager

        key = CacheManager.compute_key(*self.BASE)

        assert key == CacheManager.compute_key(*self.BASE)
        assert len(key) == 64
        int(key, 16)

    @pytest.mark.parametrize("index,value", [
        (0, "other.pdf"),
        (1, 2),
        (2, 200),
        (3, "fp2"),
        (4, b"\x00\x01\x03"),
    ])
    def test_every_input_matters(self, index, value):
        from ocr2md.utils.cache import CacheManager

        args = list(self.BASE)
        args[index] = value

        assert CacheManager.compute_key(*args) != CacheManager.compute_key(*self.BASE)


class TestCacheManager:
    """Test load/store behaviour."""

    def test_preprocessed_round_trip(self, cache):
        """Normalized images come back bit-identical."""
        image = np.zeros((40, 60), dtype=np.uint8)
        image[10:20, 5:50] = 255

        cache.store_preprocessed("k1", image)
        loaded = cache.load_preprocessed("k1")

        assert loaded.shape == image.shape
        assert loaded.dtype == np.uint8
        np.testing.assert_array_equal(loaded, image)

    def test_recognition_round_trip(self, cache):
        result = make_result(3)

        cache.store_recognition("k2", result)
        loaded = cache.load_recognition("k2")

        assert loaded == result
        assert (cache.ocr_dir / "k2.json").exists()

    def test_miss(self, cache):
        assert cache.load_preprocessed("missing") is None
        assert cache.load_recognition("missing") is None

    def test_last_writer_wins(self, cache):
        cache.store_recognition("k", make_result(1))
        cache.store_recognition("k", make_result(2))

        assert cache.load_recognition("k").page_num == 2
        # No temp files left behind
        assert [p.name for p in cache.ocr_dir.iterdir()] == ["k.json"]

    def test_disabled_is_noop(self, tmp_path):
        """A disabled cache never touches disk."""
        from ocr2md.config import CacheConfig
        from ocr2md.utils.cache import CacheManager

        root = tmp_path / "cache"
        cache = CacheManager(CacheConfig(enabled=False, dir=root))

        cache.store_recognition("k", make_result())
        cache.store_preprocessed("k", np.zeros((4, 4), dtype=np.uint8))

        assert cache.load_recognition("k") is None
        assert cache.load_preprocessed("k") is None
        assert not root.exists()

    def test_namespace_switches(self, tmp_path):
        """Each kind can be disabled on its own."""
        from ocr2md.config import CacheConfig
        from ocr2md.utils.cache import CacheManager

        cache = CacheManager(CacheConfig(dir=tmp_path, preprocess=False))

        cache.store_preprocessed("k", np.zeros((4, 4), dtype=np.uint8))
        cache.store_recognition("k", make_result())

        assert cache.load_preprocessed("k") is None
        assert cache.load_recognition("k") is not None

    def test_namespace_recreated_on_store(self, cache):
        """Directories removed after startup are recreated."""
        import shutil

        shutil.rmtree(cache.root)
        cache.store_recognition("k", make_result())

        assert cache.load_recognition("k") is not None

    def test_corrupt_json(self, cache):
        from ocr2md.errors import CacheError

        cache.ocr_dir.mkdir(parents=True, exist_ok=True)
        (cache.ocr_dir / "bad.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(CacheError):
            cache.load_recognition("bad")

    def test_incomplete_json(self, cache):
        from ocr2md.errors import CacheError

        (cache.ocr_dir / "partial.json").write_text('{"page_num": 1}', encoding="utf-8")

        with pytest.raises(CacheError):
            cache.load_recognition("partial")

    def test_corrupt_image(self, cache):
        from ocr2md.errors import CacheError

        (cache.preprocess_dir / "bad.png").write_bytes(b"not a png")

        with pytest.raises(CacheError):
            cache.load_preprocessed("bad")
