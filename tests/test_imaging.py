"""Tests for upload image optimization."""

import io

import pytest
from PIL import Image

from arkiv.config import MiB, OptimizerConfig
from arkiv.lib.errors import UnsupportedTypeError
from arkiv.lib.imaging import (
    OptimizationOptions,
    detect_image_content_type,
    format_bytes,
    optimize_image,
    recommended_settings,
)


def _encode(img: Image.Image, fmt: str, **kwargs) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def _noise(width: int, height: int) -> Image.Image:
    bands = [Image.effect_noise((width, height), 120) for _ in range(3)]
    return Image.merge("RGB", bands)


@pytest.fixture(scope="module")
def large_jpeg() -> bytes:
    data = _encode(_noise(2400, 1800), "JPEG", quality=98)
    assert len(data) > 2 * MiB
    return data


class TestDetectContentType:
    def test_known_signatures(self):
        img = Image.new("RGB", (4, 4))
        assert detect_image_content_type(_encode(img, "JPEG")) == "image/jpeg"
        assert detect_image_content_type(_encode(img, "PNG")) == "image/png"
        assert detect_image_content_type(_encode(img, "WEBP")) == "image/webp"
        assert detect_image_content_type(_encode(img, "GIF")) == "image/gif"

    def test_unknown_signature(self):
        assert detect_image_content_type(b"%PDF-1.7") is None


class TestRecommendedSettings:
    def test_per_format_quality(self):
        assert recommended_settings("image/png").quality == 90
        assert recommended_settings("image/png").format == "png"
        assert recommended_settings("image/jpeg").quality == 85
        assert recommended_settings("image/webp").format == "webp"
        assert recommended_settings("image/bmp").format == "original"

    def test_uses_configured_limits(self):
        config = OptimizerConfig(max_width=800, max_height=600, jpeg_quality=70, max_size_bytes=MiB)
        options = recommended_settings("image/jpeg", config)

        assert (options.max_width, options.max_height) == (800, 600)
        assert options.quality == 70
        assert options.max_size_bytes == MiB


class TestOptimizeImage:
    def test_small_image_is_returned_untouched(self):
        data = _encode(Image.new("RGB", (50, 40), "red"), "PNG")

        result = optimize_image(data)

        assert result.was_optimized is False
        assert result.data is data
        assert (result.width, result.height) == (50, 40)
        assert result.compression_ratio == 1.0

    def test_large_jpeg_is_resized_and_shrunk(self, large_jpeg):
        result = optimize_image(large_jpeg, recommended_settings("image/jpeg"))

        assert result.was_optimized is True
        assert result.optimized_size < result.original_size
        assert result.width <= 1920 and result.height <= 1080
        # 4:3 aspect ratio is preserved
        assert result.width / result.height == pytest.approx(2400 / 1800, rel=0.01)
        assert detect_image_content_type(result.data) == "image/jpeg"

    def test_never_enlarges(self):
        data = _encode(_noise(300, 200), "PNG")
        options = OptimizationOptions(max_size_bytes=1000, format="png")

        result = optimize_image(data, options)

        assert result.was_optimized is True
        assert (result.width, result.height) == (300, 200)

    def test_transparent_png_to_jpeg_is_flattened_on_white(self):
        img = Image.new("RGBA", (200, 100), (0, 0, 0, 0))
        data = _encode(img, "PNG")
        options = OptimizationOptions(max_size_bytes=10, format="jpeg")

        result = optimize_image(data, options)

        assert result.format == "jpeg"
        assert result.content_type == "image/jpeg"
        assert result.extension == "jpg"
        with Image.open(io.BytesIO(result.data)) as out:
            r, g, b = out.convert("RGB").getpixel((100, 50))
            assert min(r, g, b) > 240

    def test_undecodable_input_is_rejected(self):
        options = OptimizationOptions(max_size_bytes=10)
        with pytest.raises(UnsupportedTypeError):
            optimize_image(b"\xff\xd8\xff" + b"\x00" * 100, options)

    def test_to_dict(self):
        data = _encode(_noise(400, 300), "PNG")
        result = optimize_image(data, OptimizationOptions(max_size_bytes=10, format="jpeg", quality=50))

        body = result.to_dict()

        assert body["originalSize"] == len(data)
        assert body["optimizedSize"] == len(result.data)
        assert body["savedBytes"] == len(data) - len(result.data)
        assert body["wasOptimized"] is True
        assert body["format"] == "jpeg"
        assert (body["width"], body["height"]) == (400, 300)
        assert set(body) == {
            "wasOptimized", "format", "width", "height",
            "originalSize", "optimizedSize", "compressionRatio", "savedBytes", "savedPercentage",
        }


@pytest.mark.parametrize(
    "size, expected",
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1536, "1.5 KB"),
        (MiB, "1 MB"),
        (5 * 1024 * MiB, "5 GB"),
    ],
)
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected
