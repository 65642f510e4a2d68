"""
Tests for texture extraction and skin-tone sampling.
"""

import logging

import numpy as np
import pytest

from face2head.frame import BoundingFrame
from face2head.landmarks import canonical_landmarks
from face2head.texture import (
    DEFAULT_SKIN_TONE_RGB,
    SKIN_BACKGROUND_RGB,
    SkinTone,
    SkinToneSampler,
    TextureExtractor,
    load_image,
)

cv2 = pytest.importorskip("cv2")


def _frame(center=(0.5, 0.5), extent=0.4):
    return BoundingFrame.from_landmarks(canonical_landmarks(center=center, extent=extent))


class TestLoadImage:
    """Test image loading through OpenCV."""

    def test_bgr_converted_to_rgb(self, tmp_path):
        bgr = np.zeros((8, 8, 3), dtype=np.uint8)
        bgr[..., 2] = 200  # red in BGR
        path = tmp_path / "red.png"
        cv2.imwrite(str(path), bgr)

        image = load_image(path)

        assert image.shape == (8, 8, 3)
        assert image[0, 0, 0] == 200
        assert image[0, 0, 2] == 0

    def test_alpha_preserved(self, tmp_path):
        bgra = np.full((8, 8, 4), 255, dtype=np.uint8)
        bgra[..., 3] = 0
        path = tmp_path / "clear.png"
        cv2.imwrite(str(path), bgra)

        image = load_image(path)

        assert image.shape == (8, 8, 4)
        assert np.all(image[..., 3] == 0)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_image(tmp_path / "missing.png")


class TestTextureExtractor:
    """Test TextureExtractor.extract()."""

    def test_output_size(self):
        image = np.full((240, 320, 3), 100, dtype=np.uint8)
        result = TextureExtractor(size=64, contrast=1.0).extract(image, _frame())

        assert result.texture.shape == (64, 64, 3)
        assert result.texture.dtype == np.uint8

    def test_rgba_keeps_alpha_channel(self):
        image = np.full((100, 100, 4), 100, dtype=np.uint8)
        result = TextureExtractor(size=32).extract(image, _frame())
        assert result.texture.shape == (32, 32, 4)

    def test_pixel_rect_matches_crop_rect(self):
        """The pixel rectangle is the normalized crop scaled by image size."""
        image = np.zeros((200, 400, 3), dtype=np.uint8)
        frame = _frame(center=(0.4, 0.6), extent=0.3)
        result = TextureExtractor(size=16).extract(image, frame)

        assert result.crop_rect == frame.crop_rect()
        assert result.pixel_rect == pytest.approx(frame.crop_rect().to_pixels(400, 200))

    def test_crop_samples_landmark_region(self):
        """A marker at a landmark shows up where that landmark's UV points."""
        width = height = 400
        lm = canonical_landmarks(center=(0.5, 0.5), extent=0.4)
        frame = BoundingFrame.from_landmarks(lm)

        image = np.zeros((height, width, 3), dtype=np.uint8)
        nose = lm[30]
        px, py = int(nose[0] * width), int(nose[1] * height)
        image[py - 6:py + 7, px - 6:px + 7] = 255

        size = 128
        result = TextureExtractor(size=size, contrast=1.0).extract(image, frame)

        u, v = frame.uvs(lm[30:31])[0]
        tx, ty = int(u * size), int(v * size)
        assert result.texture[ty, tx, 0] > 200

    def test_out_of_image_uses_background(self):
        """Crop regions outside the photo are filled with the skin background."""
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        frame = _frame(center=(0.05, 0.05), extent=0.4)
        result = TextureExtractor(size=32, contrast=1.0).extract(image, frame)

        np.testing.assert_array_equal(result.texture[0, 0], SKIN_BACKGROUND_RGB)

    def test_contrast_stretches_around_mid_gray(self):
        image = np.full((100, 100, 3), 178, dtype=np.uint8)
        plain = TextureExtractor(size=16, contrast=1.0).extract(image, _frame())
        boosted = TextureExtractor(size=16, contrast=1.5).extract(image, _frame())

        assert plain.texture[8, 8, 0] == 178
        assert boosted.texture[8, 8, 0] == 203

    def test_rejects_grayscale(self):
        with pytest.raises(ValueError, match="RGB"):
            TextureExtractor().extract(np.zeros((10, 10), dtype=np.uint8), _frame())

    def test_rejects_bad_size(self):
        with pytest.raises(ValueError):
            TextureExtractor(size=0)


class TestSkinToneSampler:
    """Test SkinToneSampler.sample()."""

    def test_uniform_texture(self):
        texture = np.zeros((64, 64, 3), dtype=np.uint8)
        texture[...] = (200, 150, 100)

        tone = SkinToneSampler(patch_size=8).sample(texture)

        assert tone.sampled
        assert tone.rgb == pytest.approx((200 / 255, 150 / 255, 100 / 255))

    def test_transparent_texture_falls_back(self, caplog):
        texture = np.zeros((64, 64, 4), dtype=np.uint8)
        with caplog.at_level(logging.WARNING, logger="face2head.texture"):
            tone = SkinToneSampler(patch_size=8).sample(texture)

        assert not tone.sampled
        assert tone.rgb == pytest.approx(DEFAULT_SKIN_TONE_RGB)
        assert "transparent" in caplog.text

    def test_transparent_pixels_ignored(self):
        """Only opaque pixels of a partly transparent patch are averaged."""
        texture = np.zeros((64, 64, 4), dtype=np.uint8)
        texture[..., :3] = 90
        texture[::2, :, 3] = 255
        texture[1::2, :, :3] = 0

        tone = SkinToneSampler(patch_size=8).sample(texture)

        assert tone.sampled
        assert tone.r == pytest.approx(90 / 255)

    def test_out_of_bounds_patches_skipped(self):
        texture = np.full((64, 64, 3), 128, dtype=np.uint8)
        sampler = SkinToneSampler(sample_points=[(0.0, 0.0), (0.5, 0.5)], patch_size=8)

        tone = sampler.sample(texture)

        assert tone.sampled
        assert tone.r == pytest.approx(128 / 255)

    def test_no_usable_patch(self):
        texture = np.full((8, 8, 3), 128, dtype=np.uint8)
        tone = SkinToneSampler(patch_size=20).sample(texture)
        assert tone == SkinTone.default()

    def test_invalid_texture_never_raises(self):
        assert not SkinToneSampler().sample(None).sampled
        assert not SkinToneSampler().sample(np.zeros((4, 4), dtype=np.uint8)).sampled
