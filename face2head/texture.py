"""
Face texture extraction and skin-tone sampling.

TextureExtractor resamples the BoundingFrame crop of the source photo into
a square texture with OpenCV. SkinToneSampler averages a few small patches
of that texture to color the back of the head.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .frame import BoundingFrame, CropRect

logger = logging.getLogger(__name__)


# Light skin color used for texture areas outside the source image (#f5e6d3)
SKIN_BACKGROUND_RGB = (245, 230, 211)

# Returned when no texture patch could be sampled
DEFAULT_SKIN_TONE_RGB = (0.95, 0.85, 0.75)

# Forehead, right cheek, left cheek (fractions of the texture size)
DEFAULT_SAMPLE_POINTS = ((0.5, 0.16), (0.28, 0.58), (0.72, 0.58))


def _import_cv2():
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python is required for texture extraction. "
            "Install with: pip install opencv-python"
        )
    return cv2


def load_image(filepath: Union[str, Path]) -> NDArray[np.uint8]:
    """
    Load an image file as RGB or RGBA uint8.

    Args:
        filepath: Path to a PNG/JPG image

    Returns:
        (H, W, 3) RGB or (H, W, 4) RGBA array

    Raises:
        FileNotFoundError: If the file does not exist or cannot be decoded
    """
    cv2 = _import_cv2()

    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Image not found: {filepath}")

    image = cv2.imread(str(filepath), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise FileNotFoundError(f"Could not decode image: {filepath}")

    # OpenCV loads BGR(A); grayscale comes back 2D
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    else:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    if image.dtype != np.uint8:
        raise ValueError(f"Expected an 8-bit image, got dtype {image.dtype}: {filepath}")

    logger.debug("Loaded image %s: %dx%d", filepath, image.shape[1], image.shape[0])
    return image


@dataclass(frozen=True)
class TextureResult:
    """Output of TextureExtractor.extract()."""
    texture: NDArray[np.uint8]
    crop_rect: CropRect
    pixel_rect: Tuple[float, float, float, float]


class TextureExtractor:
    """
    Resample the face crop of a photo into a square texture.

    The crop comes from BoundingFrame.crop_rect(), the same rectangle the
    UVs are computed against, so texture and UVs always agree.

    Args:
        size: Output texture side in pixels
        contrast: Contrast factor applied around mid-gray (1.0 disables)
        background: RGB fill for regions of the crop outside the image
    """

    def __init__(
        self,
        size: int = 1024,
        contrast: float = 1.1,
        background: Sequence[int] = SKIN_BACKGROUND_RGB
    ):
        if size <= 0:
            raise ValueError(f"Texture size must be positive, got {size}")
        self.size = int(size)
        self.contrast = float(contrast)
        self.background = tuple(int(c) for c in background)

    def crop_affine(
        self,
        pixel_rect: Tuple[float, float, float, float]
    ) -> NDArray[np.float64]:
        """
        2x3 affine matrix mapping source pixels into the texture.

        u' = (u - x) * size / w,  v' = (v - y) * size / h
        """
        x, y, w, h = pixel_rect
        sx = self.size / w
        sy = self.size / h
        return np.array([
            [sx, 0.0, -x * sx],
            [0.0, sy, -y * sy],
        ], dtype=np.float64)

    def extract(self, image: NDArray[np.uint8], frame: BoundingFrame) -> TextureResult:
        """
        Extract the face texture.

        Args:
            image: Source photo, (H, W, 3) RGB or (H, W, 4) RGBA uint8
            frame: BoundingFrame of this run's landmarks

        Returns:
            TextureResult with the (size, size, C) texture, the normalized
            crop rectangle and its pixel equivalent
        """
        cv2 = _import_cv2()

        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise ValueError(f"Expected RGB or RGBA image, got shape {image.shape}")

        height, width = image.shape[:2]
        crop_rect = frame.crop_rect()
        pixel_rect = crop_rect.to_pixels(width, height)

        channels = image.shape[2]
        border = self.background + ((255,) if channels == 4 else ())

        texture = cv2.warpAffine(
            image,
            self.crop_affine(pixel_rect),
            (self.size, self.size),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=border,
        )

        if self.contrast != 1.0:
            rgb = texture[..., :3].astype(np.float32)
            rgb = (rgb - 128.0) * self.contrast + 128.0
            texture[..., :3] = np.clip(rgb, 0, 255).astype(np.uint8)

        logger.debug(
            "Extracted %dx%d texture from pixel rect (%.1f, %.1f, %.1f, %.1f)",
            self.size, self.size, *pixel_rect
        )

        return TextureResult(texture=texture, crop_rect=crop_rect, pixel_rect=pixel_rect)


@dataclass(frozen=True)
class SkinTone:
    """Average skin color in [0, 1] and whether it was actually sampled."""
    r: float
    g: float
    b: float
    sampled: bool = True

    @property
    def rgb(self) -> Tuple[float, float, float]:
        return (self.r, self.g, self.b)

    @classmethod
    def default(cls) -> "SkinTone":
        r, g, b = DEFAULT_SKIN_TONE_RGB
        return cls(r=r, g=g, b=b, sampled=False)


class SkinToneSampler:
    """
    Estimate the skin tone from small patches of the face texture.

    A patch that falls outside the texture or contains only transparent
    pixels is skipped. When no patch is usable the default tone is
    returned; sampling never raises.

    Args:
        sample_points: (x, y) patch centers as fractions of the texture size
        patch_size: Patch side in pixels
    """

    def __init__(
        self,
        sample_points: Sequence[Tuple[float, float]] = DEFAULT_SAMPLE_POINTS,
        patch_size: int = 20
    ):
        if patch_size <= 0:
            raise ValueError(f"Patch size must be positive, got {patch_size}")
        self.sample_points = tuple((float(x), float(y)) for x, y in sample_points)
        self.patch_size = int(patch_size)

    def _patch_mean(
        self,
        texture: NDArray[np.uint8],
        point: Tuple[float, float]
    ) -> Optional[NDArray[np.float64]]:
        height, width = texture.shape[:2]
        half = self.patch_size // 2
        cx = int(round(point[0] * width))
        cy = int(round(point[1] * height))
        x0, y0 = cx - half, cy - half
        x1, y1 = x0 + self.patch_size, y0 + self.patch_size

        if x0 < 0 or y0 < 0 or x1 > width or y1 > height:
            logger.warning(
                "Skin sample patch at (%.2f, %.2f) falls outside the %dx%d texture",
                point[0], point[1], width, height
            )
            return None

        patch = texture[y0:y1, x0:x1]
        pixels = patch[..., :3].reshape(-1, 3).astype(np.float64)

        if texture.ndim == 3 and texture.shape[2] == 4:
            opaque = patch[..., 3].reshape(-1) > 0
            if not np.any(opaque):
                logger.warning(
                    "Skin sample patch at (%.2f, %.2f) is fully transparent",
                    point[0], point[1]
                )
                return None
            pixels = pixels[opaque]

        return pixels.mean(axis=0) / 255.0

    def sample(self, texture: NDArray[np.uint8]) -> SkinTone:
        """
        Sample the skin tone of a texture.

        Args:
            texture: (H, W, 3) RGB or (H, W, 4) RGBA uint8 texture

        Returns:
            SkinTone averaged over the usable patches, or the default tone
        """
        if texture is None or texture.ndim != 3 or texture.shape[2] not in (3, 4):
            logger.warning("Cannot sample skin tone from texture; using default")
            return SkinTone.default()

        means = []
        for point in self.sample_points:
            mean = self._patch_mean(texture, point)
            if mean is not None:
                means.append(mean)

        if not means:
            logger.warning("No usable skin sample patches; using default skin tone")
            return SkinTone.default()

        r, g, b = np.mean(means, axis=0)
        tone = SkinTone(r=float(r), g=float(g), b=float(b), sampled=True)
        logger.debug(
            "Skin tone (%.3f, %.3f, %.3f) from %d patches",
            tone.r, tone.g, tone.b, len(means)
        )
        return tone
