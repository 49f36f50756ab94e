"""
Image preprocessing applied to a selection before it is handed to OCR.

Two passes, in order:

1. Contrast stretch around mid-grey with a small brightness bias:
   ``out = clamp((in - 128) * contrast + 128 + brightness)`` per R, G and B.
2. Unsharp mask as a 3x3 convolution (center 2.2, orthogonal -0.2, diagonal
   -0.1; the weights sum to 1 so flat areas keep their brightness). The
   outermost ring of pixels is left as the first pass produced it.

Alpha, when present, is carried through untouched. Results are rounded to the
nearest integer before clamping to [0, 255].
"""

from typing import Optional

import numpy as np
from PIL import Image

from OhaoCapture.util.config.configuration import PreprocessConfig
from OhaoCapture.util.logging_config import logger


def normalize_mode(image: Image.Image) -> Image.Image:
    """Bring any Pillow mode to RGB, or RGBA when the image carries transparency."""
    if image.mode in ('RGB', 'RGBA'):
        return image
    if image.mode in ('LA', 'PA') or (image.mode == 'P' and 'transparency' in image.info):
        return image.convert('RGBA')
    return image.convert('RGB')


def _split_alpha(pixels: np.ndarray):
    if pixels.shape[2] == 4:
        return pixels[:, :, :3], pixels[:, :, 3:]
    return pixels, None


def _to_image(rgb: np.ndarray, alpha: Optional[np.ndarray]) -> Image.Image:
    if alpha is not None:
        return Image.fromarray(np.ascontiguousarray(np.concatenate([rgb, alpha], axis=2)))
    return Image.fromarray(np.ascontiguousarray(rgb))


def _clamp(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _enhance_contrast_array(rgb: np.ndarray, contrast: float, brightness: float) -> np.ndarray:
    return _clamp((rgb.astype(np.float64) - 128.0) * contrast + 128.0 + brightness)


def _sharpen_array(rgb: np.ndarray, center: float, edge: float, corner: float) -> np.ndarray:
    height, width = rgb.shape[:2]
    if height < 3 or width < 3:
        return rgb.copy()

    src = rgb.astype(np.float64)
    orthogonal = src[:-2, 1:-1] + src[2:, 1:-1] + src[1:-1, :-2] + src[1:-1, 2:]
    diagonal = src[:-2, :-2] + src[:-2, 2:] + src[2:, :-2] + src[2:, 2:]

    out = rgb.copy()
    out[1:-1, 1:-1] = _clamp(center * src[1:-1, 1:-1] + edge * orthogonal + corner * diagonal)
    return out


def enhance_contrast(image: Image.Image, config: Optional[PreprocessConfig] = None) -> Image.Image:
    cfg = config or PreprocessConfig()
    rgb, alpha = _split_alpha(np.asarray(normalize_mode(image)))
    return _to_image(_enhance_contrast_array(rgb, cfg.contrast, cfg.brightness), alpha)


def sharpen(image: Image.Image, config: Optional[PreprocessConfig] = None) -> Image.Image:
    cfg = config or PreprocessConfig()
    rgb, alpha = _split_alpha(np.asarray(normalize_mode(image)))
    return _to_image(_sharpen_array(rgb, cfg.sharpen_center, cfg.sharpen_edge, cfg.sharpen_corner), alpha)


def preprocess_for_ocr(image: Optional[Image.Image], config: Optional[PreprocessConfig] = None) -> Optional[Image.Image]:
    """
    Contrast stretch followed by sharpening. Returns a new image and never
    modifies ``image``.

    Empty input, a disabled config, or anything that fails to process comes
    back unchanged.
    """
    cfg = config or PreprocessConfig()
    if image is None or image.width == 0 or image.height == 0:
        return image
    if not cfg.enabled:
        return image

    try:
        rgb, alpha = _split_alpha(np.asarray(normalize_mode(image)))
        enhanced = _enhance_contrast_array(rgb, cfg.contrast, cfg.brightness)
        sharpened = _sharpen_array(enhanced, cfg.sharpen_center, cfg.sharpen_edge, cfg.sharpen_corner)
        return _to_image(sharpened, alpha)
    except Exception as e:
        logger.warning(f"OCR preprocessing failed, using the original image: {e}")
        return image
