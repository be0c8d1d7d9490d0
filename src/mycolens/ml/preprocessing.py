"""Image preprocessing pipeline.

Decodes raw bytes (any Pillow-supported format), applies EXIF orientation,
converts to RGB, enforces the pixel limit and produces the normalized NCHW
float tensor the ViT classifier expects.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

INPUT_SIZE = 224
# ViT image processor defaults: rescale to [0, 1] then normalize with mean/std 0.5
IMAGE_MEAN = np.array([0.5, 0.5, 0.5], dtype=np.float32)
IMAGE_STD = np.array([0.5, 0.5, 0.5], dtype=np.float32)


class ImagePreprocessor:
    """Decodes images and prepares classifier input tensors."""

    def __init__(self, max_image_pixels: int | None = None, input_size: int = INPUT_SIZE) -> None:
        self._max_image_pixels = max_image_pixels
        self._input_size = input_size

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if self._max_image_pixels is not None and width * height > self._max_image_pixels:
                    raise ValueError(
                        f"Image is {width}x{height}, more than the {self._max_image_pixels} pixel limit"
                    )
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise ValueError(f"Could not decode image: {exc}") from exc
        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_classification(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize and normalize an RGB image.

        Returns:
            Float32 tensor of shape (1, 3, input_size, input_size).
        """
        resized = Image.fromarray(image).resize((self._input_size, self._input_size), Image.Resampling.BILINEAR)
        pixels = np.asarray(resized, dtype=np.float32) / 255.0
        pixels = (pixels - IMAGE_MEAN) / IMAGE_STD
        return np.ascontiguousarray(pixels.transpose(2, 0, 1)[np.newaxis, ...])
