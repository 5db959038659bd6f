from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def load_gray_u8(path: str | Path) -> np.ndarray:
    """
    Read a calibration photo or reference pattern as a (H,W) uint8 array.

    OpenCV decodes the file; whatever it cannot decode is handed to Pillow. Missing or
    undecodable files raise OSError.
    """
    import cv2  # type: ignore

    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"image not found: {p}")

    img = cv2.imread(str(p), cv2.IMREAD_GRAYSCALE)
    if img is None:
        with Image.open(p) as im:
            img = np.asarray(im.convert("L"), dtype=np.uint8)
    return np.ascontiguousarray(img, dtype=np.uint8)


def save_gray_u8(path: str | Path, img_u8: np.ndarray, *, jpeg_quality: int = 95) -> None:
    p = Path(path)
    img_u8 = np.asarray(img_u8)
    if img_u8.ndim != 2 or img_u8.dtype != np.uint8:
        raise ValueError("expected a 2D uint8 image")
    im = Image.fromarray(img_u8)
    if p.suffix.lower() in (".jpg", ".jpeg"):
        im.save(p, quality=int(jpeg_quality))
    else:
        im.save(p)
