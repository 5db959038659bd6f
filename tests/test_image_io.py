from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from checkercalib.core.image_io import load_gray_u8, save_gray_u8


def test_load_gray_u8_png_and_jpg(tmp_path: Path) -> None:
    arr = (np.arange(64, dtype=np.uint8).reshape(8, 8) * 4) % 255

    p_png = tmp_path / "a.png"
    p_jpg = tmp_path / "a.jpg"
    save_gray_u8(p_png, arr)
    save_gray_u8(p_jpg, arr)

    a = load_gray_u8(p_png)
    b = load_gray_u8(p_jpg)

    assert a.shape == (8, 8)
    assert b.shape == (8, 8)
    assert a.dtype == np.uint8
    assert b.dtype == np.uint8
    assert np.array_equal(a, arr)


def test_load_gray_u8_converts_rgb(tmp_path: Path) -> None:
    rgb = np.zeros((4, 5, 3), dtype=np.uint8)
    rgb[..., 0] = 255
    p = tmp_path / "rgb.png"
    Image.fromarray(rgb).save(p)
    g = load_gray_u8(p)
    assert g.shape == (4, 5)
    assert g.dtype == np.uint8


def test_load_gray_u8_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        load_gray_u8(tmp_path / "missing.png")


def test_save_gray_u8_rejects_color(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        save_gray_u8(tmp_path / "x.png", np.zeros((4, 4, 3), dtype=np.uint8))


def test_load_gray_u8_undecodable_file_raises(tmp_path: Path) -> None:
    p = tmp_path / "broken.png"
    p.write_bytes(b"not an image")
    with pytest.raises(OSError):
        load_gray_u8(p)


def test_load_gray_u8_missing_file_is_file_not_found(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="missing.jpg"):
        load_gray_u8(tmp_path / "missing.jpg")
