from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from checkercalib.config import BoardSpec
from checkercalib.core.homography import apply_homography
from checkercalib.core.image_io import save_gray_u8
from checkercalib.core.quad import Quad


def render_reference_board(
    board: BoardSpec,
    *,
    square_px: int = 40,
    margin_px: int = 40,
    shrink_px: int = 3,
) -> np.ndarray:
    """
    Grayscale uint8 reference pattern: black squares on white with a white margin.

    Each black square is shrunk by `shrink_px` on every side so diagonal neighbours do not
    merge into one blob when thresholded.
    """
    if not 0 <= 2 * shrink_px < square_px:
        raise ValueError("shrink_px must be in [0, square_px/2)")
    w = board.squares_x * square_px + 2 * margin_px
    h = board.squares_y * square_px + 2 * margin_px
    img = np.full((h, w), 255, dtype=np.uint8)
    for row in range(board.squares_y):
        for col in range(board.squares_x):
            if (row + col) % 2:
                continue
            x0 = margin_px + col * square_px + shrink_px
            y0 = margin_px + row * square_px + shrink_px
            x1 = margin_px + (col + 1) * square_px - shrink_px
            y1 = margin_px + (row + 1) * square_px - shrink_px
            img[y0:y1, x0:x1] = 0
    return img


def reference_quad_centres(board: BoardSpec, *, square_px: int = 40, margin_px: int = 40) -> dict[int, np.ndarray]:
    """Quad centres of `render_reference_board` in pixel-centre coordinates, by number."""
    out = {}
    for number in range(1, board.total_quads + 1):
        col, row = board.number_to_square(number)
        out[number] = np.array(
            [margin_px + (col + 0.5) * square_px - 0.5, margin_px + (row + 0.5) * square_px - 0.5],
            dtype=np.float64,
        )
    return out


def board_quads(
    board: BoardSpec,
    *,
    square: float = 10.0,
    shrink: float = 0.0,
    origin: tuple[float, float] = (0.0, 0.0),
    H: np.ndarray | None = None,
) -> list[Quad]:
    """
    Ideal quads of a complete board (ids in number order, numbers left unassigned).

    Corners run TL, TR, BR, BL; with `shrink=0` diagonal neighbours share corners exactly.
    An optional homography maps the corners before the quads are built.
    """
    quads = []
    for number in range(1, board.total_quads + 1):
        col, row = board.number_to_square(number)
        x0 = origin[0] + col * square + shrink
        y0 = origin[1] + row * square + shrink
        x1 = origin[0] + (col + 1) * square - shrink
        y1 = origin[1] + (row + 1) * square - shrink
        corners = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)
        if H is not None:
            corners = apply_homography(H, corners)
        quads.append(Quad.from_corners(corners, quad_id=number - 1))
    return quads


def _rot_x(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[1, 0, 0], [0, ca, -sa], [0, sa, ca]], dtype=np.float64)


def _rot_y(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, 0, sa], [0, 1, 0], [-sa, 0, ca]], dtype=np.float64)


def _rot_z(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, -sa, 0], [sa, ca, 0], [0, 0, 1]], dtype=np.float64)


def homography_from_pose(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Reference plane (z = 0) -> image: H = K [r1 r2 t], normalized so H[2,2] = 1."""
    H = np.asarray(K, dtype=np.float64) @ np.column_stack([R[:, 0], R[:, 1], np.asarray(t).reshape(3)])
    return H / H[2, 2]


def random_board_pose(
    rng: np.random.Generator,
    K: np.ndarray,
    image_size: tuple[int, int],
    board_outline: np.ndarray,
    *,
    depth: tuple[float, float] = (900.0, 1200.0),
    tilt_rad: tuple[float, float] = (0.15, 0.45),
    roll_rad: float = 0.3,
    border_px: float = 8.0,
    max_attempts: int = 200,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Rejection-sample a tilted board pose whose outline projects inside the image.

    `board_outline` (4,2) are the board's outer corners on the reference plane; the pose
    rotates the board about its centre.
    """
    w, h = int(image_size[0]), int(image_size[1])
    c = np.mean(board_outline, axis=0)
    for _attempt in range(int(max_attempts)):
        tilt_x = float(rng.uniform(*tilt_rad)) * float(rng.choice([-1.0, 1.0]))
        tilt_y = float(rng.uniform(*tilt_rad)) * float(rng.choice([-1.0, 1.0]))
        roll = float(rng.uniform(-roll_rad, roll_rad))
        R = _rot_z(roll) @ _rot_y(tilt_y) @ _rot_x(tilt_x)
        z = float(rng.uniform(*depth))
        T = np.array([rng.uniform(-0.05, 0.05) * z, rng.uniform(-0.04, 0.04) * z, z], dtype=np.float64)
        t = T - R[:, :2] @ c

        P = board_outline @ R[:, :2].T + t
        if np.any(P[:, 2] <= 0.0):
            continue
        uv = apply_homography(homography_from_pose(K, R, t), board_outline)
        inside = (
            (uv[:, 0] >= border_px)
            & (uv[:, 0] <= w - 1 - border_px)
            & (uv[:, 1] >= border_px)
            & (uv[:, 1] <= h - 1 - border_px)
        )
        if bool(np.all(inside)):
            return R, t
    raise RuntimeError("could not sample a board pose that fits in the image")


def render_view(
    reference_img: np.ndarray,
    H_ref_to_img: np.ndarray,
    image_size: tuple[int, int],
    *,
    noise_std: float = 0.0,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Warp the reference pattern into a camera image (bilinear, white outside the pattern).

    `noise_std` is additive Gaussian noise on the [0,1] intensity scale, drawn from `rng`,
    which is required when `noise_std > 0`.
    """
    import cv2  # type: ignore

    if noise_std > 0 and rng is None:
        raise ValueError("render_view needs an explicit rng when noise_std > 0")

    w, h = int(image_size[0]), int(image_size[1])
    uu, vv = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
    src = apply_homography(np.linalg.inv(H_ref_to_img), np.stack([uu, vv], axis=-1))
    map_x = src[..., 0].astype(np.float32)
    map_y = src[..., 1].astype(np.float32)
    img_u8 = cv2.remap(
        np.ascontiguousarray(reference_img, dtype=np.uint8),
        map_x,
        map_y,
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=255,
    )

    if noise_std > 0:
        img_f = img_u8.astype(np.float32) / 255.0
        img_f += rng.normal(0.0, float(noise_std), size=img_f.shape).astype(np.float32)
        img_f = np.clip(img_f, 0.0, 1.0)
        img_u8 = (img_f * 255.0 + 0.5).astype(np.uint8)
    return img_u8


def default_intrinsics(width: int, height: int, focal_px: float = 800.0) -> np.ndarray:
    return np.array(
        [[focal_px, 0.0, (width - 1) / 2.0], [0.0, focal_px, (height - 1) / 2.0], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


def generate_dataset(
    out_dir: str | Path,
    *,
    board: BoardSpec | None = None,
    num_images: int = 8,
    width: int = 640,
    height: int = 480,
    K: np.ndarray | None = None,
    square_px: int = 40,
    margin_px: int = 40,
    shrink_px: int = 3,
    noise_std: float = 0.0,
    seed: int = 0,
    image_format: str = "jpg",
) -> dict[str, Any]:
    """
    Write a synthetic calibration folder: `checkerboard.<ext>`, `1.<ext>..N.<ext>` and
    `ground_truth.json` (K and the per-image R, t, H). Returns the ground truth dict.
    """
    image_format = str(image_format).lower()
    if image_format not in ("jpg", "png"):
        raise ValueError("image_format must be jpg|png")
    board = board or BoardSpec()
    K = default_intrinsics(width, height) if K is None else np.asarray(K, dtype=np.float64)
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)

    ref = render_reference_board(board, square_px=square_px, margin_px=margin_px, shrink_px=shrink_px)
    save_gray_u8(out / f"checkerboard.{image_format}", ref)

    x0 = margin_px - 0.5
    y0 = margin_px - 0.5
    x1 = x0 + board.squares_x * square_px
    y1 = y0 + board.squares_y * square_px
    outline = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)

    images = []
    for i in range(1, int(num_images) + 1):
        R, t = random_board_pose(rng, K, (width, height), outline)
        H = homography_from_pose(K, R, t)
        img = render_view(ref, H, (width, height), noise_std=noise_std, rng=rng)
        name = f"{i}.{image_format}"
        save_gray_u8(out / name, img)
        images.append({"name": name, "R": R.tolist(), "t": t.tolist(), "H": H.tolist()})

    gt = {
        "K": K.tolist(),
        "image_size": [int(width), int(height)],
        "board": {"squares_x": board.squares_x, "squares_y": board.squares_y},
        "reference": {"square_px": square_px, "margin_px": margin_px, "shrink_px": shrink_px},
        "images": images,
    }
    (out / "ground_truth.json").write_text(json.dumps(gt, indent=2), encoding="utf-8")
    return gt
