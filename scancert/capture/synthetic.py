"""
Synthetic underlay images for the simulated backend and for bench tests.

Images are rendered with OpenCV: a printed checkerboard seen under a
frame-dependent perspective, or a plain ruled grid.
"""

import math
from typing import Tuple

import cv2
import numpy as np

from ..core.constants import CHECKERBOARD_SIZE, EXPECTED_GRID_SPACING_PX

SYNTHETIC_IMAGE_SIZE = (640, 480)


def render_checkerboard(
    view_index: int,
    image_size: Tuple[int, int] = SYNTHETIC_IMAGE_SIZE,
    pattern_size: Tuple[int, int] = CHECKERBOARD_SIZE,
    square_px: int = 40
) -> np.ndarray:
    """
    Render a checkerboard with a white quiet zone, warped into a view.

    The rotation and keystone of the board depend on ``view_index`` so a
    series of views carries enough perspective for an intrinsic solve.

    Args:
        view_index: Index of the view, selects rotation and keystone
        image_size: Output (width, height)
        pattern_size: Inner corners (columns, rows)
        square_px: Square size on the flat board in pixels

    Returns:
        BGR image
    """
    columns = pattern_size[0] + 1
    rows = pattern_size[1] + 1

    board = np.full((rows * square_px, columns * square_px), 255, dtype=np.uint8)
    for r in range(rows):
        for c in range(columns):
            if (r + c) % 2 == 0:
                board[r * square_px:(r + 1) * square_px, c * square_px:(c + 1) * square_px] = 0
    board = cv2.copyMakeBorder(board, square_px, square_px, square_px, square_px,
                               cv2.BORDER_CONSTANT, value=255)

    board_h, board_w = board.shape
    out_w, out_h = image_size
    scale = 0.7 * min(out_w / board_w, out_h / board_h)
    half_w = board_w * scale / 2.0
    half_h = board_h * scale / 2.0

    keystone_x = ((view_index % 3) - 1) * 0.10
    keystone_y = (((view_index // 3) % 3) - 1) * 0.10
    angle = math.radians(((view_index % 5) - 2) * 4.0)

    # top-left, top-right, bottom-right, bottom-left
    offsets = np.array([
        [-half_w * (1 - keystone_x), -half_h * (1 - keystone_y)],
        [half_w * (1 - keystone_x), -half_h * (1 + keystone_y)],
        [half_w * (1 + keystone_x), half_h * (1 + keystone_y)],
        [-half_w * (1 + keystone_x), half_h * (1 - keystone_y)],
    ])
    rotation = np.array([[math.cos(angle), -math.sin(angle)],
                         [math.sin(angle), math.cos(angle)]])
    dst = offsets @ rotation.T + np.array([out_w / 2.0, out_h / 2.0])

    src = np.array([[0, 0], [board_w, 0], [board_w, board_h], [0, board_h]], dtype=np.float32)
    homography = cv2.getPerspectiveTransform(src, dst.astype(np.float32))
    warped = cv2.warpPerspective(board, homography, image_size, flags=cv2.INTER_LINEAR, borderValue=255)
    return cv2.cvtColor(warped, cv2.COLOR_GRAY2BGR)


def render_line_grid(
    image_size: Tuple[int, int] = SYNTHETIC_IMAGE_SIZE,
    spacing_px: float = EXPECTED_GRID_SPACING_PX,
    thickness: int = 2
) -> np.ndarray:
    """Render a ruled grid of dark lines on white paper."""
    width, height = image_size
    image = np.full((height, width, 3), 255, dtype=np.uint8)

    step = max(2, int(round(spacing_px)))
    for x in range(step, width - step // 2, step):
        cv2.line(image, (x, step // 2), (x, height - step // 2), (20, 20, 20), thickness)
    for y in range(step, height - step // 2, step):
        cv2.line(image, (step // 2, y), (width - step // 2, y), (20, 20, 20), thickness)

    return image
