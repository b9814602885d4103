"""
Checkerboard detection shared by the intrinsic solve and the underlay estimator.
"""

from typing import Optional, Tuple

import cv2
import numpy as np

from ..core.constants import (
    CHECKERBOARD_SIZE,
    SUBPIX_EPSILON,
    SUBPIX_MAX_ITER,
    SUBPIX_WINDOW,
)

CHESSBOARD_FLAGS = cv2.CALIB_CB_ADAPTIVE_THRESH + cv2.CALIB_CB_NORMALIZE_IMAGE + cv2.CALIB_CB_FAST_CHECK


def to_gray(image: np.ndarray) -> np.ndarray:
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def find_checkerboard(
    image: np.ndarray,
    pattern_size: Tuple[int, int] = CHECKERBOARD_SIZE
) -> Optional[np.ndarray]:
    """
    Find and refine checkerboard corners in an image.

    Args:
        image: Gray or BGR image
        pattern_size: Inner corners (columns, rows)

    Returns:
        Corners as an (N, 1, 2) float32 array in row-major order, or None
    """
    gray = to_gray(image)
    found, corners = cv2.findChessboardCorners(gray, pattern_size, CHESSBOARD_FLAGS)
    if not found or corners is None or len(corners) != pattern_size[0] * pattern_size[1]:
        return None

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, SUBPIX_MAX_ITER, SUBPIX_EPSILON)
    refined = cv2.cornerSubPix(gray, corners, SUBPIX_WINDOW, (-1, -1), criteria)
    return np.asarray(refined, dtype=np.float32).reshape(-1, 1, 2)


def create_object_points(pattern_size: Tuple[int, int], square_size: float) -> np.ndarray:
    """
    Create 3D object points for the checkerboard on the z=0 plane.

    Returns:
        (N, 3) float32 array, x varying fastest, matching corner order
    """
    width, height = pattern_size
    objp = np.zeros((width * height, 3), np.float32)
    objp[:, :2] = np.mgrid[0:width, 0:height].T.reshape(-1, 2) * square_size
    return objp
