from __future__ import annotations

import numpy as np

from faceid.face.locator import FaceRegion, clamp_region, crop_region


def test_clamp_region_clips_to_last_pixel():
    region = clamp_region(FaceRegion(-12.5, -3, 640, 481, score=0.8), width=640, height=480)

    assert region.bbox == (0, 0, 639, 479)
    assert region.score == 0.8


def test_clamp_region_keeps_in_bounds_coordinates():
    assert clamp_region(FaceRegion(10.7, 20.2, 30.9, 40.1), 100, 100).bbox == (10, 20, 30, 40)


def test_crop_region_slices_rows_then_columns():
    img = np.arange(10 * 12 * 3, dtype=np.uint8).reshape(10, 12, 3)
    crop = crop_region(img, FaceRegion(2, 3, 7, 9))

    assert crop.shape == (6, 5, 3)
    assert np.array_equal(crop, img[3:9, 2:7])


def test_crop_region_degenerate_box_is_empty():
    img = np.zeros((10, 10, 3), dtype=np.uint8)
    assert crop_region(img, FaceRegion(8, 8, 2, 2)).size == 0
    assert crop_region(img, FaceRegion(50, 50, 80, 80)).size == 0
