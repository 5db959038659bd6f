import numpy as np

from checkercalib.detect.contours import binarize, erode_cross, find_contours


def _image_with_squares(squares, shape=(60, 60)):
    img = np.full(shape, 255, dtype=np.uint8)
    for y0, y1, x0, x1 in squares:
        img[y0:y1, x0:x1] = 0
    return img


def test_binarize_fixed_and_mean_threshold():
    img = np.array([[0, 100, 200], [50, 150, 250]], dtype=np.uint8)
    assert binarize(img, 127).tolist() == [[True, True, False], [True, False, False]]
    # mean = 125
    assert binarize(img, "mean").tolist() == [[True, True, False], [True, False, False]]


def test_find_contours_boundary_pixels():
    img = _image_with_squares([(10, 20, 10, 20), (30, 45, 30, 40)])
    contours = find_contours(binarize(img))
    assert len(contours) == 2
    assert sorted(len(c) for c in contours) == [36, 46]
    c = min(contours, key=len)
    assert c.start == (10, 10)
    assert np.all((c.points >= 10) & (c.points <= 19))


def test_find_contours_drops_border_blobs_and_tiny_blobs():
    img = _image_with_squares([(0, 10, 20, 30), (30, 32, 30, 31), (40, 50, 40, 50)])
    contours = find_contours(binarize(img), min_points=5)
    assert len(contours) == 1
    assert contours[0].start == (40, 40)


def test_erode_cross_separates_diagonal_squares():
    img = _image_with_squares([(10, 20, 10, 20), (20, 30, 20, 30)])
    mask = binarize(img)
    assert len(find_contours(mask)) == 1
    assert len(find_contours(erode_cross(mask))) == 2
