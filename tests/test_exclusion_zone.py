import numpy as np
import pytest

from conftest import rectangle_image
from graphene_exclusion.config import BacteriaExclusion
from graphene_exclusion.edge_detection import EdgeDetector
from graphene_exclusion.exclusion_zone import (
    ExclusionZoneComputer, contour_mask, distance_to_edges, radius_adjusted_fraction
)
from graphene_exclusion.models import ScaleCalibration, ScaleSource
from graphene_exclusion.utils import InvalidConfigurationError


def calibration(ppm=1.0):
    return ScaleCalibration(pixels_per_micrometer=ppm, source=ScaleSource.OVERRIDE)


@pytest.fixture
def rectangle():
    image = rectangle_image()
    return image, EdgeDetector(128, minimum_edge_area=5).detect(image)


def test_no_contours_gives_zero_fraction():
    image = np.full((30, 30), 100, dtype=np.uint8)
    result = ExclusionZoneComputer(5.0).compute(image, [], calibration())
    assert result.excluded_fraction == 0.0
    assert result.excluded_pixels == 0
    assert result.mask.shape == image.shape


def test_zero_radius_excludes_only_edge_pixels(rectangle):
    image, contours = rectangle
    result = ExclusionZoneComputer(0.0, radius_unit="px").compute(image, contours, calibration())
    assert result.excluded_pixels == 24
    assert result.excluded_fraction == pytest.approx(24 / image.size)
    np.testing.assert_array_equal(result.mask, contour_mask(image.shape, contours))


def test_fraction_grows_with_radius(rectangle):
    image, contours = rectangle
    fractions = [
        ExclusionZoneComputer(r, radius_unit="px").compute(image, contours, calibration()).excluded_fraction
        for r in (0, 1, 2, 3.5, 5, 10)
    ]
    assert fractions == sorted(fractions)
    assert all(0.0 <= f <= 1.0 for f in fractions)
    assert fractions[-1] > fractions[0]


def test_distance_is_euclidean():
    edges = np.zeros((11, 11), dtype=bool)
    edges[5, 5] = True
    distances = distance_to_edges(edges)
    assert distances[5, 5] == 0
    assert distances[5, 8] == pytest.approx(3.0, abs=1e-3)
    assert distances[8, 9] == pytest.approx(5.0, abs=1e-3)


def test_radius_in_micrometers_uses_calibration():
    computer = ExclusionZoneComputer(0.9, radius_unit="um")
    assert computer.radius_in_pixels(calibration(10.0)) == pytest.approx(9.0)
    assert ExclusionZoneComputer(3, radius_unit="px").radius_in_pixels(calibration(10.0)) == 3.0


def test_radius_below_one_pixel_warns(rectangle, caplog):
    image, contours = rectangle
    result = ExclusionZoneComputer(0.5, radius_unit="px").compute(image, contours, calibration())
    assert result.excluded_pixels == 24
    assert "小于1个像素" in caplog.text


def test_compute_does_not_modify_image(rectangle):
    image, contours = rectangle
    before = image.copy()
    ExclusionZoneComputer(2.0, radius_adjusted=True).compute(image, contours, calibration())
    np.testing.assert_array_equal(image, before)


def test_radius_adjusted_full_and_empty_masks():
    image = np.full((9, 40), 200, dtype=np.uint8)
    full, profile = radius_adjusted_fraction(image, np.ones(image.shape, dtype=bool), calibration(2.0))
    empty, _ = radius_adjusted_fraction(image, np.zeros(image.shape, dtype=bool), calibration(2.0))

    assert full == pytest.approx(1.0)
    assert empty == 0.0
    assert profile.shape == (40, 2)
    assert profile[4, 0] == pytest.approx(2.0)


def test_radius_adjusted_without_content():
    image = np.zeros((9, 40), dtype=np.uint8)
    assert radius_adjusted_fraction(image, np.ones(image.shape, dtype=bool), calibration()) == (None, None)


def test_radius_adjusted_result_in_compute(rectangle):
    image, contours = rectangle
    result = ExclusionZoneComputer(2.0, radius_unit="px", radius_adjusted=True).compute(
        image, contours, calibration()
    )
    assert 0.0 <= result.adjusted_fraction <= 1.0
    assert result.radial_profile is not None


def test_from_config():
    computer = ExclusionZoneComputer.from_config(
        BacteriaExclusion(exclusion_radius=1.5, radius_unit="px", radius_adjusted=True)
    )
    assert (computer.exclusion_radius, computer.radius_unit, computer.radius_adjusted) == (1.5, "px", True)


def test_invalid_parameters():
    with pytest.raises(InvalidConfigurationError):
        ExclusionZoneComputer(-1.0)
    with pytest.raises(InvalidConfigurationError):
        ExclusionZoneComputer(1.0, radius_unit="nm")
