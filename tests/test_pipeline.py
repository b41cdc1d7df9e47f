import cv2
import numpy as np
import pytest

from conftest import FakeRecognizer, footer_image, rectangle_image
from graphene_exclusion.config import Configuration
from graphene_exclusion.models import ScaleSource
from graphene_exclusion.pipeline import Pipeline, load_image, pre_process, to_gray8
from graphene_exclusion.config import PreProcessing
from graphene_exclusion.utils import (
    ImageLoadError, InvalidConfigurationError, ScaleDetectionError
)


def with_angles(config, **changes):
    values = dict(enabled=True, threshold=128, blur=0.0, polarity="dark",
                  min_graphene_size=0.0, min_graphene_ratio=0.0, size_unit="px")
    values.update(changes)
    return config.replace("graphene_angles", **values)


def test_uniform_gray_image(override_config):
    config = with_angles(override_config.replace("bacteria_exclusion", contrast_threshold=150.0),
                         threshold=150, polarity="bright")
    result = Pipeline(config).run(np.full((60, 60), 100, dtype=np.uint8))

    assert result.edge_contours == []
    assert result.exclusion.excluded_fraction == 0.0
    assert result.flakes == []
    assert result.angle_histogram.total == 0
    assert result.length_histogram.counts == (0,)


def test_rectangle_image(override_config):
    config = with_angles(override_config.replace("bacteria_exclusion", contrast_threshold=128.0))
    result = Pipeline(config).run(rectangle_image())

    assert result.calibration.pixels_per_micrometer == 10.0
    assert len(result.edge_contours) == 1
    assert result.edge_contours[0].area == 40
    assert 0.0 < result.exclusion.excluded_fraction <= 1.0
    assert len(result.flakes) == 1
    flake = result.flakes[0]
    assert (flake.length, flake.width, flake.ratio) == pytest.approx((10.0, 4.0, 2.5))
    assert flake.orientation_angle == pytest.approx(0.0)
    assert result.angle_histogram.counts[0] == 1
    assert result.lengths() == pytest.approx([10.0])


def test_lengths_in_micrometers(override_config):
    config = with_angles(override_config, size_unit="um")
    result = Pipeline(config).run(rectangle_image())
    assert result.length_unit == "um"
    assert result.lengths() == pytest.approx([1.0])


def test_disabled_stages_are_skipped(override_config):
    config = override_config.replace("bacteria_exclusion", enabled=False)
    result = Pipeline(config).run(rectangle_image())
    assert result.exclusion is None
    assert result.angle_histogram is None
    assert result.edge_contours == []


def test_footer_is_removed_before_analysis():
    config = Configuration().replace("text_recognition", scale_bar_height=30)
    result = Pipeline(config, FakeRecognizer(10.0)).run(footer_image())

    assert result.calibration.source is ScaleSource.OCR
    assert result.analysis_image.shape == (90, 200)
    # 白色比例尺不在分析区域内，不会被当作石墨烯边缘
    assert result.edge_contours == []


def test_unscaled_mode():
    pipeline = Pipeline(Configuration().replace("text_recognition", scale_bar_height=30),
                        FakeRecognizer(error="no text"))
    with pytest.raises(ScaleDetectionError):
        pipeline.run(footer_image())

    result = pipeline.run(footer_image(), allow_unscaled=True)
    assert result.calibration.source is ScaleSource.UNSCALED
    assert result.calibration.pixels_per_micrometer == 1.0
    assert result.warnings


def test_fallback_is_reported():
    config = Configuration().replace("text_recognition", scale_bar_height=30,
                                     override_scale_micrometers=10.0, override_scale_pixels=100)
    result = Pipeline(config, FakeRecognizer(error="no text")).run(footer_image())
    assert result.calibration.fallback
    assert len(result.warnings) == 1


def test_footer_taller_than_image(override_config):
    config = override_config.replace("text_recognition", scale_bar_height=100)
    with pytest.raises(InvalidConfigurationError):
        Pipeline(config).run(np.zeros((50, 50), dtype=np.uint8))


def test_invalid_config_rejected_at_construction():
    with pytest.raises(InvalidConfigurationError):
        Pipeline(Configuration().replace("bacteria_exclusion", polarity="left"))


def test_run_does_not_modify_input(override_config):
    config = override_config.replace("pre_processing", equalize_histogram=True)
    image = rectangle_image(background=180, foreground=40)
    before = image.copy()
    Pipeline(with_angles(config)).run(image)
    np.testing.assert_array_equal(image, before)


def test_pre_process_equalizes():
    image = np.tile(np.arange(100, 150, dtype=np.uint8), (10, 1))
    equalized = pre_process(image, PreProcessing(equalize_histogram=True))
    assert equalized.max() == 255
    assert pre_process(image, PreProcessing()) is not image


def test_to_gray8():
    color = np.zeros((4, 4, 3), dtype=np.uint8)
    color[..., :] = 200
    assert to_gray8(color).shape == (4, 4)

    wide = np.array([[0, 1000], [2000, 4000]], dtype=np.uint16)
    gray = to_gray8(wide)
    assert gray.dtype == np.uint8
    assert (gray.min(), gray.max()) == (0, 255)
    assert to_gray8(np.full((2, 2), 7, dtype=np.uint16)).max() == 0


def test_load_image(tmp_path):
    path = tmp_path / "sample.png"
    cv2.imwrite(str(path), rectangle_image())
    image = load_image(path)
    assert image.shape == (40, 60)
    assert image.dtype == np.uint8

    with pytest.raises(ImageLoadError):
        load_image(tmp_path / "missing.png")
