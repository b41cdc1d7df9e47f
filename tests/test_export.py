import csv
import json
import math

import numpy as np
import pytest

from conftest import rectangle_image
from graphene_exclusion import rendering
from graphene_exclusion.export import (
    format_report, radial_distance_um, summarize, write_angles_csv, write_outputs
)
from graphene_exclusion.histograms import HistogramBuilder
from graphene_exclusion.pipeline import Pipeline


@pytest.fixture
def analysed(override_config):
    config = override_config.replace(
        "bacteria_exclusion", contrast_threshold=128.0, radius_adjusted=True
    ).replace(
        "graphene_angles", enabled=True, threshold=128, blur=0.0, polarity="dark",
        min_graphene_size=0.0, min_graphene_ratio=0.0,
    )
    return config, Pipeline(config).run(rectangle_image())


def test_summary_is_json_serialisable(analysed):
    _, result = analysed
    summary = summarize(result, "sample")
    text = json.dumps(summary)

    assert json.loads(text)['image'] == "sample"
    assert summary['scale']['source'] == "override"
    assert summary['bacteria_exclusion']['edge_count'] == 1
    assert summary['graphene_angles']['flake_count'] == 1
    assert summary['graphene_angles']['flakes'][0]['ratio'] == pytest.approx(2.5)
    assert summary['graphene_angles']['length_statistics']['mean'] == pytest.approx(1.0)


def test_radial_distance(analysed):
    _, result = analysed
    # 分析图像 60x40，圆心在 (60, 20)
    assert radial_distance_um(result, (60.0, 20.0)) == 0.0
    assert radial_distance_um(result, (30.0, 20.0)) == pytest.approx(3.0)


def test_angles_csv(analysed, tmp_path):
    _, result = analysed
    path = write_angles_csv(result, tmp_path / "angles.csv")
    with open(path, newline='', encoding='utf-8') as f:
        rows = list(csv.reader(f))
    assert rows[0] == ['radial_distance', 'angle']
    assert len(rows) == 2
    assert float(rows[1][1]) == pytest.approx(0.0)


def test_report_mentions_results(analysed):
    _, result = analysed
    report = format_report(result, "sample")
    assert "sample" in report
    assert "排斥面积占比" in report
    assert "薄片数量: 1" in report


def test_write_outputs(analysed, tmp_path):
    config, result = analysed
    written = write_outputs(result, tmp_path / "out", "sample", config)

    names = {p.name for p in written}
    assert {
        "sample_graphene.png", "sample_bacteria-exclusion.png", "sample_graphene_by_radius.csv",
        "sample_angles.png", "sample_angle-histogram.png", "sample_length-histogram.png",
        "sample_angle-length-scatterplot.png", "sample_angles.csv", "sample_lengths.csv",
        "sample_summary.json", "sample_report.txt", "sample_config.json",
    } == names
    assert all(p.exists() for p in written)


def test_degenerate_flake_ratio_is_null_in_summary(override_config):
    config = override_config.replace(
        "bacteria_exclusion", enabled=False
    ).replace(
        "graphene_angles", enabled=True, threshold=128, blur=0.0, polarity="dark",
        min_graphene_size=0.0, min_graphene_ratio=0.0,
    )
    result = Pipeline(config).run(rectangle_image())
    flake = result.flakes[0]
    result.flakes[0] = type(flake)(contour=flake.contour, orientation_angle=0.0,
                                   length=flake.length, width=0.0, ratio=math.inf)
    summary = summarize(result)
    assert summary['graphene_angles']['flakes'][0]['ratio'] is None
    assert 'bacteria_exclusion' not in summary


def test_overlays_keep_image_size(analysed):
    _, result = analysed
    overlay = rendering.flake_overlay(result.analysis_image, result.flakes)
    assert overlay.shape == result.analysis_image.shape + (3,)
    edges = rendering.edge_overlay(result.analysis_image, result.edge_contours)
    assert tuple(edges[10, 20]) == rendering.EDGE_COLOR_BGR
    mask = rendering.exclusion_image(result.exclusion)
    assert mask.dtype == np.uint8 and set(np.unique(mask)) <= {0, 255}


def test_histogram_figure_with_single_bin(tmp_path):
    histogram = HistogramBuilder().length_histogram([2.0, 2.0])
    fig = rendering.histogram_figure(histogram, "长度")
    path = rendering.save_figure(fig, tmp_path / "hist.png")
    assert path.exists()


def test_gradient_mode_writes_edge_sharpness(override_config, tmp_path):
    config = override_config.replace(
        "bacteria_exclusion", contrast_threshold=45.0, detection_mode="gradient"
    )
    result = Pipeline(config).run(rectangle_image())
    written = write_outputs(result, tmp_path / "out", "sample", config)

    path = tmp_path / "out" / "sample_edge_sharpness.png"
    assert path in written and path.exists()
    sharpness = rendering.sharpness_image(result.analysis_image)
    assert sharpness.shape == result.analysis_image.shape and sharpness.dtype == np.uint8
    assert sharpness.max() > 45 and sharpness[0, 0] == 0
