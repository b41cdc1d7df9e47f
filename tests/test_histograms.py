import numpy as np
import pytest

from graphene_exclusion.config import GrapheneAngles
from graphene_exclusion.histograms import HistogramBuilder, get_statistics
from graphene_exclusion.utils import InvalidConfigurationError


def test_no_wraparound_folding():
    histogram = HistogramBuilder(angle_bin_width=20.0).angle_histogram([10.0, 170.0])
    assert histogram.bin_count == 9
    assert histogram.counts[0] == 1
    assert histogram.counts[8] == 1
    assert histogram.bin_edges[0] == 0.0 and histogram.bin_edges[-1] == 180.0


def test_angle_counts_sum_to_inputs():
    angles = [0.0, 9.99, 10.0, 45.0, 90.0, 135.5, 179.9, 180.0]
    histogram = HistogramBuilder().angle_histogram(angles)
    assert histogram.total == len(angles)
    assert histogram.counts[0] == 2
    assert histogram.counts[1] == 1
    assert histogram.counts[-1] == 2


def test_angles_outside_range_are_folded():
    values = np.array([185.0, -10.0])
    histogram = HistogramBuilder().angle_histogram(values)
    assert histogram.counts[0] == 1
    assert histogram.counts[17] == 1
    assert values.tolist() == [185.0, -10.0]


def test_empty_angles_have_fixed_bins():
    histogram = HistogramBuilder().angle_histogram([])
    assert histogram.bin_count == 18
    assert histogram.total == 0


def test_length_histogram_spans_min_max():
    lengths = [1.0, 2.0, 2.5, 4.0, 11.0]
    histogram = HistogramBuilder(length_bins=10).length_histogram(lengths)
    assert histogram.bin_count == 10
    assert histogram.bin_edges[0] == 1.0
    assert histogram.bin_edges[-1] == 11.0
    assert histogram.total == len(lengths)
    assert histogram.counts[-1] == 1


def test_length_histogram_degenerate_cases():
    builder = HistogramBuilder()
    empty = builder.length_histogram([])
    assert empty.counts == (0,) and empty.bin_edges == (0.0, 0.0)

    single = builder.length_histogram([3.0])
    assert single.counts == (1,) and single.bin_edges == (3.0, 3.0)

    equal = builder.length_histogram([2.0, 2.0, 2.0])
    assert equal.counts == (3,)


def test_build_and_from_config():
    builder = HistogramBuilder.from_config(GrapheneAngles(angle_bin_width=30.0, length_bins=4))
    angles, lengths = builder.build([15.0, 95.0], [1.0, 5.0])
    assert angles.bin_count == 6
    assert lengths.bin_count == 4
    assert angles.total == lengths.total == 2


def test_invalid_bins():
    with pytest.raises(InvalidConfigurationError):
        HistogramBuilder(angle_bin_width=25.0)
    with pytest.raises(InvalidConfigurationError):
        HistogramBuilder(length_bins=0)


def test_get_statistics():
    assert get_statistics([]) == {'count': 0}
    stats = get_statistics([1.0, 2.0, 3.0])
    assert stats['count'] == 3
    assert stats['mean'] == pytest.approx(2.0)
    assert stats['std'] == pytest.approx(np.std([1.0, 2.0, 3.0]))
    assert (stats['min'], stats['max']) == (1.0, 3.0)
