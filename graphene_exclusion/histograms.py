"""
直方图模块 - 角度与长度分布及统计摘要
"""
from typing import Dict, Sequence, Tuple

import numpy as np

from graphene_exclusion.config import GrapheneAngles, angle_bin_count
from graphene_exclusion.models import Histogram
from graphene_exclusion.utils import (
    ANGLE_RANGE, DEFAULT_ANGLE_BIN_WIDTH, DEFAULT_LENGTH_BINS, InvalidConfigurationError
)


class HistogramBuilder:
    """将薄片角度和长度分桶"""

    def __init__(self, angle_bin_width: float = DEFAULT_ANGLE_BIN_WIDTH,
                 length_bins: int = DEFAULT_LENGTH_BINS):
        self.angle_bins = angle_bin_count(angle_bin_width)
        if length_bins < 1:
            raise InvalidConfigurationError("长度分箱数必须大于0")
        self.angle_bin_width = angle_bin_width
        self.length_bins = int(length_bins)

    @classmethod
    def from_config(cls, config: GrapheneAngles) -> "HistogramBuilder":
        return cls(config.angle_bin_width, config.length_bins)

    def angle_histogram(self, angles: Sequence[float]) -> Histogram:
        """固定宽度的角度直方图

        分箱为左闭右开 [edge_i, edge_i+1)，最后一个分箱包含 180 度。
        超出 [0, 180] 的角度先按 180 取模。
        """
        values = np.array(angles, dtype=np.float64)
        outside = (values < ANGLE_RANGE[0]) | (values > ANGLE_RANGE[1])
        values[outside] = values[outside] % 180.0
        edges = np.linspace(ANGLE_RANGE[0], ANGLE_RANGE[1], self.angle_bins + 1)
        counts, _ = np.histogram(values, bins=edges)
        return Histogram(bin_edges=tuple(float(e) for e in edges),
                         counts=tuple(int(c) for c in counts))

    def length_histogram(self, lengths: Sequence[float]) -> Histogram:
        """覆盖 [min, max] 的等分长度直方图

        没有数据、只有一个数据或所有长度相同时返回包含全部数据的单个分箱。
        """
        values = np.asarray(lengths, dtype=np.float64)
        if values.size == 0:
            return Histogram(bin_edges=(0.0, 0.0), counts=(0,))

        low, high = float(values.min()), float(values.max())
        if low == high:
            return Histogram(bin_edges=(low, high), counts=(int(values.size),))

        edges = np.linspace(low, high, self.length_bins + 1)
        counts, _ = np.histogram(values, bins=edges)
        return Histogram(bin_edges=tuple(float(e) for e in edges),
                         counts=tuple(int(c) for c in counts))

    def build(self, angles: Sequence[float], lengths: Sequence[float]) -> Tuple[Histogram, Histogram]:
        """返回 (角度直方图, 长度直方图)"""
        return self.angle_histogram(angles), self.length_histogram(lengths)


def get_statistics(values: Sequence[float]) -> Dict[str, float]:
    """数值序列的统计信息

    Returns:
        Dict[str, float]: 包含 count, mean, std, min, max；序列为空时返回 {'count': 0}
    """
    if len(values) == 0:
        return {'count': 0}

    data = np.asarray(values, dtype=np.float64)
    return {
        'count': int(data.size),
        'mean': float(np.mean(data)),
        'std': float(np.std(data)),
        'min': float(np.min(data)),
        'max': float(np.max(data)),
    }
