"""
数据模型模块 - 定义所有数据类和数据结构
"""
import enum
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np


class ScaleSource(enum.Enum):
    """比例尺来源"""
    OCR = "ocr"
    OVERRIDE = "override"
    UNSCALED = "unscaled"      # 降级模式：1 像素/微米，结果无物理尺度


@dataclass(frozen=True)
class ScaleCalibration:
    """比例尺标定结果"""
    pixels_per_micrometer: float
    source: ScaleSource
    micrometers: Optional[float] = None     # 比例尺标注数值(微米)
    pixels: Optional[float] = None          # 比例尺像素长度
    footer_height: int = 0                  # 底栏高度(像素)
    fallback: bool = False                  # 文字识别失败后改用手动数值

    @property
    def micrometers_per_pixel(self) -> float:
        return 1.0 / self.pixels_per_micrometer

    @property
    def is_scaled(self) -> bool:
        return self.source is not ScaleSource.UNSCALED

    def to_pixels(self, micrometers: float) -> float:
        return micrometers * self.pixels_per_micrometer

    def to_micrometers(self, pixels: float) -> float:
        return pixels / self.pixels_per_micrometer


@dataclass(frozen=True, eq=False)
class Contour:
    """连通区域外边界

    points 为 (N, 2) 的 (x, y) 整数坐标，从最上方最左侧像素开始顺时针排列。
    area 为该连通区域的像素数。
    """
    id: int
    points: np.ndarray
    area: int
    bbox: Tuple[int, int, int, int]         # (x, y, width, height)

    @property
    def distinct_points(self) -> int:
        return len({(int(x), int(y)) for x, y in self.points})

    def as_cv(self) -> np.ndarray:
        """转换为 OpenCV 轮廓格式 (N, 1, 2) int32"""
        return self.points.reshape(-1, 1, 2).astype(np.int32)


@dataclass(frozen=True, eq=False)
class ExclusionResult:
    """细菌排斥区计算结果"""
    mask: np.ndarray                        # bool，与分析图像同尺寸
    excluded_fraction: float
    radius_px: float
    adjusted_fraction: Optional[float] = None
    radial_profile: Optional[np.ndarray] = None   # (N, 2): 半径(微米), 排斥比例

    @property
    def excluded_pixels(self) -> int:
        return int(np.count_nonzero(self.mask))


@dataclass(frozen=True, eq=False)
class Flake:
    """石墨烯薄片测量结果"""
    contour: Contour
    orientation_angle: float                # [0, 180) 度
    length: float                           # 像素
    width: float                            # 像素
    ratio: float                            # length / width，宽度为 0 时为 inf
    center: Tuple[float, float] = (0.0, 0.0)
    box: Optional[np.ndarray] = None        # 最小外接矩形四个顶点 (4, 2)
    length_um: Optional[float] = None
    width_um: Optional[float] = None

    @property
    def is_degenerate(self) -> bool:
        return math.isinf(self.ratio)


@dataclass(frozen=True)
class Histogram:
    """直方图：len(counts) == len(bin_edges) - 1"""
    bin_edges: Tuple[float, ...]
    counts: Tuple[int, ...]

    @property
    def total(self) -> int:
        return int(sum(self.counts))

    @property
    def bin_count(self) -> int:
        return len(self.counts)


@dataclass
class PipelineResult:
    """单张图像的完整分析结果"""
    calibration: ScaleCalibration
    analysis_image: np.ndarray
    edge_contours: List[Contour] = field(default_factory=list)
    exclusion: Optional[ExclusionResult] = None
    flake_contours: List[Contour] = field(default_factory=list)
    flakes: List[Flake] = field(default_factory=list)
    angle_histogram: Optional[Histogram] = None
    length_histogram: Optional[Histogram] = None
    length_unit: str = "um"
    warnings: List[str] = field(default_factory=list)

    @property
    def angles(self) -> List[float]:
        return [f.orientation_angle for f in self.flakes]

    def lengths(self) -> List[float]:
        """按配置单位返回薄片长度"""
        if self.length_unit == "um":
            return [f.length_um if f.length_um is not None else f.length for f in self.flakes]
        return [f.length for f in self.flakes]
