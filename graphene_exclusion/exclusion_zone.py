"""
细菌排斥区模块 - 根据石墨烯边缘计算细菌无法附着的区域
"""
import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from graphene_exclusion.config import BacteriaExclusion
from graphene_exclusion.models import Contour, ExclusionResult, ScaleCalibration
from graphene_exclusion.utils import LENGTH_UNITS, InvalidConfigurationError

logger = logging.getLogger(__name__)


def contour_mask(shape: Tuple[int, int], contours: List[Contour]) -> np.ndarray:
    """将所有边界点绘制为布尔图"""
    mask = np.zeros(shape[:2], dtype=bool)
    for contour in contours:
        xs = contour.points[:, 0]
        ys = contour.points[:, 1]
        mask[ys, xs] = True
    return mask


def distance_to_edges(edge_mask: np.ndarray) -> np.ndarray:
    """每个像素到最近边缘像素的欧氏距离（精确距离变换）"""
    src = np.where(edge_mask, 0, 255).astype(np.uint8)
    return cv2.distanceTransform(src, cv2.DIST_L2, cv2.DIST_MASK_PRECISE)


class ExclusionZoneComputer:
    """计算排斥区掩码及其面积占比"""

    def __init__(self, exclusion_radius: float, radius_unit: str = "um",
                 radius_adjusted: bool = False):
        if exclusion_radius < 0:
            raise InvalidConfigurationError("排斥半径不能为负")
        if radius_unit not in LENGTH_UNITS:
            raise InvalidConfigurationError(f"未知半径单位: {radius_unit}")
        self.exclusion_radius = exclusion_radius
        self.radius_unit = radius_unit
        self.radius_adjusted = radius_adjusted

    @classmethod
    def from_config(cls, config: BacteriaExclusion) -> "ExclusionZoneComputer":
        return cls(config.exclusion_radius, config.radius_unit, config.radius_adjusted)

    def radius_in_pixels(self, calibration: ScaleCalibration) -> float:
        """排斥半径换算为像素"""
        if self.radius_unit == "um":
            return calibration.to_pixels(self.exclusion_radius)
        return float(self.exclusion_radius)

    def compute(self, image: np.ndarray, contours: List[Contour],
                calibration: ScaleCalibration) -> ExclusionResult:
        """计算排斥区

        Args:
            image: 分析图像（只读，用于尺寸和径向校正）
            contours: 边缘检测得到的边界
            calibration: 比例尺

        Returns:
            ExclusionResult: 掩码、排斥面积占比及可选的径向校正结果
        """
        radius_px = self.radius_in_pixels(calibration)
        if radius_px < 1.0:
            logger.warning("排斥半径 %.3f 像素小于1个像素，排斥区仅包含边缘本身", radius_px)

        shape = image.shape[:2]
        if not contours:
            mask = np.zeros(shape, dtype=bool)
        else:
            distances = distance_to_edges(contour_mask(shape, contours))
            mask = distances <= radius_px

        total = mask.size
        fraction = float(np.count_nonzero(mask)) / total if total else 0.0

        adjusted, profile = None, None
        if self.radius_adjusted:
            adjusted, profile = radius_adjusted_fraction(image, mask, calibration)

        logger.info("排斥半径 %.2f 像素，排斥面积占比 %.2f%%", radius_px, 100.0 * fraction)
        return ExclusionResult(
            mask=mask,
            excluded_fraction=fraction,
            radius_px=radius_px,
            adjusted_fraction=adjusted,
            radial_profile=profile,
        )


def radius_adjusted_fraction(image: np.ndarray, mask: np.ndarray,
                             calibration: ScaleCalibration) -> Tuple[Optional[float], Optional[np.ndarray]]:
    """径向样品的排斥面积校正

    假设图像是从样品边缘拼接到圆心的径向采样，圆心位于右边缘的垂直中点。
    只统计拼接区域(非黑色内容的凸包)内的像素，按到圆心的整数距离分桶，
    每个桶的排斥比例乘以对应圆环面积后求和，再除以整个圆的面积。

    Returns:
        (校正后的排斥比例, (N, 2) 的 [半径(微米), 排斥比例]) ；图像无内容时为 (None, None)
    """
    h, w = mask.shape[:2]
    if w < 2:
        return None, None

    content = (image > 1).astype(np.uint8)
    found, _ = cv2.findContours(content, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    if not found:
        logger.warning("图像中没有可用于径向校正的内容")
        return None, None

    hull = cv2.convexHull(np.vstack(found))
    inside = np.zeros((h, w), dtype=np.uint8)
    cv2.fillConvexPoly(inside, hull, 1)

    ys, xs = np.indices((h, w))
    distance = np.rint(np.hypot(w - xs, ys - h // 2)).astype(np.int64)
    valid = (inside > 0) & (distance < w)

    d = distance[valid]
    counts = np.bincount(d, minlength=w)
    excluded = np.bincount(d, weights=mask[valid].astype(np.float64), minlength=w)
    ratio = np.divide(excluded, counts, out=np.zeros(w, dtype=np.float64), where=counts > 0)

    radii = np.arange(w, dtype=np.float64)
    inner = np.maximum(radii - 1.0, 0.0)
    ring_area = math.pi * (radii ** 2 - inner ** 2)
    adjusted = float(np.sum(ring_area * ratio) / (math.pi * (w - 1) ** 2))

    profile = np.column_stack([radii / calibration.pixels_per_micrometer, ratio])
    return adjusted, profile
