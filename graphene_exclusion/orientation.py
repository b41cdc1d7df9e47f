"""
取向分析模块 - 最小外接矩形、薄片长度/宽度/取向角
"""
import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from graphene_exclusion.config import GrapheneAngles
from graphene_exclusion.models import Contour, Flake, ScaleCalibration
from graphene_exclusion.utils import LENGTH_UNITS, MIN_CONTOUR_POINTS, InvalidConfigurationError

logger = logging.getLogger(__name__)

# 每个像素按单位正方形处理，取其四个角点
_PIXEL_CORNERS = np.array([[0, 0], [1, 0], [0, 1], [1, 1]], dtype=np.int32)


def normalize_angle(angle_deg: float) -> float:
    """角度归一化到 [0, 180)"""
    angle = angle_deg % 180.0
    if angle >= 180.0 - 1e-9 or abs(angle) < 1e-12:
        return 0.0
    return angle


def axis_angle(direction: np.ndarray) -> float:
    """方向向量相对水平轴的角度（屏幕上逆时针为正），归一化到 [0, 180)"""
    # 图像坐标系 y 轴向下
    return normalize_angle(math.degrees(math.atan2(-direction[1], direction[0])))


def is_line(points: np.ndarray) -> bool:
    """所有像素中心是否共线（单像素宽的线）"""
    offsets = points.astype(np.int64) - points[0]
    far = offsets[np.argmax(np.abs(offsets).sum(axis=1))]
    cross = far[0] * offsets[:, 1] - far[1] * offsets[:, 0]
    return not np.any(cross)


def pixel_hull(points: np.ndarray) -> np.ndarray:
    """边界像素(按单位正方形)的凸包顶点 (M, 2)"""
    corners = (points[:, None, :].astype(np.int32) + _PIXEL_CORNERS[None, :, :]).reshape(-1, 2)
    hull = cv2.convexHull(corners)
    return hull.reshape(-1, 2).astype(np.float64)


def min_area_rect(hull: np.ndarray) -> Optional[Tuple[float, float, np.ndarray, np.ndarray, np.ndarray]]:
    """旋转卡壳求最小面积外接矩形

    对凸包的每条边，以该边方向 u 及其法向 v 为坐标轴计算投影范围，
    面积最小者即最小外接矩形（面积相同取先出现的边）。

    Returns:
        (沿 u 的边长, 沿 v 的边长, u, v, 四个顶点)，凸包退化时返回 None
    """
    best = None
    best_area = None
    n = len(hull)
    for i in range(n):
        edge = hull[(i + 1) % n] - hull[i]
        norm = math.hypot(edge[0], edge[1])
        if norm == 0:
            continue
        u = edge / norm
        v = np.array([-u[1], u[0]])
        pu = hull @ u
        pv = hull @ v
        side_u = float(pu.max() - pu.min())
        side_v = float(pv.max() - pv.min())
        area = side_u * side_v
        if best_area is None or area < best_area * (1 - 1e-9):
            best_area = area
            box = np.array([
                u * pu.min() + v * pv.min(),
                u * pu.max() + v * pv.min(),
                u * pu.max() + v * pv.max(),
                u * pu.min() + v * pv.max(),
            ])
            best = (side_u, side_v, u, v, box)
    return best


class OrientationAnalyzer:
    """拟合每个轮廓的最小外接矩形并按尺寸/长宽比过滤"""

    def __init__(self, min_graphene_size: float = 0.0,
                 min_graphene_ratio: float = 0.0,
                 size_unit: str = "um"):
        if min_graphene_size < 0 or min_graphene_ratio < 0:
            raise InvalidConfigurationError("最小尺寸和最小长宽比不能为负")
        if size_unit not in LENGTH_UNITS:
            raise InvalidConfigurationError(f"未知尺寸单位: {size_unit}")
        self.min_graphene_size = min_graphene_size
        self.min_graphene_ratio = min_graphene_ratio
        self.size_unit = size_unit

    @classmethod
    def from_config(cls, config: GrapheneAngles) -> "OrientationAnalyzer":
        return cls(config.min_graphene_size, config.min_graphene_ratio, config.size_unit)

    def measure(self, contour: Contour, calibration: ScaleCalibration) -> Optional[Flake]:
        """测量单个轮廓，几何退化时返回 None"""
        if contour.distinct_points < MIN_CONTOUR_POINTS:
            logger.debug("轮廓 #%d 点数不足，跳过", contour.id)
            return None

        hull = pixel_hull(contour.points)
        rect = min_area_rect(hull) if len(hull) >= 3 else None
        if rect is None:
            logger.debug("轮廓 #%d 凸包退化，跳过", contour.id)
            return None

        side_u, side_v, u, v, box = rect
        angle_u, angle_v = axis_angle(u), axis_angle(v)
        if math.isclose(side_u, side_v, rel_tol=1e-9):
            # 正方形：取最接近 0 度的轴为长度方向
            deviation_u = min(angle_u, 180.0 - angle_u)
            deviation_v = min(angle_v, 180.0 - angle_v)
            length, width = side_u, side_v
            angle = angle_u if deviation_u <= deviation_v else angle_v
        elif side_u > side_v:
            length, width, angle = side_u, side_v, angle_u
        else:
            length, width, angle = side_v, side_u, angle_v

        if is_line(contour.points):
            # 单像素宽的线没有宽度，比值视为无穷大
            width = 0.0
        ratio = length / width if width > 0 else math.inf
        center = box.mean(axis=0)
        return Flake(
            contour=contour,
            orientation_angle=angle,
            length=length,
            width=width,
            ratio=ratio,
            center=(float(center[0]), float(center[1])),
            box=box,
            length_um=calibration.to_micrometers(length),
            width_um=calibration.to_micrometers(width),
        )

    def analyze(self, contours: List[Contour], calibration: ScaleCalibration) -> List[Flake]:
        """返回满足最小尺寸和最小长宽比的薄片"""
        flakes = []
        for contour in contours:
            flake = self.measure(contour, calibration)
            if flake is None:
                continue
            size = flake.length_um if self.size_unit == "um" else flake.length
            if size < self.min_graphene_size:
                continue
            if flake.ratio < self.min_graphene_ratio:
                continue
            flakes.append(flake)

        logger.info("%d 个轮廓中有 %d 个薄片满足尺寸和长宽比要求", len(contours), len(flakes))
        return flakes
