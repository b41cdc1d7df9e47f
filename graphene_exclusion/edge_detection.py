"""
边缘检测模块 - 二值化、8连通区域标记与边界追踪
"""
import logging
from typing import List, Optional

import cv2
import numpy as np
from skimage.measure import label, regionprops

from graphene_exclusion.config import BacteriaExclusion, GrapheneAngles
from graphene_exclusion.models import Contour
from graphene_exclusion.utils import (
    DETECTION_MODES, POLARITIES, MAX_INTENSITY, MIN_CONTOUR_POINTS, InvalidConfigurationError
)

logger = logging.getLogger(__name__)

# 8邻域偏移 (dy, dx)，屏幕坐标系(y 向下)下按顺时针排列，从正上方开始
_NEIGHBOURS = [(-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1)]
_NEIGHBOUR_INDEX = {offset: i for i, offset in enumerate(_NEIGHBOURS)}
_WEST = _NEIGHBOUR_INDEX[(0, -1)]


def absolute_contrast(image: np.ndarray) -> np.ndarray:
    """局部对比度：8个方向上与对侧像素绝对差的平均值(0-255)

    每对相对像素计算两次，与分别在各个方向上求对比度再合并的结果一致，
    比单一梯度核更偏向单方向的锐利边缘，适合石墨烯片的边缘。
    """
    h, w = image.shape[:2]
    padded = np.pad(image.astype(np.float32), 1, mode="edge")
    summed = np.zeros((h, w), dtype=np.float32)
    for dy, dx in _NEIGHBOURS:
        pixel = padded[1 + dy:1 + dy + h, 1 + dx:1 + dx + w]
        opposite = padded[1 - dy:1 - dy + h, 1 - dx:1 - dx + w]
        summed += np.abs(opposite - pixel)
    return summed / len(_NEIGHBOURS)


def threshold_intensity(image: np.ndarray, threshold: float, polarity: str = "auto") -> np.ndarray:
    """按亮度阈值二值化

    bright: 亮度 > threshold；dark: 亮度 <= threshold；
    auto: 默认取亮侧，若亮侧超过图像一半则取暗侧。
    """
    bright = image > threshold
    if polarity == "bright":
        return bright
    if polarity == "dark":
        return ~bright
    if float(bright.mean()) > 0.5:
        return ~bright
    return bright


def trace_boundary(mask: np.ndarray) -> np.ndarray:
    """Moore 邻域边界追踪

    从最上方最左侧的前景像素开始，顺时针追踪外边界，
    使用“回到起点且下一点与第二点相同”作为停止条件。

    Args:
        mask: 只包含一个8连通区域的布尔图

    Returns:
        np.ndarray: (N, 2) 的 (x, y) 边界点序列，不重复起点
    """
    padded = np.pad(mask.astype(bool), 1, mode="constant", constant_values=False)
    ys, xs = np.nonzero(padded)
    if ys.size == 0:
        return np.zeros((0, 2), dtype=np.int64)

    start = (int(ys[0]), int(xs[0]))

    def step(current, backtrack_idx):
        """从回溯方向的下一个方向开始顺时针寻找前景邻居"""
        cy, cx = current
        for k in range(1, 9):
            d = (backtrack_idx + k) % 8
            dy, dx = _NEIGHBOURS[d]
            if padded[cy + dy, cx + dx]:
                # 前一个被检查的邻居是背景，作为新的回溯点
                py, px = _NEIGHBOURS[(d - 1) % 8]
                relative = (py - dy, px - dx)
                return (cy + dy, cx + dx), _NEIGHBOUR_INDEX[relative]
        return None, backtrack_idx

    second, backtrack = step(start, _WEST)
    if second is None:
        return np.array([[start[1] - 1, start[0] - 1]], dtype=np.int64)

    path = [start]
    current = second
    # 外边界上每个像素最多被访问4次
    max_steps = 4 * int(padded.sum()) + 8
    for _ in range(max_steps):
        nxt, next_backtrack = step(current, backtrack)
        if current == start and nxt == second:
            break
        path.append(current)
        current, backtrack = nxt, next_backtrack

    points = np.array(path, dtype=np.int64)
    return points[:, ::-1] - 1


class EdgeDetector:
    """阈值化图像并提取连通区域边界"""

    def __init__(self, contrast_threshold: float,
                 minimum_edge_area: int = 0,
                 detection_mode: str = "intensity",
                 polarity: str = "auto",
                 blur: float = 0.0):
        if not 0 <= contrast_threshold <= MAX_INTENSITY:
            raise InvalidConfigurationError("对比度阈值必须在 0-255 之间")
        if minimum_edge_area < 0:
            raise InvalidConfigurationError("最小边缘面积不能为负")
        if detection_mode not in DETECTION_MODES:
            raise InvalidConfigurationError(f"未知检测模式: {detection_mode}")
        if polarity not in POLARITIES:
            raise InvalidConfigurationError(f"未知极性: {polarity}")
        if blur < 0:
            raise InvalidConfigurationError("模糊半径不能为负")
        self.contrast_threshold = contrast_threshold
        self.minimum_edge_area = minimum_edge_area
        self.detection_mode = detection_mode
        self.polarity = polarity
        self.blur = blur

    @classmethod
    def for_exclusion(cls, config: BacteriaExclusion) -> "EdgeDetector":
        """细菌排斥区所用的边缘检测器"""
        return cls(config.contrast_threshold, config.minimum_edge_area,
                   config.detection_mode, config.polarity)

    @classmethod
    def for_flakes(cls, config: GrapheneAngles) -> "EdgeDetector":
        """石墨烯取向所用的薄片检测器（先高斯模糊再按亮度阈值化）"""
        return cls(config.threshold, 0, "intensity", config.polarity, config.blur)

    def binarize(self, image: np.ndarray) -> np.ndarray:
        """生成前景(边缘)掩码"""
        if self.blur > 0:
            image = cv2.GaussianBlur(image, (0, 0), sigmaX=self.blur)
        if self.detection_mode == "gradient":
            return absolute_contrast(image) > self.contrast_threshold
        return threshold_intensity(image, self.contrast_threshold, self.polarity)

    def detect(self, image: np.ndarray, mask: Optional[np.ndarray] = None) -> List[Contour]:
        """提取面积不小于 minimum_edge_area 的连通区域边界

        区域按最上方最左侧像素排序，输出与扫描顺序无关。
        """
        if mask is None:
            mask = self.binarize(image)
        labels = label(mask, connectivity=2, background=0)

        candidates = []
        for region in regionprops(labels):
            if region.area < self.minimum_edge_area:
                continue
            min_row, min_col, _, _ = region.bbox
            rows, cols = np.nonzero(region.image)
            top_left = (min_row + int(rows[0]), min_col + int(cols[0]))
            candidates.append((top_left, region))
        candidates.sort(key=lambda c: c[0])

        contours = []
        for _, region in candidates:
            min_row, min_col, max_row, max_col = region.bbox
            points = trace_boundary(region.image)
            if len({(int(x), int(y)) for x, y in points}) < MIN_CONTOUR_POINTS:
                logger.debug("跳过边界点过少的区域 (面积 %d, 位置 %d,%d)",
                             region.area, min_col, min_row)
                continue
            points = points + np.array([min_col, min_row])
            contours.append(Contour(
                id=len(contours),
                points=points,
                area=int(region.area),
                bbox=(int(min_col), int(min_row), int(max_col - min_col), int(max_row - min_row)),
            ))

        logger.debug("检测到 %d 个连通区域，保留 %d 个", int(labels.max()), len(contours))
        return contours
