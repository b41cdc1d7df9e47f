"""
可视化模块 - 叠加图与统计图（只在命令行输出时使用，分析流程本身不绘图）
"""
import math
from pathlib import Path
from typing import List, Sequence, Union

import cv2
import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from graphene_exclusion.edge_detection import absolute_contrast
from graphene_exclusion.models import Contour, ExclusionResult, Flake, Histogram

# 配色
COLORS = {
    'bar': '#6366F1',
    'point': '#1E293B',
    'text_secondary': '#64748B',
    'border': '#E2E8F0',
    'bg': '#FFFFFF',
}
EDGE_COLOR_BGR = (255, 255, 0)          # 青色
CONTOUR_COLOR_BGR = (0, 255, 0)
BOX_COLOR_BGR = (0, 0, 255)
ARROW_COLOR_BGR = (255, 0, 255)
ARROW_LENGTH_PX = 25


def _to_bgr(image: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR) if image.ndim == 2 else image.copy()


def edge_overlay(image: np.ndarray, contours: List[Contour]) -> np.ndarray:
    """在原图上标出检测到的边缘"""
    vis_image = _to_bgr(image)
    for c in contours:
        vis_image[c.points[:, 1], c.points[:, 0]] = EDGE_COLOR_BGR
    return vis_image


def exclusion_image(exclusion: ExclusionResult) -> np.ndarray:
    """排斥区掩码（白色为排斥区）"""
    return exclusion.mask.astype(np.uint8) * 255


def sharpness_image(image: np.ndarray) -> np.ndarray:
    """边缘锐度图（梯度模式下阈值化之前的绝对对比度）"""
    return np.clip(np.rint(absolute_contrast(image)), 0, 255).astype(np.uint8)


def flake_overlay(image: np.ndarray, flakes: List[Flake]) -> np.ndarray:
    """绘制薄片轮廓、最小外接矩形和取向箭头"""
    vis_image = _to_bgr(image)
    for i, flake in enumerate(flakes):
        cv2.drawContours(vis_image, [flake.contour.as_cv()], -1, CONTOUR_COLOR_BGR, 1)
        if flake.box is not None:
            cv2.drawContours(vis_image, [np.int32(np.rint(flake.box))], 0, BOX_COLOR_BGR, 1)

        cx, cy = flake.center
        theta = math.radians(flake.orientation_angle)
        tip = (int(round(cx + math.cos(theta) * ARROW_LENGTH_PX)),
               int(round(cy - math.sin(theta) * ARROW_LENGTH_PX)))
        cv2.arrowedLine(vis_image, (int(round(cx)), int(round(cy))), tip,
                        ARROW_COLOR_BGR, 1, tipLength=0.3)
        cv2.putText(vis_image, f"#{i}", (int(cx) + 3, int(cy) - 3),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.35, (255, 0, 0), 1)
    return vis_image


def _style_axes(ax, xlabel: str, ylabel: str, title: str):
    ax.set_xlabel(xlabel, fontsize=9, color=COLORS['text_secondary'])
    ax.set_ylabel(ylabel, fontsize=9, color=COLORS['text_secondary'])
    if title:
        ax.set_title(title, fontsize=11)
    ax.grid(True, axis='y', alpha=0.3, linestyle='--', color=COLORS['border'])
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)
    ax.set_facecolor(COLORS['bg'])


def histogram_figure(histogram: Histogram, xlabel: str, title: str = "") -> Figure:
    """直方图"""
    fig = Figure(figsize=(6.4, 4.8), dpi=100)
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(111)

    edges = np.asarray(histogram.bin_edges, dtype=np.float64)
    counts = np.asarray(histogram.counts)
    widths = np.diff(edges)
    # 单个退化分箱没有宽度，画成单位宽度的柱
    widths = np.where(widths > 0, widths, 1.0)
    ax.bar(edges[:-1], counts, width=widths, align='edge',
           edgecolor='white', alpha=0.8, color=COLORS['bar'])
    _style_axes(ax, xlabel, "数量", title)
    fig.tight_layout()
    return fig


def scatter_figure(angles: Sequence[float], lengths: Sequence[float],
                   length_label: str, title: str = "") -> Figure:
    """角度-长度散点图"""
    fig = Figure(figsize=(6.4, 4.8), dpi=100)
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(111)
    ax.scatter(list(angles), list(lengths), s=12, color=COLORS['point'])
    ax.set_xlim(0, 180)
    _style_axes(ax, "角度 (°)", length_label, title)
    fig.tight_layout()
    return fig


def save_figure(fig: Figure, path: Union[str, Path]) -> Path:
    path = Path(path)
    fig.savefig(path)
    return path


def save_image(image: np.ndarray, path: Union[str, Path]) -> Path:
    path = Path(path)
    if not cv2.imwrite(str(path), image):
        raise OSError(f"无法写入图像: {path}")
    return path
