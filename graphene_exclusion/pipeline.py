"""
分析流程模块 - 比例尺标定、边缘检测、排斥区、取向统计的串联
"""
import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from graphene_exclusion.config import Configuration, PreProcessing
from graphene_exclusion.edge_detection import EdgeDetector
from graphene_exclusion.exclusion_zone import ExclusionZoneComputer
from graphene_exclusion.histograms import HistogramBuilder
from graphene_exclusion.models import PipelineResult, ScaleCalibration, ScaleSource
from graphene_exclusion.orientation import OrientationAnalyzer
from graphene_exclusion.scale_detection import NumberRecognizer, ScaleCalibrator
from graphene_exclusion.utils import (
    ImageLoadError, InvalidConfigurationError, ScaleDetectionError
)

logger = logging.getLogger(__name__)


def to_gray8(image: np.ndarray) -> np.ndarray:
    """将图像统一转换为 8bit 灰度图"""
    if image.ndim == 3:
        if image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        else:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.dtype == np.uint8:
        return image

    img_min = float(np.min(image))
    img_max = float(np.max(image))
    if img_max > img_min:
        scaled = (image.astype(np.float64) - img_min) / (img_max - img_min) * 255.0
        return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)
    return np.zeros(image.shape, dtype=np.uint8)


def load_image(path: Union[str, Path]) -> np.ndarray:
    """加载图像并转换为 8bit 灰度图"""
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ImageLoadError(f"无法加载图像: {path}")
    return to_gray8(image)


def pre_process(image: np.ndarray, config: PreProcessing) -> np.ndarray:
    """预处理，返回新图像"""
    if config.equalize_histogram:
        return cv2.equalizeHist(image)
    return image.copy()


class Pipeline:
    """单张图像的完整分析流程

    配置对象在构造时传入且不可修改，同一个 Pipeline 可以在多个线程中
    分别处理不同的图像。
    """

    def __init__(self, config: Optional[Configuration] = None,
                 recognizer: Optional[NumberRecognizer] = None):
        self.config = (config or Configuration()).validate()
        self.recognizer = recognizer

    def calibrate(self, image: np.ndarray, allow_unscaled: bool = False) -> ScaleCalibration:
        """标定比例尺；allow_unscaled 为真时检测失败退化为 1 像素/微米"""
        calibrator = ScaleCalibrator(self.config.text_recognition, self.recognizer)
        try:
            return calibrator.calibrate(image)
        except ScaleDetectionError as e:
            if not allow_unscaled:
                raise
            logger.warning("比例尺检测失败，以无比例尺模式继续 (1 像素/微米): %s", e)
            return ScaleCalibration(
                pixels_per_micrometer=1.0,
                source=ScaleSource.UNSCALED,
                footer_height=self.config.text_recognition.scale_bar_height,
            )

    def run(self, image: np.ndarray, allow_unscaled: bool = False) -> PipelineResult:
        """运行分析

        Args:
            image: 灰度图像（彩色或非8bit图像会先转换）
            allow_unscaled: 比例尺检测失败时是否以无比例尺模式继续

        Returns:
            PipelineResult: 各阶段结果

        Raises:
            InvalidScaleError: 手动比例尺数值非正
            ScaleDetectionError: 比例尺检测失败且 allow_unscaled 为假
        """
        image = to_gray8(np.asarray(image))
        config = self.config
        calibration = self.calibrate(image, allow_unscaled)

        h = image.shape[0]
        if calibration.footer_height >= h:
            raise InvalidConfigurationError(
                f"底栏高度 {calibration.footer_height} 不小于图像高度 {h}"
            )
        analysis = pre_process(image[:h - calibration.footer_height], config.pre_processing)

        result = PipelineResult(
            calibration=calibration,
            analysis_image=analysis,
            length_unit=config.graphene_angles.size_unit,
        )
        if calibration.source is ScaleSource.UNSCALED:
            result.warnings.append("比例尺检测失败，结果按 1 像素/微米 计算，没有物理尺度")
        elif calibration.fallback:
            result.warnings.append("比例尺自动检测失败，已使用手动比例尺")

        be = config.bacteria_exclusion
        if be.enabled:
            result.edge_contours = EdgeDetector.for_exclusion(be).detect(analysis)
            logger.info("检测到 %d 条石墨烯边缘", len(result.edge_contours))
            result.exclusion = ExclusionZoneComputer.from_config(be).compute(
                analysis, result.edge_contours, calibration
            )

        ga = config.graphene_angles
        if ga.enabled:
            result.flake_contours = EdgeDetector.for_flakes(ga).detect(analysis)
            result.flakes = OrientationAnalyzer.from_config(ga).analyze(
                result.flake_contours, calibration
            )
            result.angle_histogram, result.length_histogram = HistogramBuilder.from_config(ga).build(
                result.angles, result.lengths()
            )

        return result
