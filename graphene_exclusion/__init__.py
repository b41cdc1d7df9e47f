"""
石墨烯涂层 SEM 图像分析 - 细菌排斥区与石墨烯取向统计
"""
__version__ = "0.3.0"

from graphene_exclusion.config import Configuration, load_config, export_config
from graphene_exclusion.models import (
    ScaleCalibration, ScaleSource, Contour, ExclusionResult, Flake, Histogram, PipelineResult
)
from graphene_exclusion.utils import (
    GrapheneAnalysisError, InvalidScaleError, ScaleDetectionError, ImageLoadError,
    InvalidConfigurationError
)
from graphene_exclusion.scale_detection import (
    ScaleCalibrator, NumberRecognizer, TesseractRecognizer, TemplateRecognizer
)
from graphene_exclusion.edge_detection import EdgeDetector
from graphene_exclusion.exclusion_zone import ExclusionZoneComputer
from graphene_exclusion.orientation import OrientationAnalyzer
from graphene_exclusion.histograms import HistogramBuilder
from graphene_exclusion.pipeline import Pipeline, load_image
