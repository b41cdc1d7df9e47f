"""
工具模块 - 常量定义和异常类型
"""

# ==================== 常量定义 ====================
# 比例尺检测
SCALE_BAR_SKIP_BOTTOM_PX = 40          # 自动检测底栏高度时跳过的底部行数
SCALE_BAR_WHITE_LEVEL = 200            # 高于此亮度视为白色文字像素
SCALE_BAR_BRIGHTNESS_JUMP = 16         # 底栏上边缘的亮度跃变阈值
SCALE_BAR_BRIGHT_THRESHOLD = 240       # 亮色比例尺像素阈值
SCALE_BAR_DARK_THRESHOLD = 15          # 暗色比例尺像素阈值
SCALE_BAR_MIN_SPAN_PX = 16             # 比例尺最小像素跨度
SCALE_BAR_VALUE_RANGE = (0.1, 1000)    # 比例尺数值合法范围
SCALE_BAR_OCR_MATCH_THRESHOLD = 0.4    # 模板匹配最低分
SCALE_BAR_GLYPH_SIZE = 28              # 字符模板边长(像素)
OCR_TIMEOUT_S = 10.0                   # 文字识别超时(秒)
TESSERACT_CONFIG = "--psm 7 -c tessedit_char_whitelist=0123456789.umnμµ"

# 单位换算到微米
UNIT_TO_MICROMETERS = {
    "nm": 0.001,
    "um": 1.0,
    "mm": 1000.0,
}

# 边缘检测
DETECTION_MODES = ("intensity", "gradient")
POLARITIES = ("auto", "bright", "dark")
LENGTH_UNITS = ("um", "px")
MIN_CONTOUR_POINTS = 3                 # 轮廓最少不同点数

# 直方图
ANGLE_RANGE = (0.0, 180.0)
DEFAULT_ANGLE_BIN_WIDTH = 10.0
DEFAULT_LENGTH_BINS = 25

# 图像
MAX_INTENSITY = 255


# ==================== 异常定义 ====================
class GrapheneAnalysisError(Exception):
    """所有分析错误的基类"""


class InvalidScaleError(GrapheneAnalysisError, ValueError):
    """手动比例尺数值非正"""


class ScaleDetectionError(GrapheneAnalysisError):
    """比例尺检测失败（文字识别或比例尺扫描失败）"""


class ImageLoadError(GrapheneAnalysisError):
    """图像无法加载"""


class InvalidConfigurationError(GrapheneAnalysisError, ValueError):
    """配置参数超出合法范围"""
