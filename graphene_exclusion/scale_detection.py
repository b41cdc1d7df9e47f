"""
比例尺检测模块 - 从图像底栏的比例尺和标注文字得到 像素/微米

文字识别是外部能力，通过 NumberRecognizer 接口接入：
- TesseractRecognizer: 调用 Tesseract (pytesseract)
- TemplateRecognizer: 基于 OpenCV 字体模板匹配的离线数字识别
测试时可以传入任意实现了 recognize_number 的对象。
"""
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Optional, Protocol, Tuple

import cv2
import numpy as np
import pytesseract

from graphene_exclusion.config import TextRecognition
from graphene_exclusion.models import ScaleCalibration, ScaleSource
from graphene_exclusion.utils import (
    SCALE_BAR_SKIP_BOTTOM_PX, SCALE_BAR_WHITE_LEVEL, SCALE_BAR_BRIGHTNESS_JUMP,
    SCALE_BAR_BRIGHT_THRESHOLD, SCALE_BAR_DARK_THRESHOLD, SCALE_BAR_MIN_SPAN_PX,
    SCALE_BAR_VALUE_RANGE, SCALE_BAR_OCR_MATCH_THRESHOLD, SCALE_BAR_GLYPH_SIZE, OCR_TIMEOUT_S,
    TESSERACT_CONFIG, UNIT_TO_MICROMETERS,
    InvalidScaleError, ScaleDetectionError
)

logger = logging.getLogger(__name__)

_VALUE_WITH_UNIT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(nm|mm|[uµμ]m)", re.IGNORECASE)
_BARE_VALUE = re.compile(r"\d+(?:[.,]\d+)?")


class NumberRecognizer(Protocol):
    """文字识别接口：从图像区域读出比例尺数值(微米)，失败时抛出 ScaleDetectionError"""

    def recognize_number(self, region: np.ndarray) -> float:
        ...


# ===== 文本解析 =====
def parse_scale_text(text: str) -> Optional[float]:
    """解析比例尺标注，返回微米数值

    优先匹配带单位的数值（nm / um / µm / mm），否则取第一个纯数字并视为微米。
    数值超出合法范围时返回 None。
    """
    match = _VALUE_WITH_UNIT.search(text)
    if match:
        value_text, unit = match.group(1), match.group(2).lower()
        unit = "um" if unit.endswith("m") and unit[0] in "uµμ" else unit
    else:
        match = _BARE_VALUE.search(text)
        if match is None:
            return None
        value_text, unit = match.group(0), "um"

    try:
        value = float(value_text.replace(",", "."))
    except ValueError:
        return None
    if not SCALE_BAR_VALUE_RANGE[0] <= value <= SCALE_BAR_VALUE_RANGE[1]:
        return None
    return value * UNIT_TO_MICROMETERS[unit]


def binarize_text(region: np.ndarray) -> np.ndarray:
    """OCR图像预处理：Otsu 二值化，文字为白色、背景为黑色"""
    gray = region if region.ndim == 2 else cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    if float((binary > 0).mean()) > 0.5:
        binary = cv2.bitwise_not(binary)
    return binary


# ===== 文字识别实现 =====
def _crop_glyph(binary: np.ndarray) -> np.ndarray:
    """裁剪到字形的外接矩形"""
    ys, xs = np.nonzero(binary)
    return binary[ys.min():ys.max() + 1, xs.min():xs.max() + 1]


def _normalize_glyph(glyph: np.ndarray) -> np.ndarray:
    """居中补成正方形并缩放到模板尺寸"""
    ih, iw = glyph.shape[:2]
    size = max(ih, iw)
    canvas = np.zeros((size, size), dtype=np.uint8)
    oy = (size - ih) // 2
    ox = (size - iw) // 2
    canvas[oy:oy + ih, ox:ox + iw] = glyph
    return cv2.resize(canvas, (SCALE_BAR_GLYPH_SIZE, SCALE_BAR_GLYPH_SIZE), interpolation=cv2.INTER_AREA)


class TesseractRecognizer:
    """通过 Tesseract 识别比例尺标注"""

    def __init__(self, timeout: float = OCR_TIMEOUT_S, lang: str = "eng",
                 config: str = TESSERACT_CONFIG):
        self.timeout = timeout
        self.lang = lang
        self.config = config

    def recognize_number(self, region: np.ndarray) -> float:
        # Tesseract 对黑字白底、放大后的文字识别更稳定
        binary = binarize_text(region)
        binary = cv2.resize(binary, None, fx=2, fy=2, interpolation=cv2.INTER_CUBIC)
        binary = cv2.bitwise_not(binary)
        try:
            text = pytesseract.image_to_string(binary, lang=self.lang, config=self.config,
                                               timeout=self.timeout)
        except (RuntimeError, OSError) as e:
            raise ScaleDetectionError(f"Tesseract 识别失败: {e}") from e

        logger.debug("Tesseract 识别文本: %r", text)
        value = parse_scale_text(text)
        if value is None:
            raise ScaleDetectionError(f"无法从识别文本中解析比例尺数值 (识别结果: {text.strip()!r})")
        return value


class TemplateRecognizer:
    """基于字体模板匹配的数字识别，无需外部程序

    模板与待识别字符都裁剪到字形边界、居中补成正方形后缩放到同一尺寸再比较。
    同一个实例可以在多个线程中共用。
    """

    def __init__(self, match_threshold: float = SCALE_BAR_OCR_MATCH_THRESHOLD):
        self.match_threshold = match_threshold
        self.ocr_templates = None
        self._templates_lock = threading.Lock()

    def _ensure_ocr_templates(self):
        """延迟初始化OCR模板"""
        if self.ocr_templates is not None:
            return

        with self._templates_lock:
            if self.ocr_templates is not None:
                return
            templates = {}
            fonts = [cv2.FONT_HERSHEY_SIMPLEX, cv2.FONT_HERSHEY_DUPLEX, cv2.FONT_HERSHEY_PLAIN]
            scales = [0.7, 0.9, 1.1, 1.3]
            thicknesses = [1, 2, 3]
            for d in range(10):
                key = str(d)
                templates[key] = []
                for f in fonts:
                    for s in scales:
                        for t in thicknesses:
                            temp = np.zeros((64, 64), dtype=np.uint8)
                            cv2.putText(temp, key, (8, 48), f, s, 255, t, cv2.LINE_AA)
                            _, temp = cv2.threshold(temp, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
                            templates[key].append(_normalize_glyph(_crop_glyph(temp)))
            # 构建完成后一次性发布，其他线程不会看到未填满的模板表
            self.ocr_templates = templates

    @staticmethod
    def _segment_characters(binary: np.ndarray) -> List[tuple]:
        """按列投影分割字符"""
        mask = binary > 0
        rows = np.flatnonzero(mask.sum(axis=1) > 0)
        if rows.size == 0:
            return []
        top, bottom = int(rows[0]), int(rows[-1]) + 1

        cols = np.flatnonzero(mask.sum(axis=0) > 0)
        boxes = []
        start = prev = int(cols[0])
        for c in cols[1:]:
            if c - prev > 1:
                boxes.append((start, top, prev - start + 1, bottom - top))
                start = int(c)
            prev = int(c)
        boxes.append((start, top, prev - start + 1, bottom - top))
        return boxes

    def _recognize_characters(self, binary: np.ndarray, boxes: List[tuple]) -> str:
        """识别字符，小方块视为小数点"""
        self._ensure_ocr_templates()
        median_h = float(np.median([b[3] for b in boxes]))

        tokens = []
        for x, y, cw, ch in boxes:
            crop = binary[y:y + ch, x:x + cw]
            rows = np.flatnonzero((crop > 0).any(axis=1))
            glyph_h = rows[-1] - rows[0] + 1
            if glyph_h < median_h * 0.5 and cw < median_h * 0.5:
                tokens.append(".")
                continue
            norm = _normalize_glyph(_crop_glyph(crop))
            best_char, best_score = None, None
            for k, temps in self.ocr_templates.items():
                for temp in temps:
                    score = float(cv2.matchTemplate(norm, temp, cv2.TM_CCOEFF_NORMED)[0][0])
                    if best_score is None or score > best_score:
                        best_score = score
                        best_char = k
            if best_score is not None and best_score >= self.match_threshold:
                tokens.append(best_char)
        return "".join(tokens)

    def recognize_number(self, region: np.ndarray) -> float:
        binary = binarize_text(region)
        boxes = self._segment_characters(binary)
        if not boxes:
            raise ScaleDetectionError("比例尺区域中没有找到文字")

        text = self._recognize_characters(binary, boxes)
        logger.debug("模板识别文本: %r", text)
        value = parse_scale_text(text)
        if value is None:
            raise ScaleDetectionError(f"无法从识别文本中解析比例尺数值 (识别结果: {text!r})")
        return value


# ===== 比例尺几何检测 =====
def detect_footer_height(image: np.ndarray) -> int:
    """自动检测底栏高度

    每一列从底部（跳过最下面的若干行）向上扫描，遇到比之前最亮值高出
    SCALE_BAR_BRIGHTNESS_JUMP 的像素即认为到达底栏上边缘；已经出现白色
    (文字) 像素的列不参与统计。取所有列上边缘行号的众数，
    底栏从该行的下一行开始。
    """
    h, w = image.shape[:2]
    usable = h - SCALE_BAR_SKIP_BOTTOM_PX
    if usable < 2:
        raise ScaleDetectionError("图像高度不足，无法检测底栏")

    block = image[:usable][::-1].astype(np.int16)
    running_max = np.maximum.accumulate(block, axis=0)
    before = np.vstack([block[:1], running_max[:-1]])
    rise = (block - before > SCALE_BAR_BRIGHTNESS_JUMP) & (before <= SCALE_BAR_WHITE_LEVEL)

    hit_columns = rise.any(axis=0)
    if not hit_columns.any():
        raise ScaleDetectionError("未找到底栏上边缘")

    first = rise[:, hit_columns].argmax(axis=0)
    rows = (usable - 1) - first
    top = int(np.bincount(rows).argmax())
    return h - top - 1


def longest_run(mask: np.ndarray) -> Optional[Tuple[int, int, int]]:
    """找出最长的连续像素段

    不考虑横跨整行的分隔线。

    Returns:
        (行号, 起始列, 长度)，不存在时返回 None
    """
    best = None
    width = mask.shape[1]
    for y, row in enumerate(mask):
        xs = np.flatnonzero(row)
        if xs.size == 0:
            continue
        breaks = np.flatnonzero(np.diff(xs) > 1)
        starts = np.concatenate([xs[:1], xs[breaks + 1]])
        ends = np.concatenate([xs[breaks], xs[-1:]])
        lengths = ends - starts + 1
        full_width = (starts == 0) & (ends == width - 1)
        lengths[full_width] = 0
        i = int(lengths.argmax())
        if lengths[i] > 0 and (best is None or lengths[i] > best[2]):
            best = (y, int(starts[i]), int(lengths[i]))
    return best


def find_scale_bar(footer: np.ndarray) -> Optional[Tuple[int, int, int]]:
    """在底栏中扫描比例尺：先找亮色比例尺，再找暗色比例尺"""
    for mask in (footer > SCALE_BAR_BRIGHT_THRESHOLD, footer < SCALE_BAR_DARK_THRESHOLD):
        run = longest_run(mask)
        if run is not None and run[2] >= SCALE_BAR_MIN_SPAN_PX:
            return run
    return None


class ScaleCalibrator:
    """比例尺标定：手动数值或 比例尺长度 / 识别出的微米数"""

    def __init__(self, config: TextRecognition, recognizer: Optional[NumberRecognizer] = None):
        self.config = config
        self._recognizer = recognizer

    @property
    def recognizer(self) -> NumberRecognizer:
        if self._recognizer is None:
            self._recognizer = TesseractRecognizer(timeout=self.config.ocr_timeout)
        return self._recognizer

    def _override(self, footer_height: int, fallback: bool = False) -> ScaleCalibration:
        """使用手动比例尺"""
        micrometers = self.config.override_scale_micrometers
        pixels = self.config.override_scale_pixels
        if micrometers <= 0 or pixels <= 0:
            raise InvalidScaleError(
                f"手动比例尺的像素数和微米数必须大于0 (像素: {pixels}, 微米: {micrometers})"
            )
        return ScaleCalibration(
            pixels_per_micrometer=pixels / micrometers,
            source=ScaleSource.OVERRIDE,
            micrometers=float(micrometers),
            pixels=float(pixels),
            footer_height=footer_height,
            fallback=fallback,
        )

    def _has_override_values(self) -> bool:
        return self.config.override_scale_micrometers > 0 and self.config.override_scale_pixels > 0

    def _recognize(self, footer: np.ndarray) -> float:
        """带超时地调用文字识别"""
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.recognizer.recognize_number, footer)
            value = future.result(timeout=self.config.ocr_timeout)
        except FuturesTimeoutError as e:
            raise ScaleDetectionError(f"文字识别超时 ({self.config.ocr_timeout:g} 秒)") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if not value > 0:
            raise ScaleDetectionError(f"识别出的比例尺数值无效: {value}")
        return float(value)

    def _detect(self, image: np.ndarray, footer_height: int) -> ScaleCalibration:
        """检测比例尺像素长度并识别标注数值"""
        h = image.shape[0]
        if footer_height <= 0 or footer_height > h:
            raise ScaleDetectionError(f"底栏高度 {footer_height} 超出图像范围 (高度 {h})")

        footer = image[h - footer_height:]
        bar = find_scale_bar(footer)
        if bar is None:
            raise ScaleDetectionError("底栏中没有找到比例尺")

        micrometers = self._recognize(footer)
        _, _, pixels = bar
        return ScaleCalibration(
            pixels_per_micrometer=pixels / micrometers,
            source=ScaleSource.OCR,
            micrometers=micrometers,
            pixels=float(pixels),
            footer_height=footer_height,
        )

    def calibrate(self, image: np.ndarray) -> ScaleCalibration:
        """标定比例尺

        Raises:
            InvalidScaleError: 手动比例尺数值非正
            ScaleDetectionError: 自动检测失败且没有可用的手动数值
        """
        if self.config.override_scale:
            calibration = self._override(self.config.scale_bar_height)
        else:
            try:
                footer_height = self.config.scale_bar_height or detect_footer_height(image)
                calibration = self._detect(image, footer_height)
            except ScaleDetectionError as e:
                if not self._has_override_values():
                    raise
                logger.warning("比例尺自动检测失败，改用手动比例尺: %s", e)
                calibration = self._override(self.config.scale_bar_height, fallback=True)

        logger.info("比例尺: %.4f 像素/微米 (%s, 像素: %s, 微米: %s, 底栏高度: %d)",
                    calibration.pixels_per_micrometer, calibration.source.value,
                    calibration.pixels, calibration.micrometers, calibration.footer_height)
        return calibration
