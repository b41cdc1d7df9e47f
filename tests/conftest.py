import numpy as np
import pytest

from graphene_exclusion.config import Configuration
from graphene_exclusion.utils import ScaleDetectionError


class FakeRecognizer:
    """返回固定数值的文字识别器"""

    def __init__(self, value=10.0, error=None):
        self.value = value
        self.error = error
        self.calls = 0

    def recognize_number(self, region):
        self.calls += 1
        if self.error is not None:
            raise ScaleDetectionError(self.error)
        return self.value


def rectangle_image(shape=(40, 60), top_left=(20, 10), size=(10, 4),
                    foreground=0, background=255):
    """背景上的实心矩形，size 为 (宽, 高)"""
    image = np.full(shape, background, dtype=np.uint8)
    x, y = top_left
    w, h = size
    image[y:y + h, x:x + w] = foreground
    return image


def footer_image(height=120, width=200, footer=30, bar=(20, 100), content=100):
    """上方为灰色内容、下方为黑色底栏并带白色比例尺的图像"""
    image = np.full((height, width), content, dtype=np.uint8)
    image[height - footer:] = 0
    x, length = bar
    image[height - 5, x:x + length] = 255
    return image


@pytest.fixture
def override_config():
    return Configuration().replace(
        "text_recognition",
        override_scale=True,
        override_scale_micrometers=10.0,
        override_scale_pixels=100,
    )


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()
