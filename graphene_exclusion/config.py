"""
配置模块 - 不可变的分析参数及其加载/导出

每个分析阶段只读取自己的配置段，配置对象本身不可修改，
需要调整参数时通过 :meth:`Configuration.replace` 得到新的副本::

    config = Configuration()
    config = config.replace("bacteria_exclusion", contrast_threshold=60.0)

配置文件可以是 TOML 或 JSON，结构与 :func:`config_to_dict` 的输出一致::

    [text_recognition]
    override_scale = true
    override_scale_micrometers = 10.0
    override_scale_pixels = 100
"""
import dataclasses
import json
import logging
import math
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from graphene_exclusion import __version__
from graphene_exclusion.utils import (
    DEFAULT_ANGLE_BIN_WIDTH, DEFAULT_LENGTH_BINS, DETECTION_MODES, LENGTH_UNITS,
    MAX_INTENSITY, OCR_TIMEOUT_S, POLARITIES, ANGLE_RANGE, InvalidConfigurationError
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreProcessing:
    """预处理参数"""
    equalize_histogram: bool = False


@dataclass(frozen=True)
class TextRecognition:
    """比例尺识别参数"""
    override_scale: bool = False
    scale_bar_height: int = 0               # 底栏高度(像素)，0 表示自动检测
    override_scale_micrometers: float = 0.0
    override_scale_pixels: int = 0
    ocr_timeout: float = OCR_TIMEOUT_S


@dataclass(frozen=True)
class BacteriaExclusion:
    """细菌排斥区参数"""
    enabled: bool = True
    contrast_threshold: float = 45.0
    minimum_edge_area: int = 5
    exclusion_radius: float = 0.9
    radius_unit: str = "um"
    detection_mode: str = "intensity"
    polarity: str = "auto"
    radius_adjusted: bool = False


@dataclass(frozen=True)
class GrapheneAngles:
    """石墨烯取向参数"""
    enabled: bool = False
    blur: float = 1.0
    threshold: float = 150
    min_graphene_size: float = 0.5
    min_graphene_ratio: float = 3.0
    size_unit: str = "um"
    polarity: str = "bright"
    angle_bin_width: float = DEFAULT_ANGLE_BIN_WIDTH
    length_bins: int = DEFAULT_LENGTH_BINS


@dataclass(frozen=True)
class Configuration:
    """完整配置"""
    program_version: str = __version__
    pre_processing: PreProcessing = field(default_factory=PreProcessing)
    text_recognition: TextRecognition = field(default_factory=TextRecognition)
    bacteria_exclusion: BacteriaExclusion = field(default_factory=BacteriaExclusion)
    graphene_angles: GrapheneAngles = field(default_factory=GrapheneAngles)

    def replace(self, section: str, **changes) -> "Configuration":
        """返回修改了某个配置段的新配置"""
        if section not in SECTIONS:
            raise InvalidConfigurationError(f"未知配置段: {section}")
        try:
            updated = dataclasses.replace(getattr(self, section), **changes)
        except TypeError as e:
            raise InvalidConfigurationError(f"配置段 {section} 的参数无效: {e}") from e
        return dataclasses.replace(self, **{section: updated})

    def validate(self) -> "Configuration":
        """检查所有参数范围，非法时抛出 InvalidConfigurationError"""
        tr = self.text_recognition
        _check(tr.scale_bar_height >= 0, "text_recognition.scale_bar_height 不能为负")
        _check(tr.ocr_timeout > 0, "text_recognition.ocr_timeout 必须大于0")

        be = self.bacteria_exclusion
        _check(0 <= be.contrast_threshold <= MAX_INTENSITY,
               "bacteria_exclusion.contrast_threshold 必须在 0-255 之间")
        _check(be.minimum_edge_area >= 0, "bacteria_exclusion.minimum_edge_area 不能为负")
        _check(be.exclusion_radius >= 0, "bacteria_exclusion.exclusion_radius 不能为负")
        _check_choice("bacteria_exclusion.radius_unit", be.radius_unit, LENGTH_UNITS)
        _check_choice("bacteria_exclusion.detection_mode", be.detection_mode, DETECTION_MODES)
        _check_choice("bacteria_exclusion.polarity", be.polarity, POLARITIES)

        ga = self.graphene_angles
        _check(0 <= ga.threshold <= MAX_INTENSITY, "graphene_angles.threshold 必须在 0-255 之间")
        _check(ga.blur >= 0, "graphene_angles.blur 不能为负")
        _check(ga.min_graphene_size >= 0, "graphene_angles.min_graphene_size 不能为负")
        _check(ga.min_graphene_ratio >= 0, "graphene_angles.min_graphene_ratio 不能为负")
        _check_choice("graphene_angles.size_unit", ga.size_unit, LENGTH_UNITS)
        _check_choice("graphene_angles.polarity", ga.polarity, POLARITIES)
        _check(ga.length_bins > 0, "graphene_angles.length_bins 必须大于0")
        angle_bin_count(ga.angle_bin_width)
        return self


SECTIONS = {
    "pre_processing": PreProcessing,
    "text_recognition": TextRecognition,
    "bacteria_exclusion": BacteriaExclusion,
    "graphene_angles": GrapheneAngles,
}


def _check(condition: bool, message: str):
    if not condition:
        raise InvalidConfigurationError(message)


def _check_choice(name: str, value: str, choices) -> None:
    if value not in choices:
        raise InvalidConfigurationError(f"{name} 必须是 {', '.join(choices)} 之一，而不是 {value!r}")


def angle_bin_count(bin_width: float) -> int:
    """角度分箱数，分箱宽度必须整除 180 度"""
    span = ANGLE_RANGE[1] - ANGLE_RANGE[0]
    if not bin_width > 0:
        raise InvalidConfigurationError("graphene_angles.angle_bin_width 必须大于0")
    count = round(span / bin_width)
    if count < 1 or not math.isclose(count * bin_width, span, rel_tol=1e-9, abs_tol=1e-9):
        raise InvalidConfigurationError(
            f"graphene_angles.angle_bin_width={bin_width} 不能整除 {span:g} 度"
        )
    return count


# ===== 序列化 =====
def config_to_dict(config: Configuration) -> Dict[str, Any]:
    """转换为普通字典"""
    return dataclasses.asdict(config)


def _convert_value(section: str, f: dataclasses.Field, value: Any) -> Any:
    """按字段声明的类型检查并转换配置值"""
    name = f"{section}.{f.name}"
    if f.type is bool:
        if not isinstance(value, bool):
            raise InvalidConfigurationError(f"{name} 必须是布尔值，而不是 {type(value).__name__}")
        return value
    if f.type in (int, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfigurationError(f"{name} 必须是数值，而不是 {type(value).__name__}")
        if f.type is int:
            if float(value) != int(value):
                raise InvalidConfigurationError(f"{name} 必须是整数")
            return int(value)
        return float(value)
    if not isinstance(value, str):
        raise InvalidConfigurationError(f"{name} 必须是字符串，而不是 {type(value).__name__}")
    return value


def config_from_mapping(data: Mapping[str, Any]) -> Configuration:
    """从字典构建配置，缺省项使用默认值，未知项报错"""
    unknown = set(data) - set(SECTIONS) - {"program_version"}
    if unknown:
        raise InvalidConfigurationError(f"未知配置项: {', '.join(sorted(unknown))}")

    kwargs: Dict[str, Any] = {}
    for section, cls in SECTIONS.items():
        values = data.get(section, {})
        if not isinstance(values, Mapping):
            raise InvalidConfigurationError(f"配置段 {section} 必须是表/字典")
        fields = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(values) - set(fields)
        if unknown:
            raise InvalidConfigurationError(
                f"配置段 {section} 中的未知配置项: {', '.join(sorted(unknown))}"
            )
        kwargs[section] = cls(**{k: _convert_value(section, fields[k], v) for k, v in values.items()})

    version = data.get("program_version", __version__)
    if version != __version__:
        logger.warning(
            "配置文件由其他版本生成 (配置: %s, 程序: %s)，结果可能无法复现", version, __version__
        )
    return Configuration(program_version=str(version), **kwargs).validate()


def load_config(path: Union[str, Path]) -> Configuration:
    """加载 TOML 或 JSON 配置文件"""
    path = Path(path)
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(path.read_text(encoding="utf-8"))
        else:
            with path.open("rb") as f:
                data = tomllib.load(f)
    except OSError as e:
        raise InvalidConfigurationError(f"无法读取配置文件 {path}: {e}") from e
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise InvalidConfigurationError(f"配置文件 {path} 格式错误: {e}") from e
    return config_from_mapping(data)


def export_config(config: Configuration, path: Union[str, Path]) -> Path:
    """以 JSON 格式导出配置"""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
    return path
