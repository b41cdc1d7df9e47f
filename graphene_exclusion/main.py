"""
石墨烯 SEM 图像分析 - 命令行入口
"""
import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

from graphene_exclusion import __version__
from graphene_exclusion.config import Configuration, export_config, load_config
from graphene_exclusion.export import write_outputs
from graphene_exclusion.pipeline import Pipeline, load_image
from graphene_exclusion.scale_detection import TemplateRecognizer, TesseractRecognizer
from graphene_exclusion.utils import GrapheneAnalysisError

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {'.tif', '.tiff', '.png', '.jpg', '.jpeg', '.bmp'}

# 配置matplotlib中文字体
plt.rcParams['font.sans-serif'] = ['Microsoft YaHei', 'Noto Sans CJK SC', 'DejaVu Sans']
plt.rcParams['axes.unicode_minus'] = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='graphene-exclusion',
        description='分析石墨烯涂层 SEM 图像：细菌排斥区与石墨烯取向分布',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help='输出调试信息')
    sub = parser.add_subparsers(dest='command', required=True)

    def add_common(p):
        p.add_argument('-c', '--config', type=Path, help='配置文件 (TOML 或 JSON)')
        p.add_argument('-o', '--output', type=Path, default=Path('output'), help='输出目录')
        p.add_argument('--allow-unscaled', action='store_true',
                       help='比例尺检测失败时以 1 像素/微米 继续')
        p.add_argument('--recognizer', choices=['tesseract', 'template'], default='tesseract',
                       help='比例尺文字识别方式')

    analyse = sub.add_parser('analyse', help='分析单张图像')
    analyse.add_argument('path', type=Path, help='图像路径')
    add_common(analyse)

    batch = sub.add_parser('batch', help='分析目录中的所有图像并汇总')
    batch.add_argument('path', type=Path, help='图像目录')
    add_common(batch)
    batch.add_argument('-d', '--discard-errors', action='store_true', help='跳过出错的图像')
    batch.add_argument('-w', '--workers', type=int, default=1, help='并行处理的线程数')

    export = sub.add_parser('export-config', help='导出默认配置')
    export.add_argument('path', type=Path, help='输出路径 (JSON)')
    return parser


def _make_pipeline(args) -> Tuple[Configuration, Pipeline]:
    config = load_config(args.config) if args.config else Configuration()
    if args.recognizer == 'template':
        recognizer = TemplateRecognizer()
    else:
        recognizer = TesseractRecognizer(timeout=config.text_recognition.ocr_timeout)
    return config, Pipeline(config, recognizer)


def analyse_image(pipeline: Pipeline, config: Configuration, path: Path,
                  output_dir: Path, allow_unscaled: bool) -> Optional[float]:
    """分析单张图像并写出结果，返回排斥面积百分比（未启用时为 None）"""
    result = pipeline.run(load_image(path), allow_unscaled=allow_unscaled)
    write_outputs(result, output_dir, path.stem, config)

    message = f"{path.name}: 比例尺 {result.calibration.pixels_per_micrometer:.4f} 像素/微米"
    percentage = None
    if result.exclusion is not None:
        percentage = 100.0 * result.exclusion.excluded_fraction
        message += f", 石墨烯边缘排斥面积 {percentage:.2f}%"
    if result.angle_histogram is not None:
        message += f", 薄片 {len(result.flakes)} 个"
    logger.info(message)
    return percentage


def run_single(args) -> int:
    config, pipeline = _make_pipeline(args)
    analyse_image(pipeline, config, args.path, args.output, args.allow_unscaled)
    return 0


def run_batch(args) -> int:
    config, pipeline = _make_pipeline(args)
    if not args.path.is_dir():
        logger.error("目录不存在: %s", args.path)
        return 1

    targets = sorted(p for p in args.path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    for i, target in enumerate(targets):
        logger.info(" - %d: %s", i, target)

    def work(target: Path) -> Optional[float]:
        try:
            return analyse_image(pipeline, config, target, args.output, args.allow_unscaled)
        except GrapheneAnalysisError:
            if not args.discard_errors:
                raise
            logger.exception("跳过图像 %s", target)
            return None

    with ThreadPoolExecutor(max_workers=max(1, args.workers)) as executor:
        percentages: List[Optional[float]] = list(executor.map(work, targets))

    values = [p for p in percentages if p is not None]
    logger.info("结果已导出到 %s", args.output)
    if config.bacteria_exclusion.enabled and values:
        logger.info("平均石墨烯边缘排斥面积: %.2f%% (标准差: %.5f, 图像数: %d)",
                    float(np.mean(values)), float(np.std(values)), len(values))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    args = build_parser().parse_args(argv)

    # 日志配置
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s [%(levelname)s] %(message)s')

    if args.command == 'export-config':
        export_config(Configuration(), args.path)
        logger.info("默认配置已导出到 %s", args.path)
        return 0
    try:
        if args.command == 'analyse':
            return run_single(args)
        return run_batch(args)
    except GrapheneAnalysisError as e:
        logger.error("分析失败: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
