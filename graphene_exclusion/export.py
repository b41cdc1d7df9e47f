"""
结果导出模块 - CSV / JSON / 文本报告 / 图像
"""
import csv
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

from graphene_exclusion import rendering
from graphene_exclusion.config import Configuration, export_config
from graphene_exclusion.histograms import get_statistics
from graphene_exclusion.models import PipelineResult

logger = logging.getLogger(__name__)


def radial_distance_um(result: PipelineResult, center) -> float:
    """薄片中心到径向样品圆心(右边缘中点)的距离(微米)"""
    h, w = result.analysis_image.shape[:2]
    distance = round(math.hypot(w - center[0], center[1] - h / 2.0))
    return result.calibration.to_micrometers(distance)


def summarize(result: PipelineResult, name: str = "") -> Dict[str, Any]:
    """生成可 JSON 序列化的结果摘要"""
    cal = result.calibration
    summary: Dict[str, Any] = {
        'image': name,
        'scale': {
            'pixels_per_micrometer': cal.pixels_per_micrometer,
            'micrometers_per_pixel': cal.micrometers_per_pixel,
            'scaled': cal.is_scaled,
            'source': cal.source.value,
            'pixels': cal.pixels,
            'micrometers': cal.micrometers,
            'footer_height': cal.footer_height,
            'fallback': cal.fallback,
        },
        'warnings': list(result.warnings),
    }
    if result.exclusion is not None:
        summary['bacteria_exclusion'] = {
            'edge_count': len(result.edge_contours),
            'radius_px': result.exclusion.radius_px,
            'excluded_fraction': result.exclusion.excluded_fraction,
            'adjusted_fraction': result.exclusion.adjusted_fraction,
        }
    if result.angle_histogram is not None:
        summary['graphene_angles'] = {
            'flake_count': len(result.flakes),
            'length_unit': result.length_unit,
            'angle_statistics': get_statistics(result.angles),
            'length_statistics': get_statistics(result.lengths()),
            'angle_histogram': {
                'bin_edges': list(result.angle_histogram.bin_edges),
                'counts': list(result.angle_histogram.counts),
            },
            'length_histogram': {
                'bin_edges': list(result.length_histogram.bin_edges),
                'counts': list(result.length_histogram.counts),
            },
            'flakes': [
                {
                    'id': i,
                    'angle': f.orientation_angle,
                    'length_px': f.length,
                    'width_px': f.width,
                    'length_um': f.length_um,
                    'width_um': f.width_um,
                    'ratio': None if f.is_degenerate else f.ratio,
                    'center': list(f.center),
                }
                for i, f in enumerate(result.flakes)
            ],
        }
    return summary


def write_angles_csv(result: PipelineResult, path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['radial_distance', 'angle'])
        for flake in result.flakes:
            writer.writerow([f"{radial_distance_um(result, flake.center):.3f}",
                             f"{flake.orientation_angle:.3f}"])
    return path


def write_lengths_csv(result: PipelineResult, path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow([f'length_{result.length_unit}', 'width', 'ratio'])
        unit_um = result.length_unit == "um"
        for flake in result.flakes:
            length = flake.length_um if unit_um else flake.length
            width = flake.width_um if unit_um else flake.width
            ratio = "inf" if flake.is_degenerate else f"{flake.ratio:.3f}"
            writer.writerow([f"{length:.3f}", f"{width:.3f}", ratio])
    return path


def write_radial_csv(result: PipelineResult, path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['radial_distance', 'ratio'])
        for distance, ratio in result.exclusion.radial_profile:
            writer.writerow([f"{distance:.4f}", f"{ratio:.6f}"])
    return path


def format_report(result: PipelineResult, name: str = "") -> str:
    """文本分析报告"""
    cal = result.calibration
    report = f"""
========================================
    石墨烯 SEM 图像分析报告
========================================
生成时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
图像: {name or '-'}

----------------------------------------
    比例尺信息
----------------------------------------
比例尺: {cal.pixels_per_micrometer:.4f} pixel/μm ({cal.source.value})
"""
    for warning in result.warnings:
        report += f"警告: {warning}\n"

    if result.exclusion is not None:
        ex = result.exclusion
        report += f"""
----------------------------------------
    细菌排斥区
----------------------------------------
边缘数量: {len(result.edge_contours)}
排斥半径: {ex.radius_px:.2f} pixel
排斥面积占比: {100.0 * ex.excluded_fraction:.2f}%
"""
        if ex.adjusted_fraction is not None:
            report += f"径向校正排斥面积占比: {100.0 * ex.adjusted_fraction:.2f}%\n"

    if result.angle_histogram is not None:
        unit = "μm" if result.length_unit == "um" else "pixel"
        stats = get_statistics(result.lengths())
        report += f"""
----------------------------------------
    石墨烯取向
----------------------------------------
薄片数量: {len(result.flakes)}
"""
        if stats['count']:
            report += (f"长度: 平均 {stats['mean']:.2f} {unit}, 标准差 {stats['std']:.2f} {unit}, "
                       f"最小 {stats['min']:.2f} {unit}, 最大 {stats['max']:.2f} {unit}\n")
        report += "\n角度分布:\n"
        edges = result.angle_histogram.bin_edges
        for i, count in enumerate(result.angle_histogram.counts):
            report += f"  - {edges[i]:g}°-{edges[i + 1]:g}°: {count}\n"

    report += """
========================================
            报告结束
========================================
"""
    return report


def write_outputs(result: PipelineResult, output_dir: Union[str, Path], name: str,
                  config: Configuration) -> List[Path]:
    """写出单张图像的全部结果文件"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = output_dir / f"{name}_"
    written = []

    if result.exclusion is not None:
        written.append(rendering.save_image(
            rendering.edge_overlay(result.analysis_image, result.edge_contours),
            f"{prefix}graphene.png"))
        written.append(rendering.save_image(
            rendering.exclusion_image(result.exclusion), f"{prefix}bacteria-exclusion.png"))
        if config.bacteria_exclusion.detection_mode == "gradient":
            written.append(rendering.save_image(
                rendering.sharpness_image(result.analysis_image), f"{prefix}edge_sharpness.png"))
        if result.exclusion.radial_profile is not None:
            written.append(write_radial_csv(result, f"{prefix}graphene_by_radius.csv"))

    if result.angle_histogram is not None:
        unit = "μm" if result.length_unit == "um" else "pixel"
        written.append(rendering.save_image(
            rendering.flake_overlay(result.analysis_image, result.flakes), f"{prefix}angles.png"))
        written.append(rendering.save_figure(
            rendering.histogram_figure(result.angle_histogram, "方向 (°)", name),
            f"{prefix}angle-histogram.png"))
        written.append(rendering.save_figure(
            rendering.histogram_figure(result.length_histogram, f"长度 ({unit})", name),
            f"{prefix}length-histogram.png"))
        written.append(rendering.save_figure(
            rendering.scatter_figure(result.angles, result.lengths(), f"长度 ({unit})", name),
            f"{prefix}angle-length-scatterplot.png"))
        written.append(write_angles_csv(result, f"{prefix}angles.csv"))
        written.append(write_lengths_csv(result, f"{prefix}lengths.csv"))

    summary_path = Path(f"{prefix}summary.json")
    with open(summary_path, 'w', encoding='utf-8') as f:
        json.dump(summarize(result, name), f, indent=2, ensure_ascii=False)
    written.append(summary_path)

    report_path = Path(f"{prefix}report.txt")
    report_path.write_text(format_report(result, name), encoding='utf-8')
    written.append(report_path)

    written.append(export_config(config, f"{prefix}config.json"))
    logger.debug("已写出 %d 个结果文件到 %s", len(written), output_dir)
    return written
