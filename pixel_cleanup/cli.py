"""
Batch command line interface for the pixel cleanup operations.

Every input image is loaded as RGBA, run through one cleanup operation and
written next to the others in the output directory as ``<stem>_cleaned.png``.
A CSV summary with before/after colour and coverage counts is written at the
end of the run.

Usage examples
--------------

Clean every logo in ``input/`` with the standard preset::

    pixel-cleanup input --output-dir output --preset logo-standard

Lock a single sprite to the Game Boy palette::

    pixel-cleanup sprite.png --operation colors --color-mode palette-lock --palette gameboy

Remove clusters smaller than five pixels using a worker pool::

    pixel-cleanup input --operation stray --min-size 5 --workers 4
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from .color import Color, extract_unique_colors, parse_palette
from .color_reducer import reduce_color_noise
from .config import (
    NAMED_PALETTES,
    PRESETS,
    ColorReducerMode,
    ColorReducerOptions,
    EdgeCrispenerMethod,
    EdgeCrispenerOptions,
    EdgeSmootherOptions,
    LineNormalizerOptions,
    LogoCleanerOptions,
    OutlinePerfecterOptions,
    SmoothingMode,
    StrayPixelOptions,
    named_palette,
)
from .edge_crispener import crisp_edges
from .edge_smoother import smooth_edges
from .errors import CleanupError, InvalidOptionError
from .executor import OperationExecutor, ProcessPoolOperationExecutor
from .line_normalizer import normalize_line_thickness
from .logo_cleaner import clean_logo
from .outline_perfecter import perfect_outline
from .raster import OPAQUE_THRESHOLD
from .stray_pixels import remove_stray_pixels

logger = logging.getLogger("pixel_cleanup")

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".gif", ".tif", ".tiff", ".webp"}

OPERATIONS = ("logo", "stray", "colors", "crisp", "smooth", "lines", "outline")

METRICS_FIELDS = [
    "image",
    "operation",
    "preset",
    "unique_colors_before",
    "unique_colors_after",
    "opaque_pixels_before",
    "opaque_pixels_after",
    "output_path",
]


@dataclass
class BatchConfig:
    """Runtime configuration derived from CLI arguments."""

    inputs: Sequence[Path]
    output_dir: Path
    operation: str
    preset: Optional[str]
    min_size: int
    merge: bool
    color_mode: str
    palette: Optional[Tuple[Color, ...]]
    n_colors: int
    threshold: Optional[float]
    crisp_method: str
    smooth_mode: str
    target_width: float
    workers: int
    metrics_path: Optional[Path]


def _setup_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _gather_images(sources: Sequence[Path], recursive: bool) -> List[Path]:
    """Collect candidate image files from the provided locations."""
    seen: set[Path] = set()
    images: List[Path] = []

    for source in sources:
        if source.is_dir():
            iterator: Iterable[Path]
            iterator = source.rglob("*") if recursive else source.iterdir()
            for candidate in iterator:
                if not candidate.is_file():
                    continue
                if candidate.suffix.lower() not in IMAGE_EXTENSIONS:
                    continue
                resolved = candidate.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                images.append(resolved)
        elif source.is_file():
            if source.suffix.lower() not in IMAGE_EXTENSIONS:
                logger.warning("Skipping unsupported file: %s", source)
                continue
            resolved = source.resolve()
            if resolved not in seen:
                seen.add(resolved)
                images.append(resolved)
        else:
            logger.warning("Input path not found: %s", source)

    images.sort()
    return images


def _parse_palette_arg(value: Optional[str]) -> Optional[Tuple[Color, ...]]:
    """Accept a named palette or a comma separated list of hex colours."""
    if not value:
        return None
    if value in NAMED_PALETTES:
        return named_palette(value)
    return tuple(parse_palette(part for part in value.split(",") if part.strip()))


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _summarize(buffer: np.ndarray) -> Tuple[int, int]:
    """(distinct opaque colours, opaque pixel count)"""
    return len(extract_unique_colors(buffer)), int((buffer[:, :, 3] >= OPAQUE_THRESHOLD).sum())


def _build_operation(cfg: BatchConfig) -> Callable:
    """Bind the selected operation and its options into ``f(buffer, executor)``."""
    if cfg.operation == "logo":
        options = LogoCleanerOptions(preset=cfg.preset or "logo-standard")
        return lambda buffer, executor: clean_logo(buffer, options, executor)

    if cfg.operation == "stray":
        stray = StrayPixelOptions(min_size=cfg.min_size, merge=cfg.merge)
        return lambda buffer, executor: remove_stray_pixels(buffer, stray, executor)

    if cfg.operation == "colors":
        extra: Dict[str, object] = {}
        if cfg.threshold is not None:
            extra["threshold"] = cfg.threshold
        colors = ColorReducerOptions(
            mode=cfg.color_mode, n_colors=cfg.n_colors, palette=cfg.palette, **extra
        )
        if colors.mode is ColorReducerMode.PALETTE_LOCK and not colors.palette:
            raise InvalidOptionError("--color-mode palette-lock requires --palette")
        return lambda buffer, executor: reduce_color_noise(buffer, colors, executor)

    if cfg.operation == "crisp":
        extra = {}
        if cfg.threshold is not None:
            extra["threshold"] = int(cfg.threshold)
        crisp = EdgeCrispenerOptions(method=cfg.crisp_method, **extra)
        return lambda buffer, executor: crisp_edges(buffer, crisp, executor)

    if cfg.operation == "smooth":
        smooth = EdgeSmootherOptions(mode=cfg.smooth_mode)
        return lambda buffer, executor: smooth_edges(buffer, smooth, executor)

    if cfg.operation == "lines":
        lines = LineNormalizerOptions(target_width=cfg.target_width)
        return lambda buffer, executor: normalize_line_thickness(buffer, lines)

    if cfg.operation == "outline":
        outline = OutlinePerfecterOptions()
        return lambda buffer, executor: perfect_outline(buffer, outline, executor)

    raise InvalidOptionError(f"Unknown operation: {cfg.operation!r}")


def _process_single_image(
    image_path: Path,
    cfg: BatchConfig,
    operation: Callable,
    executor: Optional[OperationExecutor],
) -> Optional[dict]:
    """Clean one image and persist the result.  Returns None on failure."""
    try:
        with Image.open(image_path) as img:
            buffer = np.array(img.convert("RGBA"), dtype=np.uint8)
        cleaned = operation(buffer, executor)
        output_path = cfg.output_dir / f"{image_path.stem}_cleaned.png"
        Image.fromarray(cleaned).save(output_path)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Failed to process %s: %s", image_path.name, exc)
        return None

    colors_before, opaque_before = _summarize(buffer)
    colors_after, opaque_after = _summarize(cleaned)
    logger.info(
        "%s: colours %d -> %d, opaque pixels %d -> %d",
        image_path.name, colors_before, colors_after, opaque_before, opaque_after,
    )

    return {
        "image": image_path.name,
        "operation": cfg.operation,
        "preset": (cfg.preset or "logo-standard") if cfg.operation == "logo" else "",
        "unique_colors_before": colors_before,
        "unique_colors_after": colors_after,
        "opaque_pixels_before": opaque_before,
        "opaque_pixels_after": opaque_after,
        "output_path": str(output_path),
    }


def _write_metrics_csv(metrics: List[dict], path: Path) -> None:
    with path.open("w", newline="") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=METRICS_FIELDS)
        writer.writeheader()
        writer.writerows(metrics)
    logger.info("Metrics written to %s", path)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Batch logo and pixel art cleanup CLI.")
    parser.add_argument(
        "inputs",
        nargs="+",
        type=Path,
        help="Image files or directories to process.",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory for cleaned images (default: ./output).",
    )
    parser.add_argument(
        "--operation",
        choices=OPERATIONS,
        default="logo",
        help="Cleanup operation to run (default: logo, the full preset pipeline).",
    )
    parser.add_argument(
        "--preset",
        choices=[preset.value for preset in PRESETS],
        help="Logo cleaner preset (default: logo-standard).",
    )
    parser.add_argument(
        "--min-size",
        type=int,
        default=3,
        help="Stray removal: clusters smaller than this are removed.",
    )
    parser.add_argument(
        "--merge",
        action="store_true",
        help="Stray removal: recolour strays from their surroundings instead of deleting.",
    )
    parser.add_argument(
        "--color-mode",
        choices=[mode.value for mode in ColorReducerMode],
        default=ColorReducerMode.AUTO_CLEAN.value,
        help="Colour reduction mode.",
    )
    parser.add_argument(
        "--palette",
        help="Palette for palette-lock: a name (%s) or comma separated hex colours."
        % ", ".join(sorted(NAMED_PALETTES)),
    )
    parser.add_argument(
        "--n-colors",
        type=int,
        default=16,
        help="Quantize: number of output colours.",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        help="Auto-clean similarity threshold, or the alpha cutoff for crisp threshold.",
    )
    parser.add_argument(
        "--crisp-method",
        choices=[method.value for method in EdgeCrispenerMethod],
        default=EdgeCrispenerMethod.THRESHOLD.value,
        help="Edge crispening method.",
    )
    parser.add_argument(
        "--smooth-mode",
        choices=[mode.value for mode in SmoothingMode],
        default=SmoothingMode.STANDARD.value,
        help="Edge smoothing mode.",
    )
    parser.add_argument(
        "--target-width",
        type=float,
        default=2.0,
        help="Line normalisation: target stroke width in pixels.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Run heavy operations in a process pool of this size (0 = in process).",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="When inputs include directories, walk them recursively.",
    )
    parser.add_argument(
        "--metrics-path",
        type=Path,
        help="Write a CSV summary to the provided path (defaults to <output>/metrics.csv).",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Do not emit the metrics CSV.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.debug)

    images = _gather_images(args.inputs, recursive=args.recursive)
    if not images:
        logger.error("No matching images found.")
        return 1

    output_dir = _ensure_dir(args.output_dir.resolve())

    metrics_path: Optional[Path]
    if args.no_metrics:
        metrics_path = None
    else:
        metrics_path = args.metrics_path.resolve() if args.metrics_path else output_dir / "metrics.csv"

    try:
        cfg = BatchConfig(
            inputs=images,
            output_dir=output_dir,
            operation=args.operation,
            preset=args.preset,
            min_size=args.min_size,
            merge=args.merge,
            color_mode=args.color_mode,
            palette=_parse_palette_arg(args.palette),
            n_colors=args.n_colors,
            threshold=args.threshold,
            crisp_method=args.crisp_method,
            smooth_mode=args.smooth_mode,
            target_width=args.target_width,
            workers=args.workers,
            metrics_path=metrics_path,
        )
        operation = _build_operation(cfg)
    except CleanupError as exc:
        logger.error("Invalid options: %s", exc)
        return 1

    executor: Optional[OperationExecutor] = None
    if cfg.workers > 0:
        executor = ProcessPoolOperationExecutor(max_workers=cfg.workers)
        executor.init()

    logger.info("Found %d image(s) to process -> %s", len(images), output_dir)

    metrics_records: List[dict] = []
    failures = 0
    try:
        for image_path in images:
            record = _process_single_image(image_path, cfg, operation, executor)
            if record is None:
                failures += 1
            else:
                metrics_records.append(record)
    finally:
        if executor is not None:
            executor.shutdown()

    if metrics_records and cfg.metrics_path:
        _write_metrics_csv(metrics_records, cfg.metrics_path)

    logger.info("Cleaned %d image(s), %d failed", len(metrics_records), failures)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
