#!/usr/bin/env python3
"""
compress_doc.py - Target-size document compression CLI.

Usage:
    python compress_doc.py compress photo.jpg -t 200
    python compress_doc.py compress scan.pdf -t 300 -g -o small.pdf
    python compress_doc.py pdf-to-images scan.pdf
    python compress_doc.py images-to-pdf a.jpg b.png -o merged.pdf
    python compress_doc.py scan receipt.jpg --threshold 50
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from doc_compressor.compression import CompressionSettings
from doc_compressor.config import Config
from doc_compressor.errors import PipelineError
from doc_compressor.extraction import get_extractor, scan_document
from doc_compressor.pipeline import (
    SourceDocument,
    compress_document,
    convert_images_to_pdf,
    convert_pdf_to_images,
    format_bytes,
)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def positive_float(value: str) -> float:
    """argparse type: float greater than zero."""
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Compress images and PDFs toward a target size.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
PDF compression rasterizes every page. Text will no longer be selectable.
The target size is best effort: very small targets may not be reached.
"""
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    compress = commands.add_parser("compress", parents=[common], help="Compress an image or PDF")
    compress.add_argument("input", type=Path, help="Input image or PDF")
    compress.add_argument("-o", "--output", type=Path, help="Output file")
    compress.add_argument(
        "-t", "--target-kb",
        type=positive_float,
        default=Config.DEFAULT_TARGET_KB,
        help=f"Target size in KB (default: {Config.DEFAULT_TARGET_KB:g})"
    )
    compress.add_argument(
        "-b", "--brightness",
        type=float,
        default=100,
        help="Brightness percent 0-200 (default: 100)"
    )
    compress.add_argument(
        "-g", "--grayscale",
        action="store_true",
        help="Convert to grayscale"
    )

    to_images = commands.add_parser("pdf-to-images", parents=[common], help="Export PDF pages as a ZIP of JPEGs")
    to_images.add_argument("input", type=Path, help="Input PDF")
    to_images.add_argument("-o", "--output", type=Path, help="Output ZIP")
    to_images.add_argument(
        "-s", "--scale",
        type=positive_float,
        default=Config.CONVERT_SCALE,
        help=f"Render scale (default: {Config.CONVERT_SCALE:g})"
    )

    to_pdf = commands.add_parser("images-to-pdf", parents=[common], help="Merge images into an A4 PDF")
    to_pdf.add_argument("input", nargs="+", type=Path, help="Input images, in page order")
    to_pdf.add_argument("-o", "--output", type=Path, required=True, help="Output PDF")

    scan = commands.add_parser("scan", parents=[common], help="Extract text from a document photo")
    scan.add_argument("input", type=Path, help="Input image")
    scan.add_argument("-b", "--brightness", type=float, default=100, help="Brightness percent")
    scan.add_argument("-c", "--contrast", type=float, default=100, help="Contrast percent")
    scan.add_argument(
        "--threshold",
        type=float,
        default=0,
        help="Binarization level percent (0 = off)"
    )

    return parser.parse_args(argv)


def print_progress(current: int, total: int):
    """Print progress bar."""
    width = 40
    filled = int(width * current / total)
    bar = "=" * filled + "-" * (width - filled)
    pct = current / total * 100
    print(f"\r[{bar}] {current}/{total} ({pct:.0f}%)", end="", file=sys.stderr)
    if current == total:
        print(file=sys.stderr)


def load_source(path: Path) -> SourceDocument:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    return SourceDocument.from_path(path)


def run_compress(args) -> int:
    source = load_source(args.input)
    try:
        settings = CompressionSettings(
            target_size_kb=args.target_kb,
            brightness=args.brightness,
            grayscale=args.grayscale,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = compress_document(source, settings, progress_callback=print_progress)
    output_path = args.output or args.input.with_name(result.artifact.filename)
    result.artifact.save(output_path)
    print(f"\n{result.summary()}")
    return 0


def run_pdf_to_images(args) -> int:
    source = load_source(args.input)
    artifact = convert_pdf_to_images(source, scale=args.scale, progress_callback=print_progress)
    output_path = args.output or args.input.with_name(artifact.filename)
    artifact.save(output_path)
    print(f"{artifact.page_count} pages -> {output_path} ({format_bytes(artifact.size)})")
    return 0


def run_images_to_pdf(args) -> int:
    sources = [load_source(path) for path in args.input]
    artifact = convert_images_to_pdf(sources, filename=args.output.name)
    artifact.save(args.output)
    print(f"{artifact.page_count} images -> {args.output} ({format_bytes(artifact.size)})")
    return 0


def run_scan(args) -> int:
    source = load_source(args.input)
    result = scan_document(
        source.data,
        source.mime_type,
        get_extractor(),
        brightness=args.brightness,
        contrast=args.contrast,
        threshold=args.threshold,
    )
    print(json.dumps(result.model_dump(), indent=2, ensure_ascii=False))
    return 0


COMMANDS = {
    "compress": run_compress,
    "pdf-to-images": run_pdf_to_images,
    "images-to-pdf": run_images_to_pdf,
    "scan": run_scan,
}


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        status = COMMANDS[args.command](args)
    except PipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        status = 1

    sys.exit(status)


if __name__ == "__main__":
    main()
