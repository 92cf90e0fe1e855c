"""Command line entry point: ``panorama WIDTHxHEIGHT input.ppm``.

Reads an 8-bit P6 equirectangular image, downsamples it in linear light and
writes the result to output.ppm in the working directory.
"""

import argparse
import os
import sys
from typing import List, Optional, Tuple

from .modules.equirectangular_resampler import (
    OUTPUT_PATH,
    GeometryError,
    ResampleMethod,
    downsample_image,
)
from .modules.ppm_codec import MalformedImageError, read_ppm, write_ppm
from .modules.preview import save_png_preview


def parse_dimensions(value: str) -> Tuple[int, int]:
    """Parse 'WIDTHxHEIGHT' into integers."""
    width, sep, height = value.partition("x")
    if not sep or not width.isdigit() or not height.isdigit():
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got '{value}'")
    return int(width), int(height)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panorama",
        description="Downsample spherical (equirectangular) panorama images. "
                    f"The result is always written to {OUTPUT_PATH}.",
    )
    parser.add_argument("size", type=parse_dimensions, metavar="WIDTHxHEIGHT",
                        help="Output size, e.g. 512x256")
    parser.add_argument("input", help="Path to an 8-bit P6 (binary PPM) image")
    parser.add_argument(
        "--method",
        choices=[m.value for m in ResampleMethod],
        default=ResampleMethod.GEODESIC.value,
        help="Resampling strategy (default: geodesic)",
    )
    parser.add_argument(
        "--backend",
        choices=["auto", "cpu", "gpu"],
        default="cpu",
        help="Geodesic filter backend; gpu and auto use torch/CUDA (default: cpu)",
    )
    parser.add_argument(
        "--preview",
        metavar="PNG",
        help="Also save an sRGB PNG copy of the result to this path",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    out_width, out_height = args.size

    try:
        input_image = read_ppm(args.input)
    except (MalformedImageError, OSError) as e:
        print(e, file=sys.stderr)
        return 1

    print(f"Loaded {args.input}: {input_image.width}x{input_image.height}")

    try:
        output_image = downsample_image(input_image, out_width, out_height,
                                        method=args.method, backend=args.backend)
    except GeometryError as e:
        print(f"cannot downsample \"{args.input}\": {e}", file=sys.stderr)
        return 1

    try:
        if args.preview:
            save_png_preview(output_image, args.preview)
        try:
            write_ppm(output_image, OUTPUT_PATH)
        except OSError:
            if args.preview and os.path.exists(args.preview):
                os.remove(args.preview)
            raise
    except OSError as e:
        print(e, file=sys.stderr)
        return 1

    print(f"✅ Wrote {OUTPUT_PATH}: {out_width}x{out_height} ({args.method})")
    if args.preview:
        print(f"✅ Wrote preview {args.preview}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
