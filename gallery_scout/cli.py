"""Command-line entry point for gallery-scout."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

from PIL import Image

from .config import HASH_ALGORITHMS, HashConfig, ScoutConfig
from .crawler import run_discovery
from .errors import ScoutError
from .filters import FilterRules
from .hashing import PerceptualHasher, PixelData, bits_to_hex, pixel_data_from_image
from .images import RemoteProbe
from .utils import is_absolute_url

logger = logging.getLogger("gallery_scout.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("discover", *argv)


def _configure_logging(verbose: bool, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if quiet and not verbose:
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _add_hash_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--algorithm",
        choices=HASH_ALGORITHMS,
        default="difference",
        help="Perceptual hash algorithm",
    )
    parser.add_argument(
        "--precision",
        type=int,
        default=8,
        help="Hash grid size; fingerprints have precision*precision bits",
    )


def _add_discover_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("urls", nargs="+", help="One or more pages to scan")
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where discovery reports and images should be written",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before snapshotting the page",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--rules",
        type=Path,
        default=None,
        help="JSON file with filter rules (urlPatterns, extensions, mimeTypes, ...)",
    )
    parser.add_argument(
        "--selector",
        default=None,
        help="CSS selector whose matches are reported ahead of detected items",
    )
    parser.add_argument(
        "--dedup",
        action="store_true",
        help="Drop visually duplicated images using perceptual hashes",
    )
    parser.add_argument(
        "--max-distance",
        type=int,
        default=0,
        help="Hamming distance under which two hashes count as duplicates",
    )
    _add_hash_options(parser)
    parser.add_argument(
        "--download",
        action="store_true",
        help="Download accepted images next to the report",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print discovery results to STDOUT as JSON",
    )


def _add_hash_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("sources", nargs="+", help="Image files or URLs to fingerprint")
    _add_hash_options(parser)
    parser.add_argument(
        "--bits",
        action="store_true",
        help="Print the raw bit string instead of hex",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find the gallery images on rendered web pages.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover_parser = subparsers.add_parser(
        "discover", help="Render pages and report their gallery images"
    )
    _add_discover_arguments(discover_parser)

    hash_parser = subparsers.add_parser(
        "hash", help="Print perceptual hashes of images"
    )
    _add_hash_arguments(hash_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def load_rules(path: Optional[Path]) -> Optional[FilterRules]:
    if path is None:
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Rule file {path} must contain a JSON object")
    return FilterRules.from_dict(data)


def _run_discover(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose, quiet=args.json)

    try:
        rules = load_rules(args.rules)
        config = ScoutConfig(
            output_root=Path(args.output).resolve(),
            wait_after_load=args.wait,
            navigation_timeout=args.timeout,
            selector=args.selector,
            deduplicate=args.dedup,
            download=args.download,
            hashing=HashConfig(
                algorithm=args.algorithm,
                precision=args.precision,
                max_distance=args.max_distance,
            ),
        )
    except (OSError, ValueError, ScoutError) as exc:
        logger.error("Invalid options: %s", exc)
        return 2

    overall_start = time.perf_counter()
    reports = asyncio.run(run_discovery(args.urls, config, rules))
    total_elapsed = time.perf_counter() - overall_start

    failures = sum(1 for report in reports if report.result.method == "error")
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed)",
        total_elapsed,
        len(reports) - failures,
        len(args.urls),
        failures,
    )
    for report in reports:
        logger.debug(
            "%s -> %d items via %s (confidence %.2f, %.2fs)",
            report.url,
            len(report.result.items),
            report.result.method,
            report.result.confidence,
            report.total_seconds,
        )

    if args.json:
        json.dump([report.to_dict() for report in reports], sys.stdout, indent=2)
        sys.stdout.write("\n")
        sys.stdout.flush()
    return 1 if failures == len(reports) and reports else 0


def _load_local(path: Path) -> PixelData:
    with Image.open(path) as image:
        return pixel_data_from_image(image)


def _run_hash(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    probe = RemoteProbe()
    hasher = PerceptualHasher(probe.rasterize)
    status = 0
    for source in args.sources:
        try:
            if is_absolute_url(source) or source.startswith("data:"):
                fingerprint = hasher.hash(source, args.algorithm, args.precision)
            else:
                fingerprint = hasher.hash(_load_local(Path(source)), args.algorithm, args.precision)
        except (OSError, ValueError, ScoutError) as exc:
            logger.error("Could not hash %s: %s", source, exc)
            status = 1
            continue
        rendered = fingerprint if args.bits else bits_to_hex(fingerprint)
        sys.stdout.write(f"{rendered}  {source}\n")
    sys.stdout.flush()
    return status


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "discover":
        return _run_discover(args)
    return _run_hash(args)


if __name__ == "__main__":
    sys.exit(main())
