"""CLI command for generating a single image, edit or video.

Usage:
    python -m hibiscus.cli PROMPT [OPTIONS]

Examples:
    # Text-to-image with the default model
    python -m hibiscus.cli "a red fox in the snow"

    # Edit an existing image
    python -m hibiscus.cli "make it night" --kind img2img --image https://example.com/fox.png

    # Video to a specific file
    python -m hibiscus.cli "waves at dusk" --kind video --duration 4 -o waves.mp4

    # Verbose logging
    python -m hibiscus.cli "a red fox" -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Any, Optional, Sequence

import structlog

from hibiscus.core.config import Settings, configure_logging
from hibiscus.models.job import JobKind
from hibiscus.services.downloads import generate_filename, save_download
from hibiscus.services.exceptions import ServiceError
from hibiscus.services.generation.classifier import describe_error
from hibiscus.services.generation.client import GenerationClient

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Generate one image or video from a prompt",
        epilog="API keys are read from HIBISCUS_API_KEY (comma-separated for rotation)",
    )

    parser.add_argument("prompt", help="Generation prompt")

    parser.add_argument(
        "--kind",
        choices=[kind.value for kind in JobKind],
        default=JobKind.TXT2IMG.value,
        help="What to generate (default: txt2img)",
    )

    parser.add_argument(
        "--image",
        action="append",
        default=[],
        help="Reference image URL (repeatable; required for img2img)",
    )

    parser.add_argument("--model", help="Model name (default: from settings)")
    parser.add_argument("--width", type=int, help="Image width in pixels")
    parser.add_argument("--height", type=int, help="Image height in pixels")
    parser.add_argument("--seed", type=int, help="Fixed seed (default: random)")
    parser.add_argument("--duration", type=int, help="Video duration in seconds")

    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Output file (default: dated file under DOWNLOAD_DIR)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def build_params(args: Namespace, settings: Settings) -> dict[str, Any]:
    """Configured defaults for the kind with command-line overrides applied."""
    kind = JobKind(args.kind)
    params = settings.generation_defaults(kind)
    overrides = {
        "model": args.model,
        "width": args.width,
        "height": args.height,
        "seed": args.seed,
        "duration": args.duration,
    }
    params.update({key: value for key, value in overrides.items() if value is not None})
    if args.image:
        params["image"] = args.image
    return params


def _print_progress(failures: int, attempt: int) -> None:
    print(f"Blocked by safety filter, retrying (attempt {attempt + 1})...", file=sys.stderr)


def _print_transient(attempt: int, max_attempts: int) -> None:
    print(f"Connection issue, retrying ({attempt}/{max_attempts})...", file=sys.stderr)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 130 (cancelled)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    kind = JobKind(args.kind)
    params = build_params(args, settings)
    logger.info("cli.started", kind=kind.value, model=params.get("model"))

    try:
        async with GenerationClient.from_settings(settings) as client:
            if kind is JobKind.VIDEO:
                outcome = await client.generate_video(args.prompt, params)
                content = outcome.content
            else:
                if kind is JobKind.IMG2IMG:
                    result = await client.edit_image(
                        args.prompt, params, _print_progress, _print_transient
                    )
                else:
                    result = await client.generate_image(
                        args.prompt, params, _print_progress, _print_transient
                    )
                if result is None:
                    print("\nGeneration cancelled", file=sys.stderr)
                    return 130
                content = result.content

        asset_kind = "video" if kind is JobKind.VIDEO else "image"
        if args.output:
            target = save_download(content, args.output.parent, args.output.name)
        else:
            relative_path = generate_filename(args.prompt, asset_kind, settings.filename_format)
            target = save_download(content, settings.download_dir, relative_path)

        print(f"Saved {asset_kind} to {target} ({len(content)} bytes)")
        logger.info("cli.completed", path=str(target))
        return 0

    except ServiceError as e:
        info = describe_error(e)
        logger.error("cli.generation_failed", error_kind=info.kind.value, error=str(e))
        print(f"\nError ({info.kind.value}): {info.display}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nGeneration interrupted by user", file=sys.stderr)
        return 130

    except OSError as e:
        logger.error("cli.write_failed", error=str(e), error_type=type(e).__name__)
        print(f"\nCould not write output: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))
