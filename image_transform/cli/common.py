from __future__ import annotations

import argparse
from pathlib import Path

from image_transform.core.logging_config import LOG_LEVELS


def add_common_cli_arguments(parser: argparse.ArgumentParser) -> None:
    """Settings file and logging flags accepted by every subcommand."""
    group = parser.add_argument_group("configuration and logging")
    group.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="key = value settings file (default: config.txt in the project root)",
    )
    group.add_argument(
        "--log-level",
        type=str.lower,
        choices=sorted(LOG_LEVELS),
        default=None,
        help="Logging verbosity (default: log_level from settings, else info)",
    )
    group.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="FILE",
        help="Also write logs to FILE, rotated at 512 KB",
    )

    console = group.add_mutually_exclusive_group()
    console.add_argument("--console", dest="console_output", action="store_true", help="Log to stderr (default)")
    console.add_argument("--no-console", dest="console_output", action="store_false", help="Do not log to stderr")
    parser.set_defaults(console_output=True)


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from None
    # also rejects nan
    if not number > 0:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {value!r}")
    return number
