import argparse
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import Optional

from image_transform.cli.common import add_common_cli_arguments, positive_float
from image_transform.core import (
    BackendId,
    BackendRegistry,
    HealthMonitor,
    HealthPoller,
    HealthStatus,
    ImageFile,
    Settings,
    TransformController,
    TransformError,
    TransformationClient,
    TransformationSpecs,
    VersionSupervisor,
    load_settings,
)
from image_transform.core.host_commands import HostCommandHandler, encode_reply
from image_transform.core.logging_config import configure_logging
from image_transform.core.logging_utils import get_module_logger
from image_transform.core.paths import CLIENT_LOG_FILE, ensure_directories
from image_transform.core.specs import VALID_CROP_SHAPES, ColorSpec, CropSpec, ResizeSpec

logger = get_module_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="image-transform",
        description="Send images to an image transformation backend and manage bundled backend versions",
    )
    add_common_cli_arguments(parser)

    sub = parser.add_subparsers(dest="command", required=True)

    transform = sub.add_parser("transform", help="Transform one image")
    transform.add_argument("image", type=Path, help="Input image (png, jpeg, webp, gif)")
    transform.add_argument("--specs", type=str, default=None,
                           help="Transformations as JSON; replaces the individual flags")
    transform.add_argument("--hue", type=float, default=0.0, help="Hue shift in degrees [-180, 180]")
    transform.add_argument("--saturation", type=float, default=1.0, help="Saturation factor [0, 3]")
    transform.add_argument("--width", type=int, default=None, help="Resize width in pixels")
    transform.add_argument("--height", type=int, default=None, help="Resize height in pixels")
    transform.add_argument("--grayscale", action="store_true", default=None, help="Convert to grayscale")
    transform.add_argument("--crop-shape", choices=VALID_CROP_SHAPES, default=None,
                           help="Enable cropping with this shape")
    transform.add_argument("--crop-width", type=int, default=None, help="Crop width in pixels")
    transform.add_argument("--crop-height", type=int, default=None, help="Crop height in pixels")
    transform.add_argument("--output", "-o", type=Path, default=Path("."),
                           help="Output file or directory (default: current directory)")
    transform.add_argument("--timeout", type=positive_float, default=None,
                           help="Request deadline in seconds (default: 30)")

    sub.add_parser("health", help="Check backend health and report its version")

    backends = sub.add_parser("backends", help="List backend options")
    backends.add_argument("--select", choices=[b.value for b in BackendId], default=None,
                          help="Persist a new backend selection")

    watch = sub.add_parser("watch", help="Poll backend health until interrupted")
    watch.add_argument("--interval", type=positive_float, default=None,
                       help="Seconds between checks (default: 5)")

    sub.add_parser("versions", help="Show installed backend versions and the stored selection")

    set_version = sub.add_parser("set-version", help="Persist a backend version and restart the bundled backend")
    set_version.add_argument("version")

    sub.add_parser("host", help="Supervise the bundled backend and serve JSON-line commands on stdin")

    args = parser.parse_args(argv)

    if args.command == "transform" and args.specs is None and (args.width is None or args.height is None):
        parser.error("transform requires --width and --height (or --specs)")

    return args


def build_specs(args: argparse.Namespace) -> TransformationSpecs:
    """Specs from ``--specs`` JSON or from the individual flags."""
    if args.specs is not None:
        return TransformationSpecs.from_dict(json.loads(args.specs))

    crop = None
    if args.crop_shape:
        crop = CropSpec(
            enabled=True,
            shape=args.crop_shape,
            width=args.crop_width if args.crop_width is not None else args.width,
            height=args.crop_height if args.crop_height is not None else args.height,
        )

    return TransformationSpecs(
        color=ColorSpec(hue=args.hue, saturation=args.saturation),
        resize=ResizeSpec(width=args.width, height=args.height),
        grayscale=args.grayscale,
        crop=crop,
    )


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler


async def run_transform(args: argparse.Namespace, settings: Settings) -> int:
    registry = BackendRegistry(settings)
    client = TransformationClient(registry, timeout=args.timeout)
    poller = HealthPoller(HealthMonitor(registry))
    controller = TransformController(client, poller)

    try:
        image = await ImageFile.load(args.image)
    except OSError as e:
        print(f"Error: cannot read {args.image}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        specs = build_specs(args)
        result = await controller.transform(image, specs)
        saved = await result.save(args.output)
    except json.JSONDecodeError as e:
        print(f"Error: --specs is not valid JSON: {e}", file=sys.stderr)
        return EXIT_USAGE
    except TransformError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        # let the reactive health check report before exit
        await poller.drain(timeout=settings.health_timeout + 1)
        return EXIT_FAILURE
    except OSError as e:
        print(f"Error: cannot write result: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        await poller.stop()

    print(f"Saved to {saved}")
    return EXIT_OK


async def run_health(args: argparse.Namespace, settings: Settings) -> int:
    registry = BackendRegistry(settings)
    monitor = HealthMonitor(registry)
    url = await registry.active_url()
    status, version = await asyncio.gather(monitor.check_health(url), monitor.get_backend_version(url))
    state = "Connected" if status.online else "Disconnected"
    print(f"{state}: {status.message} (url={url}, version={version})")
    return EXIT_OK if status.online else EXIT_FAILURE


async def run_backends(args: argparse.Namespace, settings: Settings) -> int:
    registry = BackendRegistry(settings)
    if args.select:
        await registry.set_selection(args.select)

    selected = await registry.get_selection()
    for option in registry.list_options():
        marker = "*" if option.id is selected else " "
        print(f"{marker} {option.id.value:<7} {option.label:<20} {option.url}")
    return EXIT_OK


async def run_watch(args: argparse.Namespace, settings: Settings) -> int:
    registry = BackendRegistry(settings)
    last: list[Optional[HealthStatus]] = [None]

    async def show(status: HealthStatus) -> None:
        if status != last[0]:
            state = "Connected" if status.online else "Disconnected"
            print(f"{state}: {status.message}", flush=True)
        last[0] = status

    poller = HealthPoller(HealthMonitor(registry), interval=args.interval, on_status=show)
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    await poller.start()
    try:
        await stop_event.wait()
    finally:
        await poller.stop()
    return EXIT_OK


async def run_versions(args: argparse.Namespace, settings: Settings) -> int:
    supervisor = VersionSupervisor(settings)
    manifest = await supervisor.get_versions_manifest()
    stored = await supervisor.get_stored_version()
    for version in manifest.available:
        tags = []
        if version == manifest.latest:
            tags.append("latest")
        if version == manifest.default:
            tags.append("default")
        marker = "*" if version == stored else " "
        suffix = f" ({', '.join(tags)})" if tags else ""
        print(f"{marker} {version}{suffix}")
    return EXIT_OK


async def run_set_version(args: argparse.Namespace, settings: Settings) -> int:
    # the bundled backend belongs to the `host` process; here the choice is only persisted
    supervisor = VersionSupervisor(settings, packaged=False)
    result = await supervisor.set_version(args.version)
    if not result.success:
        print(f"Error: {result.message}", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Backend version set to {args.version}; it applies the next time the backend starts")
    return EXIT_OK


async def _serve_commands(handler: HostCommandHandler, stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)

    while not stop_event.is_set():
        line = await reader.readline()
        if not line:
            logger.info("stdin closed, shutting down")
            break

        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            continue

        reply = await handler.handle_line(text)
        sys.stdout.write(encode_reply(reply))
        sys.stdout.flush()

    stop_event.set()


async def run_host(args: argparse.Namespace, settings: Settings) -> int:
    supervisor = VersionSupervisor(settings)
    handler = HostCommandHandler(supervisor)
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    if supervisor.packaged:
        result = await supervisor.try_start()
        if not result.started:
            logger.warning("Backend auto-start failed: %s", result.message)

    serve_task = asyncio.create_task(_serve_commands(handler, stop_event))
    try:
        await stop_event.wait()
    finally:
        serve_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await serve_task
        await supervisor.stop()
    return EXIT_OK


COMMANDS = {
    "transform": run_transform,
    "health": run_health,
    "backends": run_backends,
    "watch": run_watch,
    "versions": run_versions,
    "set-version": run_set_version,
    "host": run_host,
}


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    settings = load_settings(config_path=args.config, overrides={"log_level": args.log_level})

    log_file = args.log_file
    if log_file is None and args.command == "host":
        # stdout carries replies in host mode, so keep a log on disk
        ensure_directories()
        log_file = CLIENT_LOG_FILE

    configure_logging(
        settings.log_level,
        force=True,
        console=args.console_output,
        log_file=log_file,
    )
    logger.debug("Running %s against %s", args.command, settings.default_base_url)

    return await COMMANDS[args.command](args, settings)


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
