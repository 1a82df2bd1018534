import argparse
import logging
import sys

from . import app
from .config import load_env_file, resolve_config
from .exceptions import ConfigError, DescriptorError, JobFailedError, WorkerError
from .ffmpeg_runner import check_ffmpeg
from .logger import configure_logging

logger = logging.getLogger(__name__)


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", type=str, help="Load environment variables from file")
    parser.add_argument("--config", type=str, help="Extra YAML config file")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Override log level"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="video-worker", description="HLS transcoding worker for Pub/Sub jobs"
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # RUN
    run_parser = subparsers.add_parser("run", help="Consume the subscription until stopped")
    _add_common_args(run_parser)
    run_parser.add_argument("--port", type=int, help="Health endpoint port")
    run_parser.add_argument("--no-health", action="store_true", help="Do not serve /health")
    run_parser.add_argument("--work-dir", type=str, help="Parent of job working directories")

    # PROCESS (single descriptor, no queue)
    process_parser = subparsers.add_parser(
        "process", help="Process one job descriptor from a file or stdin"
    )
    _add_common_args(process_parser)
    process_parser.add_argument(
        "--message", "-m", type=str, default="-", help="Descriptor JSON file ('-' = stdin)"
    )
    process_parser.add_argument("--work-dir", type=str, help="Parent of job working directories")
    process_parser.add_argument(
        "--backend", choices=["ffmpeg", "placeholder"], help="Transcoder backend"
    )

    # STATUS
    status_parser = subparsers.add_parser("status", help="Show a processing status record")
    _add_common_args(status_parser)
    status_parser.add_argument("processing_id", type=str, help="Processing id")

    # CHECK FFMPEG
    check_parser = subparsers.add_parser("check", help="Verify dependencies")
    check_parser.add_argument("--ffmpeg-path", type=str, help="ffmpeg executable to check")

    return parser


def _load_config(args):
    if getattr(args, "env_file", None):
        load_env_file(args.env_file)
    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    config = resolve_config(cli_dict, config_path=getattr(args, "config", None))
    configure_logging(config.logging.level)
    return config


def _read_message(source: str) -> bytes:
    if source == "-":
        return sys.stdin.buffer.read()
    with open(source, "rb") as f:
        return f.read()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "check":
        print("Checking dependencies...")
        if check_ffmpeg(args.ffmpeg_path):
            print("ffmpeg found.")
        else:
            print("ffmpeg NOT found.")
            sys.exit(1)
        return

    if args.command is None:
        parser.print_help()
        return

    try:
        config = _load_config(args)

        if args.command == "run":
            app.run_worker(config)

        elif args.command == "process":
            result = app.process_once(config, _read_message(args.message))
            print(result.model_dump_json(indent=2))

        elif args.command == "status":
            record = app.fetch_status(config, args.processing_id)
            if record is None:
                print(f"No processing record for {args.processing_id}")
                sys.exit(1)
            print(record.model_dump_json(indent=2))

    except ConfigError as e:
        configure_logging()
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    except (DescriptorError, JobFailedError) as e:
        logger.error("%s", e)
        sys.exit(1)
    except WorkerError as e:
        logger.error("Video worker error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
