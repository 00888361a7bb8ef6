from __future__ import annotations

import argparse
import sys
import time
from importlib.metadata import PackageNotFoundError, version
from typing import List, Optional

import structlog

from .app import INSTANCE_ID, SEQUENTIAL, InstanceIdOptions, SequentialOptions, Settings, run
from .core import BackoffConfig, env_bool, env_int, env_str
from .errors import AhsError
from .log import configure_logging

log = structlog.get_logger(__name__)


def _version() -> str:
    try:
        return version("ahs")
    except PackageNotFoundError:
        return "0.0.0"


def build_parser() -> argparse.ArgumentParser:
    """Flags default to their AHS_* environment variable, falling back to the built-in value."""
    parser = argparse.ArgumentParser(
        prog="ahs",
        description="Set the hostname of an EC2 instance based on a tag value and the instance-id",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=env_bool("AHS_DRY_RUN"),
        help="only display what would have been done [$AHS_DRY_RUN]",
    )
    parser.add_argument(
        "--input-tag",
        metavar="TAG",
        default=env_str("AHS_INPUT_TAG", "Name"),
        help="tag to use as input to determine the hostname [$AHS_INPUT_TAG]",
    )
    parser.add_argument(
        "--output-tag",
        metavar="TAG",
        default=env_str("AHS_OUTPUT_TAG", "Name"),
        help="tag to update with the computed hostname [$AHS_OUTPUT_TAG]",
    )
    parser.add_argument(
        "--separator",
        default=env_str("AHS_SEPARATOR", "-"),
        help="separator to use between tag and id [$AHS_SEPARATOR]",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        default=env_str("AHS_LOG_LEVEL", "info"),
        help="log level (debug,info,warn,error,fatal,panic) [$AHS_LOG_LEVEL]",
    )
    parser.add_argument(
        "--log-format",
        metavar="FORMAT",
        default=env_str("AHS_LOG_FORMAT", "text"),
        help="log format (json,text) [$AHS_LOG_FORMAT]",
    )
    parser.add_argument(
        "--persist-hostname",
        action="store_true",
        default=env_bool("AHS_PERSIST_HOSTNAME"),
        help="set /etc/hostname with generated hostname [$AHS_PERSIST_HOSTNAME]",
    )
    parser.add_argument(
        "--persist-hosts",
        action="store_true",
        default=env_bool("AHS_PERSIST_HOSTS"),
        help="assign generated hostname to 127.0.0.1 in /etc/hosts [$AHS_PERSIST_HOSTS]",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    iid = sub.add_parser(
        INSTANCE_ID,
        help="compute a hostname by appending the instance-id to a prefixed/base string",
    )
    iid.add_argument(
        "--length",
        type=int,
        default=env_int("AHS_INSTANCE_ID_LENGTH", 5),
        help="length of the id to keep in the hostname [$AHS_INSTANCE_ID_LENGTH]",
    )

    seq = sub.add_parser(
        SEQUENTIAL,
        help="compute a sequential hostname based on the number of instances belonging to the same group",
    )
    seq.add_argument(
        "--instance-sequential-id-tag",
        default=env_str("AHS_INSTANCE_SEQUENTIAL_ID_TAG", "ahs:instance-id"),
        help="tag to which output the computed instance-sequential-id [$AHS_INSTANCE_SEQUENTIAL_ID_TAG]",
    )
    seq.add_argument(
        "--instance-group-tag",
        default=env_str("AHS_INSTANCE_GROUP_TAG", "ahs:instance-group"),
        help="tag to use in order to determine which group the instance belongs to [$AHS_INSTANCE_GROUP_TAG]",
    )
    seq.add_argument(
        "--respect-azs",
        action="store_true",
        default=env_bool("AHS_RESPECT_AZS"),
        help="reserved: per-AZ sequential ids for ASG-provisioned instances, currently has no effect [$AHS_RESPECT_AZS]",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        dry_run=args.dry_run,
        input_tag=args.input_tag,
        output_tag=args.output_tag,
        separator=args.separator,
        persist_hostname=args.persist_hostname,
        persist_hosts=args.persist_hosts,
        backoff=BackoffConfig(),
    )


def options_from_args(args: argparse.Namespace):
    if args.command == INSTANCE_ID:
        return InstanceIdOptions(length=args.length)
    return SequentialOptions(
        group_tag=args.instance_group_tag,
        sequential_id_tag=args.instance_sequential_id_tag,
        respect_azs=args.respect_azs,
    )


def main(argv: Optional[List[str]] = None, collaborators=None) -> int:
    started = time.monotonic()
    args = build_parser().parse_args(argv)

    try:
        configure_logging(args.log_level, args.log_format)
    except AhsError as e:
        print(f"ahs: {e}", file=sys.stderr)
        return e.exit_code

    try:
        run(
            args.command,
            settings_from_args(args),
            options_from_args(args),
            started=started,
            collaborators=collaborators,
        )
    except AhsError as e:
        log.error(str(e))
        return e.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
