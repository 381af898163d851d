from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Union

from pydantic import ValidationError

from common.config import ConsulSettings, KmsSettings, RestoreConfig, S3Settings, SaveConfig
from common.consul import ConsulSnapshotClient
from common.errors import ConfigurationError, SnapshotToolError
from storage.s3_store import S3BlobStore

from .pipeline import restore_snapshot, save_snapshot


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT, stream=sys.stderr)
    logging.getLogger().setLevel(level)
    # boto's own debug output is noisy and may include request bodies
    for name in ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


_REQUIRED_SHARED = ("s3_bucket", "s3_region")


def _add_shared_flags(p: argparse.ArgumentParser, *, default) -> None:
    p.add_argument("--s3-bucket", default=default, help="S3 bucket name (required)")
    p.add_argument("--s3-region", default=default, help="S3 bucket region (required)")
    p.add_argument("--kms-region", default=default, help="KMS region")
    p.add_argument(
        "--consul-addr",
        default=default,
        help="Consul HTTP address (defaults to $CONSUL_HTTP_ADDR or 127.0.0.1:8500)",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False if default is None else default,
        help="Debug logging",
    )


def build_parser() -> argparse.ArgumentParser:
    # Shared flags are accepted before or after the subcommand. The subcommand
    # copies use SUPPRESS so they never overwrite a value given before it.
    common = argparse.ArgumentParser(add_help=False)
    _add_shared_flags(common, default=argparse.SUPPRESS)

    parser = argparse.ArgumentParser(
        prog="consul-s3-snapshot",
        description="Save and restore consul snapshots to s3.",
    )
    _add_shared_flags(parser, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    save = sub.add_parser("save", parents=[common], help="Snapshot and upload to s3")
    save.add_argument("--s3-prefix", required=True, help="S3 bucket prefix")
    save.add_argument("--kms-key-arn", default=None, help="KMS key arn")
    save.add_argument(
        "--kms-key-spec",
        choices=("AES_256", "AES_128"),
        default="AES_256",
        help="Data key size requested from KMS",
    )

    restore = sub.add_parser("restore", parents=[common], help="Restore a snapshot from s3")
    restore.add_argument("--s3-path", required=True, help="S3 bucket path")

    return parser


def _load_config(args: argparse.Namespace) -> Union[SaveConfig, RestoreConfig]:
    try:
        s3_settings = S3Settings(bucket=args.s3_bucket, region=args.s3_region)
        if args.command == "save":
            return SaveConfig(
                s3=s3_settings,
                kms=KmsSettings(
                    region=args.kms_region,
                    key_arn=args.kms_key_arn,
                    key_spec=args.kms_key_spec,
                ),
                prefix=args.s3_prefix,
            )
        return RestoreConfig(
            s3=s3_settings,
            kms=KmsSettings(region=args.kms_region),
            path=args.s3_path,
        )
    except ValidationError as ve:
        raise ConfigurationError(f"Invalid arguments: {ve}") from ve


def _run(args: argparse.Namespace) -> str:
    config = _load_config(args)
    try:
        consul_settings = ConsulSettings.from_env(address=args.consul_addr)
    except ValidationError as ve:
        raise ConfigurationError(f"Invalid consul settings: {ve}") from ve
    blobs = S3BlobStore(bucket=config.s3.bucket, region_name=config.s3.region)

    with ConsulSnapshotClient(consul_settings) as consul:
        if isinstance(config, SaveConfig):
            result = save_snapshot(config, consul=consul, blobs=blobs)
            return f"Uploaded to {result.location}"

        restore_result = restore_snapshot(config, consul=consul, blobs=blobs)
        return f"Restored from {restore_result.location}"


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    missing = [f"--{name.replace('_', '-')}" for name in _REQUIRED_SHARED if getattr(args, name) is None]
    if missing:
        parser.error(f"the following arguments are required: {', '.join(missing)}")
    _setup_logging(args.verbose)

    try:
        message = _run(args)
    except SnapshotToolError as e:
        # one line per failure, even for multi-line validation messages
        message = " ".join(str(e).split())
        print(f"error: [{e.stage}] {message}", file=sys.stderr)
        return 1

    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
