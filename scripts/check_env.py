"""Operator check for the gateway's ``.env`` file.

Loads the file through ``AppSettings`` so missing or malformed values show up
before the service starts, reports risky-but-valid configuration, and keeps a
SHA256 baseline of the file so unexpected edits are noticed.

Example usages::

    # Validate and store the baseline checksum.
    python -m scripts.check_env record --env-file /opt/broker-gateway/.env \
        --hash-file /opt/broker-gateway/.env.sha256

    # From cron/systemd: fail on drift or on configuration warnings.
    python -m scripts.check_env verify --strict --env-file /opt/broker-gateway/.env \
        --hash-file /opt/broker-gateway/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from broker_gateway.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5

_SECRET_FIELDS = {
    "STATE_SIGNING_SECRET": "state_signing_secret",
    "COOKIE_ENCRYPTION_KEY": "cookie_encryption_key",
    "TOKEN_ENCRYPTION_SECRET": "token_encryption_secret",
}


def _checksum(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def load_settings(env_file: Path) -> AppSettings:
    """Load ``env_file`` into the process environment and build settings from it."""
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def configuration_warnings(settings: AppSettings) -> List[str]:
    """Describe settings that load fine but weaken the deployment."""
    warnings: List[str] = []
    clients = settings.oauth.registered_clients()
    if not clients:
        warnings.append(
            "OAUTH_CLIENTS registers no outer clients; "
            "only clients registered at /register can authorize."
        )
    for client_id, uris in clients.items():
        for uri in uris:
            if not uri.startswith("https://") and "localhost" not in uri:
                warnings.append(f"Client {client_id} redirects to non-HTTPS URI {uri}.")
    for env_name, field_name in _SECRET_FIELDS.items():
        if not getattr(settings.security, field_name):
            warnings.append(f"{env_name} is unset; the broker client secret is used instead.")
    return warnings


def _record(env_file: Path, hash_file: Path) -> int:
    checksum = _checksum(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _checksum(env_file)
    if expected != actual:
        print(
            "Environment checksum mismatch!\n"
            f"  expected: {expected}\n"
            f"  actual:   {actual}\n"
            "Investigate recent changes before restarting the gateway.",
            file=sys.stderr,
        )
        return EXIT_CHECKSUM_ERROR
    print("Environment checksum OK.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate gateway settings and detect .env drift."
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )
    common.add_argument(
        "--strict",
        action="store_true",
        help="Treat configuration warnings as validation failures.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("check", parents=[common], help="Validate settings only.")
    for command, help_text in (
        ("record", "Validate settings and store the checksum baseline."),
        ("verify", "Validate settings and compare the checksum with the baseline."),
    ):
        subparser = subparsers.add_parser(command, parents=[common], help=help_text)
        subparser.add_argument(
            "--hash-file",
            required=True,
            type=Path,
            help="Location of the checksum baseline.",
        )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    warnings = configuration_warnings(settings)
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if warnings and args.strict:
        return EXIT_VALIDATION_ERROR

    if args.command == "record":
        return _record(args.env_file, args.hash_file)
    if args.command == "verify":
        return _verify(args.env_file, args.hash_file)
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
