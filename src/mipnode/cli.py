# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Command-line interface for running and setting up a MIP node."""

from __future__ import annotations

import argparse
import os
import stat
import sys
from pathlib import Path

from .core.exceptions import ConfigException
from .protocol import crypto, identifier
from .protocol.node_config import build_identity, load_node_config


def write_private_key(path: Path, private_key: str) -> None:
    """Write a PEM private key readable only by its owner."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(
        path,
        os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
        stat.S_IRUSR | stat.S_IWUSR,  # 0600
    )
    try:
        os.write(fd, private_key.encode("utf-8"))
    finally:
        os.close(fd)


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the node's HTTP server."""
    from .server.app import run
    from .server.config import get_settings

    overrides = {
        "node_config": args.config,
        "host": args.host,
        "port": args.port,
        "state_file": args.state_file,
        "log_level": args.log_level,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})
    try:
        run(settings)
    except ConfigException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1
    return 0


def cmd_identity(args: argparse.Namespace) -> int:
    """Print the identity a config file produces."""
    try:
        config = load_node_config(args.config)
        identity = build_identity(config, generate_missing_key=False)
    except ConfigException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    print(f"Organization:    {identity.organization_name}")
    if config.mip_identifier:
        print(f"MIP identifier:  {identity.mip_identifier}")
    else:
        print("MIP identifier:  (not configured; a new one is generated on every start)")
        print(f"  Suggested:     {identity.mip_identifier}")
    print(f"MIP URL:         {identity.mip_url}")
    print(f"Key fingerprint: {identity.public_key_fingerprint()}")
    print(f"Trust threshold: {identity.trust_threshold}")
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate a private key file and optionally an identifier."""
    if args.out.exists() and not args.force:
        print(f"Refusing to overwrite {args.out} (use --force)", file=sys.stderr)
        return 1

    keypair = crypto.generate_keypair()
    write_private_key(args.out, keypair.private_key)
    print(f"Private key written to {args.out}")
    print("Permissions: 0600 (owner read/write only)")
    print(f"Fingerprint: {crypto.fingerprint(keypair.public_key)}")
    if args.organization:
        print(f"mip_identifier: {identifier.generate(args.organization)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Member Interchange Protocol node",
        prog="mipnode",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the node")
    serve_parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Node YAML config (default: MIP_NODE_CONFIG)",
    )
    serve_parser.add_argument("--host", default=None, help="Host to bind to (default: MIP_HOST)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: from node config)")
    serve_parser.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="JSON snapshot of node state (default: MIP_STATE_FILE)",
    )
    serve_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: MIP_LOG_LEVEL)",
    )

    # Identity command
    identity_parser = subparsers.add_parser("identity", help="Show the node identity for a config")
    identity_parser.add_argument("config", type=Path, help="Node YAML config")

    # Keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate a private key")
    keygen_parser.add_argument("out", type=Path, help="Where to write the PEM private key")
    keygen_parser.add_argument(
        "--organization",
        "-o",
        default=None,
        help="Also print a fresh mip_identifier for this organization name",
    )
    keygen_parser.add_argument("--force", "-f", action="store_true", help="Overwrite an existing file")

    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "identity":
        return cmd_identity(args)
    elif args.command == "keygen":
        return cmd_keygen(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
