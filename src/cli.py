#!/usr/bin/env python3
"""CLI entry point for the delivery server.

Commands:
- start:  run the server in the foreground until Ctrl+C / SIGTERM
- status: check the configured listeners
- check:  validate the configuration file
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import requests
import urllib3

from config import ConfigError, SSLPaths, load_config
from delivery import __version__
from delivery.httpd import Server

# Probing a self-signed listener is expected
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
CHECK_TIMEOUT = 5.0


def _add_common_args(parser: argparse.ArgumentParser):
    """Add arguments shared by all commands."""
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to delivery.yaml (default: $DELIVERY_CONFIG or ./delivery.yaml)",
    )
    parser.add_argument(
        "--host", "-H",
        help="Address to bind to (overrides config)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="HTTP port (overrides config)",
    )
    parser.add_argument(
        "--https-port",
        type=int,
        help="HTTPS port (overrides config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )


def _configure_logging(verbose: bool, log_file: Path | None = None):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger().addHandler(handler)


def _load(args):
    """Load config and apply command-line overrides.

    Raises:
        ConfigError: On missing or invalid configuration
    """
    config = load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.ports.http = args.port
    if args.https_port is not None:
        config.ports.https = args.https_port
    if getattr(args, "root", None):
        config.root = args.root.resolve()
    if getattr(args, "cert", None) or getattr(args, "key", None):
        if not (args.cert and args.key):
            raise ConfigError("--cert and --key must be given together")
        config.ssl = SSLPaths(key=args.key, cert=args.cert)
    if getattr(args, "dev", False):
        config.dev = True
    if getattr(args, "gzip", False):
        config.gzip = True
    return config


def _handle_start(argv):
    """Handle 'start': run the server in the foreground."""
    parser = argparse.ArgumentParser(
        prog="delivery start",
        description="Start the delivery server (foreground)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    parser.add_argument("--root", type=Path, help="Document root (overrides config)")
    parser.add_argument("--cert", type=Path, help="Path to TLS certificate (enables HTTPS)")
    parser.add_argument("--key", type=Path, help="Path to TLS private key")
    parser.add_argument("--dev", action="store_true", help="Development mode (source map hints)")
    parser.add_argument("--gzip", action="store_true", help="Negotiate gzip/deflate responses")
    parser.add_argument("--log", type=Path, help="Also write logs to this file")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.log)

    try:
        config = _load(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    server = Server(config)
    if not server.start():
        logger.error("Failed to start server")
        return 1

    print("\nPress Ctrl+C to stop...")
    server.serve_forever()
    return 0


def check_url(url: str, timeout: float = CHECK_TIMEOUT) -> tuple[bool, str]:
    """Check that a listener answers HTTP.

    Any HTTP status counts as up; only transport failures count as down.

    Returns:
        (success, message) tuple
    """
    try:
        resp = requests.head(url, verify=False, timeout=timeout, allow_redirects=False)
        return True, f"{url} answered {resp.status_code}"
    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {url}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {url}"
    except requests.exceptions.RequestException as e:
        return False, f"Error probing {url}: {e}"


def _handle_status(argv):
    """Handle 'status': check configured listeners."""
    parser = argparse.ArgumentParser(
        prog="delivery status",
        description="Check whether the configured listeners answer",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = _load(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    targets = {"http": f"http://{config.host}:{config.ports.http}/"}
    if config.ssl is not None:
        targets["https"] = f"https://{config.host}:{config.ports.https}/"

    results = {}
    for name, url in targets.items():
        up, message = check_url(url)
        results[name] = {"url": url, "up": up, "message": message}

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        for name, result in results.items():
            state = "up" if result["up"] else "down"
            print(f"{name}: {state} ({result['message']})")

    # Exit codes: 0 = all up, 1 = none up, 2 = partially up
    up_count = sum(1 for r in results.values() if r["up"])
    if up_count == len(results):
        return 0
    if up_count == 0:
        return 1
    return 2


def _handle_check(argv):
    """Handle 'check': validate the configuration."""
    parser = argparse.ArgumentParser(
        prog="delivery check",
        description="Validate the configuration file",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)

    try:
        config = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    problems = []
    if not config.root.is_dir():
        problems.append(f"Document root does not exist: {config.root}")
    if config.ssl is not None:
        for label, path in (("key", config.ssl.key), ("cert", config.ssl.cert)):
            if not Path(path).is_file():
                problems.append(f"TLS {label} not found: {path}")

    print(f"http  -> {config.host}:{config.ports.http}")
    if config.ssl is not None:
        print(f"https -> {config.host}:{config.ports.https}")
    print(f"root  -> {config.root}")
    print(f"extensions: {', '.join(sorted(config.extensions))}")

    for problem in problems:
        print(f"Warning: {problem}", file=sys.stderr)
    return 1 if problems else 0


def main(argv=None):
    """CLI entry point.

    Dispatches to start/status/check subcommands.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "start": _handle_start,
        "status": _handle_status,
        "check": _handle_check,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: delivery <command> [options]")
        print()
        print("Commands:")
        print("  start    Run the server in the foreground")
        print("  status   Check the configured listeners")
        print("  check    Validate the configuration file")
        print()
        print("Run 'delivery <command> --help' for command-specific options.")
        return 0

    if argv[0] == "--version":
        print(f"delivery {__version__}")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
