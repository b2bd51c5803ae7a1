"""
Command-line interface for the self-play production client.
"""

import argparse
import sys
from pathlib import Path

from autoplay.config import build_production, load_config


def apply_args(config: dict, args: argparse.Namespace) -> dict:
    """Override config values with any command line flags that were given."""
    production = config.setdefault('production', {})
    if args.games is not None:
        production['games_per_device'] = args.games
    if args.gpu:
        production['devices'] = args.gpu
    if args.keep_pgn:
        production['keep_path'] = args.keep_pgn
    if args.debug_data:
        production['debug_path'] = args.debug_data
    if args.server_url:
        config.setdefault('server', {})['url'] = args.server_url
    if args.engine:
        config.setdefault('engine', {})['command'] = args.engine
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Self-play production client: plays games with the current best network and uploads them",
    )
    parser.add_argument("--games", "-g", type=int, default=None,
                        help="Number of games to play in parallel per device (default: 1)")
    parser.add_argument("--gpu", "-u", type=str, action="append", metavar="ID",
                        help="Device to use; repeat for multiple devices (default: engine's choice)")
    parser.add_argument("--keep-pgn", "-k", type=str, default=None, metavar="DIR",
                        help="Save a copy of every uploaded PGN in DIR")
    parser.add_argument("--debug-data", "-d", type=str, default=None, metavar="DIR",
                        help="Save a copy of every uploaded training data file in DIR")
    parser.add_argument("--server-url", type=str, default=None,
                        help="Base URL of the network server (or set AUTOPLAY_SERVER_URL)")
    parser.add_argument("--engine", type=str, default=None,
                        help="Engine command (or set AUTOPLAY_ENGINE)")
    parser.add_argument("--config", type=Path, default=None, metavar="FILE",
                        help="TOML file overriding the packaged defaults")
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    config = apply_args(load_config(args.config), args)

    production = build_production(config)

    print(f"\n{'='*60}")
    print("SELF-PLAY PRODUCTION")
    print(f"{'='*60}")
    print(f"Server: {config['server']['url']}")
    print(f"Engine: {config['engine']['command']}")
    print(f"Client version: {production.client_version}")
    print(f"Workers: {production.pool_size}")
    print(f"{'='*60}")

    production.start_games()
    try:
        exit_code = production.wait()
    except KeyboardInterrupt:
        production.shutdown()
        production.join(timeout=30)
        print(f"\nStopped. Total: {production.games_played} games")
        exit_code = 0
    sys.exit(exit_code)
