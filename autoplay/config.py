"""
Configuration loading and wiring.

Settings come from the packaged config.toml, an optional user TOML file
merged over it, and environment variables (a .env file in the working
directory is loaded first):
    AUTOPLAY_SERVER_URL: Base URL of the network distribution server
    AUTOPLAY_ENGINE: Engine command to run for self-play
    COMPUTER_NAME: Optional hostname recorded in PGN headers
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

try:
    import tomllib
except ImportError:
    import tomli as tomllib

from autoplay.artifacts import ArtifactSynchronizer
from autoplay.constants import (
    CLIENT_VERSION,
    DEFAULT_GAMES_PER_DEVICE,
    DEFAULT_RESIGN_PERCENT,
    DEFAULT_SERVER_URL,
    NO_RESIGN_PROBABILITY,
)
from autoplay.game import EngineOptions
from autoplay.production import Production
from autoplay.transport import APIClient, ResultUploader
from autoplay.worker import ResignPolicy


DEFAULT_CONFIG_FILE = Path(__file__).parent / 'config.toml'


def merge_config(base: dict, override: dict) -> dict:
    """Recursively merge `override` into a copy of `base`."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Path] = None) -> dict:
    """Load the default configuration, merged with `path` and the environment."""
    load_dotenv(Path.cwd() / '.env')

    with open(DEFAULT_CONFIG_FILE, 'rb') as f:
        config = tomllib.load(f)

    if path:
        with open(path, 'rb') as f:
            config = merge_config(config, tomllib.load(f))

    if os.environ.get('AUTOPLAY_SERVER_URL'):
        config.setdefault('server', {})['url'] = os.environ['AUTOPLAY_SERVER_URL']
    if os.environ.get('AUTOPLAY_ENGINE'):
        config.setdefault('engine', {})['command'] = os.environ['AUTOPLAY_ENGINE']
    return config


def build_engine_options(config: dict) -> EngineOptions:
    engine = config.get('engine', {})
    production = config.get('production', {})
    return EngineOptions(
        command=engine['command'],
        uci_options=dict(engine.get('uci_options', {})),
        weights_option=engine.get('weights_option', 'WeightsFile'),
        device_option=engine.get('device_option') or None,
        device_value=engine.get('device_value', 'gpu={device}'),
        nodes=engine.get('nodes') or None,
        time_per_move=engine.get('time_per_move') or None,
        min_version=tuple(engine.get('min_version', (0, 0, 0))),
        max_plies=engine.get('max_plies', 450),
        results_dir=Path(production.get('results_dir', 'results')),
    )


def build_production(config: dict) -> Production:
    """Wire the transport, synchronizer and uploader into a Production pool."""
    server = config.get('server', {})
    production = config.get('production', {})
    client_version = config.get('client', {}).get('version', CLIENT_VERSION)

    api = APIClient(server.get('url', DEFAULT_SERVER_URL), timeout=server.get('timeout', 30))
    synchronizer = ArtifactSynchronizer(
        api, client_version, Path(production.get('networks_dir', 'networks'))
    )
    uploader = ResultUploader(
        api,
        Path(production.get('results_dir', 'results')),
        keep_path=production.get('keep_path') or None,
        debug_path=production.get('debug_path') or None,
    )
    resign_policy = ResignPolicy(
        no_resign_probability=production.get('no_resign_probability', NO_RESIGN_PROBABILITY),
        resign_percent=production.get('resign_percent', DEFAULT_RESIGN_PERCENT),
    )
    return Production(
        synchronizer,
        uploader,
        build_engine_options(config),
        client_version,
        games_per_device=production.get('games_per_device', DEFAULT_GAMES_PER_DEVICE),
        devices=[str(d) for d in production.get('devices', [])],
        resign_policy=resign_policy,
    )
