from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from rodnya.server.runtime import ServerRuntime

log = logging.getLogger("rodnya.cmd.server")

# environment variable -> config key
ENV_OVERRIDES = {
    "RODNYA_LISTEN": "listen",
    "RODNYA_DB_PATH": "db_path",
    "RODNYA_LOG_LEVEL": "log_level",
}


def load_config(config_path: Optional[Path], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    if config_path is not None:
        config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(config, dict):
            raise SystemExit(f"{config_path}: expected a mapping at top level")
    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            config[key] = env[var]
    return config


async def _run(config: Dict[str, Any]) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Rodnya chat server")
    parser.add_argument("--config", default=None, help="Path to server YAML config")
    parser.add_argument("--listen", default=None, help="host:port (overrides config)")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config) if args.config else None)
    if args.listen:
        config["listen"] = args.listen

    level = str(config.get("log_level", "INFO")).upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
