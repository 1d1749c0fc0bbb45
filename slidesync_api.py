"""CLI entry-point to launch the SlideSync read-only HTTP API."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app
from cache.store import CacheStore
from core.paths import get_cache_db_path, resolve_working_dir
from core.settings import load_settings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 63944
DEFAULT_CORS = ["http://127.0.0.1:8080", "http://localhost:8080"]


def _resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip() or DEFAULT_HOST
    norm = host.lower()
    if norm in {"localhost", "::1"}:
        return "127.0.0.1"
    if norm.startswith("127."):
        return host
    raise ValueError(
        f"Refusing to bind API server to non-loopback host '{candidate}'. SlideSync only serves on localhost."
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the local SlideSync viewer API.")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Additional allowed CORS origin (repeatable).",
    )
    return parser.parse_args(argv)


def serve(
    store: CacheStore,
    settings: Dict[str, Any],
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    cors: Optional[List[str]] = None,
) -> int:
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}
    try:
        bind_host = _resolve_bind_host(host or api_settings.get("host"))
    except ValueError as exc:
        logging.error("%s", exc)
        return 2
    try:
        bind_port = int(port or api_settings.get("port") or DEFAULT_PORT)
    except (TypeError, ValueError):
        bind_port = DEFAULT_PORT
    origins = list(cors or api_settings.get("cors_origins") or DEFAULT_CORS)

    app = create_app(APIServerConfig(store=store, cors_origins=origins, app_version=API_VERSION))
    print(f"API listening on http://{bind_host}:{bind_port}", flush=True)
    server = uvicorn.Server(
        uvicorn.Config(app, host=bind_host, port=bind_port, log_level="info", access_log=False)
    )
    server.run()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)
    working_dir = resolve_working_dir()
    settings = load_settings(working_dir)
    cache_settings = settings.get("cache") or {}
    store = CacheStore(Path(cache_settings.get("db_path") or get_cache_db_path(working_dir)))
    return serve(store, settings, host=args.host, port=args.port, cors=args.cors)


if __name__ == "__main__":
    sys.exit(main())
