"""
Development entry point for the relay server.

    python backend/server/main.py --port 8000

Production deployments point uvicorn/gunicorn at server.asgi:app instead.
"""

from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the realtime voice relay")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="dev mode only")
    args = parser.parse_args(argv)

    uvicorn.run(
        "server.asgi:app",
        host=args.host,
        port=args.port,
        log_level="info",
        reload=args.reload,
        app_dir=str(Path(__file__).resolve().parents[1]),
    )


if __name__ == "__main__":
    main()
