"""Run the signaling relay with uvicorn."""
from __future__ import annotations

import argparse

import uvicorn

from peercall.core.config import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Start the PeerCall signaling relay")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    uvicorn.run("peercall.main:app", host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
