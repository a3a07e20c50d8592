"""Command-line launcher for the three HTTP services.

    python -m antigravity_bot orchestrator --port 8000
    python -m antigravity_bot technical_analyzer --port 8001
    python -m antigravity_bot master_ai_agent --port 8002
"""
import argparse
from typing import List, Optional

import uvicorn

from .logging_config import setup_logger

logger = setup_logger("cli")

SERVICES = {
    "orchestrator": "antigravity_bot.orchestrator.main:app",
    "technical_analyzer": "antigravity_bot.agents.technical_analyzer.main:app",
    "master_ai_agent": "antigravity_bot.agents.master_ai_agent.main:app",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="antigravity-bot", description="Paper-trading agent services")
    parser.add_argument("service", choices=sorted(SERVICES), help="service to run")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logger.info(f"Starting {args.service} on {args.host}:{args.port}")
    uvicorn.run(SERVICES[args.service], host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
