"""CLI entrypoint for the Pledge Dispute Engine.

Usage:
    pledge-disputes                 # Start the HTTP API with the escalation sweeper
    pledge-disputes --no-sweeper    # Start the API; sweeps only via POST /disputes/process-timeouts
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from pledge_dispute_engine import __version__
from pledge_dispute_engine.config import settings


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    parser = argparse.ArgumentParser(description="Pledge Dispute Engine")
    parser.add_argument(
        "--no-sweeper",
        action="store_true",
        help="Do not run the background escalation-timeout sweeper",
    )
    parser.add_argument(
        "--host",
        default=settings.api_host,
        help=f"API host (default: {settings.api_host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.api_port,
        help=f"API port (default: {settings.api_port})",
    )
    args = parser.parse_args()

    if args.no_sweeper:
        settings.sweeper_enabled = False

    rules = settings.escalation_rules()
    print(f"Pledge Dispute Engine v{__version__}")
    print(
        f"   Voting:     {rules.voting_duration_hours:g}h window, "
        f"quorum {rules.quorum_percent}%, consensus {rules.community_vote_threshold}%"
    )
    print(
        f"   Escalation: after {rules.escalation_timeout_hours:g}h idle, "
        + (
            f"sweep every {settings.sweep_interval_seconds:g}s"
            if settings.sweeper_enabled
            else "sweeper disabled"
        )
    )
    print(f"   Appeals:    {rules.appeal_window_hours:g}h window")
    print(f"   Events:     {settings.notify_webhook_url or 'log only'}")
    print(f"   Listening:  http://{args.host}:{args.port}/disputes")
    print()

    uvicorn.run(
        "pledge_dispute_engine.api:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
