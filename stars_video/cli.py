"""Command-line entry point.

    stars-video serve
    stars-video submit octocat Hello-World --theme light
    stars-video status octocat-Hello-World-1700000000000
"""

import argparse
import asyncio
import json
import logging
import sys

from stars_video.config import settings
from stars_video.errors import PollingError
from stars_video.logging_config import configure_logging
from stars_video.poller import JobStatusPoller

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stars-video", description="GitHub star history videos")
    parser.add_argument("--log-level", default=settings.log_level)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)

    submit = sub.add_parser("submit", help="Submit a repository and wait for its video")
    submit.add_argument("owner")
    submit.add_argument("repo")
    submit.add_argument("--theme", choices=["dark", "light"], default="dark")
    submit.add_argument("--server", default=settings.server_url)
    submit.add_argument("--interval", type=float, default=settings.poll_interval_seconds)
    submit.add_argument("--max-attempts", type=int, default=None)

    status = sub.add_parser("status", help="Print the current record of a job")
    status.add_argument("job_id")
    status.add_argument("--server", default=settings.server_url)

    return parser


async def _submit(args) -> int:
    async with JobStatusPoller(args.server, interval=args.interval, max_attempts=args.max_attempts) as poller:
        job_id = await poller.submit(args.owner, args.repo, theme=args.theme)
        print(f"Job {job_id} submitted")

        def on_update(record):
            print(f"  {record.get('status')}")

        record = await poller.wait(job_id, on_update=on_update)

    if record["status"] == "completed":
        print(f"Video ready: {args.server.rstrip('/')}{record['videoUrl']}")
        return 0
    print(f"Job failed: {record.get('error')}", file=sys.stderr)
    return 1


async def _status(args) -> int:
    async with JobStatusPoller(args.server) as poller:
        record = await poller.fetch(args.job_id)
    print(json.dumps(record, indent=2))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("stars_video.main:app", host=args.host, port=args.port)
        return 0

    handler = _submit if args.command == "submit" else _status
    try:
        return asyncio.run(handler(args))
    except PollingError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
