"""
Command line entry point.

    python -m computer_use_agent run "search for cats"
    python -m computer_use_agent serve --port 3000

Create a .env file with your Azure OpenAI credentials before running.
"""
import argparse
import asyncio
import logging

import uvicorn

from .config import AgentConfig
from .models import Message
from .pipeline import run_task
from .runtime import build_runtime
from .server import create_app


async def run_once(task: str, session_id: str = None) -> None:
    runtime = build_runtime(AgentConfig.from_env())
    try:
        result = await run_task(
            runtime.agent,
            runtime.store,
            [Message(role="user", content=task)],
            session_id,
        )
    finally:
        await runtime.shutdown()

    print("\n" + "="*70)
    print(f"Session: {result.session_id}")
    print(f"Status:  {result.status.value} after {result.steps} steps")
    print("="*70)
    print(result.response)


def main() -> None:
    parser = argparse.ArgumentParser(prog="computer_use_agent")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Run one task and print the answer")
    run_parser.add_argument("task")
    run_parser.add_argument("--session-id")

    serve_parser = sub.add_parser("serve", help="Serve the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=3000)

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format='%(message)s')

    if args.command == "run":
        asyncio.run(run_once(args.task, args.session_id))
    else:
        app = create_app(build_runtime(AgentConfig.from_env()))
        uvicorn.run(app, host=args.host, port=args.port)


if __name__ == '__main__':
    main()
