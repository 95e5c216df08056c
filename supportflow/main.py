"""CLI entry point for SupportFlow.

Two commands:

* ``chat``     terminal chat against the agent, printing progress events
* ``cleanup``  delete conversation threads inactive for N days (cron job)

For production traffic use the FastAPI server (supportflow/server.py).

Usage:
    python -m supportflow.main chat            # normal mode (quiet)
    python -m supportflow.main --debug chat    # debug mode (shows API calls)
    python -m supportflow.main cleanup --days 30
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("supportflow").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat(user_id: str | None) -> None:
    from supportflow import config
    from supportflow.events import AnswerChunkEvent, CompleteEvent, ErrorEvent, StatusEvent, ToolStartEvent
    from supportflow.memory import generate_thread_id
    from supportflow.runtime import open_runtime

    runtime = await open_runtime()
    thread_id = generate_thread_id()
    logger.info("Started new thread: %s", thread_id)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye! Have a great day!")
                break
            if user_input.lower() == "new":
                thread_id = generate_thread_id()
                print(f"\n>> New conversation started: {thread_id[:8]}...\n")
                continue

            await runtime.memory.get_or_create_thread(thread_id, user_id)
            history = await runtime.memory.get_history(thread_id, limit=config.HISTORY_LIMIT)
            await runtime.memory.add_message(thread_id, "user", user_input)

            print("\nAssistant: ", end="", flush=True)
            async for event in runtime.agent.stream(user_input, history, thread_id, user_id):
                if isinstance(event, StatusEvent | ToolStartEvent):
                    logger.info("%s", event.message)
                elif isinstance(event, AnswerChunkEvent):
                    print(event.content, end="", flush=True)
                elif isinstance(event, CompleteEvent):
                    await runtime.memory.add_message(
                        thread_id, "assistant", event.answer,
                        tools_used=event.tools_used or [], sources=event.sources,
                    )
                    print("\n")
                elif isinstance(event, ErrorEvent):
                    print(f"I'm sorry, something went wrong: {event.message}")
                    print("     Please try again or type 'new' to start a fresh conversation.\n")
    finally:
        await runtime.aclose()


async def _cleanup(days: int) -> int:
    from supportflow.runtime import open_runtime

    runtime = await open_runtime()
    try:
        return await runtime.memory.cleanup_old_threads(days_old=days)
    finally:
        await runtime.aclose()


def main():
    """Parse arguments and run the selected command."""
    parser = argparse.ArgumentParser(description="SupportFlow customer support agent")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    chat = commands.add_parser("chat", help="Chat with the agent in the terminal")
    chat.add_argument("--user", default=None, help="Act as this signed-in customer id")

    cleanup = commands.add_parser("cleanup", help="Delete inactive conversation threads")
    cleanup.add_argument("--days", type=int, default=None, help="Inactivity threshold in days")

    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.command == "chat":
        print("\n" + "=" * 60)
        print("  ShopHub Support - CLI Chat")
        print("=" * 60)
        print("  Type your message and press Enter.")
        print("  Commands: 'quit' to exit, 'new' for a new conversation.")
        print("=" * 60 + "\n")
        asyncio.run(_chat(args.user))
    else:
        from supportflow.config import THREAD_MAX_AGE_DAYS

        if args.days is not None and args.days < 0:
            parser.error("--days must not be negative")
        days = args.days if args.days is not None else THREAD_MAX_AGE_DAYS
        deleted = asyncio.run(_cleanup(days))
        print(f"Deleted {deleted} inactive thread(s).")


if __name__ == "__main__":
    main()
