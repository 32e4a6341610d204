"""
Interactive chat loop against the routing engine.

Registers the agents from config/agents.yaml, then routes every line you
type. Streamed replies are printed as chunks arrive.

Usage:
    python scripts/chat_cli.py --user alice --session demo
    python scripts/chat_cli.py --storage sql --log-level DEBUG

Commands inside the loop: /agents, /history, /clear, /quit
"""

import argparse
import sys
import uuid
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from loguru import logger

from agents import AgentResponse, build_orchestrator
from infrastructure import config
from infrastructure.log import setup_logging
from infrastructure.observability import flush
from memory.schemas import format_history


def _print_response(response: AgentResponse) -> None:
    print(f"[{response.metadata.agent_id}] ", end="", flush=True)
    if response.streaming:
        for chunk in response.output:
            print(chunk, end="", flush=True)
        print()
        if response.output.error is not None:
            print(f"(stream interrupted: {response.output.error.message})")
    else:
        print(response.output)
        if response.error:
            logger.warning("Turn failed: {}", response.error)


def main() -> int:
    parser = argparse.ArgumentParser(description="Chat with the agent router")
    parser.add_argument("--user", default="cli-user", help="User id")
    parser.add_argument("--session", default=None, help="Session id (random if omitted)")
    parser.add_argument("--storage", choices=["memory", "sql"], default=None,
                        help="Override storage.backend from param.yaml")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    args = parser.parse_args()

    setup_logging(args.log_level, log_file=config.LOG_FILE)

    try:
        config.validate()
    except ValueError as exc:
        logger.error(str(exc))
        return 1
    config.dump()

    storage = None
    if args.storage == "sql":
        from infrastructure.db.sql_client import test_connection
        from memory.sql_store import SqlChatStorage
        if not test_connection(config.CHAT_DB_URL):
            return 1
        storage = SqlChatStorage(db_url=config.CHAT_DB_URL)
    elif args.storage == "memory":
        from memory.chat_store import InMemoryChatStorage
        storage = InMemoryChatStorage()

    orchestrator = build_orchestrator(storage=storage)
    session_id = args.session or uuid.uuid4().hex[:8]

    print(f"Session {session_id}. Agents: {', '.join(orchestrator.agents)}")
    print("Type /quit to exit.\n")

    try:
        while True:
            try:
                line = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/agents":
                for agent_id, info in orchestrator.get_all_agents().items():
                    print(f"  {agent_id}: {info['description']}")
                continue
            if line == "/history":
                print(format_history(orchestrator.storage.fetch_chat(args.user, session_id)) or "(empty)")
                continue
            if line == "/clear":
                orchestrator.storage.clear(args.user, session_id)
                print("History cleared.")
                continue

            _print_response(orchestrator.route_request(line, args.user, session_id))
    finally:
        flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
