"""CLI entry point for chatstream."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from chatstream.api.auth import APIAuth
from chatstream.api.server import start_server
from chatstream.client import ChatClient, ConversationReducer, RequestFailed, search_turns
from chatstream.config import ChatConfig
from chatstream.protocol import Error, StreamEvent, Token

HELP = "Commands: /search <query>, /suggest, /quit. Ctrl-C cancels a reply in progress."


def print_event(event: StreamEvent) -> None:
    if isinstance(event, Token):
        print(event.delta, end="", flush=True)
    elif isinstance(event, Error):
        print(f"\n[error] {event.message} ({event.code})", file=sys.stderr)


def print_search(reducer: ConversationReducer, query: str) -> None:
    matches, _ = search_turns(reducer.turns, query)
    if not matches:
        print("No matches.")
        return
    for match in matches:
        print(f"  [{match.score:>3}] {match.role.value}: {match.snippet}")


def print_suggestions(reducer: ConversationReducer) -> None:
    if not reducer.suggestions:
        print("No suggestions yet.")
        return
    for i, suggestion in enumerate(reducer.suggestions, 1):
        print(f"  {i}. {suggestion.title}: {suggestion.prompt}")


async def run_chat(config: ChatConfig, url: str, model: Optional[str]) -> None:
    """Interactive chat against a running server."""
    token_file = Path(config.api.token_file) if config.api.token_file else None
    token = APIAuth(token_file=token_file, user_id=config.api.user_id).get_token()
    loop = asyncio.get_running_loop()

    async with ChatClient(url, token) as client:
        try:
            conversation_id = await client.create_conversation()
        except RequestFailed as e:
            print(f"Failed to start conversation: {e}", file=sys.stderr)
            return
        reducer = ConversationReducer(conversation_id=conversation_id)
        seen_notifications = 0

        print(f"Connected to {url}. {HELP}\n")

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "> ")).strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not user_input:
                continue
            if user_input in ("/quit", "/exit"):
                break
            if user_input.startswith("/search"):
                print_search(reducer, user_input[len("/search"):])
                continue
            if user_input == "/suggest":
                print_suggestions(reducer)
                continue
            if user_input.isdigit() and 0 < int(user_input) <= len(reducer.suggestions):
                user_input = reducer.suggestions[int(user_input) - 1].prompt
                print(f"> {user_input}")

            reply = asyncio.create_task(client.send(reducer, user_input, on_event=print_event, model=model))
            loop.add_signal_handler(signal.SIGINT, reply.cancel)
            try:
                await reply
            except asyncio.CancelledError:
                pass
            finally:
                loop.remove_signal_handler(signal.SIGINT)
            print()

            for notification in reducer.notifications[seen_notifications:]:
                if notification.level == "error":
                    print(f"[error] {notification.message}", file=sys.stderr)
                else:
                    print(f"[{notification.level}] {notification.message}")
            seen_notifications = len(reducer.notifications)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="chatstream - streaming chat over multiple LLM backends")
    parser.add_argument(
        "command",
        nargs="?",
        default="chat",
        choices=["chat", "serve"],
        help="Command to run: chat (default, interactive client) or serve (start API server)",
    )
    parser.add_argument("--config", help="Path to config file (JSON or YAML)")
    parser.add_argument("--url", help="Server URL for chat (default: from api.bind)")
    parser.add_argument("--model", help="Model id for chat (default: server default)")

    args = parser.parse_args()

    try:
        config = ChatConfig.load(args.config)
    except Exception as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        start_server(config)
    else:
        url = args.url or f"http://{config.api.bind}"
        try:
            asyncio.run(run_chat(config, url, args.model))
        except KeyboardInterrupt:
            print("\nExiting...")
            sys.exit(0)


if __name__ == "__main__":
    main()
