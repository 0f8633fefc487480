#!/usr/bin/env python3
"""Solana token chat assistant CLI."""

import argparse
import asyncio
import json
import logging
import sys

from config.settings import Settings
from orchestrator import ConversationOrchestrator
from retrieval.embeddings import EmbeddingClient
from retrieval.token_catalog import TokenCatalog, index_token_catalog
from retrieval.vector_store import LocalVectorStore
from utils.errors import TurnFailedError
from utils.retry import RetryPolicy


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Solana token chat assistant - market data, memory and strategies in conversation"
    )
    parser.add_argument(
        "--provider",
        type=str,
        choices=["openai", "anthropic"],
        default="openai",
        help="LLM provider (default: openai)"
    )
    parser.add_argument("--model", type=str, help="Override the provider's default model")
    parser.add_argument("--db-path", type=str, default="data/conversations.db", help="SQLite database path")
    parser.add_argument("--user-id", type=str, default="cli-user", help="User the conversation belongs to")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    chat = subparsers.add_parser("chat", help="Interactive conversation")
    chat.add_argument("--conversation-id", "-c", type=str, help="Continue an existing conversation")

    ask = subparsers.add_parser("ask", help="Send a single message")
    ask.add_argument("message", type=str, help="Message to send")
    ask.add_argument("--conversation-id", "-c", type=str, help="Continue an existing conversation")
    ask.add_argument("--json", action="store_true", help="Print the structured data as JSON")

    index = subparsers.add_parser("index-tokens", help="Index the token catalog for token resolution")
    index.add_argument("--csv-path", type=str, help="Token catalog CSV (default: data/tokens.csv)")

    history = subparsers.add_parser("history", help="Show conversations or one conversation's messages")
    history.add_argument("--conversation-id", "-c", type=str, help="Conversation to show")
    history.add_argument("--limit", type=int, default=10, help="Number of conversations to list")

    return parser


def print_turn(result, show_json: bool = False):
    print(f"\nAssistant: {result.assistant_message.text}\n")
    if result.executed_actions:
        summary = ", ".join(f"{a.action_name} ({a.status.value})" for a in result.executed_actions)
        print(f"[actions: {summary}]")
    if show_json and result.structured_data is not None:
        print(json.dumps(result.structured_data, indent=2, default=str))


async def run_chat(orchestrator: ConversationOrchestrator, user_id: str, conversation_id):
    print("Type 'exit' to quit.\n")
    while True:
        text = (await asyncio.to_thread(input, "You: ")).strip()
        if text.lower() in ("exit", "quit"):
            break
        if not text:
            continue

        try:
            result = await orchestrator.handle_message(user_id, conversation_id, text)
        except TurnFailedError as e:
            logging.getLogger(__name__).error(str(e))
            print(f"\nAssistant: {e.user_message}\n")
            continue

        conversation_id = result.conversation.conversation_id
        print_turn(result)
    await orchestrator.aclose()


async def run_ask(orchestrator: ConversationOrchestrator, user_id: str, args) -> int:
    try:
        result = await orchestrator.handle_message(user_id, args.conversation_id, args.message)
    except TurnFailedError as e:
        print(e.user_message, file=sys.stderr)
        return 1
    finally:
        await orchestrator.aclose()

    print(f"Conversation: {result.conversation.conversation_id}")
    print_turn(result, show_json=args.json)
    return 0


async def run_index_tokens(settings: Settings, csv_path) -> int:
    if not settings.openai_api_key:
        print("OPENAI_API_KEY is required to embed the token catalog", file=sys.stderr)
        return 1

    catalog = TokenCatalog.from_csv(csv_path or settings.token_catalog_path)
    if not catalog.tokens:
        print("Token catalog is empty; nothing to index", file=sys.stderr)
        return 1

    embedder = EmbeddingClient(
        openai_api_key=settings.openai_api_key,
        model=settings.embedding_model,
        retry_policy=RetryPolicy(max_attempts=settings.retry_max_attempts, base_delay=settings.retry_base_delay),
    )
    store = LocalVectorStore(embedder, persist_path=settings.vector_store_path)
    count = await index_token_catalog(store, catalog, settings.token_collection)
    print(f"Indexed {count} tokens into '{settings.token_collection}'")
    return 0


async def run_history(orchestrator: ConversationOrchestrator, user_id: str, args) -> int:
    if not args.conversation_id:
        conversations = await orchestrator.list_conversations(user_id, limit=args.limit)
        if not conversations:
            print("No conversations.")
        for conv in conversations:
            print(f"{conv.conversation_id}  {conv.message_count:>4} msgs  {conv.title}")
        return 0

    messages = await orchestrator.get_conversation_history(args.conversation_id, user_id)
    if not messages:
        print("Conversation not found.", file=sys.stderr)
        return 1
    for msg in messages:
        print(f"[{msg.created_at:%Y-%m-%d %H:%M}] {msg.role.upper()}: {msg.text}")
        for invocation in msg.invocations:
            print(f"    -> {invocation.action_name}: {invocation.status.value}")
    return 0


def main():
    """Main CLI entry point."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings(
        llm_provider=args.provider,
        llm_model=args.model,
        db_path=args.db_path,
        verbose=args.verbose,
    )

    try:
        if args.command == "index-tokens":
            sys.exit(asyncio.run(run_index_tokens(settings, args.csv_path)))

        orchestrator = ConversationOrchestrator(settings=settings)
        if args.command == "chat":
            asyncio.run(run_chat(orchestrator, args.user_id, args.conversation_id))
        elif args.command == "ask":
            sys.exit(asyncio.run(run_ask(orchestrator, args.user_id, args)))
        elif args.command == "history":
            sys.exit(asyncio.run(run_history(orchestrator, args.user_id, args)))
    except (KeyboardInterrupt, EOFError):
        print()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
