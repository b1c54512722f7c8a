from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from agent_factory.config import load_app_config, load_connection_descriptors
from agent_factory.core.agent import AgentDescriptor, AgentFactory, ToolAgent
from agent_factory.core.prompts import PromptManager
from agent_factory.core.resolver import ToolNameResolver
from agent_factory.core.router import ModelClientRouter, build_handler_chain
from agent_factory.errors import AgentFactoryError
from agent_factory.models import HANDLER_TYPES
from agent_factory.tools.base import ToolSourceRegistry
from agent_factory.tools.builtin import build_local_table
from agent_factory.tools.local import LocalToolSource
from agent_factory.tools.remote import (
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    RemoteConnectionManager,
)


# --------------------------------------------------------------------------------------
# Router / tool registry builders
# --------------------------------------------------------------------------------------


def build_router(cfg: Dict[str, Any]) -> ModelClientRouter:
    """
    Build the model client router from the `providers` section.

    Raises:
        NoHandlersConfiguredError: If no provider survives configuration.
    """
    handlers = build_handler_chain(cfg, HANDLER_TYPES)
    return ModelClientRouter(handlers)


def build_tool_registry(
    cfg: Dict[str, Any],
) -> Tuple[ToolSourceRegistry, Optional[RemoteConnectionManager]]:
    """
    Build the tool source registry from config.

    Local tools are registered first, so bare tool names prefer them over
    MCP tools. MCP connections are brought up eagerly; the caller owns
    the returned manager and must close it on shutdown.
    """
    tools_cfg = cfg.get("tools") or {}
    registry = ToolSourceRegistry()

    if tools_cfg.get("enable_local", True):
        table = build_local_table(tools_cfg.get("local") or {})
        registry.register_source(LocalToolSource(table))

    manager: Optional[RemoteConnectionManager] = None
    descriptors = load_connection_descriptors(cfg)
    if tools_cfg.get("enable_mcp", True) and descriptors:
        manager = RemoteConnectionManager(
            descriptors,
            connect_timeout=tools_cfg.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT),
            call_timeout=tools_cfg.get("call_timeout", DEFAULT_CALL_TIMEOUT),
        )
        manager.initialize()
        registry.register_source(manager)

    return registry, manager


# --------------------------------------------------------------------------------------
# Commands
# --------------------------------------------------------------------------------------


def show_providers(router: ModelClientRouter, model_name: Optional[str]) -> None:
    print("Provider chain:")
    for idx, handler in enumerate(router.handlers, start=1):
        print(f"  {idx}. {handler.name} ({type(handler).__name__})")
    if model_name:
        candidates = router.candidates(model_name)
        print(f"\nHandlers accepting '{model_name}': {', '.join(candidates) or '(none)'}")


def show_tools(registry: ToolSourceRegistry, manager: Optional[RemoteConnectionManager]) -> None:
    for source in registry.sources:
        if source is manager:
            continue
        tools = source.list_tools()
        print(f"[{source.name}] {len(tools)} tool(s)")
        for tool in tools:
            print(f"  - {tool.name}: {tool.description}")

    if manager is None:
        print("[mcp] no servers configured")
        return

    for conn in manager.list_connections():
        line = f"[mcp:{conn.name}] {conn.transport_kind.value}, {conn.state.value}"
        if conn.error:
            line += f" ({conn.error})"
        print(line)
        global_tools = manager.global_tools()
        for tool in manager.list_tools_for_connection(conn.name):
            owner = global_tools.get(tool.name)
            shadowed = "" if owner is tool else f" (shadowed by {owner.source_id})" if owner else ""
            print(f"  - {tool.name}{shadowed}: {tool.description}")


def interactive_chat(runner: ToolAgent) -> None:
    """
    Simple terminal chat loop over a loaded agent.

    The session keeps running until:
      - user types /exit or /quit
      - or presses Ctrl+C.
    """
    agent = runner.agent
    print(f"\n[Interactive chat with '{agent.descriptor.name}']")
    print("Handler:", agent.handler_name)
    print("Model  :", agent.client.model)
    print("Tools  :", ", ".join(t.name for t in agent.tools) or "(none)")
    print("Type /exit or press Ctrl+C to end the session.\n")

    while True:
        try:
            user_input = input("You> ").strip()
            if not user_input:
                continue
            if user_input.lower() in {"/exit", "/quit"}:
                print("Bye")
                break
            print("Assistant> ", runner.run_task(user_input))
        except KeyboardInterrupt:
            print("\n[Session interrupted by user, exiting chat]")
            break
        except AgentFactoryError as exc:
            print(f"Error: {exc}")


# --------------------------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------------------------


def _split_tokens(values: List[str]) -> List[str]:
    tokens: List[str] = []
    for value in values:
        tokens.extend(part.strip() for part in value.split(",") if part.strip())
    return tokens


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve agent definitions into a model client and tools from local and MCP sources."
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to config.yaml file.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    providers_parser = subparsers.add_parser("providers", help="Show the provider chain.")
    providers_parser.add_argument("--model", help="Show which handlers accept this model.")

    subparsers.add_parser("tools", help="List local tools and MCP connections.")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve tool tokens.")
    resolve_parser.add_argument("tokens", nargs="+", help="Tool tokens, e.g. '*', 'local/*', 'github/search'.")

    for command, help_text in (("run", "Run a single task."), ("chat", "Interactive chat session.")):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--name", default="cli-agent", help="Agent name.")
        sub.add_argument("--model", required=True, help="Model name routed through the provider chain.")
        sub.add_argument(
            "--tools",
            action="append",
            default=[],
            help="Tool tokens (repeatable or comma separated).",
        )
        sub.add_argument("--instructions", default="", help="Agent instructions.")
        sub.add_argument(
            "--max-steps",
            type=int,
            default=4,
            help="Maximum tool-calling steps for the agent.",
        )
        if command == "run":
            sub.add_argument("task", help="Task description for the agent.")

    return parser.parse_args(argv)


def main() -> None:
    # Load environment variables from .env (if present)
    load_dotenv()

    args = parse_args(sys.argv[1:])
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_app_config(args.config)

    if args.command == "providers":
        show_providers(build_router(config), args.model)
        return

    registry, manager = build_tool_registry(config)
    try:
        if args.command == "tools":
            show_tools(registry, manager)
            return

        if args.command == "resolve":
            tools, unmatched = ToolNameResolver(registry).resolve(args.tokens)
            for tool in tools:
                print(f"{tool.qualified_name}")
            if unmatched:
                print(f"Unmatched: {', '.join(unmatched)}")
            return

        descriptor = AgentDescriptor(
            name=args.name,
            model=args.model,
            tools=_split_tokens(args.tools),
            instructions=args.instructions,
        )
        factory = AgentFactory(
            build_router(config),
            ToolNameResolver(registry),
            require_tool_sources=bool(config.get("require_tool_sources", False)),
        )
        try:
            agent = factory.create(descriptor)
        except AgentFactoryError as exc:
            raise SystemExit(str(exc)) from exc
        if agent.unmatched:
            print(f"Warning: tools not found: {', '.join(agent.unmatched)}")

        runner = ToolAgent(agent, PromptManager(config.get("prompts")), max_steps=args.max_steps)
        if args.command == "chat":
            interactive_chat(runner)
            return
        print(runner.run_task(args.task))
    finally:
        if manager is not None:
            manager.close()


if __name__ == "__main__":
    main()
