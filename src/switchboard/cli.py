"""CLI entry point for switchboard."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from typing import Any, cast

from switchboard import __version__
from switchboard.agent.models import AgentMessage, AgentMessageType, AgentRequest, ModelConfig, RequestPhase
from switchboard.config import Config, load_config
from switchboard.server.runner import run_server


def _print_plan(message: AgentMessage) -> None:
    plan = message.plan
    if plan is None:
        return
    print(f"\nPlan {plan.id}: {plan.goal}")
    for i, step in enumerate(plan.steps, 1):
        print(f"  {i}. {step.description}")
    if plan.notes:
        print(f"  Notes: {plan.notes}")


async def _render(messages: AsyncIterator[AgentMessage]) -> tuple[AgentMessage | None, bool]:
    """Print a message stream. Returns the last plan message and whether it ended in error."""
    plan_message: AgentMessage | None = None
    failed = False
    async for message in messages:
        if message.type == AgentMessageType.TEXT and message.content:
            print(message.content)
        elif message.type == AgentMessageType.TOOL_USE:
            print(f"[tool] {message.name}")
        elif message.type == AgentMessageType.TOOL_RESULT and message.is_error:
            print(f"[tool error] {(message.output or '')[:200]}", file=sys.stderr)
        elif message.type == AgentMessageType.DIRECT_ANSWER and message.content:
            print(message.content)
        elif message.type == AgentMessageType.PLAN:
            plan_message = message
            _print_plan(message)
        elif message.type == AgentMessageType.RESULT and message.cost is not None:
            print(f"[result] {message.content} (cost ${message.cost:.4f})")
        elif message.type == AgentMessageType.ERROR:
            print(f"Error: {message.message}", file=sys.stderr)
            failed = True
    return plan_message, failed


def _confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


async def _run_local(args: argparse.Namespace, config: Config) -> int:
    from switchboard.agent.factory import register_builtin_agent_providers
    from switchboard.agent.registry import AgentRegistry
    from switchboard.orchestration.service import AgentService

    registry = AgentRegistry()
    register_builtin_agent_providers(registry)
    service = AgentService(registry, config=config)
    model_config = ModelConfig(model=args.model) if args.model else None
    base = AgentRequest(
        prompt=cast(str, args.prompt),
        provider=args.provider,
        work_dir=args.work_dir,
        model_config_=model_config,
    )
    try:
        if not args.plan:
            _, failed = await _render(service.stream(base))
            return 1 if failed else 0

        plan_message, failed = await _render(
            service.stream(base.model_copy(update={"phase": RequestPhase.PLAN}))
        )
        if failed or plan_message is None or plan_message.plan is None:
            return 1 if failed else 0
        if not args.yes and not _confirm("\nExecute this plan? [y/N] "):
            print("Plan not executed.")
            return 0
        execute = base.model_copy(
            update={
                "phase": RequestPhase.EXECUTE,
                "plan_id": plan_message.plan.id,
                "session_id": plan_message.session_id,
            }
        )
        _, failed = await _render(service.stream(execute))
        return 1 if failed else 0
    finally:
        await service.shutdown()
        await registry.stop_all()


async def _run_remote(args: argparse.Namespace) -> int:
    from switchboard.client import AgentClient

    fields: dict[str, Any] = {}
    if args.provider:
        fields["provider"] = args.provider
    if args.model:
        fields["modelConfig"] = {"model": args.model}
    if args.work_dir:
        fields["workDir"] = args.work_dir

    async with AgentClient(args.url) as client:
        if not args.plan:
            _, failed = await _render(client.run(args.prompt, **fields))
            return 1 if failed else 0

        plan_message, failed = await _render(client.plan(args.prompt, **fields))
        if failed or plan_message is None or plan_message.plan is None:
            return 1 if failed else 0
        if not args.yes and not _confirm("\nExecute this plan? [y/N] "):
            print("Plan not executed.")
            return 0
        if plan_message.session_id:
            fields["sessionId"] = plan_message.session_id
        _, failed = await _render(client.execute(plan_message.plan.id, args.prompt, **fields))
        return 1 if failed else 0


def _cmd_run(args: argparse.Namespace) -> None:
    config = load_config()
    if args.url:
        code = asyncio.run(_run_remote(args))
    else:
        code = asyncio.run(_run_local(args, config))
    if code:
        sys.exit(code)


def _cmd_serve(args: argparse.Namespace) -> None:
    config = load_config()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    run_server(config, log_level="debug" if args.verbose else "info")


async def _list_providers() -> list[tuple[str, str, bool, bool]]:
    from switchboard.agent.factory import register_builtin_agent_providers
    from switchboard.agent.registry import AgentRegistry

    registry = AgentRegistry()
    register_builtin_agent_providers(registry)
    rows = []
    for metadata in registry.get_all_metadata():
        agent = registry.create(metadata.type)
        rows.append((metadata.type, metadata.name, metadata.supports_plan, await agent.is_available()))
    return rows


def _cmd_providers(_args: argparse.Namespace) -> None:
    default = load_config().default_provider
    for provider_type, name, supports_plan, available in asyncio.run(_list_providers()):
        marker = "*" if provider_type == default else " "
        status = "available" if available else "not installed"
        planning = "plan" if supports_plan else "-"
        print(f"{marker} {provider_type:<10} {name:<16} {planning:<5} {status}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="switchboard",
        description="Drive interchangeable AI agent backends through one plan/execute API",
    )
    _ = parser.add_argument(
        "-V", "--version", action="version", version=f"switchboard {__version__}"
    )
    _ = parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # serve subcommand
    serve_p = subparsers.add_parser("serve", help="Start the HTTP API server")
    _ = serve_p.add_argument("--host", default=None, help="Bind address")
    _ = serve_p.add_argument("--port", type=int, default=None, help="Port to listen on")

    # providers subcommand
    _ = subparsers.add_parser("providers", help="List registered agent providers")

    # run subcommand
    run_p = subparsers.add_parser("run", help="Run a prompt through an agent")
    _ = run_p.add_argument("prompt", help="Prompt text")
    _ = run_p.add_argument("--provider", default=None, help="Agent provider (default from config)")
    _ = run_p.add_argument("--model", default=None, help="Model override")
    _ = run_p.add_argument(
        "--plan", action="store_true", help="Plan first and confirm before executing"
    )
    _ = run_p.add_argument(
        "-y", "--yes", action="store_true", help="Execute the plan without confirmation"
    )
    _ = run_p.add_argument(
        "--url", default=None, help="Use a running server instead of an in-process agent"
    )
    _ = run_p.add_argument("--work-dir", dest="work_dir", default=None, help="Working directory")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handlers = {
        "serve": _cmd_serve,
        "providers": _cmd_providers,
        "run": _cmd_run,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)
    handler(args)
