"""
Console entry point.

Loads configuration, configures logging, signs in and runs one command.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from .chat import ChatState, Disabled, Failed, Streaming
from .config import load_config
from .console import ConsoleApp
from .directory import SCOPE_FILTERS
from .errors import ConsoleError


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(level)
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


# --- Commands ---

async def _whoami(app: ConsoleApp, args: argparse.Namespace) -> None:
    session = app.session
    context = app.context
    print(f"{session.email} ({session.user_id})")
    if context is None:
        print("No active organization")
        return
    print(f"Organization: {context.organization_id}")
    print(f"Role: {context.role.value}")
    for item in context.navigation:
        print(f"  {item.name:<20} {item.href}")


async def _orgs(app: ConsoleApp, args: argparse.Namespace) -> None:
    choices = await app.resolver.organization_choices()
    for org in choices.organizations:
        marker = "*" if org.id == choices.active_organization_id else " "
        print(f"{marker} {org.id}  {org.name}")
    if choices.needs_selection:
        print("Select an organization with: switch ORG_ID")


async def _switch(app: ConsoleApp, args: argparse.Namespace) -> None:
    context = await app.resolver.switch_tenant(args.organization_id)
    print(f"Switched to {context.organization_id} as {context.role.value}")


async def _upgrade(app: ConsoleApp, args: argparse.Namespace) -> None:
    url = await app.upgrade()
    print(f"Complete checkout at: {url}")


async def _links(app: ConsoleApp, args: argparse.Namespace) -> None:
    branding = await app.directory.branding()
    if branding.settings:
        print(branding.settings.site_name)
    for link in await app.directory.links(args.scope):
        print(f"[{link.scope.value}] {link.name}: {link.url}")


async def _chat(app: ConsoleApp, args: argparse.Namespace) -> None:
    access = await app.resolver.check_access()
    if not access.granted:
        print(f"Chat unavailable: {access.value}")
        return

    printed = 0

    def render(state: ChatState) -> None:
        nonlocal printed
        if isinstance(state, Streaming):
            print(state.partial[printed:], end="", flush=True)
            printed = len(state.partial)
        elif isinstance(state, (Failed, Disabled)):
            print(f"\n[{state.message}]")

    app.chat.on_update(render)
    for message in app.chat.transcript:
        print(f"{message.role.value}> {message.content}")
    if app.chat.config:
        print(f"({app.chat.config.disclaimer_message})")

    while True:
        try:
            line = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break
        if line.strip() in ("/quit", "/exit"):
            break
        printed = 0
        try:
            reply = await app.chat.submit(line)
        except ConsoleError as exc:
            print(f"[{exc.message}]")
            continue
        if reply is not None:
            usage = app.chat.token_usage()
            limit = f"/{usage.limit}" if usage.limit else ""
            print(f"\n({usage.used}{limit} tokens)")


_COMMANDS = {
    "whoami": _whoami,
    "orgs": _orgs,
    "switch": _switch,
    "chat": _chat,
    "upgrade": _upgrade,
    "links": _links,
}


async def _run_command(app: ConsoleApp, args: argparse.Namespace) -> None:
    async with app:
        await _COMMANDS[args.command](app, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-tenant SaaS console")
    parser.add_argument(
        "-c", "--config",
        default="console.yaml",
        help="Path to configuration file (default: console.yaml)",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("whoami", help="Show the signed-in user and active organization")
    commands.add_parser("orgs", help="List organizations you can switch to")
    switch = commands.add_parser("switch", help="Make an organization active")
    switch.add_argument("organization_id")
    commands.add_parser("chat", help="Chat with the organization's AI assistant")
    commands.add_parser("upgrade", help="Start a subscription checkout")
    links = commands.add_parser("links", help="List directory links")
    links.add_argument("--scope", choices=SCOPE_FILTERS, default="all")
    return parser


def run() -> None:
    """CLI entry point for the console."""
    args = build_parser().parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info("console.config_loaded", config_path=args.config, command=args.command)

    app = ConsoleApp(config)
    try:
        asyncio.run(_run_command(app, args))
    except ConsoleError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
