"""Command-line entry point for the mail dispatch coordinator."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import httpx

from mail_dispatch.basket import (
    BasketCache,
    BasketEditor,
    MoveOutcome,
    ReassignmentCoordinator,
    clipboard_text,
)
from mail_dispatch.container import ServiceContainer, build_container
from mail_dispatch.core import (
    AppSettings,
    DispatchError,
    NoticeBoard,
    configure_logging,
    load_app_settings,
)
from mail_dispatch.core.datetime_utils import display_datetime
from mail_dispatch.core.models import CaseInfo, ItemKind
from mail_dispatch.outbox import OutboxMonitor
from mail_dispatch.presence import AccountDirectory, BridgePresenceTracker
from mail_dispatch.transport import ApiClient, DispatchGateway

COMMANDS = [
    "info",
    "baskets",
    "basket",
    "export",
    "move",
    "remove",
    "reset",
    "outbox",
    "retry",
    "complete",
    "cancel",
    "agents",
    "accounts",
]


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Case mail dispatch coordinator")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=COMMANDS,
        help="Operation to execute.",
    )
    parser.add_argument(
        "--case", dest="case_id", type=int, default=None, help="Case id."
    )
    parser.add_argument(
        "--source",
        dest="source_id",
        type=int,
        default=None,
        help="Information source id; for export, limits output to that group.",
    )
    parser.add_argument(
        "--unassigned",
        action="store_true",
        help="For move, clear the item's source instead of setting one.",
    )
    parser.add_argument(
        "--item", dest="item_id", type=int, default=None, help="Item id for move and remove."
    )
    parser.add_argument(
        "--kind",
        choices=[kind.value for kind in ItemKind],
        default=ItemKind.ACTIVITY.value,
        help="Item kind for move and remove (default: activity).",
    )
    parser.add_argument(
        "--message",
        dest="message_id",
        type=int,
        default=None,
        help="Message id for retry, complete and cancel.",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="For accounts, ask the bridge to resync before listing.",
    )
    parser.add_argument(
        "--activate",
        type=int,
        default=None,
        help="For accounts, activate this account id before listing.",
    )
    parser.add_argument(
        "--deactivate",
        type=int,
        default=None,
        help="For accounts, deactivate this account id before listing.",
    )
    return parser


def execute(
    args: argparse.Namespace,
    settings: AppSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Execute the requested CLI command and return the exit status."""
    if args.command == "info":
        print("Mail dispatch coordinator is ready.")
        print(f"Backend: {settings.api.base_url}")
        print(f"Session cookie set: {'yes' if settings.api.session_id else 'no'}")
        print(
            "Agents count as online for "
            f"{settings.presence.online_window_seconds}s after a heartbeat."
        )
        return 0
    try:
        return asyncio.run(_run(args, settings, transport))
    except DispatchError as exc:
        print(f"{args.command} failed: {exc}")
        return 1


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    needs_case = {
        "basket",
        "export",
        "move",
        "remove",
        "reset",
        "outbox",
        "retry",
        "complete",
        "cancel",
    }
    if args.command in needs_case and args.case_id is None:
        parser.error(f"{args.command} requires --case")
    if args.command in {"retry", "complete", "cancel"} and args.message_id is None:
        parser.error(f"{args.command} requires --message")
    if args.command == "move" and (
        args.item_id is None or (args.source_id is None and not args.unassigned)
    ):
        parser.error("move requires --item and either --source or --unassigned")
    if args.command == "remove" and args.item_id is None:
        parser.error("remove requires --item")

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


async def _run(
    args: argparse.Namespace,
    settings: AppSettings,
    transport: httpx.AsyncBaseTransport | None,
) -> int:
    async with ApiClient(settings.api, transport=transport) as client:
        gateway = DispatchGateway(client)
        container = build_container(
            settings,
            basket_backend=gateway,
            reference_backend=gateway,
            outbox_backend=gateway,
            presence_backend=gateway,
            renderer=gateway,
        )
        notices: NoticeBoard = container.resolve("notices")
        command = args.command
        if command == "baskets":
            _show_cases(await gateway.list_cases_with_basket())
        elif command in {"basket", "export", "move", "remove", "reset"}:
            cache: BasketCache = container.resolve("basket_cache")
            cache.update_sources(await gateway.list_sources())
            if command == "basket":
                await _show_basket(cache, args.case_id)
            elif command == "export":
                await _export(gateway, cache, args.case_id, args.source_id)
            elif command == "move":
                return await _move(container, args)
            else:
                return await _edit(container, args)
        elif command in {"outbox", "retry", "complete", "cancel"}:
            monitor: OutboxMonitor = container.resolve("outbox_monitor")
            await monitor.refresh(args.case_id)
            if command != "outbox":
                handler = getattr(monitor, command)
                if not await handler(args.case_id, args.message_id):
                    _print_errors(notices)
                    return 1
            _show_outbox(monitor, args.case_id)
        elif command == "agents":
            tracker: BridgePresenceTracker = container.resolve("presence_tracker")
            await tracker.poll()
            _show_agents(tracker)
        elif command == "accounts":
            directory: AccountDirectory = container.resolve("account_directory")
            await directory.refresh(force_sync=args.sync)
            for account_id, active in (
                (args.activate, True),
                (args.deactivate, False),
            ):
                if account_id is not None and not await directory.set_active(
                    account_id, active
                ):
                    _print_errors(notices)
                    return 1
            _show_accounts(directory)
    return 0


def _show_cases(cases: list[CaseInfo]) -> None:
    if not cases:
        print("No case has items flagged for mail.")
        return
    for case in cases:
        alias = f" - {case.alias}" if case.alias else ""
        print(f"{case.id:>5}  {case.case_number}{alias}")


async def _show_basket(cache: BasketCache, case_id: int) -> None:
    await cache.fetch(case_id)
    groups = cache.groups(case_id)
    if not groups:
        print(f"No items are flagged for mail on case {case_id}.")
        return
    for group in groups:
        source = group.source_id if group.source_id is not None else "-"
        print(f"[{source}] {group.name} ({group.size} item(s))")
        for line in group.export_text.splitlines():
            print(f"    {line}" if line else "")


async def _export(
    gateway: DispatchGateway,
    cache: BasketCache,
    case_id: int,
    source_id: int | None,
) -> None:
    case, _ = await asyncio.gather(gateway.fetch_case(case_id), cache.fetch(case_id))
    groups = cache.groups(case_id)
    if source_id is not None:
        groups = [group for group in groups if group.source_id == source_id]
    if not groups:
        print("Nothing to export.")
        return
    print("\n".join(clipboard_text(case, group) for group in groups), end="")


async def _move(container: ServiceContainer, args: argparse.Namespace) -> int:
    cache: BasketCache = container.resolve("basket_cache")
    kind = ItemKind(args.kind)
    basket = await cache.fetch(args.case_id)
    item = basket.find((kind, args.item_id))
    if item is None:
        print(f"No flagged {kind} {args.item_id} on case {args.case_id}.")
        return 1
    target = None if args.unassigned else args.source_id
    coordinator: ReassignmentCoordinator = container.resolve("reassignment")
    outcome = await coordinator.move_item(
        args.case_id, item.id, kind, item.source_id, target
    )
    if outcome is MoveOutcome.ROLLED_BACK:
        _print_errors(container.resolve("notices"))
        return 1
    await _show_basket(cache, args.case_id)
    return 0


async def _edit(container: ServiceContainer, args: argparse.Namespace) -> int:
    cache: BasketCache = container.resolve("basket_cache")
    editor: BasketEditor = container.resolve("basket_editor")
    await cache.fetch(args.case_id)
    if args.command == "reset":
        done = await editor.reset(args.case_id)
    else:
        done = await editor.remove_item(args.case_id, ItemKind(args.kind), args.item_id)
    if not done:
        _print_errors(container.resolve("notices"))
        return 1
    await _show_basket(cache, args.case_id)
    return 0


def _show_outbox(monitor: OutboxMonitor, case_id: int) -> None:
    messages = monitor.messages(case_id)
    if not messages:
        print(f"No outgoing messages for case {case_id}.")
        return
    header = f"{'ID':>5}  {'Status':<10}  {'Created':<18}  {'Recipient':<28}  Subject"
    print(header)
    print("-" * len(header))
    for message in messages:
        print(
            f"{message.id:>5}  {message.status:<10}  "
            f"{display_datetime(message.created_at):<18}  "
            f"{message.recipient:<28}  {message.subject}"
        )
        if message.error_message:
            print(f"       error: {message.error_message}")
    still_open = len(monitor.open_messages(messages))
    print(f"{still_open} of {len(messages)} message(s) still open.")


def _show_agents(tracker: BridgePresenceTracker) -> None:
    statuses = tracker.statuses()
    if not statuses:
        print("No bridge agents are registered.")
        return
    for status in statuses:
        agent = status.agent
        state = "online" if status.online else "offline"
        print(
            f"{agent.machine_name} ({agent.os_user}): {state}, "
            f"last seen {display_datetime(agent.last_seen_at)}"
        )


def _show_accounts(directory: AccountDirectory) -> None:
    if not directory.accounts:
        print("No sending accounts found.")
        return
    for account in directory.accounts:
        marker = "*" if account.active else " "
        print(
            f"{marker} {account.id:>4}  {account.name:<24}  {account.email:<32}  "
            f"synced {display_datetime(account.last_synced_at)}"
        )


def _print_errors(notices: NoticeBoard) -> None:
    for notice in notices.errors():
        print(f"Error: {notice.text}")


if __name__ == "__main__":
    main()
