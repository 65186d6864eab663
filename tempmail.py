#!/usr/bin/env python3
# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# A professional CLI for disposable mail.gw / mail.tm inboxes: create
# mailboxes, log in, list, read and delete messages, and watch one or many
# inboxes in real time without tripping the provider's rate limits.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import argparse
import json
import logging
import os
import platform
import sys
import tempfile
import webbrowser
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape as escape_markup
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.theme import Theme

from account_store import AccountStore, SavedAccount
from mail_api import (
    API_BASES,
    DEFAULT_PROVIDER,
    APIError,
    MailApiClient,
    NetworkError,
    ProviderError,
    RateLimitError,
    generate_credentials,
)
from mailbox_session import MailboxDashboard, MailboxSession, ThrottledLocally
from request_governor import GovernorConfig, RequestGovernor

__version__ = "2.0.0"

# Clear screen function
def clear_screen():
    """Clear the terminal screen based on the operating system."""
    if platform.system() == "Windows":
        os.system("cls")
    else:
        os.system("clear")

# Set up rich console with custom theme
custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "email_from": "bold blue",
    "email_subject": "bold yellow",
    "email_date": "magenta",
    "email_body": "white",
    "header": "bold cyan",
})

console = Console(theme=custom_theme)

# Set up rich logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, console=console)]
)

LOGGER = logging.getLogger("temp-mail-inbox")

##############################################################################
# Configuration and state management
##############################################################################

DEFAULT_CONFIG: Dict[str, Any] = {
    "default_provider": DEFAULT_PROVIDER,
    "refresh_interval": 30,
    "request_timeout": 15,
    "max_history_entries": 50,
    "save_messages": True,
    "display_mode": "rich",
    # Request governor, seconds
    "min_interval": 5,
    "initial_delay": 10,
    "max_delay": 60,
    "max_retry_attempts": 3,
    "jitter": 2,
    "failure_threshold": 3,
}

def get_config_dir() -> Path:
    """Return the configuration directory, honouring TEMPMAIL_CONFIG_DIR."""
    override = os.environ.get("TEMPMAIL_CONFIG_DIR")
    if override:
        return Path(override)
    return Path.home() / ".config" / "tempmail-inbox"

def config_file() -> Path:
    return get_config_dir() / "config.json"

def history_file() -> Path:
    return get_config_dir() / "history.json"

def ensure_config_dir() -> None:
    """Ensure the configuration directory exists."""
    get_config_dir().mkdir(parents=True, exist_ok=True)

def load_config() -> Dict[str, Any]:
    """Load configuration from file merged over the defaults."""
    config = dict(DEFAULT_CONFIG)
    path = config_file()
    if not path.exists():
        return config

    try:
        with open(path, "r") as f:
            config.update(json.load(f))
    except (OSError, ValueError) as e:
        LOGGER.warning(f"Failed to load config: {e}. Using defaults.")
    return config

def save_config(config: Dict[str, Any]) -> None:
    """Save configuration to file."""
    ensure_config_dir()
    try:
        with open(config_file(), "w") as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        LOGGER.error(f"Failed to save config: {e}")

def _load_history() -> List[Dict[str, Any]]:
    path = history_file()
    if not path.exists():
        return []
    try:
        with open(path, "r") as f:
            history = json.load(f)
    except (OSError, ValueError) as e:
        LOGGER.warning(f"Failed to read message history: {e}")
        return []
    return history if isinstance(history, list) else []

def _write_history(history: List[Dict[str, Any]]) -> None:
    ensure_config_dir()
    with open(history_file(), "w") as f:
        json.dump(history, f, indent=2)

def save_message_to_history(provider: str, address: str, message: Dict[str, Any]) -> None:
    """Keep a copy of a message shown for ``address``.

    Entries are keyed by mailbox and message id, so a message shown again
    (re-read, or seen by both ``watch`` and ``read``) replaces its old entry.
    """
    config = load_config()
    if not config.get("save_messages", True):
        return

    entry = {
        "id": message.get("id"),
        "provider": provider,
        "address": address,
        "saved_at": datetime.now().isoformat(),
        "received_at": message.get("createdAt"),
        "from": _format_party(message.get("from")),
        "subject": message.get("subject"),
        "body": message.get("text") or message.get("intro"),
        "attachments": [a.get("filename") for a in message.get("attachments") or []],
    }

    history = _load_history()
    if entry["id"] is not None:
        history = [
            h for h in history
            if not (h.get("id") == entry["id"] and h.get("address") == address)
        ]
    history.append(entry)

    max_entries = config.get("max_history_entries", 50)
    if len(history) > max_entries:
        history = history[-max_entries:]

    try:
        _write_history(history)
    except OSError as e:
        LOGGER.warning(f"Failed to save message to history: {e}")

def get_store() -> AccountStore:
    return AccountStore(get_config_dir())

##############################################################################
# Display helpers
##############################################################################

def _format_timestamp(timestamp: Optional[str]) -> str:
    """Format a timestamp in a human-readable way."""
    if not timestamp:
        return "unknown time"

    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        pass

    for fmt in ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(timestamp, fmt).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            continue

    # If none of the formats match, just return the original
    return timestamp

def _format_party(party: Any) -> str:
    """Render an API ``{name, address}`` pair."""
    if not isinstance(party, dict):
        return str(party) if party else "(unknown)"
    name, address = party.get("name"), party.get("address") or "unknown"
    return f"{name} <{address}>" if name else address

def _print_email_rich(
    provider: str,
    sender: Optional[str],
    subject: Optional[str],
    date_: Optional[str],
    body: Optional[str],
    title: str = "New Email",
) -> None:
    """Print an email using rich formatting."""
    email_info = []
    email_info.append(f"[bold]From:[/] [email_from]{escape_markup(sender or '(unknown)')}[/]")
    email_info.append(f"[bold]Subject:[/] [email_subject]{escape_markup(subject or '(no subject)')}[/]")
    if date_:
        email_info.append(f"[bold]Date:[/] [email_date]{escape_markup(_format_timestamp(date_))}[/]")

    email_header = "\n".join(email_info)

    formatted_body = escape_markup(body.strip()) if body else "(no body)"

    panel = Panel(
        f"{email_header}\n\n{formatted_body}",
        title=f"{escape_markup(title)} \\[{escape_markup(provider)}]",
        title_align="left",
        border_style="cyan"
    )

    console.print(panel)

def _print_email_plain(
    provider: str,
    sender: Optional[str],
    subject: Optional[str],
    date_: Optional[str],
    body: Optional[str],
    title: str = "New Email",
) -> None:
    """Print an email in plain text format."""
    print("─" * 60)
    print(f"[{provider}] {title}")
    print(f"From:    {sender or '(unknown)'}")
    print(f"Subject: {subject or '(no subject)'}")
    if date_:
        print(f"Date:    {_format_timestamp(date_)}")
    print()
    print(body.strip() if body else "(no body)")
    print(flush=True)

def print_email(
    provider: str,
    address: str,
    message: Dict[str, Any],
    title: str = "New Email",
    save: bool = True,
) -> None:
    """Print an email message with the configured display format."""
    config = load_config()
    sender = _format_party(message.get("from"))
    body = message.get("text") or message.get("intro")

    if config.get("display_mode", "rich") == "rich":
        _print_email_rich(provider, sender, message.get("subject"), message.get("createdAt"), body, title)
    else:
        _print_email_plain(provider, sender, message.get("subject"), message.get("createdAt"), body, title)

    if save:
        save_message_to_history(provider, address, message)

def print_notice(level: str, message: str) -> None:
    """Show a non-blocking status line from a polling session."""
    console.print(f"[{level}]{escape_markup(message)}[/]")

def print_inbox(messages: List[Dict[str, Any]], address: str) -> None:
    if not messages:
        console.print(f"[info]No messages for [bold]{escape_markup(address)}[/] yet.[/]")
        return

    table = Table(title=f"Inbox: {escape_markup(address)}", title_style="header")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("", width=1)
    table.add_column("From", style="email_from")
    table.add_column("Subject", style="email_subject")
    table.add_column("Date", style="email_date")

    for m in messages:
        table.add_row(
            escape_markup(m.get("id", "")),
            "" if m.get("seen") else "●",
            escape_markup(_format_party(m.get("from"))),
            escape_markup(m.get("subject") or "(no subject)"),
            escape_markup(_format_timestamp(m.get("createdAt"))),
        )
    console.print(table)

def write_html_document(fragment: str, subject: Optional[str], path: Path) -> Path:
    """Save sanitized message HTML as a standalone page."""
    page = (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        f"<title>{escape(subject or '(no subject)')}</title></head>\n"
        f"<body>\n{fragment}\n</body></html>\n"
    )
    path.write_text(page, encoding="utf-8")
    return path

def print_ascii_banner() -> None:
    """Print the ASCII art banner."""
    clear_screen()

    banner = r"""
 _____                   __  __       _ _   ___       _
|_   _|__ _ __ ___  _ __|  \/  | __ _(_) | |_ _|_ __ | |__   _____  __
  | |/ _ \ '_ ` _ \| '_ \ |\/| |/ _` | | |  | || '_ \| '_ \ / _ \ \/ /
  | |  __/ | | | | | |_) | |  | | (_| | | |  | || | | | |_) | (_) >  <
  |_|\___|_| |_| |_| .__/|_|  |_|\__,_|_|_| |___|_| |_|_.__/ \___/_/\_\
                   |_|
    """
    console.print(banner, style="bold cyan")
    console.print("Developed by [link=https://github.com/zebbern]zebbern[/link]", style="cyan")
    console.print("─" * 80 + "\n")

##############################################################################
# Sessions
##############################################################################

def make_governor(config: Dict[str, Any]) -> RequestGovernor:
    return RequestGovernor(GovernorConfig.from_config(config))

def open_current_session(config: Dict[str, Any], **listeners: Any) -> MailboxSession:
    """Build a session for the logged-in mailbox."""
    auth = get_store().get_auth_state()
    if not auth.is_authenticated:
        raise ProviderError("Not logged in. Run 'tempmail new' or 'tempmail login' first.")

    client = MailApiClient.for_provider(
        auth.provider or config["default_provider"],
        token=auth.token,
        timeout=config.get("request_timeout", 15),
    )
    return MailboxSession(
        client,
        governor=make_governor(config),
        refresh_interval=float(config.get("refresh_interval", 30)),
        address=auth.address,
        **listeners,
    )

def login_and_remember(
    provider: str, address: str, password: str, timeout: int = 15, remember: bool = True
) -> Dict[str, Any]:
    """Log in, make the mailbox current, and keep it in the saved list."""
    client = MailApiClient.for_provider(provider, timeout=timeout)
    data = client.login(address, password)
    account_id = data.get("id") or client.get_me().get("id")

    store = get_store()
    if remember and store.find_account(account_id) is None:
        store.save_account(SavedAccount(id=account_id, address=address, password=password, provider=provider))
    store.set_auth(data["token"], account_id, address, provider)
    return data

##############################################################################
# Commands
##############################################################################

def cmd_new(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """Create a random mailbox and log in to it."""
    provider = args.provider or config["default_provider"]
    client = MailApiClient.for_provider(provider, timeout=config.get("request_timeout", 15))

    with Progress(
        SpinnerColumn(),
        TextColumn(f"[bold cyan]Setting up {provider} account..."),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("setup", total=None)
        domain = client.get_domains()[0]
        address, password = generate_credentials(domain)
        account = client.create_account(address, password)
        store = get_store()
        store.save_account(SavedAccount(id=account["id"], address=address, password=password, provider=provider))
        login_and_remember(provider, address, password, config.get("request_timeout", 15))

    console.print(f"[success]✓[/] Email address ready: [bold]{address}[/]")
    console.print(f"Password: [bold]{password}[/]")

def cmd_login(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    provider = args.provider or config["default_provider"]
    password = args.password or console.input("[bold]Password[/]: ", password=True)
    login_and_remember(provider, args.address, password, config.get("request_timeout", 15))
    console.print(f"[success]✓[/] Logged in as [bold]{args.address}[/]")

def cmd_logout(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    get_store().clear_auth()
    console.print("[info]Logged out.[/]")

def cmd_whoami(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    auth = get_store().get_auth_state()
    if not auth.is_authenticated:
        console.print("[warning]Not logged in.[/]")
        return
    console.print(f"[bold]{auth.address}[/] on [info]{auth.provider}[/] (account {auth.account_id})")

def cmd_accounts(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """List, switch to, or remove saved mailboxes."""
    store = get_store()

    if args.use:
        account = store.find_account(args.use)
        if account is None:
            console.print(f"[error]No saved account matches {args.use}[/]")
            sys.exit(1)
        login_and_remember(account.provider, account.address, account.password, config.get("request_timeout", 15))
        console.print(f"[success]✓[/] Switched to [bold]{account.address}[/]")
        return

    if args.remove:
        account = store.find_account(args.remove)
        if account is None:
            console.print(f"[error]No saved account matches {args.remove}[/]")
            sys.exit(1)
        if args.delete_remote:
            client = MailApiClient.for_provider(account.provider, timeout=config.get("request_timeout", 15))
            client.login(account.address, account.password)
            client.delete_account(account.id)
        store.delete_account(account.id)
        console.print(f"[success]✓[/] Removed [bold]{account.address}[/]")
        return

    accounts = store.get_accounts()
    if not accounts:
        console.print("[warning]No saved accounts. Create one with 'tempmail new'.[/]")
        return

    current = store.get_auth_state().account_id
    table = Table(title="Saved accounts", title_style="header")
    table.add_column("", width=1)
    table.add_column("Address", style="bold")
    table.add_column("Provider", style="info")
    table.add_column("Created", style="email_date")
    table.add_column("ID", style="dim")
    for account in accounts:
        table.add_row(
            "*" if account.id == current else "",
            account.address,
            account.provider,
            _format_timestamp(account.created_at),
            account.id,
        )
    console.print(table)

def cmd_inbox(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    session = open_current_session(config, on_notice=print_notice)
    messages = session.refresh_messages(manual=True) or []
    print_inbox(messages, session.address or "")

def cmd_read(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    session = open_current_session(config, on_notice=print_notice)
    message = session.open_message(args.message_id)
    if message is None:
        console.print(f"[error]{session.error or 'Could not load the message.'}[/]")
        sys.exit(1)

    provider = get_store().get_auth_state().provider or config["default_provider"]
    print_email(provider, session.address or "", message, title="Email")

    for attachment in message.get("attachments") or []:
        size_kb = round((attachment.get("size") or 0) / 1024)
        console.print(f"📎 {escape_markup(str(attachment.get('filename')))} ({size_kb} KB) {escape_markup(attachment.get('downloadUrl', ''))}")

    if args.save or args.open:
        if args.save:
            target = Path(args.save)
        else:
            handle, name = tempfile.mkstemp(prefix="tempmail-", suffix=".html")
            os.close(handle)
            target = Path(name)
        write_html_document(session.rendered_html, message.get("subject"), target)
        console.print(f"[success]Saved sanitized HTML to {target}[/]")
        if args.open:
            webbrowser.open(target.resolve().as_uri())

def cmd_delete(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    session = open_current_session(config)
    if session.delete_message(args.message_id):
        console.print("[success]Email deleted[/]")

def _wait_for_quit(on_enter: Any = None) -> None:
    """Block on the console: Enter triggers ``on_enter``, 'q' returns."""
    while True:
        line = console.input("")
        if line.strip().lower() in ("q", "quit", "exit"):
            return
        if on_enter is not None:
            on_enter()

def cmd_watch(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """Poll the current inbox until the user quits."""
    if args.interval:
        config["refresh_interval"] = args.interval
    provider = get_store().get_auth_state().provider or config["default_provider"]

    def on_update(messages: List[Dict[str, Any]], fresh: List[Dict[str, Any]]) -> None:
        for m in reversed(fresh):
            print_email(provider, session.address or "", m)

    session = open_current_session(config, on_update=on_update, on_notice=print_notice)

    def manual_refresh() -> None:
        try:
            if session.refresh_messages(manual=True) is None:
                console.print("[info]Nothing to do yet; the next check runs on schedule.[/]")
        except ThrottledLocally:
            pass
        except ProviderError as e:
            LOGGER.debug(f"Manual refresh failed: {e}")

    console.print(f"[success]✓[/] Watching [bold]{session.address}[/]")
    console.print(
        f"Polling every [bold]{session.refresh_interval:g}s[/]. "
        "Press [bold]Enter[/] to refresh, [bold]q[/] to stop.\n"
    )

    session.start()
    try:
        _wait_for_quit(manual_refresh)
    finally:
        session.close()
    console.print("[info]Stopped listening; goodbye![/]")

def cmd_dashboard(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """Poll every saved mailbox, each with its own governor."""
    store = get_store()
    if not store.get_accounts():
        console.print("[warning]No saved accounts. Create one with 'tempmail new'.[/]")
        return

    def on_update(account: SavedAccount, messages: List[Dict[str, Any]], fresh: List[Dict[str, Any]]) -> None:
        for m in reversed(fresh):
            print_email(account.provider, account.address, m, title=f"New Email for {account.address}")

    def on_notice(account: SavedAccount, level: str, message: str) -> None:
        print_notice(level, f"{account.address}: {message}")

    dashboard = MailboxDashboard(
        store,
        governor_config=GovernorConfig.from_config(config),
        refresh_interval=float(args.interval or config.get("refresh_interval", 30)),
        on_update=on_update,
        on_notice=on_notice,
    )
    sessions = dashboard.open_all()
    console.print(f"[success]✓[/] Watching [bold]{len(sessions)}[/] mailboxes. Press [bold]q[/] then Enter to stop.\n")
    try:
        _wait_for_quit()
    finally:
        dashboard.close_all()
    console.print("[info]Stopped listening; goodbye![/]")

def cmd_history(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    view_history(args.address, args.id)

def cmd_export(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    export_emails(args.output, args.address)

def cmd_clear_history(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    clear_history(args.address, args.yes)

##############################################################################
# CLI - argument parsing, interactive menu, dispatcher
##############################################################################

def interactive_menu() -> Tuple[str, int]:
    """Display an interactive menu for provider selection."""
    print_ascii_banner()

    config = load_config()
    default_provider = config.get("default_provider", DEFAULT_PROVIDER)
    default_interval = config.get("refresh_interval", 30)

    # Display provider options
    console.print("[header]Choose a temporary email provider:[/]")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="cyan bold")
    table.add_column()

    for idx, name in enumerate(API_BASES, 1):
        default_marker = " [yellow](default)[/]" if name == default_provider else ""
        table.add_row(f"{idx})", f"{name}{default_marker}")

    console.print(table)

    # Get provider selection
    providers_list = list(API_BASES.keys())
    default_index = providers_list.index(default_provider) if default_provider in providers_list else 0

    while True:
        choice = console.input(f"[bold]Provider[/] [1-{len(API_BASES)}] [{default_index + 1}]: ")
        choice = choice.strip() or str(default_index + 1)

        if choice.isdigit() and 1 <= int(choice) <= len(API_BASES):
            provider = providers_list[int(choice) - 1]
            break
        console.print("[warning]Invalid selection. Please enter a number between "
                      f"1 and {len(API_BASES)}.[/]")

    # Get refresh interval
    while True:
        interval_str = console.input(f"[bold]Refresh interval[/] (seconds) [{default_interval}]: ")
        interval_str = interval_str.strip() or str(default_interval)

        if interval_str.isdigit() and int(interval_str) > 0:
            interval = int(interval_str)
            break
        console.print("[warning]Invalid refresh interval. Please enter a positive number.[/]")

    # Save selections as defaults for next time
    config["default_provider"] = provider
    config["refresh_interval"] = interval
    save_config(config)

    return provider, interval

def build_parser(config: Dict[str, Any]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tempmail",
        description="Temp Mail Inbox - A professional CLI for temporary email inboxes."
    )
    parser.add_argument(
        "--display", "-d",
        choices=["rich", "plain"],
        default=config.get("display_mode", "rich"),
        help="Display mode (default: rich).",
    )
    parser.add_argument(
        "--no-save", "-n",
        action="store_true",
        help="Don't save received messages to history.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show debug logging, including throttling decisions.",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"Temp Mail Inbox v{__version__} by zebbern (https://github.com/zebbern)",
    )

    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("new", help="Create a new random mailbox and log in.")
    p.add_argument("--provider", choices=list(API_BASES), help="Mail provider.")
    p.set_defaults(func=cmd_new)

    p = sub.add_parser("login", help="Log in to an existing mailbox.")
    p.add_argument("address")
    p.add_argument("--password", help="Password (prompted when omitted).")
    p.add_argument("--provider", choices=list(API_BASES), help="Mail provider.")
    p.set_defaults(func=cmd_login)

    sub.add_parser("logout", help="Forget the current login.").set_defaults(func=cmd_logout)
    sub.add_parser("whoami", help="Show the current mailbox.").set_defaults(func=cmd_whoami)

    p = sub.add_parser("accounts", help="List, switch or remove saved mailboxes.")
    p.add_argument("--use", metavar="ID_OR_ADDRESS", help="Log in to a saved mailbox.")
    p.add_argument("--remove", metavar="ID_OR_ADDRESS", help="Forget a saved mailbox.")
    p.add_argument("--delete-remote", action="store_true", help="With --remove, also delete it at the provider.")
    p.set_defaults(func=cmd_accounts)

    sub.add_parser("inbox", help="List messages in the current mailbox.").set_defaults(func=cmd_inbox)

    p = sub.add_parser("read", help="Show a message and mark it read.")
    p.add_argument("message_id")
    p.add_argument("--save", metavar="FILE", help="Write the sanitized HTML body to FILE.")
    p.add_argument("--open", action="store_true", help="Open the sanitized HTML body in a browser.")
    p.set_defaults(func=cmd_read)

    p = sub.add_parser("delete", help="Delete a message.")
    p.add_argument("message_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("watch", help="Poll the current mailbox for new messages.")
    p.add_argument("--interval", "-i", type=int, help="Refresh interval in seconds.")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("dashboard", help="Poll every saved mailbox at once.")
    p.add_argument("--interval", "-i", type=int, help="Refresh interval in seconds.")
    p.set_defaults(func=cmd_dashboard)

    p = sub.add_parser("history", help="View saved messages.")
    p.add_argument("--address", help="Only messages saved for this mailbox.")
    p.add_argument("--id", help="Show the saved message with this id.")
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("export", help="Export saved messages to JSON.")
    p.add_argument("output", nargs="?", default="email_export.json")
    p.add_argument("--address", help="Only messages saved for this mailbox.")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("clear-history", help="Delete saved messages.")
    p.add_argument("--address", help="Only messages saved for this mailbox.")
    p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation.")
    p.set_defaults(func=cmd_clear_history)

    return parser

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    config = load_config()
    args = build_parser(config).parse_args(argv)

    # Update config with CLI options
    config["display_mode"] = args.display
    config["save_messages"] = not args.no_save
    save_config(config)

    return args

def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the application."""
    try:
        args = parse_args(argv)

        if args.verbose or os.environ.get("DEBUG"):
            logging.getLogger().setLevel(logging.DEBUG)

        # No sub-command: pick a provider, create a mailbox and watch it
        if not args.command:
            provider, interval = interactive_menu()
            config = load_config()
            cmd_new(argparse.Namespace(provider=provider), config)
            cmd_watch(argparse.Namespace(interval=interval), config)
            return

        args.func(args, load_config())
    except ThrottledLocally as e:
        console.print(f"[warning]{escape_markup(str(e))}[/]")
        sys.exit(1)
    except NetworkError as e:
        LOGGER.error(f"Network error: {e}")
        console.print("[error]Failed to connect to the service. Please check your internet connection.[/]")
        sys.exit(1)
    except RateLimitError as e:
        LOGGER.error(f"Rate limited: {e}")
        console.print("[error]Too many requests. Please wait a few minutes before trying again.[/]")
        sys.exit(1)
    except APIError as e:
        LOGGER.error(f"API error: {e}")
        if e.status == 401:
            console.print("[error]The session has expired. Log in again.[/]")
        else:
            console.print("[error]The service API returned an error. The service might be down or has changed.[/]")
        sys.exit(1)
    except ProviderError as e:
        console.print(f"[error]{escape_markup(str(e))}[/]")
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        console.print("\n[info]Stopped by user. Goodbye![/]")
        sys.exit(0)
    except Exception as e:
        LOGGER.error(f"Unexpected error: {e}")
        console.print(f"[error]An unexpected error occurred: {escape_markup(str(e))}[/]")
        if os.environ.get("DEBUG"):
            console.print_exception()
        sys.exit(1)

##############################################################################
# History
##############################################################################

def _history_for(address: Optional[str]) -> List[Dict[str, Any]]:
    history = _load_history()
    if address:
        history = [h for h in history if h.get("address") == address]
    return history

def view_history(address: Optional[str] = None, message_id: Optional[str] = None) -> None:
    """List saved messages, or show one of them in full."""
    history = _history_for(address)
    if not history:
        console.print("[warning]No saved messages found.[/]")
        return

    if message_id:
        entry = next((h for h in reversed(history) if h.get("id") == message_id), None)
        if entry is None:
            console.print(f"[error]No saved message with id {escape_markup(message_id)}[/]")
            return
        print_email(
            entry.get("provider", "unknown"),
            entry.get("address", ""),
            {
                "id": entry.get("id"),
                "from": entry.get("from"),
                "subject": entry.get("subject"),
                "createdAt": entry.get("received_at"),
                "text": entry.get("body"),
            },
            title=f"Saved Email for {entry.get('address', 'unknown')}",
            save=False,
        )
        return

    table = Table(title=f"Saved messages ({len(history)})", title_style="header")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Mailbox")
    table.add_column("From", style="email_from")
    table.add_column("Subject", style="email_subject")
    table.add_column("Received", style="email_date")
    for entry in reversed(history):
        table.add_row(
            escape_markup(str(entry.get("id") or "-")),
            escape_markup(entry.get("address") or "unknown"),
            escape_markup(entry.get("from") or "(unknown)"),
            escape_markup(entry.get("subject") or "(no subject)"),
            escape_markup(_format_timestamp(entry.get("received_at"))),
        )
    console.print(table)
    console.print("[info]Use [bold]tempmail history --id ID[/] to show a message.[/]")

def export_emails(output_file: str = "email_export.json", address: Optional[str] = None) -> int:
    """Write saved messages, optionally for one mailbox, to a JSON file."""
    history = _history_for(address)
    if not history:
        console.print("[warning]No saved messages to export.[/]")
        return 0

    try:
        with open(output_file, "w") as f:
            json.dump(history, f, indent=2)
    except OSError as e:
        console.print(f"[error]Error exporting emails: {escape_markup(str(e))}[/]")
        return 0
    console.print(f"[success]Exported {len(history)} messages to {escape_markup(output_file)}[/]")
    return len(history)

def clear_history(address: Optional[str] = None, assume_yes: bool = False) -> None:
    """Forget saved messages for one mailbox, or all of them."""
    history = _load_history()
    remaining = [h for h in history if address and h.get("address") != address]
    if len(remaining) == len(history):
        console.print("[warning]No saved messages to clear.[/]")
        return

    if not assume_yes:
        scope = escape_markup(address) if address else "all mailboxes"
        confirm = console.input(f"[bold red]Delete {len(history) - len(remaining)} saved messages for {scope}? (y/N): [/]")
        if confirm.lower() != 'y':
            console.print("[info]Operation cancelled.[/]")
            return

    try:
        if remaining:
            _write_history(remaining)
        else:
            history_file().unlink()
    except OSError as e:
        console.print(f"[error]Error clearing history: {escape_markup(str(e))}[/]")
        return
    console.print("[success]Message history cleared.[/]")

if __name__ == "__main__":
    main()
