# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# Saved mailboxes and the current login, persisted as JSON next to the
# config, with change notification for open sessions.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)


@dataclass
class SavedAccount:
    id: str
    address: str
    password: str
    provider: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class AuthState:
    token: Optional[str] = None
    account_id: Optional[str] = None
    address: Optional[str] = None
    provider: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token and self.account_id)


AuthListener = Callable[[AuthState], None]


class AccountStore:
    """Generated accounts and the active login.

    Listeners registered with :meth:`subscribe` are called with the new
    :class:`AuthState` whenever the login changes or a saved account is
    removed.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.accounts_file = self.directory / "accounts.json"
        self.auth_file = self.directory / "auth.json"
        self._listeners: List[AuthListener] = []

    # Subscriptions

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        state = self.get_auth_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                LOGGER.warning(f"Auth listener failed: {e}")

    # File helpers

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            LOGGER.warning(f"Failed to read {path.name}: {e}")
            return default

    def _write_json(self, path: Path, data: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    # Saved accounts

    def get_accounts(self) -> List[SavedAccount]:
        raw = self._read_json(self.accounts_file, [])
        accounts = []
        for entry in raw:
            try:
                accounts.append(SavedAccount(**entry))
            except TypeError:
                LOGGER.warning(f"Skipping malformed account entry: {entry!r}")
        return accounts

    def find_account(self, key: str) -> Optional[SavedAccount]:
        """Look up a saved account by id or address."""
        for account in self.get_accounts():
            if key in (account.id, account.address):
                return account
        return None

    def save_account(self, account: SavedAccount) -> None:
        accounts = [a for a in self.get_accounts() if a.id != account.id]
        accounts.append(account)
        self._write_json(self.accounts_file, [asdict(a) for a in accounts])

    def delete_account(self, account_id: str) -> None:
        accounts = [a for a in self.get_accounts() if a.id != account_id]
        self._write_json(self.accounts_file, [asdict(a) for a in accounts])
        if self.get_auth_state().account_id == account_id:
            self.clear_auth()
        else:
            self._notify()

    def clear_accounts(self) -> None:
        if self.accounts_file.exists():
            self.accounts_file.unlink()
        self._notify()

    # Current login

    def get_auth_state(self) -> AuthState:
        raw = self._read_json(self.auth_file, {})
        return AuthState(
            token=raw.get("token"),
            account_id=raw.get("account_id"),
            address=raw.get("address"),
            provider=raw.get("provider"),
        )

    def set_auth(self, token: str, account_id: str, address: str, provider: str) -> None:
        self._write_json(self.auth_file, asdict(AuthState(token, account_id, address, provider)))
        self._notify()

    def clear_auth(self) -> None:
        if self.auth_file.exists():
            self.auth_file.unlink()
        self._notify()
