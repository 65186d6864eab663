# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# Polling sessions: one per open mailbox, each gated by its own request
# governor, plus a dashboard holding several of them at once.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from account_store import AccountStore, AuthState, SavedAccount
from mail_api import MailApiClient, ProviderError, is_rate_limit
from request_governor import FailureAction, FailureOutcome, GovernorConfig, RequestGovernor
from safe_render import RenderInput, render

LOGGER = logging.getLogger(__name__)

UpdateListener = Callable[[List[Dict[str, Any]], List[Dict[str, Any]]], None]
NoticeListener = Callable[[str, str], None]


class ThrottledLocally(Exception):
    """The governor refused to issue a call; nothing reached the API."""

    def __init__(self, remaining: float, rate_limited: bool) -> None:
        if rate_limited:
            message = f"Rate limited. Please wait {round(remaining)} seconds before trying again."
        else:
            message = "Too many requests. Please wait a moment before trying again."
        super().__init__(message)
        self.remaining = remaining
        self.rate_limited = rate_limited


class MailboxSession:
    """Inbox state and polling for one logged-in mailbox.

    Automatic ticks and manual actions share one governor, so both respect
    the same rate-limit window. Results that arrive after :meth:`close` are
    dropped.
    """

    def __init__(
        self,
        client: MailApiClient,
        governor: Optional[RequestGovernor] = None,
        refresh_interval: float = 120.0,
        address: Optional[str] = None,
        on_update: Optional[UpdateListener] = None,
        on_notice: Optional[NoticeListener] = None,
    ) -> None:
        self.client = client
        self.governor = governor or RequestGovernor()
        self.refresh_interval = refresh_interval
        self.address = address
        self.on_update = on_update
        self.on_notice = on_notice

        self.messages: List[Dict[str, Any]] = []
        self.selected: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self._seen: Set[str] = set()
        self._rendered: Optional[tuple] = None
        self._closed = False
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def rate_limited(self) -> bool:
        return self.governor.state.rate_limited

    def _notice(self, level: str, message: str) -> None:
        LOGGER.debug(message)
        if self.on_notice and not self._closed:
            self.on_notice(level, message)

    def _report_failure(self, what: str, exc: ProviderError, outcome: FailureOutcome, automatic: bool) -> None:
        if outcome.action is FailureAction.RETRYING:
            self.error = None
            self._notice("warning", f"Rate limited by {self.client.base_url}. Will retry in {round(outcome.delay)}s")
        elif outcome.action is FailureAction.GIVE_UP:
            self.error = "Rate limited. Try again later."
            self._notice("error", "Too many requests. Please wait a few minutes before trying again.")
        else:
            self.error = f"Failed to {what}"
            LOGGER.warning(f"Failed to {what}: {exc}")
            if outcome.delay is not None:
                self._notice("warning", f"Failed to {what}. Slowing down, retry in {round(outcome.delay)}s")
            elif not automatic:
                self._notice("error", f"Failed to {what}")

    def _guarded(self, what: str, call: Callable[[], Any], automatic: bool = False) -> Any:
        """Run ``call`` if the governor allows it, recording the outcome.

        Returns None for skipped automatic ticks. Manual refusals raise
        :class:`ThrottledLocally`; manual API failures are re-raised after
        the governor has counted them.
        """
        if self._closed:
            return None
        if not self.client.token:
            self.error = "Not authenticated"
            LOGGER.warning("Not authenticated, skipping request")
            return None

        if not self.governor.try_acquire():
            if automatic:
                if self.governor.state.rate_limited:
                    LOGGER.debug("Still rate limited, skipping auto-refresh")
                return None
            raise ThrottledLocally(self.governor.remaining_wait(), self.governor.state.rate_limited)

        self.error = None
        try:
            result = call()
        except ProviderError as e:
            outcome = self.governor.record_failure(is_rate_limit(e))
            self._report_failure(what, e, outcome, automatic)
            if automatic:
                return None
            raise
        self.governor.record_success()
        return result

    def login(self, address: str, password: str) -> Optional[Dict[str, Any]]:
        """Obtain a token for ``address``. Not governed: it is not a mailbox call."""
        data = self.client.login(address, password)
        self.address = address
        return data

    # Inbox operations

    def refresh_messages(self, manual: bool = False) -> Optional[List[Dict[str, Any]]]:
        """One polling cycle. Returns the inbox, or None when nothing ran.

        A manual refresh is refused with :class:`ThrottledLocally` only while
        rate limited; otherwise it behaves like a timer tick.
        """
        try:
            messages = self._guarded("load emails", self.client.list_messages, automatic=not manual)
        except ThrottledLocally as e:
            if e.rate_limited:
                self._notice("warning", str(e))
                raise
            return None
        if messages is None:
            return None

        with self._lock:
            if self._closed:
                return None
            fresh = [m for m in messages if m.get("id") not in self._seen]
            self.messages = messages

        if self.on_update:
            try:
                self.on_update(messages, fresh)
            except Exception as e:
                # Leave them unseen so the next tick offers them again.
                LOGGER.warning(f"Inbox update handler failed: {e}")
                return messages
        with self._lock:
            self._seen.update(m.get("id") for m in fresh)
        return messages

    def open_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a message, mark it read, and make it the selected one."""

        def fetch() -> Dict[str, Any]:
            message = self.client.get_message(message_id)
            if not message.get("seen"):
                try:
                    self.client.mark_as_read(message_id)
                except ProviderError as e:
                    LOGGER.debug(f"Mark as read failed: {e}")
                else:
                    message["seen"] = True
            return message

        message = self._guarded("load email content", fetch)
        if message is None:
            return None

        with self._lock:
            if self._closed:
                return None
            self.selected = message
            self._rendered = None
            self.messages = [
                dict(m, seen=True) if m.get("id") == message_id else m
                for m in self.messages
            ]
        return message

    @property
    def rendered_html(self) -> str:
        """Safe HTML for the selected message, cached until it changes."""
        with self._lock:
            if self.selected is None:
                return ""
            message_id = self.selected.get("id")
            if self._rendered is None or self._rendered[0] != message_id:
                self._rendered = (message_id, render(RenderInput.from_message(self.selected)))
            return self._rendered[1]

    def delete_message(self, message_id: str) -> bool:
        def remove() -> bool:
            self.client.delete_message(message_id)
            return True

        if not self._guarded("delete email", remove):
            return False

        with self._lock:
            if self._closed:
                return False
            self.messages = [m for m in self.messages if m.get("id") != message_id]
            if self.selected and self.selected.get("id") == message_id:
                self.selected = None
                self._rendered = None
        self._notice("success", "Email deleted")
        return True

    # Timer

    def _run(self) -> None:
        while True:
            try:
                self.refresh_messages()
            except Exception as e:
                LOGGER.warning(f"Error during polling: {e}")
            if self._stop.wait(self.refresh_interval):
                return

    def start(self) -> None:
        """Fetch once, then poll every ``refresh_interval`` seconds."""
        if self._thread is not None or self._closed:
            return
        self._thread = threading.Thread(target=self._run, name=f"poll-{self.address}", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the timer; in-flight results are ignored when they land."""
        self._closed = True
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None


class MailboxDashboard:
    """Independent sessions for several saved mailboxes."""

    def __init__(
        self,
        store: AccountStore,
        governor_config: Optional[GovernorConfig] = None,
        refresh_interval: float = 120.0,
        client_factory: Callable[[str], MailApiClient] = MailApiClient.for_provider,
        on_update: Optional[Callable[[SavedAccount, List[Dict[str, Any]], List[Dict[str, Any]]], None]] = None,
        on_notice: Optional[Callable[[SavedAccount, str, str], None]] = None,
    ) -> None:
        self.store = store
        self.governor_config = governor_config or GovernorConfig()
        self.refresh_interval = refresh_interval
        self.client_factory = client_factory
        self.on_update = on_update
        self.on_notice = on_notice
        self.sessions: Dict[str, MailboxSession] = {}
        self._unsubscribe = store.subscribe(self._on_auth_change)

    def _on_auth_change(self, _state: AuthState) -> None:
        known = {a.id for a in self.store.get_accounts()}
        for account_id in list(self.sessions):
            if account_id not in known:
                LOGGER.info(f"Account {account_id} removed, closing its session")
                self.close(account_id)

    def open(self, account: SavedAccount, start: bool = True) -> MailboxSession:
        """Log in to ``account`` and start polling it."""
        existing = self.sessions.get(account.id)
        if existing is not None:
            return existing

        client = self.client_factory(account.provider)
        session = MailboxSession(
            client,
            governor=RequestGovernor(self.governor_config),
            refresh_interval=self.refresh_interval,
            address=account.address,
            on_update=(lambda msgs, fresh: self.on_update(account, msgs, fresh)) if self.on_update else None,
            on_notice=(lambda level, text: self.on_notice(account, level, text)) if self.on_notice else None,
        )
        session.login(account.address, account.password)
        self.sessions[account.id] = session
        if start:
            session.start()
        return session

    def open_all(self, start: bool = True) -> List[MailboxSession]:
        opened = []
        for account in self.store.get_accounts():
            try:
                opened.append(self.open(account, start=start))
            except (ProviderError, ThrottledLocally) as e:
                LOGGER.warning(f"Could not open {account.address}: {e}")
        return opened

    def close(self, account_id: str) -> None:
        session = self.sessions.pop(account_id, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for account_id in list(self.sessions):
            self.close(account_id)
        self._unsubscribe()
