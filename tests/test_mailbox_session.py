import threading

import pytest

from account_store import AccountStore, SavedAccount
from mail_api import APIError, RateLimitError
from mailbox_session import MailboxDashboard, MailboxSession, ThrottledLocally
from request_governor import GovernorConfig, RequestGovernor


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeClient:
    base_url = "https://api.mail.test"

    def __init__(self, token="tok"):
        self.token = token
        self.calls = []
        self.failures = []
        self.messages = [
            {"id": "m2", "subject": "second", "seen": False, "createdAt": "2025-01-02T00:00:00+00:00"},
            {"id": "m1", "subject": "first", "seen": True, "createdAt": "2025-01-01T00:00:00+00:00"},
        ]
        self.bodies = {
            "m2": {"id": "m2", "subject": "second", "seen": False, "html": ["<p>hi</p><script>x()</script>"], "text": "hi"},
        }

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def login(self, address, password):
        self.calls.append(("login", address))
        self.token = "tok-" + address
        return {"token": self.token, "id": "acc-" + address}

    def list_messages(self):
        self.calls.append(("list",))
        self._maybe_fail()
        return list(self.messages)

    def get_message(self, message_id):
        self.calls.append(("get", message_id))
        self._maybe_fail()
        return dict(self.bodies[message_id])

    def mark_as_read(self, message_id):
        self.calls.append(("read", message_id))

    def delete_message(self, message_id):
        self.calls.append(("delete", message_id))
        self._maybe_fail()
        self.messages = [m for m in self.messages if m["id"] != message_id]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    cfg = GovernorConfig(min_interval=5.0, initial_delay=10.0, max_delay=60.0, max_retry_attempts=3, jitter=0.0)
    return RequestGovernor(cfg, clock=clock)


def make_session(governor, client=None, **kwargs):
    return MailboxSession(client or FakeClient(), governor=governor, address="me@mail.test", **kwargs)


def test_tick_reports_only_new_messages(governor, clock):
    updates = []
    client = FakeClient()
    session = make_session(governor, client, on_update=lambda msgs, fresh: updates.append([m["id"] for m in fresh]))

    assert [m["id"] for m in session.refresh_messages()] == ["m2", "m1"]
    clock.advance(5)
    client.messages.insert(0, {"id": "m3", "subject": "third"})
    session.refresh_messages()

    assert updates == [["m2", "m1"], ["m3"]]


def test_failing_update_handler_does_not_lose_new_mail(governor, clock):
    updates = []

    def flaky(msgs, fresh):
        if not updates:
            updates.append(None)
            raise ValueError("display broke")
        updates.append([m["id"] for m in fresh])

    session = make_session(governor, on_update=flaky)

    assert session.refresh_messages() is not None
    clock.advance(5)
    session.refresh_messages()

    assert updates == [None, ["m2", "m1"]]


def test_escalated_transient_failures_announce_the_wait(governor, clock):
    notices = []
    client = FakeClient()
    client.failures.extend(APIError("boom", status=500) for _ in range(4))
    session = make_session(governor, client, on_notice=lambda level, text: notices.append((level, text)))

    for _ in range(4):
        session.refresh_messages()
        clock.advance(61)

    assert len(notices) == 1
    assert notices[0] == ("warning", "Failed to load emails. Slowing down, retry in 10s")
    assert session.rate_limited


def test_suppressed_tick_is_a_no_op(governor, clock):
    client = FakeClient()
    session = make_session(governor, client)
    session.refresh_messages()
    clock.advance(1)

    assert session.refresh_messages() is None
    assert client.calls == [("list",)]


def test_manual_refresh_within_floor_is_ignored_not_refused(governor, clock):
    session = make_session(governor)
    session.refresh_messages()
    clock.advance(1)
    assert session.refresh_messages(manual=True) is None


def test_manual_refresh_refused_while_rate_limited(governor, clock):
    notices = []
    client = FakeClient()
    client.failures.append(RateLimitError("429", status=429))
    session = make_session(governor, client, on_notice=lambda level, text: notices.append((level, text)))

    assert session.refresh_messages() is None
    assert session.rate_limited
    assert notices[-1][0] == "warning"
    assert "retry in 10s" in notices[-1][1]

    clock.advance(3)
    with pytest.raises(ThrottledLocally) as exc:
        session.refresh_messages(manual=True)
    assert exc.value.rate_limited
    assert exc.value.remaining == pytest.approx(7.0)
    assert client.calls == [("list",)]

    clock.advance(7)
    assert session.refresh_messages(manual=True) is not None
    assert not session.rate_limited
    assert governor.state.retry_count == 0


def test_giving_up_surfaces_error_but_keeps_polling(governor, clock):
    client = FakeClient()
    client.failures.extend(RateLimitError("429", status=429) for _ in range(4))
    session = make_session(governor, client)

    for _ in range(4):
        session.refresh_messages()
        clock.advance(61)

    assert session.error == "Rate limited. Try again later."
    assert session.refresh_messages() is not None
    assert session.error is None


def test_manual_failures_are_counted_and_raised(governor, clock):
    client = FakeClient()
    client.failures.append(APIError("boom", status=500))
    session = make_session(governor, client)

    with pytest.raises(APIError):
        session.open_message("m2")
    assert governor.state.consecutive_failures == 1
    assert session.error == "Failed to load email content"


def test_open_message_marks_read_and_renders_safely(governor, clock):
    client = FakeClient()
    session = make_session(governor, client)
    session.refresh_messages()
    clock.advance(5)

    message = session.open_message("m2")

    assert message["seen"] is True
    assert ("read", "m2") in client.calls
    assert all(m["seen"] for m in session.messages if m["id"] == "m2")
    assert session.rendered_html == "<p>hi</p>"
    assert session.rendered_html is session.rendered_html


def test_open_message_refused_when_too_soon(governor, clock):
    session = make_session(governor)
    session.refresh_messages()
    with pytest.raises(ThrottledLocally) as exc:
        session.open_message("m2")
    assert not exc.value.rate_limited


def test_delete_message_updates_inbox_and_selection(governor, clock):
    client = FakeClient()
    session = make_session(governor, client)
    session.open_message("m2")
    clock.advance(5)

    assert session.delete_message("m2") is True
    assert session.selected is None
    assert session.rendered_html == ""
    assert ("delete", "m2") in client.calls


def test_no_credential_skips_without_touching_governor(governor):
    client = FakeClient(token=None)
    session = make_session(governor, client)

    assert session.refresh_messages(manual=True) is None
    assert client.calls == []
    assert governor.state.last_request_at is None
    assert session.error == "Not authenticated"


def test_results_after_close_are_discarded(governor, clock):
    updates = []
    client = FakeClient()
    session = make_session(governor, client, on_update=lambda msgs, fresh: updates.append(fresh))

    original = client.list_messages

    def slow_list():
        session.close()
        return original()

    client.list_messages = slow_list
    assert session.refresh_messages() is None
    assert session.messages == []
    assert updates == []


def test_manual_and_automatic_share_one_window(governor, clock):
    client = FakeClient()
    session = make_session(governor, client)
    assert session.refresh_messages(manual=True) is not None
    assert session.refresh_messages() is None
    assert client.calls == [("list",)]


def test_dashboard_keeps_independent_governors(tmp_path):
    store = AccountStore(tmp_path)
    store.save_account(SavedAccount(id="a", address="a@mail.test", password="pw", provider="mail.gw"))
    store.save_account(SavedAccount(id="b", address="b@mail.test", password="pw", provider="mail.gw"))

    dashboard = MailboxDashboard(store, client_factory=lambda provider: FakeClient(token=None))
    sessions = dashboard.open_all(start=False)

    assert len(sessions) == 2
    assert sessions[0].governor is not sessions[1].governor
    assert sessions[0].client.token == "tok-a@mail.test"

    assert sessions[0].refresh_messages() is not None
    assert sessions[1].refresh_messages() is not None


def test_dashboard_closes_sessions_for_removed_accounts(tmp_path):
    store = AccountStore(tmp_path)
    store.save_account(SavedAccount(id="a", address="a@mail.test", password="pw", provider="mail.gw"))
    store.save_account(SavedAccount(id="b", address="b@mail.test", password="pw", provider="mail.gw"))
    dashboard = MailboxDashboard(store, client_factory=lambda provider: FakeClient(token=None))
    dashboard.open_all(start=False)
    session_a = dashboard.sessions["a"]

    store.delete_account("a")

    assert "a" not in dashboard.sessions
    assert session_a.closed
    assert "b" in dashboard.sessions

    dashboard.close_all()
    assert dashboard.sessions == {}


def test_start_polls_and_close_stops_timer(governor):
    client = FakeClient()
    ticked = threading.Event()
    original = client.list_messages

    def list_and_signal():
        result = original()
        ticked.set()
        return result

    client.list_messages = list_and_signal
    session = make_session(governor, client, refresh_interval=0.01)
    session.start()
    assert ticked.wait(2.0)

    session.close()
    assert session.closed
    assert session._thread is None
