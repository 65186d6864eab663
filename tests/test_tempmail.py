import json

import pytest

import tempmail
from account_store import AccountStore


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("TEMPMAIL_CONFIG_DIR", str(tmp_path / "cfg"))
    return tmp_path / "cfg"


class FakeClient:
    base_url = "https://api.mail.test"

    def __init__(self, token):
        self.token = token

    def get_message(self, message_id):
        return {
            "id": message_id,
            "from": {"name": "Alice", "address": "alice@example.com"},
            "subject": "Hello",
            "createdAt": "2025-03-01T10:00:00+00:00",
            "seen": True,
            "text": "Hello there",
            "html": ['<p onclick="x()">Hello <img src="https://img.test/a.png"></p>'],
        }


def test_load_config_merges_defaults(config_dir):
    assert tempmail.load_config()["default_provider"] == "mail.gw"

    config_dir.mkdir(parents=True)
    (config_dir / "config.json").write_text(json.dumps({"refresh_interval": 90}))
    config = tempmail.load_config()
    assert config["refresh_interval"] == 90
    assert config["min_interval"] == tempmail.DEFAULT_CONFIG["min_interval"]


def test_parse_args_persists_display_options(config_dir):
    args = tempmail.parse_args(["--display", "plain", "--no-save", "inbox"])
    assert args.command == "inbox"
    saved = json.loads((config_dir / "config.json").read_text())
    assert saved["display_mode"] == "plain"
    assert saved["save_messages"] is False


@pytest.mark.parametrize("raw,expected", [
    ("2025-03-01T10:00:00+00:00", "2025-03-01 10:00:00"),
    ("2025-03-01T10:00:00Z", "2025-03-01 10:00:00"),
    (None, "unknown time"),
    ("yesterday", "yesterday"),
])
def test_format_timestamp(raw, expected):
    assert tempmail._format_timestamp(raw) == expected


def test_format_party():
    assert tempmail._format_party({"name": "Bob", "address": "b@x.test"}) == "Bob <b@x.test>"
    assert tempmail._format_party({"name": "", "address": "b@x.test"}) == "b@x.test"
    assert tempmail._format_party(None) == "(unknown)"


def test_history_is_capped(config_dir):
    tempmail.save_config(dict(tempmail.DEFAULT_CONFIG, max_history_entries=2))
    for i in range(3):
        tempmail.save_message_to_history("mail.gw", "me@x.test", {"id": f"m{i}", "subject": str(i)})
    history = json.loads((config_dir / "history.json").read_text())
    assert [h["subject"] for h in history] == ["1", "2"]


def test_inbox_requires_login():
    with pytest.raises(SystemExit) as exc:
        tempmail.main(["inbox"])
    assert exc.value.code == 1


def test_read_saves_sanitized_html(config_dir, tmp_path, monkeypatch):
    AccountStore(config_dir).set_auth("tok", "acc", "me@mail.test", "mail.gw")
    monkeypatch.setattr(
        tempmail.MailApiClient,
        "for_provider",
        classmethod(lambda cls, provider, token=None, timeout=15: FakeClient(token)),
    )
    target = tmp_path / "message.html"

    tempmail.main(["read", "m1", "--save", str(target)])

    page = target.read_text(encoding="utf-8")
    assert "<title>Hello</title>" in page
    assert "onclick" not in page
    assert 'href="https://img.test/a.png"' in page
    assert 'rel="noopener noreferrer"' in page


MARKUP_MESSAGE = {
    "id": "m9",
    "from": {"name": "[bold]Shop", "address": "deals@shop.test"},
    "subject": "Sale [/] now",
    "createdAt": "2025-03-01T10:00:00+00:00",
    "text": "Use code [/bold] today",
}


@pytest.mark.parametrize("mode", ["rich", "plain"])
def test_message_text_is_shown_literally(mode, capsys):
    tempmail.save_config(dict(tempmail.DEFAULT_CONFIG, display_mode=mode))

    tempmail.print_email("mail.gw", "me@x.test", MARKUP_MESSAGE, save=False)

    out = capsys.readouterr().out
    assert "Sale [/] now" in out
    assert "Use code [/bold] today" in out
    assert "[bold]Shop" in out


def test_inbox_table_shows_subjects_literally(capsys):
    tempmail.print_inbox([MARKUP_MESSAGE], "me@x.test")
    out = capsys.readouterr().out
    assert "Sale [/] now" in out


def test_history_keeps_one_entry_per_message(config_dir, capsys):
    tempmail.save_message_to_history("mail.gw", "me@x.test", MARKUP_MESSAGE)
    tempmail.save_message_to_history("mail.gw", "me@x.test", dict(MARKUP_MESSAGE, subject="Sale again"))
    tempmail.save_message_to_history("mail.gw", "other@x.test", MARKUP_MESSAGE)

    history = json.loads((config_dir / "history.json").read_text())
    assert [(h["id"], h["address"], h["subject"]) for h in history] == [
        ("m9", "me@x.test", "Sale again"),
        ("m9", "other@x.test", "Sale [/] now"),
    ]
    assert history[1]["from"] == "[bold]Shop <deals@shop.test>"
    assert history[1]["received_at"] == "2025-03-01T10:00:00+00:00"

    tempmail.main(["history", "--address", "other@x.test", "--id", "m9"])
    assert "Use code [/bold] today" in capsys.readouterr().out


def test_export_and_clear_history_by_mailbox(config_dir, tmp_path):
    tempmail.save_message_to_history("mail.gw", "me@x.test", MARKUP_MESSAGE)
    tempmail.save_message_to_history("mail.gw", "other@x.test", dict(MARKUP_MESSAGE, id="m10"))
    target = tmp_path / "export.json"

    assert tempmail.export_emails(str(target), address="other@x.test") == 1
    assert [h["id"] for h in json.loads(target.read_text())] == ["m10"]

    tempmail.clear_history(address="me@x.test", assume_yes=True)
    history = json.loads((config_dir / "history.json").read_text())
    assert [h["address"] for h in history] == ["other@x.test"]

    tempmail.clear_history(assume_yes=True)
    assert not (config_dir / "history.json").exists()
