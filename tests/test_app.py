import io
import zipfile

import pytest

import app
import dispatcher
from app import RenderConfig, Session
from errors import ValidationError


def test_session_requires_background_first(make_row):
    with pytest.raises(ValidationError, match="background"):
        Session(rows=[make_row()]).require_ready()


def test_session_requires_rows(background_png):
    with pytest.raises(ValidationError, match="Excel"):
        Session(background=background_png).require_ready()


def test_session_generator_uses_render_config(background_png, make_row):
    cfg = RenderConfig(position_x=50, position_y=60, font_name="courier")
    gen = Session(background=background_png, rows=[make_row()], render=cfg).generator()
    assert gen.config is cfg
    assert gen.font == "Courier"


@pytest.fixture
def inputs(tmp_path, background_png):
    data = tmp_path / "people.csv"
    data.write_text("Name,Email\nAlice,alice@example.com\nBob,bob@example.com\nAlice,alice2@example.com\n")
    bg = tmp_path / "bg.png"
    bg.write_bytes(background_png)
    return str(data), str(bg)


def test_cli_generate_writes_zip(tmp_path, inputs):
    out = tmp_path / "out.zip"
    assert app.main(["generate", *inputs, "-o", str(out), "--font", "helvetica", "--style", "bold"]) == 0
    with zipfile.ZipFile(io.BytesIO(out.read_bytes())) as zf:
        assert zf.namelist() == ["Alice.pdf", "Bob.pdf", "Alice (2).pdf"]


def test_cli_generate_missing_background(tmp_path, inputs, capsys):
    data, _ = inputs
    assert app.main(["generate", data, str(tmp_path / "nope.png"), "-o", str(tmp_path / "x.zip")]) == 1
    assert "Upload background template image first" in capsys.readouterr().out


class _FakeRelayClient:
    sent = []

    def __init__(self, url):
        self.url = url

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def send(self, pdf_bytes, email, name):
        _FakeRelayClient.sent.append((self.url, email, name))


def test_cli_send_uses_relay(monkeypatch, inputs, capsys):
    _FakeRelayClient.sent = []
    monkeypatch.setattr(dispatcher, "RelayClient", _FakeRelayClient)
    code = app.main(["send", *inputs, "--relay-url", "https://relay.example/send", "--yes"])
    assert code == 0
    assert sorted(e for _, e, _ in _FakeRelayClient.sent) == [
        "alice2@example.com",
        "alice@example.com",
        "bob@example.com",
    ]
    assert "Successfully sent: 3 / 3" in capsys.readouterr().out


def test_cli_send_can_be_declined(monkeypatch, inputs):
    _FakeRelayClient.sent = []
    monkeypatch.setattr(dispatcher, "RelayClient", _FakeRelayClient)
    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert app.main(["send", *inputs, "--relay-url", "https://relay.example/send"]) == 1
    assert _FakeRelayClient.sent == []
