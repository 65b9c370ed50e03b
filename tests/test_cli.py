"""Tests for the lpass-export command line entry point."""

import pytest

import lpass_export.__main__ as cli
from lpass_export import __version__
from lpass_export.config import USERNAME_ENV
from lpass_export.vault.client import VaultItem

from conftest import PDF_BYTES, FakeVaultClient


@pytest.fixture
def vault(monkeypatch):
    """Route the CLI to an in-memory vault with every program present."""
    client = FakeVaultClient(
        items=[VaultItem("0-1", "Bank", "Finance/Bank")],
        details={"0-1": b"Name: Bank\n"},
        attachments={"0-1": ["att-1: statement.pdf"]},
        blobs={("0-1", "att-1"): PDF_BYTES},
    )
    monkeypatch.setattr(cli, "LpassClient", lambda color: client)
    monkeypatch.setattr(cli, "check_dependencies", lambda config: None)
    monkeypatch.setattr(cli, "load_dotenv", lambda *a, **k: False)
    monkeypatch.delenv(USERNAME_ENV, raising=False)
    return client


class TestMain:

    def test_no_arguments_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: lpass-export" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_unknown_option_is_usage_error(self, output_dir):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--bogus", str(output_dir)])
        assert exc.value.code == 2

    def test_successful_export(self, vault, output_dir):
        assert cli.main(["-u", "me", "-i", str(output_dir)]) == 0

        assert (output_dir / "0-1.txt").read_bytes() == b"Name: Bank\n"
        assert (output_dir / "0-1" / "statement.pdf").read_bytes() == PDF_BYTES
        assert (output_dir / "index.txt").read_text() == "0-1|Bank|Finance/Bank"
        assert vault.count("logout") == 1

    def test_username_from_environment(self, vault, output_dir, monkeypatch):
        monkeypatch.setenv(USERNAME_ENV, "env@example.com")
        assert cli.main([str(output_dir)]) == 0
        assert vault.count("login", "env@example.com") == 1

    def test_missing_username_is_fatal(self, vault, output_dir, capsys):
        assert cli.main([str(output_dir)]) == 1
        assert "usage:" in capsys.readouterr().err
        assert vault.calls == []

    def test_nothing_to_do_is_fatal(self, vault, output_dir):
        assert cli.main(["-u", "me", "-X", str(output_dir)]) == 1
        assert vault.calls == []

    def test_unusable_event_log_is_fatal(self, vault, output_dir, tmp_path):
        log_dir = tmp_path / "events"
        log_dir.mkdir()

        assert cli.main(["-u", "me", "--event-log", str(log_dir), str(output_dir)]) == 1
        assert vault.calls == []

    def test_login_failure_is_fatal(self, vault, output_dir):
        vault.fail_login = True
        assert cli.main(["-u", "me", str(output_dir)]) == 1
        assert not (output_dir / "0-1.txt").exists()

    def test_partial_failure(self, vault, output_dir):
        vault.fail_blobs.add(("0-1", "att-1"))
        assert cli.main(["-u", "me", str(output_dir)]) == 3
        assert (output_dir / "0-1.txt").exists()

    def test_encrypted_export(self, vault, output_dir, passphrase_file):
        code = cli.main(["-u", "me", "-j", "-p", str(passphrase_file), str(output_dir)])

        assert code == 0
        assert (output_dir / "0-1.json.enc").read_bytes().startswith(b"Salted__")
        assert (output_dir / "0-1" / "statement.pdf.enc").exists()
