"""
Tests for the llkeys command-line interface.
"""
import pytest

from llkeys.cli import main


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in (
        "LLKEYS_HOME", "LLKEYS_STORE_PATH",
        "LLKEYS_CONFIG_PATH", "LLKEYS_KEY_TTL_HOURS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def run(tmp_path, capsys):
    """Run the CLI against a temp home; returns (exit_code, stdout, stderr)."""
    def _run(*argv):
        code = main(["--home", str(tmp_path), *argv])
        out, err = capsys.readouterr()
        return code, out, err
    return _run


class TestCommands:

    def test_add_and_get(self, run):
        assert run("add", "mail", "secret", "one")[0] == 0
        code, out, _ = run("get", "mail", "--reveal")
        assert code == 0
        assert out.strip() == "secret one"

    def test_get_without_reveal_shows_ciphertext(self, run):
        run("add", "mail", "secret1")
        code, out, _ = run("get", "mail")
        assert code == 0
        assert "secret1" not in out
        assert out.strip()

    def test_get_missing(self, run):
        code, out, err = run("get", "missing")
        assert code == 1
        assert "not found" in err

    def test_list(self, run):
        run("add", "b", "2")
        run("add", "a", "1")
        code, out, _ = run("list", "--reveal")
        assert code == 0
        assert out.splitlines() == ["Secrets (plaintext):", "a: 1", "b: 2"]

    def test_list_empty(self, run):
        assert run("list")[1].strip() == "No secrets stored."

    def test_remove_and_alias(self, run):
        run("add", "a", "1")
        run("add", "b", "2")
        assert run("remove", "a")[0] == 0
        assert run("del", "b")[0] == 0
        code, _, err = run("remove", "a")
        assert code == 1
        assert "not found" in err

    def test_import_and_search(self, run, tmp_path):
        csv_file = tmp_path / "export.csv"
        csv_file.write_text(
            "name,url,username,password,note\n"
            '"svc","https://x","alice","p@ss","note"\n',
            encoding="utf-8",
        )
        code, out, _ = run("import", str(csv_file))
        assert code == 0
        assert "Imported 1" in out
        code, out, _ = run("search", "SVC", "--reveal")
        assert out.strip() == "svc|https://x|note: alice:p@ss"

    def test_search_without_reveal_hides_plaintext(self, run):
        run("add", "github", "alice|pw")
        code, out, _ = run("search", "git")
        assert code == 0
        assert out.startswith("github: ")
        assert "alice" not in out

    def test_import_missing_file(self, run, tmp_path):
        code, _, err = run("import", str(tmp_path / "missing.csv"))
        assert code == 1
        assert err.startswith("Error:")

    def test_rotate_and_status(self, run):
        run("add", "mail", "secret1")
        code, out, _ = run("rotate")
        assert code == 0
        assert "v2" in out
        assert "1 secret(s)" in out
        code, out, _ = run("status")
        assert "Master key v2 (active)" in out
        assert run("get", "mail", "--reveal")[1].strip() == "secret1"

    def test_expired_key_reports_error(self, run, tmp_path):
        (tmp_path / "config.json").write_text(
            '{"keyA": "0123456789abcdef", "keyVersion": 1, '
            '"keyTtl": "2000-01-01T00:00:00+00:00"}'
        )
        code, _, err = run("add", "x", "y")
        assert code == 1
        assert "expired" in err

    @pytest.mark.parametrize("hours", ["abc", "0", "inf"])
    def test_invalid_ttl_env_reports_error(self, run, monkeypatch, hours):
        monkeypatch.setenv("LLKEYS_KEY_TTL_HOURS", hours)
        code, out, err = run("list")
        assert code == 1
        assert out == ""
        assert err.startswith("Error:")
        assert "Traceback" not in err

    def test_usage_error(self, run):
        with pytest.raises(SystemExit) as excinfo:
            run("add", "only-name")
        assert excinfo.value.code == 2
