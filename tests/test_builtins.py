"""
Tests for BuiltinManager
"""
import os
from pathlib import Path

import pytest

from shell_t.builtins import BuiltinManager
from shell_t.pipeline_parser import Command


@pytest.fixture
def builtins():
    return BuiltinManager()


def run(builtins, program, *args):
    return builtins.execute(Command(program, list(args)))


def test_not_a_builtin(builtins):
    assert run(builtins, "ls") is None
    assert not builtins.is_builtin("ls")


# ============================================================================
# DIRECTORY
# ============================================================================

class TestDirectory:

    def test_pwd(self, builtins, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = run(builtins, "pwd")
        assert result.status == 0
        assert result.output == os.getcwd()

    def test_cd(self, builtins, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "sub").mkdir()

        result = run(builtins, "cd", "sub")

        assert result.status == 0
        assert Path.cwd().resolve() == (tmp_path / "sub").resolve()

    def test_cd_home(self, builtins, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        home = tmp_path / "home"
        home.mkdir()
        monkeypatch.setenv("HOME", str(home))

        assert run(builtins, "cd").status == 0
        assert Path.cwd().resolve() == home.resolve()

    def test_cd_without_home(self, builtins, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("HOME", raising=False)

        result = run(builtins, "cd")

        assert result.status == 1
        assert result.output == "cd: HOME not set"

    def test_cd_missing_directory(self, builtins, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = run(builtins, "cd", "nowhere")
        assert result.status == 1
        assert result.output.startswith("cd: nowhere:")
        assert Path.cwd().resolve() == tmp_path.resolve()


# ============================================================================
# EXIT
# ============================================================================

class TestExit:

    def test_plain(self, builtins):
        result = run(builtins, "exit")
        assert result.exit_requested
        assert result.status == 0

    def test_status(self, builtins):
        result = run(builtins, "exit", "3")
        assert result.exit_requested
        assert result.status == 3

    def test_non_numeric(self, builtins):
        result = run(builtins, "exit", "soon")
        assert not result.exit_requested
        assert result.status == 1
        assert "numeric argument required" in result.output


# ============================================================================
# ENVIRONMENT
# ============================================================================

class TestEnvironment:

    def test_export_and_unset(self, builtins, monkeypatch):
        monkeypatch.delenv("SHELL_T_TEST_VAR", raising=False)

        assert run(builtins, "export", "SHELL_T_TEST_VAR=a=b").status == 0
        assert os.environ["SHELL_T_TEST_VAR"] == "a=b"

        assert run(builtins, "unset", "SHELL_T_TEST_VAR").status == 0
        assert "SHELL_T_TEST_VAR" not in os.environ

    def test_export_name_only_keeps_value(self, builtins, monkeypatch):
        monkeypatch.setenv("SHELL_T_TEST_VAR", "kept")
        assert run(builtins, "export", "SHELL_T_TEST_VAR").status == 0
        assert os.environ["SHELL_T_TEST_VAR"] == "kept"

    def test_export_invalid_identifier(self, builtins):
        result = run(builtins, "export", "1BAD=x")
        assert result.status == 1
        assert "not a valid identifier" in result.output
        assert "1BAD" not in os.environ

    def test_export_listing(self, builtins, monkeypatch):
        monkeypatch.setenv("SHELL_T_TEST_VAR", "listed")
        result = run(builtins, "export")
        assert "SHELL_T_TEST_VAR=listed" in result.output.splitlines()

    def test_unset_missing_is_fine(self, builtins):
        assert run(builtins, "unset", "SHELL_T_NEVER_SET").status == 0


# ============================================================================
# LOOKUP
# ============================================================================

class TestLookup:

    def test_which(self, builtins):
        result = run(builtins, "which", "sh")
        assert result.status == 0
        assert result.output.endswith("/sh")

    def test_which_missing(self, builtins):
        assert run(builtins, "which", "shell-t-missing").status == 1

    def test_which_without_argument(self, builtins):
        assert run(builtins, "which").status == 1

    def test_type_builtin(self, builtins):
        result = run(builtins, "type", "cd")
        assert result.output == "cd is a shell builtin"

    def test_type_program(self, builtins):
        result = run(builtins, "type", "sh")
        assert result.status == 0
        assert result.output.startswith("sh is /")

    def test_type_missing(self, builtins):
        result = run(builtins, "type", "shell-t-missing")
        assert result.status == 1
        assert result.output == "type: shell-t-missing: not found"
