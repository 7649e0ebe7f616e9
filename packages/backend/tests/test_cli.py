"""CLI tests — every command goes through the access guard.

Learn: click's CliRunner invokes the group in-process. Passing
obj={"settings": ..., "storage": ...} swaps in test settings and an
in-memory store; since the same store object is reused across
invocations, the session persists between commands just like the
file-backed store does between real runs.
"""

import json

import pytest
from click.testing import CliRunner

from cvbank.cli import main

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


@pytest.fixture()
def invoke(settings, storage):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(main, list(args), obj={"settings": settings, "storage": storage})

    return _invoke


def test_version(invoke):
    result = invoke("--version")
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_guarded_command_needs_login(invoke):
    result = invoke("profile")
    assert result.exit_code == 1
    assert "Not signed in" in result.output


def test_register_and_manage_profile(invoke):
    result = invoke("register", "Ana Diaz", "ana@x.com", "--password", "pw123")
    assert result.exit_code == 0, result.output
    assert "Welcome, Ana Diaz!" in result.output
    assert "/my-profile" in result.output

    result = invoke("whoami")
    assert "Ana Diaz" in result.output
    assert "role=user" in result.output

    result = invoke("tool", "add", "Python", "--category", "Language")
    assert result.exit_code == 0, result.output
    result = invoke("language", "add", "English", "--level", "advanced")
    assert result.exit_code == 0, result.output
    result = invoke(
        "experience", "add", "--company", "Acme", "--role", "Dev",
        "--start", "2020-01-01", "--current",
    )
    assert result.exit_code == 0, result.output

    result = invoke("tool", "list")
    assert "Python" in result.output
    result = invoke("experience", "list")
    assert "Acme" in result.output
    assert "current" in result.output

    result = invoke("profile")
    assert result.exit_code == 0
    profile = json.loads(result.stdout)
    assert [t["name"] for t in profile["tools"]] == ["Python"]
    assert profile["languages"][0]["level"] == "Advanced"

    tool_id = profile["tools"][0]["id"]
    result = invoke("tool", "delete", tool_id)
    assert result.exit_code == 0
    assert "Python" not in invoke("tool", "list").output


def test_duplicate_registration(invoke):
    invoke("register", "Ana", "ana@x.com", "--password", "pw123")
    invoke("logout")
    result = invoke("register", "Ana", "ANA@x.com", "--password", "pw123")
    assert result.exit_code == 1
    assert "Registration failed" in result.output


def test_bad_login(invoke):
    result = invoke("login", "nobody@x.com", "--password", "x")
    assert result.exit_code == 1
    assert "Login failed" in result.output


def test_user_cannot_open_admin_pages(invoke):
    invoke("register", "Ana", "ana@x.com", "--password", "pw123")
    result = invoke("admin", "stats")
    assert result.exit_code == 1
    assert "Redirected to /my-profile" in result.output


def test_admin_views(invoke):
    invoke("register", "Ana", "ana@x.com", "--password", "pw123")
    invoke("tool", "add", "Python")
    invoke("logout")

    result = invoke("login", ADMIN_EMAIL, "--password", ADMIN_PASSWORD)
    assert result.exit_code == 0, result.output
    assert "/admin/dashboard" in result.output

    result = invoke("admin", "stats")
    assert result.exit_code == 0, result.output
    assert "Total candidates: 1" in result.output
    assert "Python" in result.output

    result = invoke("admin", "users", "--search", "python")
    assert "Candidates (1)" in result.output
    assert "ana@x.com" in result.output
    result = invoke("admin", "users", "--experience", "3-5")
    assert "Candidates (0)" in result.output

    result = invoke("admin", "users", "--experience", "lots")
    assert result.exit_code == 2


def test_admin_profile_lookup(invoke, storage):
    invoke("register", "Ana", "ana@x.com", "--password", "pw123")
    user_id = json.loads(storage.read_raw("cv_bank_auth"))["user_id"]
    invoke("logout")
    invoke("login", ADMIN_EMAIL, "--password", ADMIN_PASSWORD)

    result = invoke("admin", "profile", user_id)
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["user"]["email"] == "ana@x.com"

    result = invoke("admin", "profile", "missing-user")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_logout(invoke):
    invoke("register", "Ana", "ana@x.com", "--password", "pw123")
    result = invoke("logout")
    assert result.exit_code == 0
    assert "Not signed in." in invoke("whoami").output
