"""Tests for command forwarding to the e2b CLI."""

import pytest

from aws_e2b.errors import ForwardingError
from aws_e2b.forward import (
    COMPANION_INSTALL_HINT,
    CommandForwarder,
    Route,
    classify,
    command_path,
    injection_overlay,
    split_root_flags,
)
from aws_e2b.types import CredentialBundle

E2B_PATH = "/usr/local/bin/e2b"
CREDENTIALS = CredentialBundle(
    e2b_domain="corp.dev", e2b_access_token="sk_e2b_tok", e2b_api_key="e2b_key"
)


class CredentialLoader:
    """Counts how often credentials are loaded."""

    def __init__(self, bundle=CREDENTIALS):
        self.bundle = bundle
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.bundle


def make_forwarder(runner, loader=None, which_result=E2B_PATH, environ=None):
    lookups = []

    def which(name):
        lookups.append(name)
        return which_result

    forwarder = CommandForwarder(
        runner,
        loader or CredentialLoader(),
        executable="e2b",
        which=which,
        environ=environ if environ is not None else {},
    )
    forwarder.lookups = lookups
    return forwarder


class TestClassify:
    """Tests for classify and command_path."""

    @pytest.mark.parametrize(
        ("argv", "expected"),
        [
            ([], Route.NATIVE),
            (["--help"], Route.NATIVE),
            (["-V"], Route.NATIVE),
            (["template", "build"], Route.NATIVE),
            (["template", "build", "--memory-mb", "2048"], Route.NATIVE),
            (["template", "create"], Route.NATIVE),
            (["template", "list", "--json"], Route.NATIVE),
            (["config", "--json"], Route.NATIVE),
            (["template", "auth", "login"], Route.REJECTED),
            (["auth", "login"], Route.REJECTED),
            (["auth"], Route.REJECTED),
            (["sandbox", "list"], Route.FORWARD),
            (["template", "delete", "tpl-1"], Route.FORWARD),
            (["template", "init"], Route.FORWARD),
            (["template"], Route.FORWARD),
            (["--verbose"], Route.NATIVE),
            (["-v", "template", "build"], Route.NATIVE),
            (["-v", "template", "list"], Route.NATIVE),
            (["--verbose", "-v", "config"], Route.NATIVE),
            (["--verbose", "auth", "login"], Route.REJECTED),
            (["-v", "template", "auth"], Route.REJECTED),
            (["-v", "sandbox", "list"], Route.FORWARD),
        ],
    )
    def test_routes(self, argv, expected):
        """Each invocation should be routed to the right place."""
        assert classify(argv) == expected

    def test_command_path_stops_at_option(self):
        """Option values should not be mistaken for subcommands."""
        assert command_path(["template", "--name", "auth"]) == ["template"]

    def test_command_path_skips_leading_root_flags(self):
        """Root flags before the first subcommand should not end the path."""
        assert command_path(["-v", "template", "build"]) == ["template", "build"]

    def test_split_root_flags(self):
        """Only the leading run of root flags should be split off."""
        assert split_root_flags(["-v", "--verbose", "sandbox", "-v"]) == (
            ["-v", "--verbose"],
            ["sandbox", "-v"],
        )


class TestInjectionOverlay:
    """Tests for injection_overlay."""

    def test_injects_all_when_unset(self):
        """Every configured credential should be injected into an empty environment."""
        assert injection_overlay(CREDENTIALS, {}) == {
            "E2B_DOMAIN": "corp.dev",
            "E2B_ACCESS_TOKEN": "sk_e2b_tok",
            "E2B_API_KEY": "e2b_key",
        }

    def test_existing_variables_not_overridden(self):
        """Variables the caller set should be left alone."""
        overlay = injection_overlay(CREDENTIALS, {"E2B_DOMAIN": "mine.dev", "E2B_API_KEY": ""})
        assert overlay == {"E2B_ACCESS_TOKEN": "sk_e2b_tok"}

    def test_absent_credentials_not_injected(self):
        """Absent credentials should not become empty variables."""
        assert injection_overlay(CredentialBundle(), {}) == {}


class TestCommandForwarder:
    """Tests for CommandForwarder."""

    def test_forwards_with_injected_credentials(self, fake_runner):
        """Arguments should pass through untouched with credentials added."""
        forwarder = make_forwarder(fake_runner, environ={"E2B_DOMAIN": "mine.dev"})

        exit_code = forwarder.forward(["sandbox", "list", "--json"])

        assert exit_code == 0
        call = fake_runner.calls[0]
        assert call.cmd == [E2B_PATH, "sandbox", "list", "--json"]
        assert call.capture_output is False
        assert call.env_overlay == {"E2B_ACCESS_TOKEN": "sk_e2b_tok", "E2B_API_KEY": "e2b_key"}

    def test_propagates_exit_code(self, fake_runner):
        """The companion CLI's exit code should be returned."""
        fake_runner.results[f"{E2B_PATH} sandbox"] = [(3, "")]
        forwarder = make_forwarder(fake_runner)

        assert forwarder.forward(["sandbox", "kill", "abc"]) == 3

    @pytest.mark.parametrize(
        "argv",
        [["template", "auth", "login"], ["auth", "logout"], ["--verbose", "auth", "login"]],
    )
    def test_auth_rejected_without_side_effects(self, fake_runner, argv):
        """auth commands should be refused before any lookup or subprocess."""
        loader = CredentialLoader()
        forwarder = make_forwarder(fake_runner, loader=loader)

        with pytest.raises(ForwardingError) as exc_info:
            forwarder.forward(argv)

        assert exc_info.value.code == "auth_not_supported"
        assert fake_runner.calls == []
        assert forwarder.lookups == []
        assert loader.calls == 0

    def test_missing_companion_cli(self, fake_runner):
        """A missing e2b CLI should be reported with an install hint."""
        loader = CredentialLoader()
        forwarder = make_forwarder(fake_runner, loader=loader, which_result=None)

        with pytest.raises(ForwardingError) as exc_info:
            forwarder.forward(["sandbox", "list"])

        assert exc_info.value.code == "companion_not_found"
        assert COMPANION_INSTALL_HINT in exc_info.value.message
        assert fake_runner.calls == []
        assert loader.calls == 0

    def test_root_flags_not_forwarded(self, fake_runner):
        """Leading root flags belong to aws-e2b and should be dropped."""
        forwarder = make_forwarder(fake_runner)

        assert forwarder.forward(["-v", "sandbox", "list"]) == 0

        assert fake_runner.calls[0].cmd == [E2B_PATH, "sandbox", "list"]
