"""Tests for the subprocess runner.

These run the current Python interpreter as the child process so they need
no external tools.
"""

import io
import sys

import pytest

from aws_e2b.runner import (
    OUTPUT_TAIL_LINES,
    CommandExecutionError,
    CommandResult,
    SubprocessRunner,
)


def python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


@pytest.fixture
def stream() -> io.StringIO:
    return io.StringIO()


class TestCommandResult:
    """Tests for CommandResult."""

    def test_success(self):
        """Exit code zero should be success."""
        assert CommandResult(["true"], 0).success
        assert not CommandResult(["false"], 1).success

    def test_output_joins_tail(self):
        """output should join the tail lines."""
        assert CommandResult(["x"], 0, ["a", "b"]).output == "a\nb"


class TestSubprocessRunner:
    """Tests for SubprocessRunner."""

    def test_streams_and_captures_output(self, stream):
        """Output should be echoed live and kept in the tail."""
        result = SubprocessRunner(stream).run(python("print('hello'); print('world')"))

        assert result.success
        assert result.output_tail == ["hello", "world"]
        assert stream.getvalue() == "hello\nworld\n"

    def test_merges_stderr(self, stream):
        """stderr should be captured together with stdout."""
        result = SubprocessRunner(stream).run(
            python("import sys; sys.stderr.write('denied: nope\\n'); sys.exit(1)")
        )

        assert result.exit_code == 1
        assert "denied: nope" in result.output

    def test_tail_is_bounded(self, stream):
        """Only the last lines should be kept."""
        result = SubprocessRunner(stream).run(python("for i in range(80): print(i)"))

        assert len(result.output_tail) == OUTPUT_TAIL_LINES
        assert result.output_tail[-1] == "79"

    def test_env_overlay(self, stream, monkeypatch):
        """Overlay variables should be added to the inherited environment."""
        monkeypatch.setenv("AWS_E2B_TEST_INHERITED", "kept")
        result = SubprocessRunner(stream).run(
            python(
                "import os; print(os.environ['AWS_E2B_TEST_INHERITED']);"
                " print(os.environ['E2B_ACCESS_TOKEN'])"
            ),
            env_overlay={"E2B_ACCESS_TOKEN": "injected"},
        )

        assert result.output_tail == ["kept", "injected"]

    def test_input_text(self, stream):
        """input_text should be written to stdin."""
        result = SubprocessRunner(stream).run(
            python("import sys; print(sys.stdin.read().upper())"), input_text="secret"
        )

        assert result.output_tail == ["SECRET"]

    def test_cwd(self, stream, tmp_path):
        """The command should run in the given directory."""
        result = SubprocessRunner(stream).run(python("import os; print(os.getcwd())"), cwd=tmp_path)

        assert result.output_tail == [str(tmp_path.resolve())]

    def test_missing_executable(self, stream):
        """An executable that cannot be started should raise."""
        with pytest.raises(CommandExecutionError) as exc_info:
            SubprocessRunner(stream).run(["aws-e2b-no-such-command"])
        assert exc_info.value.code == "execution_error"
