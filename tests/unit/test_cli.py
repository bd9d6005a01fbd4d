"""
Tests for the CLI.

  prdsmith config
  prdsmith sections
  prdsmith ask PROMPT [--section S] [--conversation C] [--stream] [--model M] [--temperature T]
"""

from unittest.mock import MagicMock, patch

import pytest

from prdsmith.__main__ import cmd_ask, cmd_sections, create_parser
from prdsmith.components import OrchestratorComponents
from prdsmith.errors import UpstreamError, UpstreamErrorKind
from prdsmith.llm.templates import SECTION_TEMPLATES


def _ask_args(prompt="We are building a task manager.", **overrides):
    parser = create_parser()
    argv = ["ask", prompt]
    for flag, value in overrides.items():
        if value is True:
            argv.append(f"--{flag}")
        else:
            argv.extend([f"--{flag}", str(value)])
    return parser.parse_args(argv)


class TestParser:
    """Parser-level tests."""

    def test_no_command(self):
        args = create_parser().parse_args([])
        assert args.command is None

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--version"])
        assert "PRDSmith" in capsys.readouterr().out

    def test_log_level_choices(self):
        parser = create_parser()
        assert parser.parse_args(["--log-level", "DEBUG", "config"]).log_level == "DEBUG"
        with pytest.raises(SystemExit):
            parser.parse_args(["--log-level", "LOUD", "config"])

    def test_ask_defaults(self):
        args = _ask_args()
        assert args.command == "ask"
        assert args.prompt == "We are building a task manager."
        assert args.section == "introduction"
        assert args.conversation == "cli"
        assert args.stream is False
        assert args.model is None
        assert args.temperature is None

    def test_ask_options(self):
        args = _ask_args(section="goals", conversation="c9", stream=True, model="gpt-3.5-turbo", temperature=0.2)
        assert args.section == "goals"
        assert args.conversation == "c9"
        assert args.stream is True
        assert args.model == "gpt-3.5-turbo"
        assert args.temperature == 0.2

    def test_ask_requires_prompt(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["ask"])


class TestSectionsCommand:

    def test_lists_every_section(self, capsys):
        assert cmd_sections() == 0
        output = capsys.readouterr().out
        for name in SECTION_TEMPLATES:
            assert name in output


class TestAskCommand:

    @pytest.mark.asyncio
    async def test_prints_response(self, settings, scripted_client, capsys):
        client = scripted_client(["What problem does it solve?"])
        with patch.object(OrchestratorComponents, "create_client", return_value=client):
            exit_code = await cmd_ask(_ask_args(section="goals"), settings)

        captured = capsys.readouterr()
        assert exit_code == 0
        assert "What problem does it solve?" in captured.out
        assert "Tokens: 15" in captured.err
        _, params = client.calls[0]
        assert params.temperature == SECTION_TEMPLATES["goals"].temperature

    @pytest.mark.asyncio
    async def test_stream_writes_chunks(self, settings, scripted_client, capsys):
        client = scripted_client(stream_scripts=[["Who ", "are ", "your users?"]])
        with patch.object(OrchestratorComponents, "create_client", return_value=client):
            exit_code = await cmd_ask(_ask_args(stream=True), settings)

        captured = capsys.readouterr()
        assert exit_code == 0
        assert "Who are your users?\n" in captured.out
        assert captured.out.count("Who are your users?") == 1

    @pytest.mark.asyncio
    async def test_overrides_reach_upstream(self, settings, scripted_client):
        client = scripted_client()
        with patch.object(OrchestratorComponents, "create_client", return_value=client):
            await cmd_ask(_ask_args(model="ollama/llama3", temperature=0.1), settings)

        _, params = client.calls[0]
        assert params.model == "ollama/llama3"
        assert params.temperature == 0.1

    @pytest.mark.asyncio
    async def test_rejected_prompt_exits_nonzero(self, settings, scripted_client, capsys):
        client = scripted_client()
        with patch.object(OrchestratorComponents, "create_client", return_value=client):
            exit_code = await cmd_ask(_ask_args("How do I crack passwords?"), settings)

        assert exit_code == 1
        assert "Content filter violation" in capsys.readouterr().err
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_upstream_failure_exits_nonzero(self, settings, scripted_client, capsys):
        error = UpstreamError.from_kind(UpstreamErrorKind.UNAUTHORIZED, "invalid key")
        with patch.object(OrchestratorComponents, "create_client", return_value=scripted_client([error])):
            exit_code = await cmd_ask(_ask_args(), settings)

        assert exit_code == 1
        assert "invalid key" in capsys.readouterr().err


class TestMain:

    def test_config_command(self):
        from prdsmith import __main__

        with patch("sys.argv", ["prdsmith", "config"]), \
             patch.object(__main__, "load_settings") as mock_load, \
             patch.object(__main__, "setup_logging"), \
             patch.object(__main__, "cmd_config", return_value=0) as mock_config:
            mock_load.return_value = MagicMock(log_level="INFO")
            assert __main__.main() == 0

        mock_config.assert_called_once_with(mock_load.return_value)

    def test_settings_error_exits_nonzero(self, capsys):
        from prdsmith import __main__

        with patch("sys.argv", ["prdsmith", "config"]), \
             patch.object(__main__, "load_settings", side_effect=ValueError("bad env")):
            assert __main__.main() == 1

        assert "bad env" in capsys.readouterr().err

    def test_log_level_override(self):
        from prdsmith import __main__

        settings = MagicMock(log_level="INFO")
        with patch("sys.argv", ["prdsmith", "--log-level", "DEBUG", "sections"]), \
             patch.object(__main__, "load_settings", return_value=settings), \
             patch.object(__main__, "setup_logging") as mock_setup, \
             patch.object(__main__, "cmd_sections", return_value=0):
            __main__.main()

        assert settings.log_level == "DEBUG"
        mock_setup.assert_called_once_with(settings)
