import json

import pytest

from conftest import ScriptedInvoker
from multisync import cli


def _reader(lines):
    pending = list(lines)

    def read(prompt):
        if not pending:
            raise EOFError
        return pending.pop(0)

    return read


def test_config_is_required(capsys):
    assert cli.main([], environ={}) == 1
    captured = capsys.readouterr()
    assert "Error: --config is required" in captured.err
    assert "usage:" in captured.out


def test_missing_api_key_is_reported(capsys, tmp_path):
    config_path = tmp_path / "flow.json"
    config_path.write_text("{}")
    assert cli.main(["--config", str(config_path)], environ={}) == 1
    assert "Missing OpenAI API key" in capsys.readouterr().err


def test_setup_checks_key(capsys):
    assert cli.main(["--setup", "--api-key", "sk-test"], environ={}) == 0
    assert "System setup completed successfully." in capsys.readouterr().out


def test_setup_rejects_malformed_key(capsys):
    assert cli.main(["--setup"], environ={"OPENAI_API_KEY": "nope"}) == 1
    assert "should start with sk-" in capsys.readouterr().err


def test_env_file_overlays_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("MULTISYNC_LOG_LEVEL", "INFO")
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-from-file\nMULTISYNC_LOG_LEVEL=DEBUG\n")
    environ = cli.load_environment(str(env_file))
    assert environ["OPENAI_API_KEY"] == "sk-from-file"
    assert environ["MULTISYNC_LOG_LEVEL"] == "DEBUG"


async def test_prompt_loop_runs_each_prompt(single_step_config):
    invoke = ScriptedInvoker({"writer": [{"result": "one"}, {"result": "two"}]})
    written = []

    await cli.run_prompt_loop(single_step_config, "sk-test",
                              read=_reader(["first", "", "second", "exit", "never"]),
                              write=written.append, invoker=invoke)

    assert [json.loads(line) for line in written[1:]] == [{"result": "one"}, {"result": "two"}]
    assert [history[0]["content"] for history in invoke.calls_for("writer")] == ["first", "second"]


async def test_prompt_loop_stops_on_eof(single_step_config):
    invoke = ScriptedInvoker()
    written = []
    await cli.run_prompt_loop(single_step_config, "sk-test", read=_reader([]),
                              write=written.append, invoker=invoke)
    assert invoke.calls == []
    assert len(written) == 1


async def test_run_parser_stops_when_preflight_fails(tmp_path):
    config_path = tmp_path / "flow.json"
    config_path.write_text("{}")
    assert await cli.run_parser(str(config_path), "bad-key") is False


@pytest.mark.parametrize("argv", [["--verbose"], ["--env", "missing.env"]])
def test_flags_are_parsed(argv):
    args = cli.build_parser().parse_args(argv)
    assert args.config is None
