import io
import json
import sys

import pytest
from rich.console import Console

from pymaker import chat_ui, cli, runner
from pymaker.pipeline import Pipeline
from pymaker.runner import CodeExecutor, ExecMode
from pymaker.session import Session


class FakeClient:
    model = "fake-model"

    def __init__(self, replies):
        self.replies = list(replies)

    def generate(self, turns):
        return self.replies.pop(0)


def _console():
    return Console(file=io.StringIO(), width=120, color_system=None)


def _pipeline(tmp_path, replies=()):
    executor = CodeExecutor(tmp_path / "generated", interpreters=[sys.executable])
    return Pipeline(Session(), FakeClient(replies), executor)


def _write_config(tmp_path):
    cfg = tmp_path / "local.yaml"
    cfg.write_text(
        f"interpreters: ['{sys.executable}']\n"
        f"data_paths:\n  generated: '{tmp_path / 'gen'}'\n  logs: '{tmp_path / 'logs'}'\n",
        encoding="utf-8",
    )
    return cfg


def test_quit_and_exit_stop_the_loop(tmp_path):
    p = _pipeline(tmp_path)
    assert cli.handle_slash("/quit", p, _console()) == cli.EXIT
    assert cli.handle_slash("/EXIT", p, _console()) == cli.EXIT


def test_unknown_command(tmp_path):
    out = _console()
    assert cli.handle_slash("/frobnicate", _pipeline(tmp_path), out) is None
    assert "Unknown command /frobnicate" in out.file.getvalue()


def test_save_without_code(tmp_path):
    out = _console()
    cli.handle_slash("/save out.py", _pipeline(tmp_path), out)
    assert "No code to save" in out.file.getvalue()


def test_save_with_filename(tmp_path):
    p = _pipeline(tmp_path, ["```python\nprint(1)\n```"])
    p.request("one")
    target = tmp_path / "kept.py"
    out = _console()
    cli.handle_slash(f"/save {target}", p, out)
    assert target.read_text(encoding="utf-8") == "print(1)"
    assert "Code saved to" in out.file.getvalue()


def test_save_prompt_cancelled(tmp_path, monkeypatch):
    p = _pipeline(tmp_path, ["```python\nprint(1)\n```"])
    p.request("one")
    monkeypatch.setattr(chat_ui, "ask_user", lambda *a, **k: "")
    out = _console()
    cli.handle_slash("/save", p, out)
    assert "Save cancelled" in out.file.getvalue()


def test_clear_and_history(tmp_path):
    p = _pipeline(tmp_path, ["```python\nprint(1)\n```"])
    p.request("one")
    out = _console()
    cli.handle_slash("/history", p, out)
    assert "print(1)" in out.file.getvalue()
    cli.handle_slash("/clear", p, out)
    assert len(p.session) == 0
    assert "Conversation history cleared" in out.file.getvalue()


def test_refine_without_code_does_not_call_model(tmp_path):
    p = _pipeline(tmp_path)
    out = _console()
    cli.handle_slash("/refine make it faster", p, out)
    assert "No code to refine" in out.file.getvalue()
    assert p.metrics.total_requests == 0


def test_refine_with_inline_delta(tmp_path, monkeypatch):
    p = _pipeline(tmp_path, ["```python\nprint(1)\n```", "```python\nprint(2)\n```"])
    p.request("one")
    monkeypatch.setattr(chat_ui, "confirm", lambda *a, **k: False)
    cli.handle_slash("/refine print two", p, _console())
    assert p.session.last_code == "print(2)"
    assert p.session.history[2].content == "Please refine the previous code: print two"


def test_generation_then_execute(tmp_path, monkeypatch):
    p = _pipeline(tmp_path, ["```python\nprint('hello')\n```"])
    monkeypatch.setattr(chat_ui, "confirm", lambda *a, **k: True)
    monkeypatch.setattr(chat_ui, "choose_mode", lambda recommended, out=None: ExecMode.CAPTURED)
    out = _console()
    cli.handle_input("print hello", p, out)
    text = out.file.getvalue()
    assert "hello" in text
    assert p.metrics.successful_executions == 1


def test_install_failure_still_runs(tmp_path, monkeypatch):
    from pymaker.errors import InstallFailure

    code = "try:\n    import flask\nexcept ImportError:\n    pass\nprint('ran')"
    p = _pipeline(tmp_path)

    def failing_install(packages):
        raise InstallFailure(list(packages), "no network")

    monkeypatch.setattr(p, "install", failing_install)
    monkeypatch.setattr(chat_ui, "confirm", lambda *a, **k: True)
    monkeypatch.setattr(chat_ui, "choose_mode", lambda recommended, out=None: ExecMode.CAPTURED)
    out = _console()
    cli.offer_execution(p, code, out)
    text = out.file.getvalue()
    assert "Proceeding anyway" in text
    assert "ran" in text


def test_chat_loop_reports_stats(tmp_path, monkeypatch):
    p = _pipeline(tmp_path)
    inputs = iter(["", "/stats", "/quit"])
    out = _console()
    monkeypatch.setattr(chat_ui, "console", out)
    monkeypatch.setattr(chat_ui, "ask_user", lambda *a, **k: next(inputs))
    monkeypatch.setattr(chat_ui, "setup_readline", lambda *a, **k: (None, None))
    assert cli.cmd_chat({}, None, pipeline=p) == 0
    text = out.file.getvalue()
    assert "Session ended" in text
    assert "Session Statistics" in text


def test_chat_loop_ends_on_eof(tmp_path, monkeypatch):
    def eof(*args, **kwargs):
        raise EOFError

    out = _console()
    monkeypatch.setattr(chat_ui, "console", out)
    monkeypatch.setattr(chat_ui, "ask_user", eof)
    monkeypatch.setattr(chat_ui, "setup_readline", lambda *a, **k: (None, None))
    assert cli.cmd_chat({}, None, pipeline=_pipeline(tmp_path)) == 0
    assert "Session ended" in out.file.getvalue()


def test_main_version(capsys):
    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip()


def test_main_deps_json(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    script = tmp_path / "s.py"
    script.write_text("import os\nimport requests\nfrom numpy import array\n", encoding="utf-8")
    assert cli.main(["--config", str(_write_config(tmp_path)), "deps", str(script), "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["external"] == ["numpy", "requests"]


def test_main_run_returns_script_exit_code(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    script = tmp_path / "s.py"
    script.write_text("print('from file')\nraise SystemExit(3)\n", encoding="utf-8")
    code = cli.main(["--config", str(_write_config(tmp_path)), "run", str(script), "--mode", "captured"])
    assert code == 3
    assert "from file" in capsys.readouterr().out


def test_main_run_missing_file(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    code = cli.main(["--config", str(_write_config(tmp_path)), "run", str(tmp_path / "nope.py"), "--mode", "captured"])
    assert code == 1
    assert "error:" in capsys.readouterr().err


def test_main_gen_without_token(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("HF_TOKEN", raising=False)
    assert cli.main(["--config", str(_write_config(tmp_path)), "gen", "print hello"]) == 2
    assert "HF_TOKEN" in capsys.readouterr().err


def test_main_bad_config(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "bad.yaml"
    bad.write_text("[unclosed\n", encoding="utf-8")
    assert cli.main(["--config", str(bad), "deps", "x.py"]) == 2


@pytest.mark.parametrize("value,expected", [("captured", ExecMode.CAPTURED), ("interactive", ExecMode.INTERACTIVE)])
def test_parse_mode_explicit(value, expected):
    assert cli._parse_mode(value, "input()") is expected


def test_parse_mode_auto():
    assert cli._parse_mode("auto", "name = input()") is ExecMode.INTERACTIVE
    assert cli._parse_mode("auto", "print(1)") is ExecMode.CAPTURED


def test_ctrl_c_during_run_keeps_chat_alive(tmp_path, monkeypatch):
    def interrupted(cmd, mode):
        raise KeyboardInterrupt

    p = _pipeline(tmp_path, ["```python\nimport pygame\n```"])
    inputs = iter(["make a game", "/stats", "/quit"])
    out = _console()
    monkeypatch.setattr(runner, "_spawn", interrupted)
    monkeypatch.setattr(chat_ui, "console", out)
    monkeypatch.setattr(chat_ui, "ask_user", lambda *a, **k: next(inputs))
    monkeypatch.setattr(chat_ui, "setup_readline", lambda *a, **k: (None, None))
    monkeypatch.setattr(chat_ui, "confirm", lambda question, out=None, default=False: question.startswith("Execute"))
    monkeypatch.setattr(chat_ui, "choose_mode", lambda recommended, out=None: recommended)

    assert cli.cmd_chat({}, None, pipeline=p) == 0
    text = out.file.getvalue()
    assert "Stopped:" in text
    assert "Interrupted." not in text
    assert "Goodbye!" in text
    assert p.metrics.failed_executions == 1


def test_run_existing_reports_interrupt(tmp_path, monkeypatch):
    def interrupted(cmd, mode):
        raise KeyboardInterrupt

    script = tmp_path / "game.py"
    script.write_text("print(1)", encoding="utf-8")
    monkeypatch.setattr(runner, "_spawn", interrupted)
    monkeypatch.setattr(chat_ui, "choose_mode", lambda recommended, out=None: ExecMode.INTERACTIVE)
    p = _pipeline(tmp_path)
    out = _console()
    assert cli.handle_input(f"/run {script}", p, out) is None
    assert "Stopped:" in out.file.getvalue()


def test_split_command_keeps_windows_paths():
    assert cli.split_command(r"/save C:\tmp\a.py", posix=False) == ["/save", r"C:\tmp\a.py"]
    assert cli.split_command(r'/save "C:\my dir\a.py"', posix=False) == ["/save", r"C:\my dir\a.py"]


def test_split_command_posix_quotes():
    assert cli.split_command('/save "my file.py"', posix=True) == ["/save", "my file.py"]
    assert cli.split_command('/refine make it "faster', posix=True) == ["/refine", "make", "it", '"faster']
