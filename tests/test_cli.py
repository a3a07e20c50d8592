import pytest

from antigravity_bot import __main__ as cli


def test_parser_defaults():
    args = cli.build_parser().parse_args(["orchestrator"])
    assert args.service == "orchestrator"
    assert args.port == 8000


def test_parser_rejects_unknown_service():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["dashboard"])


def test_main_runs_selected_app(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    cli.main(["master_ai_agent", "--port", "8002"])
    assert calls == [
        (
            "antigravity_bot.agents.master_ai_agent.main:app",
            {"host": "0.0.0.0", "port": 8002, "log_level": "info"},
        )
    ]
