import json

from antigravity_bot.models import AIDecisionRecord, SignalAction, TradeDecision
from antigravity_bot.storage import (
    DECISIONS_KEY,
    MAX_DECISIONS,
    JsonFileStore,
    MemoryStore,
    append_decision,
)


def test_json_store_round_trip(tmp_path):
    path = tmp_path / "state" / "account.json"
    store = JsonFileStore(str(path))
    store.save("trade_balance", 87.5)
    store.save("trade_positions", [{"symbol": "BTCUSDT"}])

    assert json.loads(path.read_text())["trade_balance"] == 87.5
    reopened = JsonFileStore(str(path))
    assert reopened.load("trade_balance") == 87.5
    assert reopened.load("trade_positions") == [{"symbol": "BTCUSDT"}]
    assert reopened.load("missing", "default") == "default"


def test_json_store_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "account.json"
    path.write_text("{not json")
    store = JsonFileStore(str(path))
    assert store.load("trade_balance") is None
    store.save("trade_balance", 1.0)
    assert json.loads(path.read_text()) == {"trade_balance": 1.0}


def test_json_store_clear(tmp_path):
    path = tmp_path / "account.json"
    store = JsonFileStore(str(path))
    store.save("trade_balance", 3.0)
    store.clear()
    assert json.loads(path.read_text()) == {}


def test_decision_log_is_capped():
    store = MemoryStore()
    for i in range(MAX_DECISIONS + 5):
        record = AIDecisionRecord(
            ts=i, symbol="BTCUSDT", decision=TradeDecision(action=SignalAction.HOLD, confidence=50)
        )
        append_decision(store, record)
    history = store.load(DECISIONS_KEY)
    assert len(history) == MAX_DECISIONS
    assert history[0]["ts"] == 5
    assert history[-1]["decision"]["action"] == "HOLD"
