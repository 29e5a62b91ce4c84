from __future__ import annotations

from planpilot.config import HistoryConfig
from planpilot.memory.history import ConversationHistory, HistoryStore
from planpilot.memory.schema import Turn


def test_history_persists_across_sessions(tmp_path) -> None:
    db_path = tmp_path / "data" / "planpilot.sqlite"
    with HistoryStore(db_path) as store:
        history = ConversationHistory.load(store)
        history.append("user", "make a readme")
        history.append("model", '{"goal": "readme"}')

    with HistoryStore(db_path) as store:
        restored = ConversationHistory.load(store)

    assert restored.turns == [
        Turn(role="user", text="make a readme"),
        Turn(role="model", text='{"goal": "readme"}'),
    ]


def test_store_keeps_only_recent_turns(tmp_path) -> None:
    with HistoryStore(tmp_path / "h.sqlite", max_turns=3) as store:
        store.save([Turn(role="user", text=str(index)) for index in range(5)])

        assert [turn.text for turn in store.load()] == ["2", "3", "4"]


def test_clear_empties_memory_and_store(tmp_path) -> None:
    with HistoryStore(tmp_path / "h.sqlite") as store:
        history = ConversationHistory(store=store)
        history.append("user", "hello")
        history.clear()

        assert len(history) == 0
        assert store.load() == []


def test_from_config_resolves_relative_db_path(tmp_path) -> None:
    config = {"paths": {"db_path": "state/history.sqlite"}, "history": {"max_turns": 10}}

    with HistoryStore.from_config(config, base=tmp_path) as store:
        assert store.db_path == (tmp_path / "state" / "history.sqlite").resolve()
        assert store.max_turns == 10


def test_from_config_falls_back_to_default_turn_limit(tmp_path) -> None:
    config = {"paths": {"db_path": "h.sqlite"}, "history": {"max_turns": 0}}

    with HistoryStore.from_config(config, base=tmp_path) as store:
        assert store.max_turns == HistoryConfig().max_turns == 50
