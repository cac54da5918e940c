from pathlib import Path

import pytest

from features.runs.store import RunStore, run_dir


def test_run_dir_layout(tmp_path: Path) -> None:
    assert run_dir(tmp_path, "abc") == tmp_path / ".design-agent" / "runs" / "abc"


@pytest.mark.parametrize("key", ["", "   ", "../outside.json", "artifacts/../../x", "/etc/passwd"])
def test_unsafe_keys_are_rejected(store, key: str) -> None:
    with pytest.raises(ValueError):
        store.write_text(key, "data")


def test_json_and_lines_round_trip(store) -> None:
    store.write_json("artifacts/sample.json", {"a": [1, 2]})
    assert store.read_json("artifacts/sample.json") == {"a": [1, 2]}

    store.append_line("artifacts/log.jsonl", "one")
    store.append_line("artifacts/log.jsonl", "two\n")
    assert store.read_text("artifacts/log.jsonl") == "one\ntwo\n"


def test_list_matches_one_level(store) -> None:
    store.write_json("artifacts/a.json", {})
    store.write_json("artifacts/b.json", {})
    store.write_json("artifacts/synth/c.json", {})

    assert store.list("artifacts/*.json") == ["artifacts/a.json", "artifacts/b.json"]
    assert store.list("artifacts/synth/*.json") == ["artifacts/synth/c.json"]
    with pytest.raises(ValueError):
        store.list("../*")


def test_list_on_missing_directory_is_empty(tmp_path: Path) -> None:
    assert RunStore(tmp_path / "missing").list("*.json") == []


def test_list_double_star_matches_nested_keys(store) -> None:
    store.write_json("artifacts/a.json", {})
    store.write_json("artifacts/synth/c.json", {})
    store.write_json("artifacts/synth/specialists/ops.json", {})
    store.write_text("artifacts/trace.jsonl", "")

    assert store.list("artifacts/**.json") == [
        "artifacts/a.json", "artifacts/synth/c.json", "artifacts/synth/specialists/ops.json",
    ]
    assert store.list("artifacts/synth/**/*.json") == ["artifacts/synth/specialists/ops.json"]
