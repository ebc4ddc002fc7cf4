from __future__ import annotations

import json

from bluffbrain import cli

STATE = {
    "playerHand": [{"suit": "hearts", "rank": "3", "id": "h3"}],
    "aiHand": [],
    "centerPile": [],
    "currentTurn": "ai",
}


def test_decide_prints_action_payload(tmp_path, capsys) -> None:
    code = cli.main(["decide", json.dumps(STATE), "--storage", str(tmp_path), "--seed", "3"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["action"] == {"type": "PASS"}
    assert payload["source"] == "computed"
    assert (tmp_path / "decisionHistory.json").exists()


def test_decide_reads_state_file_and_reports_fallback(tmp_path, capsys) -> None:
    state_file = tmp_path / "state.json"
    state_file.write_text(json.dumps({"aiHand": "broken"}))
    code = cli.main(["decide", str(state_file), "--storage", str(tmp_path / "store")])
    assert code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["recovered"] is True
    assert payload["action"] == {"type": "PASS"}


def test_reporting_commands(tmp_path, capsys) -> None:
    cli.main(["decide", json.dumps(STATE), "--storage", str(tmp_path)])
    capsys.readouterr()

    assert cli.main(["recent", "--limit", "5", "--storage", str(tmp_path)]) == 0
    recent = json.loads(capsys.readouterr().out)
    assert len(recent) == 1 and recent[0]["decision"]["type"] == "PASS"

    assert cli.main(["performance", "--storage", str(tmp_path)]) == 0
    performance = json.loads(capsys.readouterr().out)
    assert performance["distribution"]["PASS"] == 1

    assert cli.main(["progress", "--storage", str(tmp_path)]) == 0
    progress = json.loads(capsys.readouterr().out)
    assert progress["totalStates"] == 0
