"""Tests for the vms-rules CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from vms_rules.__main__ import main


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    # CliRunner swaps stderr per invoke; keep root handlers untouched
    monkeypatch.setattr("vms_rules.__main__._configure_logging", lambda verbose: None)


def _write_config(tmp_path: Path, rules_yaml: str) -> Path:
    rules = tmp_path / "rules.yaml"
    lists = tmp_path / "lists.yaml"
    audit = tmp_path / "audit.jsonl"
    rules.write_text(rules_yaml)
    lists.write_text("lists:\n  - {name: deny, type: black_list, items: [ABC123]}\n")
    config = tmp_path / "config.yaml"
    config.write_text(
        f"rules_file: {rules}\nlists_file: {lists}\naudit:\n  path: {audit}\n"
    )
    return config


GOOD_RULES = (
    "rules:\n"
    "  - id: r1\n"
    "    name: Denied plate\n"
    "    eventType: car\n"
    "    conditions: [{attribute: plate, listName: deny}]\n"
    "    actions: [{type: audit_log}, {type: log}]\n"
)


class TestCheckCommand:
    def test_valid_configuration(self, tmp_path: Path):
        config = _write_config(tmp_path, GOOD_RULES)
        result = CliRunner().invoke(main, ["--config", str(config), "check"])
        assert result.exit_code == 0
        assert "1 active rule(s)" in result.output
        assert "1 lookup list(s)" in result.output

    def test_unknown_list_reference(self, tmp_path: Path):
        config = _write_config(tmp_path, GOOD_RULES.replace("listName: deny", "listName: nope"))
        result = CliRunner().invoke(main, ["--config", str(config), "check"])
        assert result.exit_code == 1
        assert "Configuration rejected" in result.output


class TestReplayCommand:
    def test_replay_events(self, tmp_path: Path):
        config = _write_config(tmp_path, GOOD_RULES)
        events = tmp_path / "events.jsonl"
        events.write_text(
            "\n".join(
                [
                    json.dumps({"id": "e1", "type": "car", "cameraName": "gate-1", "attributes": {"plate": "abc123"}}),
                    json.dumps({"id": "e2", "type": "car", "cameraName": "gate-1", "attributes": {"plate": "OK1"}}),
                    "not json",
                ]
            )
        )
        result = CliRunner().invoke(main, ["--config", str(config), "replay", str(events)])
        assert result.exit_code == 0, result.output
        assert "e1 (car @ gate-1) → Denied plate" in result.output
        assert "e2 (car @ gate-1) → no match" in result.output

        audit_lines = (tmp_path / "audit.jsonl").read_text().splitlines()
        assert len(audit_lines) == 1
        assert json.loads(audit_lines[0])["metadata"]["event_id"] == "e1"
