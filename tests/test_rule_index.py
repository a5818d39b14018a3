"""Tests for the rule index."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from vms_rules.exceptions import ConfigurationError
from vms_rules.rules.index import RuleIndex
from vms_rules.rules.models import Rule


def _make_rule(
    id: str = "r1", event_type: str = "car", camera: str | None = None, enabled: bool = True
) -> Rule:
    return Rule(id=id, name=f"Rule {id}", event_type=event_type, camera_name=camera, enabled=enabled)


class TestRuleIndex:
    def test_bucketed_by_event_type(self):
        index = RuleIndex([_make_rule("r1", "car"), _make_rule("r2", "person")])
        assert [r.id for r in index.candidates("car", "gate-1")] == ["r1"]
        assert [r.id for r in index.candidates("person", "gate-1")] == ["r2"]
        assert index.candidates("dog", "gate-1") == ()

    def test_camera_filter(self):
        index = RuleIndex([_make_rule("r1", camera="gate-1"), _make_rule("r2")])
        assert [r.id for r in index.candidates("car", "gate-1")] == ["r1", "r2"]
        assert [r.id for r in index.candidates("car", "lobby")] == ["r2"]

    def test_disabled_rule_never_a_candidate(self):
        index = RuleIndex([_make_rule("r1", enabled=False), _make_rule("r2")])
        assert [r.id for r in index.candidates("car", "gate-1")] == ["r2"]
        index.reload([_make_rule("r1"), _make_rule("r2", enabled=False)])
        assert [r.id for r in index.candidates("car", "gate-1")] == ["r1"]
        assert len(index) == 1

    def test_duplicate_ids_keep_previous_snapshot(self):
        index = RuleIndex([_make_rule("r1")])
        with pytest.raises(ConfigurationError):
            index.reload([_make_rule("r2"), _make_rule("r2")])
        assert [r.id for r in index.candidates("car", "x")] == ["r1"]

    def test_reload_never_mixes_snapshots(self):
        old = [_make_rule(f"old{i}") for i in range(50)]
        new = [_make_rule(f"new{i}") for i in range(50)]
        index = RuleIndex(old)

        def read(_):
            ids = [r.id for r in index.candidates("car", "gate-1")]
            return ids

        def write(n):
            index.reload(new if n % 2 else old)

        with ThreadPoolExecutor(max_workers=8) as pool:
            writes = [pool.submit(write, n) for n in range(200)]
            reads = list(pool.map(read, range(2000)))
            for w in writes:
                w.result()

        for ids in reads:
            assert len(ids) == 50
            prefixes = {i.rstrip("0123456789") for i in ids}
            assert prefixes in ({"old"}, {"new"})
