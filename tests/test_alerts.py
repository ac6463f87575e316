"""Tests for alert models, metric parsing and the rules manager."""
import pytest
import textwrap
from datetime import timedelta

from alerts.rules_manager import RulesManager
from models.alerts import AlertRule, ChannelTarget, TickSummary
from models.enums import ChannelType, EntityType, HealthState, MetricKind
from models.metrics import EntityRef, MetricSample, parse_reading
from conftest import NOW, make_rule


class TestAlertRule:
    def test_requires_entity_target(self):
        with pytest.raises(ValueError):
            AlertRule(id="r", owner_id="u", target=None, metric="cpu",
                      channels=(ChannelTarget("console", ""),))

    def test_enabled_rule_requires_channel(self):
        with pytest.raises(ValueError):
            make_rule(channels=())

    def test_disabled_rule_may_have_no_channels(self):
        assert make_rule(channels=(), enabled=False).channels == ()

    def test_unknown_metric_rejected(self):
        with pytest.raises(ValueError):
            make_rule(metric="temperature")

    def test_unknown_entity_type_rejected(self):
        with pytest.raises(ValueError):
            EntityRef(type="both", id="x")

    def test_cooldown_property(self):
        assert make_rule().cooldown is None
        assert make_rule(cooldown_minutes=5).cooldown == timedelta(minutes=5)

    def test_display_name(self):
        assert make_rule().display_name == "cpu on web-01"
        assert make_rule(name="Web CPU").display_name == "Web CPU"


class TestReadings:
    def test_numeric_parsing(self):
        assert parse_reading("cpu_usage", "85.5").value == 85.5
        assert parse_reading("error_count", 3.9).value == 3

    @pytest.mark.parametrize("raw", [None, True, "high", [1]])
    def test_bad_numeric_rejected(self, raw):
        with pytest.raises(ValueError):
            parse_reading("cpu", raw)

    def test_status_parsing(self):
        assert parse_reading("status", "Offline").state is HealthState.DOWN
        assert parse_reading("status", "weird").state is HealthState.UNKNOWN

    def test_sample_payload(self):
        sample = MetricSample.from_payload(EntityRef(type="server", id="a"),
                                           {"cpu": 10, "status": "up"}, NOW)
        assert sample.to_payload() == {"cpu": 10.0, "status": "up"}
        assert sample.get("cpu_usage").value == 10.0


def test_tick_summary_to_dict():
    d = TickSummary(tick_id="t1", started_at=NOW).to_dict()
    assert d["state"] == "idle"
    assert d["started_at"] == NOW.isoformat()
    assert d["finished_at"] is None


class TestRulesManager:
    def _write(self, tmp_path, body):
        path = tmp_path / "rules.yaml"
        path.write_text(textwrap.dedent(body))
        return path

    def test_parses_rules(self, tmp_path):
        path = self._write(tmp_path, """
            rules:
              - id: web-cpu
                owner: ops
                target: {type: server, id: web-01, name: Web 01}
                metric: cpu
                threshold: 85
                cooldown_minutes: 30
                channels:
                  - {type: email, destination: ops@example.com}
                  - {type: webhook, destination: "https://h.example/x", template: "{{metric}}"}
        """)
        rules = RulesManager(str(path)).get_all_rules()
        assert len(rules) == 1
        rule = rules[0]
        assert rule.target == EntityRef(type=EntityType.SERVER, id="web-01", name="Web 01")
        assert rule.metric is MetricKind.CPU
        assert rule.threshold == 85.0
        assert rule.cooldown_minutes == 30.0
        assert [c.channel for c in rule.channels] == [ChannelType.EMAIL, ChannelType.WEBHOOK]
        assert rule.channels[1].template == "{{metric}}"

    def test_invalid_rules_skipped(self, tmp_path):
        path = self._write(tmp_path, """
            rules:
              - id: no-target
                metric: cpu
                channels: [{type: console, destination: ""}]
              - id: bad-metric
                target: {type: server, id: a}
                metric: temperature
                channels: [{type: console, destination: ""}]
              - id: bad-channel
                target: {type: server, id: a}
                metric: cpu
                channels: [{type: pager, destination: "x"}]
              - id: ok
                target: {type: application, id: api}
                metric: status
                channels: [{type: console, destination: ""}]
        """)
        manager = RulesManager(str(path))
        assert [r.id for r in manager.get_all_rules()] == ["ok"]

    def test_missing_file(self, tmp_path):
        assert RulesManager(str(tmp_path / "nope.yaml")).get_all_rules() == []

    def test_enabled_filter_and_lookup(self, tmp_path):
        path = self._write(tmp_path, """
            rules:
              - id: a
                target: {type: server, id: s}
                metric: cpu
                channels: [{type: console, destination: ""}]
              - id: b
                target: {type: server, id: s}
                metric: disk
                enabled: false
        """)
        manager = RulesManager(str(path))
        assert [r.id for r in manager.get_enabled_rules()] == ["a"]
        assert manager.get_rule("b").enabled is False
        assert manager.get_rule("zzz") is None

    def test_import_into_store(self, tmp_path, temp_db):
        path = self._write(tmp_path, """
            rules:
              - id: a
                target: {type: server, id: s, name: Server S}
                metric: cpu
                threshold: 50
                channels: [{type: console, destination: ""}]
        """)
        assert RulesManager(str(path)).import_into(temp_db) == 1
        assert temp_db.get_rule("a").target.name == "Server S"

    def test_shipped_rules_file_parses(self):
        import os
        path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                            "config", "alert_rules.yaml")
        rules = RulesManager(path).get_all_rules()
        assert len(rules) == 4
