"""Alert rules loading and management."""
import logging
import yaml
from pathlib import Path

from models.alerts import AlertRule, ChannelTarget
from models.enums import EntityType
from models.metrics import EntityRef

logger = logging.getLogger("alertmonitor.alerts.rules")


class RulesManager:
    """Rule definitions kept in a YAML file, importable into the rule store.

    File layout:

        rules:
          - id: web-01-cpu
            owner: ops
            target: {type: server, id: web-01, name: Web 01}
            metric: cpu
            threshold: 80
            cooldown_minutes: 15
            channels:
              - {type: email, destination: ops@example.com}
    """

    def __init__(self, rules_path="config/alert_rules.yaml"):
        self.rules_path = Path(rules_path)
        self.rules = []
        self.load()

    def load(self):
        if not self.rules_path.exists():
            logger.warning(f"Alert rules file not found: {self.rules_path}")
            return
        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}
        self.rules = self._parse_rules(data.get("rules", []))
        logger.info(f"Loaded {len(self.rules)} rules")

    def _parse_rules(self, raw_rules):
        rules = []
        for r in raw_rules:
            try:
                rules.append(self._parse_rule(r))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Invalid rule {r.get('id') if isinstance(r, dict) else r}: {e}")
        return rules

    @staticmethod
    def _parse_rule(r):
        target = r["target"]
        if not isinstance(target, dict):
            raise ValueError("target must be a mapping with type and id")
        cooldown = r.get("cooldown_minutes")
        return AlertRule(
            id=str(r["id"]),
            owner_id=str(r.get("owner", "default")),
            target=EntityRef(
                type=EntityType(target.get("type", "server")),
                id=str(target["id"]),
                name=target.get("name", ""),
            ),
            metric=r["metric"],
            threshold=float(r.get("threshold", 0)),
            enabled=bool(r.get("enabled", True)),
            channels=tuple(ChannelTarget.from_dict(c) for c in r.get("channels", [])),
            cooldown_minutes=float(cooldown) if cooldown is not None else None,
            name=r.get("name", ""),
        )

    def import_into(self, store):
        """Upsert every loaded rule (and its target entity) into the store."""
        for rule in self.rules:
            store.save_rule(rule)
        logger.info(f"Imported {len(self.rules)} rules from {self.rules_path}")
        return len(self.rules)

    def get_enabled_rules(self):
        return [r for r in self.rules if r.enabled]

    def get_rule(self, rule_id):
        for r in self.rules:
            if r.id == rule_id:
                return r
        return None

    def get_all_rules(self):
        return self.rules
