"""Tag catalog and the pure sample -> notification evaluation."""
import json
from pathlib import Path

from pydantic import TypeAdapter

from plantalerts.schemas.notification import NotificationDraft
from plantalerts.schemas.sample import Sample, TagRule

# (metric, unit, warn_low, warn_high, critical_low, critical_high)
_METRIC_LIMITS = [
    ("Voltage", "V", 210.0, 240.0, 200.0, 250.0),
    ("Current", "A", None, 40.0, None, 50.0),
    ("Temperature", "°C", None, 80.0, None, 95.0),
    ("Frequency", "Hz", 49.5, 50.5, 49.0, 51.0),
    ("FlowRate", "L/min", 10.0, None, 5.0, None),
    ("Vibration", "mm/s", None, 7.1, None, 11.2),
    ("RPM", "rpm", None, 3000.0, None, 3600.0),
    ("Torque", "Nm", None, 400.0, None, 500.0),
]

# Node ids as exposed by the plant's OPC UA server, namespace 2.
_MACHINE_NODES = {
    "Machine1": {"Voltage": 3, "Current": 4, "Temperature": 5, "Frequency": 6,
                 "Vibration": 7, "FlowRate": 8, "RPM": 9, "Torque": 10},
    "Machine2": {"Voltage": 12, "Current": 13, "Temperature": 14, "Frequency": 15,
                 "Vibration": 16, "FlowRate": 17, "RPM": 18, "Torque": 19},
}


def default_tag_rules() -> dict[str, TagRule]:
    rules = {}
    for device, nodes in _MACHINE_NODES.items():
        for metric, unit, warn_low, warn_high, critical_low, critical_high in _METRIC_LIMITS:
            tag_id = f"ns=2;i={nodes[metric]}"
            rules[tag_id] = TagRule(
                tag_id=tag_id,
                device=device,
                metric=metric,
                unit=unit,
                warn_low=warn_low,
                warn_high=warn_high,
                critical_low=critical_low,
                critical_high=critical_high,
            )
    return rules


def load_tag_rules(path: str | None = None) -> dict[str, TagRule]:
    """Loads a JSON list of tag rules, falling back to the built-in catalog."""
    if not path:
        return default_tag_rules()
    rules = TypeAdapter(list[TagRule]).validate_json(Path(path).read_text(encoding="utf-8"))
    return {rule.tag_id: rule for rule in rules}


def _classify(value: float, rule: TagRule) -> tuple[str, str, float] | None:
    if rule.critical_high is not None and value >= rule.critical_high:
        return "critical", "high", rule.critical_high
    if rule.critical_low is not None and value <= rule.critical_low:
        return "critical", "low", rule.critical_low
    if rule.warn_high is not None and value >= rule.warn_high:
        return "warning", "high", rule.warn_high
    if rule.warn_low is not None and value <= rule.warn_low:
        return "warning", "low", rule.warn_low
    return None


def evaluate_sample(
    sample: Sample,
    rules: dict[str, TagRule],
    owners: dict[str, str] | None = None,
    default_operator: str = "operators",
) -> NotificationDraft | None:
    """Derives a notification from one sample, or None when nothing is out of limits.

    Samples with a bad status, without a value or for unknown tags never alert.
    """
    if not sample.status_good or sample.value is None:
        return None
    rule = rules.get(sample.tag_id)
    if rule is None:
        return None

    verdict = _classify(sample.value, rule)
    if verdict is None:
        return None
    severity, direction, limit = verdict

    detail = {
        "tagId": rule.tag_id,
        "device": rule.device,
        "metric": rule.metric,
        "value": sample.value,
        "unit": rule.unit,
        "limit": limit,
        "direction": direction,
        "severity": severity,
        "message": f"{rule.device} {rule.metric} {direction}: {sample.value:g}{rule.unit} (limit {limit:g}{rule.unit})",
    }
    return NotificationDraft(
        operator_id=(owners or {}).get(rule.device, default_operator),
        device=rule.device,
        metric=rule.metric,
        severity=severity,
        text=json.dumps(detail, ensure_ascii=False),
    )
