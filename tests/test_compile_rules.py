import json
from pathlib import Path

from quickshop_pricing.engine.models import DiscountKind
from quickshop_pricing.engine.rule_parser import parse_rule
from quickshop_pricing.rules.compile_rules import compile_rules, load_compiled_rules

SAMPLE_RULES = Path(__file__).parent.parent / "src" / "quickshop_pricing" / "rules" / "rules.csv"


def write_csv(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_sample_rules_compile(tmp_path):
    """The shipped rules.csv compiles cleanly, sorted by priority."""
    output = tmp_path / "compiled_rules.json"
    success, rules, errors = compile_rules(SAMPLE_RULES, output, verbose=False)

    assert success, errors
    assert len(rules) == 7
    assert [r.priority for r in rules] == sorted(r.priority for r in rules)
    assert {r.kind for r in rules} == set(DiscountKind)

    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["total_rules"] == 7
    assert data["active_rules"] == 7
    assert data["rules"][0]["rule_id"] == "AUTO-APPAREL-10"


def test_compiled_rules_load_back(tmp_path):
    output = tmp_path / "compiled_rules.json"
    _, rules, _ = compile_rules(SAMPLE_RULES, output, verbose=False)

    loaded = load_compiled_rules(output)
    assert [parse_rule(raw) for raw in loaded] == rules


def test_errors_carry_line_numbers(tmp_path):
    csv_path = write_csv(tmp_path / "rules.csv", (
        "rule_id,type,value,buy_quantity\n"
        "OK,percentage,10,\n"
        "NO-VALUE,percentage,,\n"
        "\n"
        "WHAT,mystery,1,\n"
        "OK,fixed_amount,100,\n"
    ))
    output = tmp_path / "compiled_rules.json"
    success, _, errors = compile_rules(csv_path, output, verbose=False)

    assert not success
    assert errors == [
        "Line 3: Rule NO-VALUE: missing required field 'value'",
        "Line 5: Rule WHAT: unknown discount type 'mystery'",
        "Line 6: duplicate rule_id 'OK'",
    ]
    assert not output.exists()


def test_missing_rules_file(tmp_path):
    success, rules, errors = compile_rules(tmp_path / "nope.csv", tmp_path / "out.json", verbose=False)
    assert not success
    assert rules == []
    assert errors[0].startswith("Rules file not found")


def test_load_compiled_rules_without_file(tmp_path):
    assert load_compiled_rules(tmp_path / "missing.json") == []
    assert load_compiled_rules(None) == []
