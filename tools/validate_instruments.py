from __future__ import annotations
from collections import Counter
from guidance_core.branching import PREREQUISITES
from guidance_core.cooldown import default_policies
from guidance_core.instruments import load_instruments
from guidance_core.severity import THRESHOLDS
from guidance_core.scoring import compute_score


def check_instrument(inst) -> list[str]:
    problems: list[str] = []
    keys = Counter(it.key for it in inst.items)
    dup = [k for k, n in keys.items() if n > 1]
    if dup:
        problems.append(f"duplicate item keys: {dup}")
    for it in inst.items:
        values = [v for v, _, _ in it.choices]
        if values != list(range(values[0], values[0] + len(values))):
            problems.append(f"item {it.index}: choice values not contiguous {values}")
    # every rule must target an existing item
    for idx in PREREQUISITES.get(inst.key, {}):
        if idx >= inst.item_count:
            problems.append(f"rule for missing item {idx}")
    # max_score must be reachable with every item at its top value
    top = {it.index: it.max_value for it in inst.items}
    if inst.key == "stress":
        top = {it.index: (it.min_value if it.reverse else it.max_value) for it in inst.items}
    reached = compute_score(inst.key, top)
    if reached != inst.max_score:
        problems.append(f"max score {inst.max_score} but all-top answers score {reached}")
    bounds = [b for b, _ in THRESHOLDS.get(inst.key, [])]
    if not bounds or bounds[-1] != inst.max_score:
        problems.append("threshold table does not end at the max score")
    return problems


def main():
    instruments = load_instruments()
    policies = default_policies()
    bad = 0
    for key, inst in instruments.items():
        policy = policies.get(key)
        bands = " · ".join(f"≤{b} {label}" for b, label in THRESHOLDS[key])
        print(f"{key}: {inst.item_count} items, max {inst.max_score}, reverse={sorted(inst.reverse_scored)}")
        print(f"  bands: {bands}")
        print(f"  cooldown: {f'{policy.interval_days}d default' if policy else 'exempt'}")
        if inst.sections:
            per = Counter(it.section for it in inst.items)
            print("  sections: " + ", ".join(f"{k}={per[k]}" for k, _ in inst.sections))
        problems = check_instrument(inst)
        for p in problems:
            print(f"  ✗ {p}")
        if not problems:
            print("  ✓ OK")
        bad += len(problems)
        print()
    return 1 if bad else 0


if __name__ == "__main__":
    raise SystemExit(main())
