"""
Pick the tariff and total-deposit figures out of one day's DTS rows.

Matching is driven by ClassifierRules so label changes upstream can be handled
with a JSON rules file (CLASSIFIER_RULES_PATH) instead of a code change.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import structlog

from .normalize import parse_amount, round_millions, safe_str

log = structlog.get_logger()

CATEGORY = "transaction_catg"
ACCOUNT_TYPE = "account_type"
TRANSACTION_TYPE = "transaction_type"
AMOUNT = "transaction_today_amt"

AGGREGATE_PHRASES = (
    "public debt",
    "public debt cash issues",
    "table iii",
    "table iiia",
    "table iiib",
    "treasury general account total",
    "total deposits",
    "total withdrawals",
    "deposits total",
    "public debt issues",
    "total, deposits",
)


@lru_cache(maxsize=None)
def _word_pattern(phrase: str) -> re.Pattern:
    return re.compile(rf"(^|\s){re.escape(phrase)}(\s|$)", re.IGNORECASE)


@dataclass(frozen=True)
class MatchRule:
    field: str
    phrases: tuple[str, ...]
    whole_word: bool = False

    def __post_init__(self):
        object.__setattr__(self, "phrases", tuple(p.lower() for p in self.phrases))

    def matches(self, row: dict) -> bool:
        text = safe_str(row.get(self.field))
        if text is None:
            return False
        if self.whole_word:
            return any(_word_pattern(p).search(text) for p in self.phrases)
        lowered = text.lower()
        return any(p in lowered for p in self.phrases)

    @classmethod
    def from_dict(cls, raw: dict) -> "MatchRule":
        phrases = raw.get("phrases")
        if isinstance(phrases, str):
            phrases = [phrases]
        if not raw.get("field") or not phrases:
            raise ValueError(f"rule needs field and phrases: {raw!r}")
        return cls(field=str(raw["field"]), phrases=tuple(str(p) for p in phrases), whole_word=bool(raw.get("whole_word", False)))


@dataclass(frozen=True)
class ClassifierRules:
    tariff: MatchRule = MatchRule(CATEGORY, ("customs",))
    explicit_total: MatchRule = MatchRule(CATEGORY, ("total deposits",), whole_word=True)
    deposit: MatchRule = MatchRule(TRANSACTION_TYPE, ("deposit",))
    aggregate: tuple[MatchRule, ...] = (
        MatchRule(CATEGORY, AGGREGATE_PHRASES),
        MatchRule(ACCOUNT_TYPE, AGGREGATE_PHRASES),
    )

    def is_aggregate(self, row: dict) -> bool:
        return any(rule.matches(row) for rule in self.aggregate)


@dataclass(frozen=True)
class DailyValues:
    tariff: int | None
    total: int | None
    total_source: str  # 'explicit'|'fallback_sum'
    contributing_rows: int


def load_rules(path: str | None) -> ClassifierRules:
    """
    Build rules from a JSON file; missing groups keep their defaults.

    {"tariff": {"field": "transaction_catg", "phrases": ["customs"]},
     "aggregate": [{"field": "account_type", "phrases": ["total deposits"]}]}
    """
    defaults = ClassifierRules()
    if not path:
        return defaults
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"classifier rules must be a JSON object: {path}")
    overrides = {}
    for key in ("tariff", "explicit_total", "deposit"):
        if key in raw:
            overrides[key] = MatchRule.from_dict(raw[key])
    if "aggregate" in raw:
        overrides["aggregate"] = tuple(MatchRule.from_dict(r) for r in raw["aggregate"])
    rules = replace(defaults, **overrides)
    log.info("classifier_rules_loaded", path=path, overridden=sorted(overrides))
    return rules


def find_tariff(rows: Iterable[dict], rules: ClassifierRules) -> float | None:
    for row in rows:
        if rules.tariff.matches(row):
            return parse_amount(row.get(AMOUNT))
    return None


def find_total_deposits(rows: list[dict], rules: ClassifierRules) -> tuple[float | None, str, int]:
    for row in rows:
        if rules.explicit_total.matches(row):
            return parse_amount(row.get(AMOUNT)), "explicit", 1
    # fallback: manual sum of deposit rows, summary lines excluded
    filtered = [r for r in rows if rules.deposit.matches(r) and not rules.is_aggregate(r)]
    total = sum((parse_amount(r.get(AMOUNT)) or 0.0) for r in filtered)
    return total, "fallback_sum", len(filtered)


def classify_rows(rows: list[dict], rules: ClassifierRules | None = None) -> DailyValues:
    rules = rules or ClassifierRules()
    tariff = find_tariff(rows, rules)
    total, source, count = find_total_deposits(rows, rules)
    return DailyValues(
        tariff=round_millions(tariff),
        total=round_millions(total),
        total_source=source,
        contributing_rows=count,
    )
