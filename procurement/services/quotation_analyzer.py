"""
Quotation analyzer: ranks an ad hoc batch of supplier quotations.

Works on plain dicts supplied by the caller and never touches the database.
Scoring inputs (0-100): ``value_score``, ``safety_score``, ``jci_score``
(compliance) and ``delivery_score``. ``price_score`` is derived from
``bid_amount`` relative to the rest of the batch, cheapest = 100.
"""
import math
from typing import Any, Dict, List, Optional

# Business policy: weights of the composite score, summing to 1.
COMPOSITE_WEIGHTS = {
    "price_score": 0.30,
    "value_score": 0.30,
    "safety_score": 0.25,
    "jci_score": 0.10,
    "delivery_score": 0.05,
}

CRITERIA_SCORES = ("safety_score", "value_score", "jci_score", "delivery_score")


def _to_number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def clamp_score(value) -> float:
    """Clamp a criterion score to [0, 100]; non-numeric input scores 0."""
    number = _to_number(value)
    if number is None:
        return 0.0
    return min(100.0, max(0.0, number))


def normalize_bid_amount(value) -> Optional[float]:
    """A usable bid is a finite, non-negative number."""
    number = _to_number(value)
    if number is None or number < 0:
        return None
    return number


def price_scores(bids: List[Optional[float]]) -> List[Optional[float]]:
    """
    Score each bid linearly between the batch's highest (0) and lowest (100)
    bid. Scores are unrounded; only the composite and displayed values are.
    """
    valid = [bid for bid in bids if bid is not None]
    if not valid:
        return [None] * len(bids)

    max_bid = max(valid)
    min_bid = min(valid)
    spread = max_bid - min_bid

    scores = []
    for bid in bids:
        if bid is None:
            scores.append(None)
        elif spread == 0:
            scores.append(100.0)
        else:
            score = 100.0 * (max_bid - bid) / spread
            scores.append(min(100.0, max(0.0, score)))
    return scores


def composite_score(scores: Dict[str, Optional[float]]) -> float:
    total = 0.0
    for key, weight in COMPOSITE_WEIGHTS.items():
        total += weight * (scores.get(key) or 0.0)
    return round(total, 2)


def analyze_quotations(quotations: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Score and rank quotations.

    Returns ``{"quotations": [...], "best_quotation": {...} | None}`` where each
    quotation keeps its original fields (``bid_amount`` as submitted) plus
    ``normalized_bid_amount``, the normalized scores,
    ``composite_score`` and a 1-based ``rank``. Equal composite scores keep
    their input order.
    """
    entries = [dict(q) if isinstance(q, dict) else {} for q in quotations]
    bids = [normalize_bid_amount(entry.get("bid_amount")) for entry in entries]
    prices = price_scores(bids)

    scored = []
    for index, (entry, bid, price) in enumerate(zip(entries, bids, prices)):
        for key in CRITERIA_SCORES:
            entry[key] = clamp_score(entry.get(key))
        entry["normalized_bid_amount"] = bid
        entry["price_score"] = price
        entry["composite_score"] = composite_score(entry)
        if price is not None:
            entry["price_score"] = round(price, 2)
        scored.append((index, entry))

    scored.sort(key=lambda item: (-item[1]["composite_score"], item[0]))

    ranked = []
    for rank, (_, entry) in enumerate(scored, start=1):
        entry["rank"] = rank
        ranked.append(entry)

    return {
        "quotations": ranked,
        "best_quotation": ranked[0] if ranked else None,
    }
