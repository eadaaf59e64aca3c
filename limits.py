from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from errors import CacheInconsistency
from models import SemanticType
from taxonomy import CategoryTaxonomy
from trends import round_half_up

logger = logging.getLogger(__name__)

LIMITABLE_TYPES = frozenset({SemanticType.expense, SemanticType.savings})


@dataclass(frozen=True)
class LimitStatus:
    percent: int
    is_unlimited: bool
    is_over_budget: bool
    is_at_limit: bool


def limit_status(limit: Optional[int], spent: int) -> LimitStatus:
    """Spend-vs-limit state for one category.

    A limit of 0 and a missing limit both mean the category is unconstrained.
    """
    limit = limit or 0
    is_unlimited = limit == 0
    if limit > 0:
        percent = round_half_up(100 * spent / limit)
    else:
        percent = 100 if spent > 0 else 0
    is_over_budget = not is_unlimited and spent > limit
    is_at_limit = not is_unlimited and percent == 100 and not is_over_budget
    return LimitStatus(
        percent=percent,
        is_unlimited=is_unlimited,
        is_over_budget=is_over_budget,
        is_at_limit=is_at_limit,
    )


@dataclass(frozen=True)
class LimitCard:
    category: str
    label: str
    limit_cents: int
    spent_cents: int
    status: LimitStatus

    @property
    def remaining_cents(self) -> Optional[int]:
        if self.status.is_unlimited:
            return None
        return self.limit_cents - self.spent_cents


@dataclass(frozen=True)
class LimitReport:
    cards: list[LimitCard] = field(default_factory=list)
    total_limit_cents: int = 0
    total_spent_cents: int = 0
    overall: LimitStatus = field(default_factory=lambda: limit_status(0, 0))
    hidden: list[str] = field(default_factory=list)


def visible_categories(
    limits: Mapping[str, Optional[int]],
    spent_by_category: Mapping[str, int],
    taxonomy: CategoryTaxonomy,
) -> tuple[list[str], list[str]]:
    """Return ``(visible, hidden)`` category ids.

    A category is a candidate when it has a limit entry or saw spend this
    month; candidates the taxonomy no longer knows (deleted custom categories)
    are hidden. Income categories never get a card.
    """
    candidates: dict[str, str] = {}
    for category, limit in limits.items():
        if limit is None:
            continue
        candidates.setdefault(category.casefold(), category)
    for category, spent in spent_by_category.items():
        if spent > 0:
            candidates.setdefault(category.casefold(), category)

    visible: list[str] = []
    hidden: list[str] = []
    for category in candidates.values():
        try:
            known = taxonomy.require(category)
        except CacheInconsistency:
            logger.debug("limit_card_hidden: category=%s", category)
            hidden.append(category)
            continue
        if known.semantic_type not in LIMITABLE_TYPES:
            logger.debug(
                "limit_card_skipped: category=%s type=%s",
                known.id,
                known.semantic_type.value,
            )
            continue
        visible.append(known.id)
    return visible, hidden


def _lookup(mapping: Mapping[str, Optional[int]], category: str) -> int:
    for key, value in mapping.items():
        if key.casefold() == category.casefold():
            return int(value or 0)
    return 0


def limit_cards(
    visible: list[str],
    limits: Mapping[str, Optional[int]],
    spent_by_category: Mapping[str, int],
    taxonomy: CategoryTaxonomy,
) -> list[LimitCard]:
    cards = []
    for category in visible:
        limit = _lookup(limits, category)
        spent = _lookup(spent_by_category, category)
        cards.append(
            LimitCard(
                category=category,
                label=taxonomy.label(category),
                limit_cents=limit,
                spent_cents=spent,
                status=limit_status(limit, spent),
            )
        )
    cards.sort(key=lambda c: c.label.casefold())
    return cards


def overall_status(cards: list[LimitCard]) -> tuple[int, int, LimitStatus]:
    """Return ``(total_limit, total_spent, status)`` across capped cards."""
    # unlimited categories stay out of both sides of the overall ratio
    limited = [c for c in cards if c.limit_cents > 0]
    total_limit = sum(c.limit_cents for c in limited)
    total_spent = sum(c.spent_cents for c in limited)
    return total_limit, total_spent, limit_status(total_limit, total_spent)


def limit_report(
    limits: Mapping[str, Optional[int]],
    spent_by_category: Mapping[str, int],
    taxonomy: CategoryTaxonomy,
) -> LimitReport:
    visible, hidden = visible_categories(limits, spent_by_category, taxonomy)
    cards = limit_cards(visible, limits, spent_by_category, taxonomy)
    total_limit, total_spent, overall = overall_status(cards)
    return LimitReport(
        cards=cards,
        total_limit_cents=total_limit,
        total_spent_cents=total_spent,
        overall=overall,
        hidden=sorted(hidden),
    )
