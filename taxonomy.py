from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from errors import CacheInconsistency, ValidationError
from models import SemanticType


@dataclass(frozen=True)
class CategoryDef:
    id: str
    label: str
    semantic_type: SemanticType
    custom: bool = False

    @property
    def key(self) -> str:
        return self.id.casefold()


def _builtin(semantic_type: SemanticType, *names: str) -> list[CategoryDef]:
    return [CategoryDef(name, name, semantic_type) for name in names]


BUILTIN_CATEGORIES: tuple[CategoryDef, ...] = tuple(
    _builtin(
        SemanticType.income,
        "Bonus",
        "Debt Added",
        "Freelance",
        "Gifts Received",
        "Paycheck",
        "Refund",
        "Side Hustle",
    )
    + _builtin(SemanticType.savings, "Savings")
    + _builtin(
        SemanticType.expense,
        # tech & digital
        "Cloud & Hosting",
        "Courses & Learning",
        "Domains & Services",
        "Software & Tools",
        "Subscriptions",
        # food & drinks
        "Coffee & Drinks",
        "Dining Out",
        "Food",
        "Groceries",
        "Snacks",
        # housing & utilities
        "Internet",
        "Phone & Mobile",
        "Rent",
        "Utilities",
        # transportation
        "Fuel",
        "Parking",
        "Public Transit",
        "Rideshare",
        "Transportation",
        "Travel",
        "Vehicle Maintenance",
        # personal & lifestyle
        "Clothes",
        "Cosmetics",
        "Fitness",
        "Hobbies",
        "Personal",
        "Salon & Grooming",
        "Shopping",
        # entertainment
        "Entertainment",
        "Movies & Cinema",
        "Music",
        "Parties & Events",
        # health
        "Health/Medical",
        "Pharmacy",
        # family & pets
        "Baby & Kids",
        "Education",
        "Pets",
        # gadgets & home
        "Electronics",
        "Gadgets",
        "Home & Garden",
        # financial
        "Bank Fees",
        "Debt Paid",
        "Donations",
        "Gifts",
        "Insurance",
        "Investments",
        "Loans Given",
        "Remittance",
        "Taxes",
        "Tips & Service",
        # general
        "Miscellaneous",
    )
)

# Shorter inputs are too easy to mis-resolve with a single edit.
_FUZZY_MIN_LENGTH = 4


class CategoryTaxonomy:
    """Built-in categories merged with the user's live custom categories."""

    def __init__(self, custom: Iterable[CategoryDef] = ()) -> None:
        self._by_key: dict[str, CategoryDef] = {}
        for category in BUILTIN_CATEGORIES:
            self._by_key[category.key] = category
        for category in custom:
            # built-ins win; custom duplicates are rejected on creation
            self._by_key.setdefault(category.key, category)

    def __contains__(self, category_id: object) -> bool:
        return isinstance(category_id, str) and category_id.casefold() in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def all(self) -> list[CategoryDef]:
        return list(self._by_key.values())

    def of_type(self, semantic_type: SemanticType) -> list[CategoryDef]:
        return [c for c in self._by_key.values() if c.semantic_type == semantic_type]

    def get(self, category_id: Optional[str]) -> Optional[CategoryDef]:
        if not category_id:
            return None
        return self._by_key.get(category_id.casefold())

    def require(self, category_id: str) -> CategoryDef:
        category = self.get(category_id)
        if category is None:
            raise CacheInconsistency(f"Unknown category: {category_id}")
        return category

    def semantic_type(self, category_id: Optional[str]) -> Optional[SemanticType]:
        category = self.get(category_id)
        return category.semantic_type if category else None

    def label(self, category_id: str) -> str:
        category = self.get(category_id)
        return category.label if category else category_id

    def resolve(self, raw: str) -> str:
        """Map free text onto a known category id.

        Exact (case-insensitive) matches and unique single-edit typos resolve to
        the canonical id. Unknown text is kept as entered.
        """
        cleaned = raw.strip()
        if not cleaned:
            raise ValidationError("Category is required")
        exact = self.get(cleaned)
        if exact:
            return exact.id
        if len(cleaned) < _FUZZY_MIN_LENGTH:
            return cleaned

        input_key = cleaned.casefold()
        best_distance: Optional[int] = None
        best: list[CategoryDef] = []
        for category in self._by_key.values():
            dist = int(Levenshtein.distance(input_key, category.key))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted(c.id for c in best))
                raise ValidationError(
                    f"Category '{cleaned}' is ambiguous; matches: {options}"
                )
            return best[0].id
        return cleaned
