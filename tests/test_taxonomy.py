from datetime import date

import pytest

from errors import ValidationError
from models import SemanticType
from periods import MonthKey, parse_month, resolve_month
from taxonomy import BUILTIN_CATEGORIES, CategoryDef, CategoryTaxonomy


def test_builtins_cover_each_semantic_type() -> None:
    taxonomy = CategoryTaxonomy()
    assert len(taxonomy) == len(BUILTIN_CATEGORIES)
    assert "Paycheck" in {c.id for c in taxonomy.of_type(SemanticType.income)}
    assert [c.id for c in taxonomy.of_type(SemanticType.savings)] == ["Savings"]
    assert "food" in taxonomy


def test_custom_category_cannot_shadow_builtin() -> None:
    taxonomy = CategoryTaxonomy(
        [CategoryDef("food", "My Food", SemanticType.income, custom=True)]
    )
    assert taxonomy.get("FOOD").label == "Food"
    assert taxonomy.semantic_type("food") == SemanticType.expense


def test_resolve_exact_and_single_typo() -> None:
    taxonomy = CategoryTaxonomy()
    assert taxonomy.resolve("  groceries ") == "Groceries"
    assert taxonomy.resolve("Grocerie") == "Groceries"
    assert taxonomy.resolve("Completely New") == "Completely New"
    # too short for fuzzy matching
    assert taxonomy.resolve("Gym") == "Gym"


def test_resolve_rejects_ambiguous_and_blank() -> None:
    taxonomy = CategoryTaxonomy(
        [
            CategoryDef("Books", "Books", SemanticType.expense, custom=True),
            CategoryDef("Boots", "Boots", SemanticType.expense, custom=True),
        ]
    )
    with pytest.raises(ValidationError):
        taxonomy.resolve("Bools")
    with pytest.raises(ValidationError):
        taxonomy.resolve("   ")


def test_month_helpers() -> None:
    assert parse_month("March") == 3
    assert parse_month("sep") == 9
    assert parse_month("11") == 11
    with pytest.raises(ValueError):
        parse_month("Smarch")
    with pytest.raises(ValueError):
        parse_month(13)

    assert resolve_month(None, None, today=date(2025, 6, 15)) == MonthKey(2025, 6)
    assert resolve_month("Feb", "2024") == MonthKey(2024, 2)
    with pytest.raises(ValueError):
        resolve_month("Feb", None)

    assert MonthKey(2024, 2).days_in_month == 29
    assert MonthKey(2024, 12).next() == MonthKey(2025, 1)
    assert MonthKey(2025, 1).add_months(-13) == MonthKey(2023, 12)
    assert str(MonthKey(2025, 3)) == "March 2025"
