from datetime import date

from classification import Classification, Classifier, classify
from models import SemanticType, TransactionType
from schemas import TransactionRecord, WalletRecord
from taxonomy import CategoryDef, CategoryTaxonomy


def _txn(category: str, actual: int = 100, **kwargs) -> TransactionRecord:
    return TransactionRecord(
        id=kwargs.pop("id", 1),
        name=kwargs.pop("name", category),
        actual_cents=actual,
        category=category,
        date=kwargs.pop("date", date(2025, 3, 10)),
        **kwargs,
    )


def _wallets() -> list[WalletRecord]:
    return [
        WalletRecord(id=1, name="Checking"),
        WalletRecord(id=2, name="Rainy Day", is_savings_wallet=True),
    ]


def test_income_categories_classify_as_income_case_insensitively() -> None:
    assert classify(_txn("Paycheck")) == Classification.income
    assert classify(_txn("side hustle")) == Classification.income
    assert classify(_txn("Loan Repaid")) == Classification.income
    assert classify(_txn("Groceries", type=TransactionType.income)) == (
        Classification.income
    )


def test_savings_rules() -> None:
    assert classify(_txn("Savings")) == Classification.savings
    assert classify(_txn("Investments")) == Classification.savings
    assert classify(_txn("Food", type=TransactionType.savings)) == (
        Classification.savings
    )


def test_savings_category_wins_over_conflicting_type() -> None:
    txn = _txn("Savings", type=TransactionType.income)
    assert classify(txn) == Classification.savings
    transfer = _txn(
        "Savings",
        type=TransactionType.transfer,
        source_wallet_id=2,
        destination_wallet_id=1,
    )
    assert classify(transfer, _wallets()) == Classification.savings


def test_transfer_category_wins_over_conflicting_type() -> None:
    txn = _txn("Transfer", type=TransactionType.expense, source_wallet_id=1)
    assert classify(txn, _wallets()) == Classification.transfer


def test_transfer_into_savings_wallet_counts_as_savings() -> None:
    wallets = _wallets()
    to_savings = _txn(
        "Transfer",
        type=TransactionType.transfer,
        source_wallet_id=1,
        destination_wallet_id=2,
    )
    to_checking = _txn(
        "Transfer",
        type=TransactionType.transfer,
        source_wallet_id=2,
        destination_wallet_id=1,
    )
    assert classify(to_savings, wallets) == Classification.savings
    assert classify(to_checking, wallets) == Classification.transfer


def test_savings_flag_is_read_at_classification_time() -> None:
    txn = _txn(
        "Transfer",
        type=TransactionType.transfer,
        source_wallet_id=1,
        destination_wallet_id=2,
    )
    wallets = {"1": WalletRecord(id=1, name="Checking")}
    wallets["2"] = WalletRecord(id=2, name="Spare", is_savings_wallet=False)
    assert classify(txn, wallets) == Classification.transfer

    wallets["2"] = WalletRecord(id=2, name="Spare", is_savings_wallet=True)
    assert classify(txn, wallets) == Classification.savings


def test_unknown_destination_wallet_is_plain_transfer() -> None:
    txn = _txn(
        "Transfer",
        type=TransactionType.transfer,
        source_wallet_id=1,
        destination_wallet_id=99,
    )
    assert classify(txn, _wallets()) == Classification.transfer


def test_semantic_type_is_fallback_when_type_missing() -> None:
    taxonomy = CategoryTaxonomy(
        [CategoryDef("Tutoring", "Tutoring", SemanticType.income, custom=True)]
    )
    assert classify(_txn("Tutoring"), taxonomy=taxonomy) == Classification.income
    explicit = _txn("Tutoring", type=TransactionType.expense)
    assert classify(explicit, taxonomy=taxonomy) == Classification.expense


def test_everything_else_is_expense() -> None:
    assert classify(_txn("Groceries")) == Classification.expense
    assert classify(_txn("Something New")) == Classification.expense
    assert classify(_txn("")) == Classification.expense


def test_classifier_is_stable_across_repeated_calls() -> None:
    classifier = Classifier(_wallets(), CategoryTaxonomy())
    samples = [
        _txn("Paycheck"),
        _txn("Food"),
        _txn("Savings"),
        _txn(
            "Transfer",
            type=TransactionType.transfer,
            source_wallet_id=1,
            destination_wallet_id=2,
        ),
    ]
    first = [classifier(t) for t in samples]
    for _ in range(3):
        assert [classifier(t) for t in samples] == first
    assert all(kind in set(Classification) for kind in first)
