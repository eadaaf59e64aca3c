from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from models import SemanticType, TransactionType
from taxonomy import CategoryTaxonomy


class Classification(str, Enum):
    income = "income"
    expense = "expense"
    savings = "savings"
    transfer = "transfer"


INCOME_CATEGORIES = frozenset(
    name.casefold()
    for name in (
        "Paycheck",
        "Bonus",
        "Debt Added",
        "Side Hustle",
        "Freelance",
        "Gifts Received",
        "Refund",
        "Loan Repaid",
        "income",
    )
)
SAVINGS_CATEGORIES = frozenset({"investments"})
SAVINGS_CATEGORY = "savings"
TRANSFER_CATEGORY = "transfer"

_SEMANTIC_TO_CLASS = {
    SemanticType.income: Classification.income,
    SemanticType.expense: Classification.expense,
    SemanticType.savings: Classification.savings,
}

WalletsArg = Union[Mapping[Any, Any], Iterable[Any], None]


def _index_wallets(wallets: WalletsArg) -> dict[str, Any]:
    if wallets is None:
        return {}
    if isinstance(wallets, Mapping):
        return {str(key): wallet for key, wallet in wallets.items()}
    return {str(wallet.id): wallet for wallet in wallets}


def _coerce_type(value: Any) -> Optional[TransactionType]:
    if value is None or value == "":
        return None
    try:
        return TransactionType(value)
    except ValueError:
        return None


class Classifier:
    """Maps transactions onto income / expense / savings / transfer.

    Wallet state is read on every call, so a wallet that becomes (or stops
    being) the savings wallet changes how its incoming transfers classify.
    """

    def __init__(
        self,
        wallets: WalletsArg = None,
        taxonomy: Optional[CategoryTaxonomy] = None,
    ) -> None:
        self._wallets = _index_wallets(wallets)
        self.taxonomy = taxonomy

    def _is_savings_wallet(self, wallet_id: Any) -> bool:
        if wallet_id is None:
            return False
        wallet = self._wallets.get(str(wallet_id))
        if wallet is None:
            return False
        return bool(getattr(wallet, "is_savings_wallet", False))

    def __call__(self, txn: Any) -> Classification:
        txn_type = _coerce_type(getattr(txn, "type", None))
        category = (getattr(txn, "category", None) or "").strip()
        category_key = category.casefold()

        if category_key == SAVINGS_CATEGORY:
            return Classification.savings
        if txn_type == TransactionType.transfer or category_key == TRANSFER_CATEGORY:
            if self._is_savings_wallet(getattr(txn, "destination_wallet_id", None)):
                return Classification.savings
            return Classification.transfer
        if txn_type == TransactionType.income or category_key in INCOME_CATEGORIES:
            return Classification.income
        if txn_type == TransactionType.savings or category_key in SAVINGS_CATEGORIES:
            return Classification.savings
        if txn_type is None and self.taxonomy is not None:
            semantic = self.taxonomy.semantic_type(category)
            if semantic is not None:
                return _SEMANTIC_TO_CLASS[semantic]
        return Classification.expense


def classify(
    txn: Any,
    wallets: WalletsArg = None,
    taxonomy: Optional[CategoryTaxonomy] = None,
) -> Classification:
    return Classifier(wallets, taxonomy)(txn)
