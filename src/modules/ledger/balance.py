"""
Balance calculator.

Pure functions over ledger entries; no database access. Anything with
`id`, `entry_date`, `debit` and `credit` attributes works as an entry
(ORM rows in the service, plain objects in tests).

Sign convention: debit - credit. Positive totals are outstanding (the student
owes), negative totals are advance (pre-paid credit), zero is nil.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Sequence

from src.modules.ledger.models import BalanceType
from src.shared.utils.money import ZERO, round_money


def entry_sort_key(entry: Any) -> tuple[date, int]:
    """Ledger order: effective date, then insertion order."""
    return (entry.entry_date, entry.id)


def classify_balance(signed_total: Decimal) -> BalanceType:
    signed_total = round_money(signed_total)
    if signed_total > 0:
        return BalanceType.OUTSTANDING
    if signed_total < 0:
        return BalanceType.ADVANCE
    return BalanceType.NIL


def compute_balance(entries: Iterable[Any]) -> tuple[Decimal, BalanceType]:
    """
    Signed balance over the full history and its classification.

    The sum is order-independent; nothing cached on the entries is trusted.
    """
    total = Decimal("0")
    for entry in entries:
        total += (entry.debit or ZERO) - (entry.credit or ZERO)
    total = round_money(total)
    return total, classify_balance(total)


@dataclass(frozen=True)
class RunningBalance:
    """Entry with the account position right after it, in ledger order."""

    entry: Any
    signed_balance: Decimal

    @property
    def balance(self) -> Decimal:
        return abs(self.signed_balance)

    @property
    def balance_type(self) -> BalanceType:
        return classify_balance(self.signed_balance)


def running_balances(
    entries: Iterable[Any], opening_balance: Decimal = ZERO
) -> list[RunningBalance]:
    """balance(n) = balance(n-1) + debit(n) - credit(n), ordered by date then id."""
    running = opening_balance
    rows: list[RunningBalance] = []
    for entry in sorted(entries, key=entry_sort_key):
        running = round_money(running + (entry.debit or ZERO) - (entry.credit or ZERO))
        rows.append(RunningBalance(entry=entry, signed_balance=running))
    return rows


# --- Open-item matching (oldest debt first) ---


@dataclass
class OpenItem:
    """Unmatched part of a debit or credit entry."""

    entry_id: int
    entry_date: date
    open_amount: Decimal

    @property
    def id(self) -> int:
        return self.entry_id


@dataclass(frozen=True)
class Match:
    debit_entry_id: int
    credit_entry_id: int
    amount: Decimal


def open_items(
    entries: Iterable[Any], allocations: Iterable[Any]
) -> tuple[list[OpenItem], list[OpenItem]]:
    """
    Split entries into open debits and open credits.

    `allocations` need `debit_entry_id`, `credit_entry_id` and `amount`.
    Fully matched entries are left out. Both lists come back in ledger order.
    """
    matched_debit: dict[int, Decimal] = {}
    matched_credit: dict[int, Decimal] = {}
    for allocation in allocations:
        matched_debit[allocation.debit_entry_id] = (
            matched_debit.get(allocation.debit_entry_id, ZERO) + allocation.amount
        )
        matched_credit[allocation.credit_entry_id] = (
            matched_credit.get(allocation.credit_entry_id, ZERO) + allocation.amount
        )

    debits: list[OpenItem] = []
    credits: list[OpenItem] = []
    for entry in sorted(entries, key=entry_sort_key):
        if entry.debit and entry.debit > 0:
            remaining = round_money(entry.debit - matched_debit.get(entry.id, ZERO))
            if remaining > 0:
                debits.append(OpenItem(entry.id, entry.entry_date, remaining))
        elif entry.credit and entry.credit > 0:
            unapplied = round_money(entry.credit - matched_credit.get(entry.id, ZERO))
            if unapplied > 0:
                credits.append(OpenItem(entry.id, entry.entry_date, unapplied))
    return debits, credits


def match_open_items(
    debits: Sequence[OpenItem], credits: Sequence[OpenItem]
) -> list[Match]:
    """
    Apply open credits to open debits, oldest debit first, oldest credit first.

    A payment clears the oldest invoices; credit left over after every debit is
    cleared stays open as advance and is picked up by the next debit.
    """
    debit_queue = [OpenItem(d.entry_id, d.entry_date, d.open_amount) for d in sorted(debits, key=entry_sort_key)]
    credit_queue = [OpenItem(c.entry_id, c.entry_date, c.open_amount) for c in sorted(credits, key=entry_sort_key)]

    matches: list[Match] = []
    d_idx = c_idx = 0
    while d_idx < len(debit_queue) and c_idx < len(credit_queue):
        debit = debit_queue[d_idx]
        credit = credit_queue[c_idx]
        amount = min(debit.open_amount, credit.open_amount)
        if amount > 0:
            matches.append(Match(debit.entry_id, credit.entry_id, amount))
            debit.open_amount -= amount
            credit.open_amount -= amount
        if debit.open_amount <= 0:
            d_idx += 1
        if credit.open_amount <= 0:
            c_idx += 1
    return matches
