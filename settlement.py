from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Tuple

from models import SettlementTransaction
from utils import TOLERANCE, round_money, to_decimal

def compute_balances(payer_rows: Iterable[Tuple[int, Decimal]],
                     split_rows: Iterable[Tuple[int, Decimal]]) -> Dict[int, Decimal]:
    """
    Net balance per user: total paid minus total owed, rounded to cents.
    Positive means the user is owed money, negative means the user owes.

    Only users that appear in at least one row are present. The result is
    ordered by user id.
    """
    paid = defaultdict(Decimal)
    for user_id, amount in payer_rows:
        paid[user_id] += to_decimal(amount)

    owed = defaultdict(Decimal)
    for user_id, amount in split_rows:
        owed[user_id] += to_decimal(amount)

    users = sorted(set(paid) | set(owed))
    return {uid: round_money(paid[uid] - owed[uid]) for uid in users}

def minimize_debts(balances: Mapping[int, Decimal]) -> List[SettlementTransaction]:
    """
    Turn net balances into settlement transactions.

    Greedy largest-first matching: the biggest debtor pays the biggest
    creditor as much as either can take, then whichever side is settled
    moves on. This bounds the output at debtors + creditors - 1 payments
    but is not an exact minimum-transaction solver; callers rely on this
    exact output, so ties must resolve the same way on every run.
    """
    debtors = []
    creditors = []

    # Ascending user id first, so stable sorts below break ties reproducibly
    for user_id, balance in sorted(balances.items()):
        amount = round_money(balance)
        if amount < -TOLERANCE:
            debtors.append([user_id, amount])
        elif amount > TOLERANCE:
            creditors.append([user_id, amount])

    debtors.sort(key=lambda x: x[1])
    creditors.sort(key=lambda x: x[1], reverse=True)

    transactions = []
    i, j = 0, 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        amount = round_money(min(abs(debtor[1]), creditor[1]))

        if amount > TOLERANCE:
            transactions.append(SettlementTransaction(
                from_user_id=debtor[0],
                to_user_id=creditor[0],
                amount=amount
            ))

        debtor[1] += amount
        creditor[1] -= amount

        if abs(debtor[1]) < TOLERANCE:
            i += 1
        if creditor[1] < TOLERANCE:
            j += 1

    return transactions
