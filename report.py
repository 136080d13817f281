from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from ledger import Ledger
from models import Expense, ExpenseImpact, SettlementReport
from utils import round_money

def expense_impact(expense: Expense) -> ExpenseImpact:
    """Each user's paid minus owed on a single expense"""
    impacts = defaultdict(Decimal)
    for payer in expense.payers:
        impacts[payer.user_id] += payer.paid_amount
    for split in expense.splits:
        impacts[split.user_id] -= split.amount_owed

    return ExpenseImpact(
        expense_id=expense.id,
        title=expense.title,
        date=expense.date,
        payer=', '.join(p.user_name or 'Unknown' for p in expense.payers),
        total_amount=expense.amount,
        impacts={uid: round_money(v) for uid, v in sorted(impacts.items())}
    )

def build_report(ledger: Ledger, group_id: int) -> SettlementReport:
    """
    Group metadata, members, per-expense impacts, net balances and the
    suggested settlements, read from one consistent snapshot.
    """
    with ledger.db.transaction():
        group = ledger.get_group(group_id)
        members = ledger.list_members(group_id)
        expenses = ledger.list_expenses(group_id)
        balances, transactions = ledger.settle(group_id)

    return SettlementReport(
        group=group,
        members=members,
        expenses=[expense_impact(e) for e in expenses],
        balances=balances,
        transactions=transactions,
        generated_at=datetime.now()
    )
