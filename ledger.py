from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from config import Config
from database import Database
from errors import ConflictError, NotFoundError, ValidationError
from models import Expense, Group, PayerAllocation, SettlementTransaction, SplitAllocation, User
from settlement import compute_balances, minimize_debts
from utils import amounts_match, to_decimal

class Ledger:
    """Entry point for every operation on groups, expenses and balances"""

    def __init__(self, db: Database):
        self.db = db

    # ---------- Expense write contract ----------

    def create_expense(self, group_id: int, title: str, description: str, amount,
                       category: Optional[str], payers: Sequence[PayerAllocation],
                       splits: Sequence[SplitAllocation]) -> Expense:
        """
        Create an expense with its payers and splits as one unit.

        The splits must add up to the amount within a cent, otherwise
        ValidationError is raised and nothing is written.
        """
        expense = self._build_expense(group_id, title, description, amount, category, payers, splits)

        if not amounts_match(expense.amount, [s.amount_owed for s in expense.splits]):
            split_total = sum((s.amount_owed for s in expense.splits), Decimal('0'))
            raise ValidationError(
                f"Split amounts ({split_total:.2f}) do not match total amount ({expense.amount:.2f})"
            )

        with self.db.transaction():
            self._require_group(group_id)
            expense.id = self.db.write_expense(expense)

        return expense

    def update_expense(self, expense_id: int, title: str, description: str, amount,
                       category: Optional[str], payers: Sequence[PayerAllocation],
                       splits: Sequence[SplitAllocation]) -> Expense:
        """
        Replace an expense's fields and all of its allocations.

        Unlike create, the split total is not checked against the amount.
        """
        with self.db.transaction():
            current = self.db.get_expense_by_id(expense_id)
            if current is None:
                raise NotFoundError(f"Expense {expense_id} not found")

            expense = self._build_expense(current.group_id, title, description, amount,
                                          category, payers, splits)
            expense.id = expense_id
            expense.created_at = current.created_at
            self.db.replace_expense(expense_id, expense)

        return expense

    def delete_expense(self, expense_id: int) -> None:
        if not self.db.delete_expense(expense_id):
            raise NotFoundError(f"Expense {expense_id} not found")

    @staticmethod
    def _build_expense(group_id, title, description, amount, category, payers, splits) -> Expense:
        title = (title or '').strip()
        if not title:
            raise ValidationError("Title is required")

        try:
            expense = Expense(
                id=None,
                group_id=group_id,
                title=title,
                amount=to_decimal(amount),
                description=(description or '').strip(),
                category=(category or '').strip() or Config.DEFAULT_CATEGORY,
                payers=[PayerAllocation(p.user_id, to_decimal(p.paid_amount)) for p in payers],
                splits=[SplitAllocation(s.user_id, to_decimal(s.amount_owed)) for s in splits]
            )
        except ValueError as e:
            raise ValidationError(str(e))

        amounts = [expense.amount] + [p.paid_amount for p in expense.payers] + [s.amount_owed for s in expense.splits]
        if any(abs(a) > Config.MAX_AMOUNT for a in amounts):
            raise ValidationError(f"Amounts cannot exceed {Config.MAX_AMOUNT}")
        return expense

    # ---------- Expense reads ----------

    def get_expense(self, expense_id: int) -> Expense:
        expense = self.db.get_expense_by_id(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return expense

    def list_expenses(self, group_id: int, year: int = None, month: int = None) -> List[Expense]:
        """Expenses of a group, newest first, optionally limited to one month"""
        with self.db.transaction():
            self._require_group(group_id)
            if year and month:
                return self.db.get_group_expenses_by_month(group_id, year, month)
            return self.db.get_group_expenses(group_id)

    # ---------- Balances ----------

    def compute_balances(self, group_id: int) -> Dict[int, Decimal]:
        """Net balance per active user of the group, keyed by user id"""
        # Both lists come from one transaction, so no half-written expense is seen
        with self.db.transaction():
            self._require_group(group_id)
            payer_rows = self.db.list_payer_allocations(group_id)
            split_rows = self.db.list_split_allocations(group_id)

        return compute_balances(payer_rows, split_rows)

    def settle(self, group_id: int) -> Tuple[Dict[int, Decimal], List[SettlementTransaction]]:
        balances = self.compute_balances(group_id)
        return balances, minimize_debts(balances)

    # ---------- Group directory ----------

    def create_user(self, name: str, email: Optional[str] = None) -> User:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Name is required")
        return self.db.create_user(name, (email or '').strip() or None)

    def create_group(self, name: str, created_by: int) -> Group:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Group name is required")

        with self.db.transaction():
            if self.db.get_user(created_by) is None:
                raise NotFoundError(f"User {created_by} not found")
            group = self.db.create_group(name, created_by)

        print(f"User {created_by} created group {group.id}")
        return group

    def get_group(self, group_id: int) -> Group:
        return self._require_group(group_id)

    def delete_group(self, group_id: int) -> None:
        if not self.db.delete_group(group_id):
            raise NotFoundError(f"Group {group_id} not found")

    def list_groups(self, user_id: int) -> List[Group]:
        return self.db.list_groups_for_user(user_id)

    def list_members(self, group_id: int) -> List[User]:
        with self.db.transaction():
            self._require_group(group_id)
            return self.db.list_members(group_id)

    def add_member(self, group_id: int, email: Optional[str] = None,
                   name: Optional[str] = None) -> Tuple[User, bool]:
        """
        Add a user to a group by email. Unknown emails become ghost users
        when a name is supplied.
        Returns (member, created_as_ghost).
        """
        email = (email or '').strip() or None
        name = (name or '').strip()

        with self.db.transaction():
            self._require_group(group_id)

            user = self.db.get_user_by_email(email) if email else None
            created = False
            if user is None:
                if not name:
                    raise ValidationError("User not found. Provide a name")
                print(f"User not found, creating ghost user: {name}")
                user = self.db.create_user(name, email, is_ghost=True)
                created = True

            if not self.db.add_member(group_id, user.id):
                raise ConflictError("User is already in the group")

        return user, created

    def _require_group(self, group_id: int) -> Group:
        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group
