from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict
from datetime import datetime

@dataclass
class User:
    """Represents a user; ghost users have no login credentials"""
    id: Optional[int]
    name: str
    email: Optional[str] = None
    is_ghost: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email or '',
            'is_ghost': self.is_ghost
        }

@dataclass
class Group:
    """Represents an expense-sharing group"""
    id: Optional[int]
    name: str
    created_by: Optional[int]
    created_at: Optional[datetime] = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

@dataclass
class PayerAllocation:
    """How much one user contributed toward paying an expense"""
    user_id: int
    paid_amount: Decimal
    user_name: Optional[str] = None

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'user_name': self.user_name,
            'paid_amount': float(self.paid_amount)
        }

@dataclass
class SplitAllocation:
    """How much one user owes on an expense"""
    user_id: int
    amount_owed: Decimal
    user_name: Optional[str] = None

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'user_name': self.user_name,
            'amount': float(self.amount_owed)
        }

@dataclass
class Expense:
    """Represents an expense record with its payer and split allocations"""
    id: Optional[int]
    group_id: int
    title: str
    amount: Decimal
    description: str = ''
    category: str = 'General'
    created_at: Optional[datetime] = None
    payers: List[PayerAllocation] = field(default_factory=list)
    splits: List[SplitAllocation] = field(default_factory=list)

    @property
    def date(self) -> str:
        return self.created_at.date().isoformat() if self.created_at else ''

    @property
    def payer_name(self) -> str:
        if not self.payers:
            return 'Unknown'
        first = self.payers[0].user_name or 'Unknown'
        if len(self.payers) == 1:
            return first
        return f"{first} +{len(self.payers) - 1} others"

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'title': self.title,
            'description': self.description,
            'amount': float(self.amount),
            'category': self.category,
            'date': self.date,
            'payer_name': self.payer_name,
            'payer_id': self.payers[0].user_id if self.payers else None,
            'payers': [p.to_dict() for p in self.payers],
            'splits': [s.to_dict() for s in self.splits]
        }

@dataclass
class SettlementTransaction:
    """A suggested payment from a debtor to a creditor"""
    from_user_id: int
    to_user_id: int
    amount: Decimal

    def to_dict(self):
        return {
            'from_user_id': self.from_user_id,
            'to_user_id': self.to_user_id,
            'amount': float(self.amount)
        }

@dataclass
class ExpenseImpact:
    """One report row: each member's paid minus owed on a single expense"""
    expense_id: int
    title: str
    date: str
    payer: str
    total_amount: Decimal
    impacts: Dict[int, Decimal] = field(default_factory=dict)

    def to_dict(self):
        return {
            'expense_id': self.expense_id,
            'title': self.title,
            'date': self.date,
            'payer': self.payer,
            'total_amount': float(self.total_amount),
            'impacts': {uid: float(v) for uid, v in self.impacts.items()}
        }

@dataclass
class SettlementReport:
    """Everything a renderer needs to present a group's settlement"""
    group: Group
    members: List[User]
    expenses: List[ExpenseImpact]
    balances: Dict[int, Decimal]
    transactions: List[SettlementTransaction]
    generated_at: datetime

    def member_name(self, user_id: int) -> str:
        for member in self.members:
            if member.id == user_id:
                return member.name
        return 'Unknown'

    def to_dict(self):
        transactions = []
        for t in self.transactions:
            item = t.to_dict()
            item['from_name'] = self.member_name(t.from_user_id)
            item['to_name'] = self.member_name(t.to_user_id)
            transactions.append(item)

        return {
            'group': self.group.to_dict(),
            'members': [m.to_dict() for m in self.members],
            'expenses': [e.to_dict() for e in self.expenses],
            'balances': {uid: float(v) for uid, v in self.balances.items()},
            'transactions': transactions,
            'generated_at': self.generated_at.isoformat()
        }
