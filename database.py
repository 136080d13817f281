import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Set, Tuple
from models import Expense, Group, PayerAllocation, SplitAllocation, User
from config import Config
from errors import ConflictError, StorageError
from utils import from_cents, to_cents

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        is_ghost INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS expense_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_by INTEGER REFERENCES users(id),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS group_members (
        group_id INTEGER REFERENCES expense_groups(id) ON DELETE CASCADE,
        user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
        joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (group_id, user_id)
    );

    CREATE TABLE IF NOT EXISTS expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id INTEGER NOT NULL REFERENCES expense_groups(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        amount_cents INTEGER NOT NULL,
        category TEXT DEFAULT 'General',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS expense_payers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id),
        paid_cents INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS expense_splits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id),
        owed_cents INTEGER NOT NULL
    );
'''

class Database:
    """
    Record store for users, groups and expenses.

    One instance is created at process start, handed to every component
    that needs storage, and closed at shutdown. All work goes through
    transaction(), so a reader never sees half of an expense write.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or Config.DATABASE_PATH
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = self.get_connection()
        self.init_db()

    def get_connection(self):
        """Open the shared database connection"""
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}")
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def init_db(self):
        """Initialize database tables"""
        with self._lock:
            try:
                self._conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                raise StorageError(f"Migration failed: {e}")

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def transaction(self):
        """
        Run a unit of work atomically. Nested blocks join the outermost one;
        any failure rolls the whole unit back.
        """
        with self._lock:
            if self._conn is None:
                raise StorageError("Database is closed")

            conn = self._conn
            outermost = self._depth == 0
            if outermost:
                conn.execute('BEGIN')
            self._depth += 1
            try:
                yield conn
                if outermost:
                    conn.execute('COMMIT')
            except sqlite3.Error as e:
                if outermost:
                    self._rollback(conn)
                    print(f"Database error, rolled back: {str(e)}")
                raise StorageError(f"Storage operation failed: {e}")
            except Exception as e:
                if outermost:
                    self._rollback(conn)
                    if isinstance(e, StorageError):
                        print(f"Database error, rolled back: {e.message}")
                raise
            finally:
                self._depth -= 1

    @staticmethod
    def _rollback(conn):
        if conn.in_transaction:
            conn.execute('ROLLBACK')

    def ping(self) -> bool:
        with self.transaction() as conn:
            conn.execute('SELECT 1')
        return True

    # ---------- Users ----------

    def create_user(self, name: str, email: Optional[str] = None, is_ghost: bool = False) -> User:
        """Insert a user; emails are unique when present"""
        created_at = datetime.now()
        with self.transaction() as conn:
            if email and self.get_user_by_email(email) is not None:
                raise ConflictError(f"Email {email} is already registered")

            cursor = conn.execute('''
                INSERT INTO users (name, email, is_ghost, created_at)
                VALUES (?, ?, ?, ?)
            ''', (name, email or None, int(is_ghost), created_at.isoformat()))

        return User(
            id=cursor.lastrowid,
            name=name,
            email=email or None,
            is_ghost=is_ghost,
            created_at=created_at
        )

    def get_user(self, user_id: int) -> Optional[User]:
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        return self._row_to_user(row) if row else None

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            is_ghost=bool(row['is_ghost']),
            created_at=_parse_timestamp(row['created_at'])
        )

    # ---------- Groups ----------

    def create_group(self, name: str, created_by: int) -> Group:
        """Insert a group together with its creator's membership"""
        created_at = datetime.now()
        with self.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO expense_groups (name, created_by, created_at)
                VALUES (?, ?, ?)
            ''', (name, created_by, created_at.isoformat()))
            group_id = cursor.lastrowid

            conn.execute('''
                INSERT INTO group_members (group_id, user_id, joined_at)
                VALUES (?, ?, ?)
            ''', (group_id, created_by, created_at.isoformat()))

        return Group(id=group_id, name=name, created_by=created_by, created_at=created_at)

    def get_group(self, group_id: int) -> Optional[Group]:
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM expense_groups WHERE id = ?', (group_id,)).fetchone()

        if not row:
            return None

        return Group(
            id=row['id'],
            name=row['name'],
            created_by=row['created_by'],
            created_at=_parse_timestamp(row['created_at'])
        )

    def list_groups_for_user(self, user_id: int) -> List[Group]:
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT g.* FROM expense_groups g
                JOIN group_members gm ON g.id = gm.group_id
                WHERE gm.user_id = ?
                ORDER BY g.id
            ''', (user_id,)).fetchall()

        return [
            Group(
                id=row['id'],
                name=row['name'],
                created_by=row['created_by'],
                created_at=_parse_timestamp(row['created_at'])
            )
            for row in rows
        ]

    def delete_group(self, group_id: int) -> bool:
        """Delete a group; memberships and expenses cascade"""
        with self.transaction() as conn:
            cursor = conn.execute('DELETE FROM expense_groups WHERE id = ?', (group_id,))
            return cursor.rowcount > 0

    def add_member(self, group_id: int, user_id: int) -> bool:
        """Add a membership. Returns False if the user was already a member"""
        with self.transaction() as conn:
            cursor = conn.execute('''
                INSERT OR IGNORE INTO group_members (group_id, user_id, joined_at)
                VALUES (?, ?, ?)
            ''', (group_id, user_id, datetime.now().isoformat()))
            return cursor.rowcount > 0

    def list_members(self, group_id: int) -> List[User]:
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT u.* FROM users u
                JOIN group_members gm ON u.id = gm.user_id
                WHERE gm.group_id = ?
                ORDER BY u.id ASC
            ''', (group_id,)).fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_member_ids(self, group_id: int) -> Set[int]:
        with self.transaction() as conn:
            rows = conn.execute(
                'SELECT user_id FROM group_members WHERE group_id = ?', (group_id,)
            ).fetchall()
        return {row['user_id'] for row in rows}

    # ---------- Expenses ----------

    def write_expense(self, expense: Expense) -> int:
        """Save an expense and both allocation lists as one unit"""
        created_at = expense.created_at or datetime.now()
        with self.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO expenses (group_id, title, description, amount_cents, category, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (
                expense.group_id,
                expense.title,
                expense.description,
                to_cents(expense.amount),
                expense.category,
                created_at.isoformat()
            ))
            expense_id = cursor.lastrowid
            self._insert_allocations(conn, expense_id, expense)

        return expense_id

    def replace_expense(self, expense_id: int, expense: Expense) -> bool:
        """
        Overwrite an expense's fields and swap its allocations for new ones.
        Returns False (and changes nothing) if the expense does not exist.
        """
        with self.transaction() as conn:
            cursor = conn.execute('''
                UPDATE expenses
                SET title = ?, description = ?, amount_cents = ?, category = ?
                WHERE id = ?
            ''', (
                expense.title,
                expense.description,
                to_cents(expense.amount),
                expense.category,
                expense_id
            ))
            if cursor.rowcount == 0:
                return False

            conn.execute('DELETE FROM expense_payers WHERE expense_id = ?', (expense_id,))
            conn.execute('DELETE FROM expense_splits WHERE expense_id = ?', (expense_id,))
            self._insert_allocations(conn, expense_id, expense)

        return True

    @staticmethod
    def _insert_allocations(conn, expense_id: int, expense: Expense):
        conn.executemany(
            'INSERT INTO expense_payers (expense_id, user_id, paid_cents) VALUES (?, ?, ?)',
            [(expense_id, p.user_id, to_cents(p.paid_amount)) for p in expense.payers]
        )
        conn.executemany(
            'INSERT INTO expense_splits (expense_id, user_id, owed_cents) VALUES (?, ?, ?)',
            [(expense_id, s.user_id, to_cents(s.amount_owed)) for s in expense.splits]
        )

    def delete_expense(self, expense_id: int) -> bool:
        """Delete an expense; its allocations cascade"""
        with self.transaction() as conn:
            cursor = conn.execute('DELETE FROM expenses WHERE id = ?', (expense_id,))
            return cursor.rowcount > 0

    def get_expense_by_id(self, expense_id: int) -> Optional[Expense]:
        """Retrieve a specific expense with its allocations"""
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM expenses WHERE id = ?', (expense_id,)).fetchone()
            if not row:
                return None
            return self._load_expense(conn, row)

    def get_group_expenses(self, group_id: int) -> List[Expense]:
        """Retrieve all expenses of a group, newest first"""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT * FROM expenses
                WHERE group_id = ?
                ORDER BY created_at DESC, id DESC
            ''', (group_id,)).fetchall()
            return [self._load_expense(conn, row) for row in rows]

    def get_group_expenses_by_month(self, group_id: int, year: int, month: int) -> List[Expense]:
        """Retrieve a group's expenses for a specific month"""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT * FROM expenses
                WHERE group_id = ?
                AND strftime('%Y', created_at) = ?
                AND strftime('%m', created_at) = ?
                ORDER BY created_at DESC, id DESC
            ''', (group_id, str(year), str(month).zfill(2))).fetchall()
            return [self._load_expense(conn, row) for row in rows]

    @staticmethod
    def _load_expense(conn, row) -> Expense:
        payer_rows = conn.execute('''
            SELECT p.user_id, u.name, p.paid_cents
            FROM expense_payers p
            JOIN users u ON p.user_id = u.id
            WHERE p.expense_id = ?
            ORDER BY p.id
        ''', (row['id'],)).fetchall()

        split_rows = conn.execute('''
            SELECT s.user_id, u.name, s.owed_cents
            FROM expense_splits s
            JOIN users u ON s.user_id = u.id
            WHERE s.expense_id = ?
            ORDER BY s.id
        ''', (row['id'],)).fetchall()

        return Expense(
            id=row['id'],
            group_id=row['group_id'],
            title=row['title'],
            amount=from_cents(row['amount_cents']),
            description=row['description'] or '',
            category=row['category'],
            created_at=_parse_timestamp(row['created_at']),
            payers=[
                PayerAllocation(user_id=p['user_id'], paid_amount=from_cents(p['paid_cents']), user_name=p['name'])
                for p in payer_rows
            ],
            splits=[
                SplitAllocation(user_id=s['user_id'], amount_owed=from_cents(s['owed_cents']), user_name=s['name'])
                for s in split_rows
            ]
        )

    # ---------- Allocations for balance computation ----------

    def list_payer_allocations(self, group_id: int) -> List[Tuple[int, Decimal]]:
        """Every (user_id, paid_amount) row across the group's expenses"""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT ep.user_id, ep.paid_cents
                FROM expense_payers ep
                JOIN expenses e ON ep.expense_id = e.id
                WHERE e.group_id = ?
                ORDER BY ep.id
            ''', (group_id,)).fetchall()
        return [(row['user_id'], from_cents(row['paid_cents'])) for row in rows]

    def list_split_allocations(self, group_id: int) -> List[Tuple[int, Decimal]]:
        """Every (user_id, amount_owed) row across the group's expenses"""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT es.user_id, es.owed_cents
                FROM expense_splits es
                JOIN expenses e ON es.expense_id = e.id
                WHERE e.group_id = ?
                ORDER BY es.id
            ''', (group_id,)).fetchall()
        return [(row['user_id'], from_cents(row['owed_cents'])) for row in rows]

def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
