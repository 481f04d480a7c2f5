"""
ledger.py

Balance ledger collaborators. The control loop only relies on get_user() and
debit(); SqliteLedger persists balances as decimal text so amounts never go
through floating point, InMemoryLedger backs the simulator and the tests.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

from dryer_control.errors import LedgerError
from dryer_control.models import LedgerUser

ZERO = Decimal(0)


class Ledger(ABC):
    """Read and debit user balances."""

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[LedgerUser]:
        pass

    @abstractmethod
    def debit(self, user_id: int, amount: Decimal) -> Decimal:
        """
        Subtracts amount from the user's balance, clamping at zero.

        Returns:
            The new balance.

        Raises:
            LedgerError: If the user is unknown or the write fails.
        """
        pass

    @staticmethod
    def _check_amount(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount < ZERO:
            raise ValueError(f"Debit amount must not be negative: {amount}")
        return amount


class InMemoryLedger(Ledger):
    """
    Dictionary-backed ledger.
    """

    def __init__(self, users: Optional[Dict[int, LedgerUser]] = None):
        self._users: Dict[int, LedgerUser] = dict(users or {})
        self._lock = threading.Lock()
        self.fail_writes = False

    def add_user(self, user_id: int, name: str, balance: Decimal) -> LedgerUser:
        user = LedgerUser(id=user_id, name=name, balance=Decimal(balance))
        with self._lock:
            self._users[user_id] = user
        return user

    def get_user(self, user_id: int) -> Optional[LedgerUser]:
        with self._lock:
            return self._users.get(user_id)

    def debit(self, user_id: int, amount: Decimal) -> Decimal:
        amount = self._check_amount(amount)
        if self.fail_writes:
            raise LedgerError("Simulated ledger write failure")
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise LedgerError(f"Unknown user: {user_id}")
            new_balance = max(ZERO, user.balance - amount)
            self._users[user_id] = LedgerUser(id=user.id, name=user.name, balance=new_balance)
        return new_balance


class SqliteLedger(Ledger):
    """
    SQLite-backed ledger keyed by the chat user id.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS users (
            user_id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            balance TEXT NOT NULL DEFAULT '0'
        )
    """

    def __init__(self, db_path: str, logger: Optional[logging.Logger] = None):
        self.db_path = db_path
        self.logger = logger or logging.getLogger(__name__)
        self.init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        try:
            conn = self._conn()
            try:
                with conn:
                    conn.execute(self.SCHEMA)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot initialise ledger at {self.db_path}: {e}") from e

    def add_user(self, user_id: int, name: str, balance: Decimal) -> LedgerUser:
        """Registers or updates a user (operator tooling and tests)."""
        balance = Decimal(balance)
        try:
            conn = self._conn()
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO users (user_id, name, balance) VALUES (?, ?, ?) "
                        "ON CONFLICT(user_id) DO UPDATE SET name = excluded.name, balance = excluded.balance",
                        (user_id, name, str(balance)),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot store user {user_id}: {e}") from e
        return LedgerUser(id=user_id, name=name, balance=balance)

    def get_user(self, user_id: int) -> Optional[LedgerUser]:
        try:
            conn = self._conn()
            try:
                row = conn.execute(
                    "SELECT user_id, name, balance FROM users WHERE user_id = ?", (user_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot read user {user_id}: {e}") from e
        if row is None:
            return None
        return LedgerUser(id=row["user_id"], name=row["name"], balance=Decimal(row["balance"]))

    def debit(self, user_id: int, amount: Decimal) -> Decimal:
        amount = self._check_amount(amount)
        try:
            conn = self._conn()
            try:
                with conn:
                    row = conn.execute(
                        "SELECT balance FROM users WHERE user_id = ?", (user_id,)
                    ).fetchone()
                    if row is None:
                        raise LedgerError(f"Unknown user: {user_id}")
                    new_balance = max(ZERO, Decimal(row["balance"]) - amount)
                    conn.execute(
                        "UPDATE users SET balance = ? WHERE user_id = ?", (str(new_balance), user_id)
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot debit user {user_id}: {e}") from e
        self.logger.debug(f"Debited {amount} from user {user_id}, new balance {new_balance}")
        return new_balance
