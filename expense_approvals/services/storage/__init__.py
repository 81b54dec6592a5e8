from .base import ExpenseStoreBase, RuleStoreBase
from .memory import InMemoryExpenseStore, InMemoryRuleStore
from .sqlite import SQLiteExpenseStore, SQLiteRuleStore

__all__ = [
    "ExpenseStoreBase",
    "InMemoryExpenseStore",
    "InMemoryRuleStore",
    "RuleStoreBase",
    "SQLiteExpenseStore",
    "SQLiteRuleStore",
]
