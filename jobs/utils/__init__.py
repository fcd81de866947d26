from .database import create_task_engine, create_task_ledger

__all__ = [
    "create_task_engine",
    "create_task_ledger",
]
