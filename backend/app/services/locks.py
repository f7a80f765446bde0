"""In-process per-expense mutexes.

Decisions on one expense run one at a time inside a worker process; the
row lock taken by ``ExpenseRepository.get_expense(for_update=True)``
covers concurrent workers.
"""
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager


class _Slot:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ExpenseLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    @contextmanager
    def hold(self, expense_id: uuid.UUID | str) -> Iterator[None]:
        key = str(expense_id)
        with self._guard:
            slot = self._slots.setdefault(key, _Slot())
            slot.holders += 1
        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._guard:
                slot.holders -= 1
                if slot.holders == 0:
                    self._slots.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


expense_locks = ExpenseLockRegistry()
