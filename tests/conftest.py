import copy
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from journal_engine.db.journal import JournalStore
from journal_engine.db.task_events import TaskEventStore
from journal_engine.db.tasks import TaskStore
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.graph.executor import TaskExecutor


def unique_violation(constraint: str) -> APIError:
    return APIError({
        "code": "23505",
        "message": f'duplicate key value violates unique constraint "{constraint}"',
        "details": None,
        "hint": None,
    })


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data


class FakeQuery:
    """Chainable PostgREST-style query over an in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.values: Any = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.order_by: Optional[tuple] = None
        self.max_rows: Optional[int] = None

    def select(self, columns: str = "*"):
        self.op = "select"
        return self

    def insert(self, values):
        self.op = "insert"
        self.values = values
        return self

    def update(self, values):
        self.op = "update"
        self.values = values
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in list(values))
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) <= value)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        rows = [r for r in self.db.tables.setdefault(self.table_name, []) if all(f(r) for f in self.filters)]
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self.max_rows is not None:
            rows = rows[:self.max_rows]
        return rows

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table_name, self.op))
        if self.op == "insert":
            rows = self.values if isinstance(self.values, list) else [self.values]
            inserted = []
            for row in rows:
                self.db.check_insert(self.table_name, row)
                stored = copy.deepcopy(row)
                self.db.tables.setdefault(self.table_name, []).append(stored)
                inserted.append(copy.deepcopy(stored))
            return FakeResponse(inserted)

        if self.op == "update":
            matched = self._matching()
            for row in matched:
                self.db.check_update(self.table_name, row, self.values)
            for row in matched:
                row.update(copy.deepcopy(self.values))
            return FakeResponse([copy.deepcopy(r) for r in matched])

        return FakeResponse([copy.deepcopy(r) for r in self._matching()])


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, self.params))
        rows = self.db.match_results.get(self.params.get("match_type"), [])
        rows = [r for r in rows if r["similarity"] >= self.params["match_threshold"]]
        rows = sorted(rows, key=lambda r: r["similarity"], reverse=True)
        return FakeResponse(copy.deepcopy(rows[:self.params["match_count"]]))


class FakeSupabase:
    """
    In-memory stand-in for the Supabase client. Enforces the unique indexes
    of the tasks and task_events tables the way Postgres does.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.rpc_calls: List[tuple] = []
        self.match_results: Dict[str, List[Dict[str, Any]]] = {}
        self.inject_sequence_conflicts = 0
        self.auth = MagicMock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def check_insert(self, table: str, row: Dict[str, Any]) -> None:
        existing = self.tables.get(table, [])
        if table == "tasks":
            if self.inject_sequence_conflicts:
                self.inject_sequence_conflicts -= 1
                raise unique_violation("idx_tasks_session_sequence")
            if any(r["session_id"] == row["session_id"] and r["sequence"] == row["sequence"] for r in existing):
                raise unique_violation("idx_tasks_session_sequence")
            if row.get("status") == "running" and self._has_running(row["session_id"], exclude=None):
                raise unique_violation("idx_tasks_one_running_per_session")
        if table == "task_events":
            if any(r["task_id"] == row["task_id"] and r["event_key"] == row["event_key"] for r in existing):
                raise unique_violation("task_events_task_id_event_key_key")

    def check_update(self, table: str, row: Dict[str, Any], values: Dict[str, Any]) -> None:
        if table == "tasks" and values.get("status") == "running" and row.get("status") != "running":
            if self._has_running(row["session_id"], exclude=row["id"]):
                raise unique_violation("idx_tasks_one_running_per_session")

    def _has_running(self, session_id: str, exclude: Optional[str]) -> bool:
        return any(
            r["session_id"] == session_id and r["status"] == "running" and r["id"] != exclude
            for r in self.tables.get("tasks", [])
        )


class FakeLLM:
    """Records prompts and answers through `responder` (or a fixed reply)."""

    def __init__(self, responder: Optional[Callable[..., str]] = None, reply: str = "Hello back"):
        self.responder = responder
        self.reply = reply
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, prompt: str, *, system_prompt: Optional[str] = None, temperature: Optional[float] = None) -> str:
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature})
        if self.responder is not None:
            return self.responder(prompt, system_prompt)
        return self.reply


async def fake_embed(text: str) -> List[float]:
    return [0.1] * 8


@pytest.fixture
def db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def task_store(db) -> TaskStore:
    return TaskStore(db)


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def make_executor(db, llm):
    def factory(handlers=None, llm_fn=None) -> TaskExecutor:
        return TaskExecutor(
            tasks=TaskStore(db),
            events=TaskEventStore(db),
            journal=JournalStore(db),
            llm=llm_fn or llm,
            embed=fake_embed,
            handlers=handlers,
        )
    return factory


@pytest.fixture
def continuation(make_executor) -> ChainContinuation:
    return ChainContinuation(executor_factory=make_executor, base_url="", secret="")


@pytest.fixture
def make_llm():
    return FakeLLM
