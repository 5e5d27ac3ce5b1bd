"""Shared test doubles: in-memory store, controllable clock, Supabase query fake."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from examcore.errors import StoreError
from examcore.leaderboard import live_rank
from examcore.models import AttemptResult, PriorAttempt
from examcore.normalizer import normalize_all
from examcore.snapshots import AttemptSnapshots, MemorySnapshotStore

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeStore:
    """Persistence double with the DatabaseClient surface. Ops named in `fail` raise StoreError."""

    def __init__(self, bank=None, enrolled=None, public_batches=(), fail=()):
        self.bank = list(bank or [])
        self.enrolled = dict(enrolled or {})
        self.public_batches = set(public_batches)
        self.fail = set(fail)
        self.prior = {}
        self.started = []
        self.results = []
        self.responses = {}
        self.rows = []

    def _check(self, op):
        if op in self.fail:
            raise StoreError(f"{op} failed")

    def fetch_question_bank(self, criteria, subject_names=None):
        self._check("fetch_question_bank")
        return normalize_all(self.bank, subject_names)

    def fetch_batch_visibility(self, batch_id):
        self._check("fetch_batch_visibility")
        return batch_id in self.public_batches

    def fetch_enrollment(self, student_id):
        self._check("fetch_enrollment")
        if student_id not in self.enrolled:
            raise StoreError(f"User {student_id} not found")
        return self.enrolled[student_id]

    def record_attempt_start(self, exam_id, student_id, started_at):
        self._check("record_attempt_start")
        self.started.append((exam_id, student_id, started_at))

    def record_attempt_result(self, exam_id, student_id, result):
        self._check("record_attempt_result")
        self.results.append((exam_id, student_id, dict(result)))
        attempt_id = f"attempt-{len(self.results)}"
        self.prior[(exam_id, student_id)] = PriorAttempt(
            answers={},
            result=AttemptResult(
                id=attempt_id,
                student_id=student_id,
                score=result["score"],
                correct_answers=result["correct"],
                wrong_answers=result["wrong"],
                unattempted=result["unattempted"],
                started_at=result.get("started_at"),
                submitted_at=result.get("submitted_at"),
            ),
        )
        return attempt_id

    def record_answers(self, attempt_id, responses):
        self._check("record_answers")
        self.responses[attempt_id] = list(responses)
        for prior in self.prior.values():
            if prior.result and prior.result.id == attempt_id:
                prior.answers.update({
                    r["question_id"]: int(r["selected_option"])
                    for r in responses if r["selected_option"] is not None
                })

    def fetch_prior_attempt(self, exam_id, student_id):
        self._check("fetch_prior_attempt")
        return self.prior.get((exam_id, student_id))

    def fetch_results(self, exam_id):
        self._check("fetch_results")
        return list(self.rows)

    def fetch_live_rank(self, exam_id, student_id):
        return live_rank(sorted(self.rows, key=lambda r: -r["score"]), student_id)


class FakeQuery:
    """Chainable stand-in for a supabase-py table query, evaluated against in-memory rows."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.columns = None
        self.filters = []
        self.bounds = None
        self.max_rows = None
        self.order_by = None

    def select(self, *columns, **kwargs):
        self.columns = columns
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: str(row.get(column)) == str(value))
        return self

    def in_(self, column, values):
        wanted = {str(v) for v in values}
        self.filters.append(lambda row: str(row.get(column)) in wanted)
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def delete(self):
        self.op = "delete"
        return self

    def upsert(self, payload, on_conflict=None):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def execute(self):
        self.db.calls.append(self)
        if self.table in self.db.broken:
            raise RuntimeError(f"{self.table} unavailable")
        if self.op == "upsert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            self.db.upserts.setdefault(self.table, []).extend(rows)
            return SimpleNamespace(data=[self._store(r) for r in rows])
        if self.op == "delete":
            table = self.db.tables.get(self.table, [])
            removed = [r for r in table if all(f(r) for f in self.filters)]
            self.db.tables[self.table] = [r for r in table if r not in removed]
            return SimpleNamespace(data=removed)

        rows = [r for r in self.db.tables.get(self.table, []) if all(f(r) for f in self.filters)]
        rows = [self._join(r) for r in rows]
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda r: r.get(column) or 0, reverse=desc)
        if self.bounds:
            rows = rows[self.bounds[0]:self.bounds[1] + 1]
        if self.max_rows is not None:
            rows = rows[:self.max_rows]
        return SimpleNamespace(data=rows)

    def _store(self, row):
        """Insert or merge on the conflict columns, like Postgres ON CONFLICT DO UPDATE."""
        table = self.db.tables.setdefault(self.table, [])
        keys = (self.on_conflict or "id").split(",")
        for existing in table:
            if all(str(existing.get(k)) == str(row.get(k)) for k in keys):
                existing.update(row)
                return dict(existing)
        stored = {"id": f"{self.table}-{len(table) + 1}", **row}
        table.append(stored)
        return dict(stored)

    def _join(self, row):
        selected = " ".join(self.columns or ())
        row = dict(row)
        if "student_responses(" in selected:
            row["student_responses"] = [
                r for r in self.db.tables.get("student_responses", []) if r.get("student_exam_id") == row.get("id")
            ]
        if "users!inner" in selected:
            row["users"] = next(
                (u for u in self.db.tables.get("users", []) if u.get("uid") == row.get("student_id")), None
            )
        return row


class FakeSupabase:
    def __init__(self, tables=None, broken=()):
        self.tables = tables or {}
        self.broken = set(broken)
        self.calls = []
        self.upserts = {}

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot_store():
    return MemorySnapshotStore()


@pytest.fixture
def snapshots(snapshot_store):
    return AttemptSnapshots(snapshot_store, "stu-1", "exam-1")
