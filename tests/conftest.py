import time

import pytest

from phaseflow.config import ExecutionConfig
from phaseflow.engine import InMemoryDatasetEngine
from phaseflow.listener import NoOpListener
from phaseflow.model import Mapping, Target
from phaseflow.schemas import ALL_PHASES, DEFAULT_OUTPUT, Category, Identifier, Phase, ResourceIdentifier, Trilean
from phaseflow.session import Session


class StubTarget(Target):
    """
    Target kind for tests.

    Attributes:
        provides / requires: table names, ordering resources in every phase
        phases: supported phases (default all)
        dirty: "yes", "no", "unknown" or "error"
        fail: raise during execute
        sleep: seconds to sleep during execute

    Every execution is appended to engine.calls as ("<phase>", name).
    """

    @property
    def phases(self):
        names = self.attr_list("phases")
        return frozenset(Phase.from_string(p) for p in names) if names else frozenset(ALL_PHASES)

    def provides(self, phase):
        return {ResourceIdentifier.of_table(t) for t in self.attr_list("provides")}

    def requires(self, phase):
        return {ResourceIdentifier.of_table(t) for t in self.attr_list("requires")}

    def dirty(self, execution, phase):
        value = self.attr("dirty", "yes")
        if value == "error":
            raise RuntimeError("state unavailable")
        return Trilean(value)

    def _execute(self, execution, phase):
        sleep = float(self.attr("sleep", 0))
        if sleep:
            time.sleep(sleep)
        execution.engine.calls.append((phase.value, self.name))
        if self.attr_bool("fail"):
            raise RuntimeError(f"{self.name} exploded")
        return None


class SleepMapping(Mapping):
    """
    Mapping kind for tests: sleeps `sleep` seconds, then yields one record naming itself.

    Every execution is appended to engine.calls as ("map", name).
    """

    def inputs(self):
        return [Identifier.parse(i) for i in self.attr_list("inputs")]

    def execute(self, execution, inputs):
        time.sleep(float(self.attr("sleep", 0)))
        execution.engine.calls.append(("map", self.name))
        return {DEFAULT_OUTPUT: [{"mapping": self.name}]}


class RecordingListener(NoOpListener):
    """Records (method, name) for every listener call."""

    def __init__(self):
        self.events = []

    def start_lifecycle(self, job, instance, phases):
        self.events.append(("start_lifecycle", job.name))
        return super().start_lifecycle(job, instance, phases)

    def finish_lifecycle(self, token, result):
        self.events.append(("finish_lifecycle", result.name))

    def start_job(self, job, instance, phase, parent):
        self.events.append(("start_job", phase.value))
        return super().start_job(job, instance, phase, parent)

    def finish_job(self, token, result):
        self.events.append(("finish_job", result.phase.value))

    def start_target(self, target, instance, phase, parent):
        self.events.append(("start_target", target.name))
        return super().start_target(target, instance, phase, parent)

    def finish_target(self, token, result):
        self.events.append(("finish_target", result.name))

    def start_check(self, check, parent):
        self.events.append(("start_check", check.name))
        return super().start_check(check, parent)

    def finish_check(self, token, result):
        self.events.append(("finish_check", result.name))

    def calls(self, method):
        return [name for m, name in self.events if m == method]


@pytest.fixture
def engine():
    return InMemoryDatasetEngine()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def make_session(engine, listener):
    """Factory for sessions sharing the engine and listener fixtures, with the stub and sleep kinds."""
    sessions = []

    def factory(config=None, **kwargs):
        kwargs.setdefault("engine", engine)
        kwargs.setdefault("listeners", [listener])
        session = Session(config=config or ExecutionConfig(), **kwargs)
        session.registries[Category.TARGET].register("stub", StubTarget)
        session.registries[Category.MAPPING].register("sleep", SleepMapping)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


@pytest.fixture
def session(make_session):
    return make_session()


@pytest.fixture
def sales_project():
    """
    Two-stage pipeline: raw orders -> filtered paid orders.

    `paid_orders` reads what `orders` builds, so orders must run first.
    """
    return {
        "name": "sales",
        "environment": {"db": "shop"},
        "relations": {
            "raw": {"kind": "table", "database": "${db}", "table": "raw_orders"},
            "orders": {"kind": "table", "database": "${db}", "table": "orders"},
            "paid": {"kind": "table", "database": "${db}", "table": "paid_orders"},
        },
        "mappings": {
            "raw_in": {"kind": "read", "relation": "raw"},
            "orders_in": {"kind": "read", "relation": "orders"},
            "only_paid": {"kind": "filter", "input": "orders_in", "condition": "status == paid"},
        },
        "targets": {
            "orders": {"kind": "relation", "relation": "orders", "mapping": "raw_in"},
            "paid_orders": {"kind": "relation", "relation": "paid", "mapping": "only_paid"},
        },
        "jobs": {
            "main": {"targets": ["orders", "paid_orders"]},
        },
    }


@pytest.fixture
def raw_orders():
    return [
        {"id": 1, "status": "paid"},
        {"id": 2, "status": "open"},
        {"id": 3, "status": "paid"},
    ]
