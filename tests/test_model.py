"""Tests for jobs, kind registries, mappings and the in-memory engine."""

import threading
import time

import pytest

from phaseflow.context import Context
from phaseflow.engine import InMemoryDatasetEngine
from phaseflow.errors import CyclicDependencyError, JobArgumentError, UnresolvedReferenceError
from phaseflow.execution import Execution
from phaseflow.model import KindRegistry
from phaseflow.model.mapping import ReadMapping
from phaseflow.schemas import Category, Identifier, Project, ResourceIdentifier


EVENTS = [
    {"id": 1, "type": "click", "user": "a"},
    {"id": 2, "type": "view", "user": "b"},
    {"id": 3, "type": "click", "user": "b"},
]


@pytest.fixture
def context():
    project = Project.from_dict({
        "name": "p",
        "relations": {
            "events": {"kind": "table", "database": "db", "table": "events"},
        },
        "mappings": {
            "events_in": {"kind": "read", "relation": "events"},
            "narrow": {"kind": "read", "relation": "events", "columns": ["id"]},
            "clicks": {"kind": "filter", "input": "events_in", "condition": "type == click"},
            "views": {"kind": "filter", "input": "events_in", "condition": "type == view"},
            "both": {"kind": "union", "inputs": ["clicks", "views"]},
            "renamed": {"kind": "alias", "input": "clicks"},
            "stage": {
                "kind": "unit",
                "environment": {"wanted": "view"},
                "mappings": {
                    "selected": {"kind": "filter", "input": "events_in", "condition": "type == ${wanted}"},
                    "again": {"kind": "alias", "input": "selected"},
                },
            },
        },
        "jobs": {
            "daily": {
                "targets": ["t1", "t2"],
                "jobs": ["base"],
                "parameters": [{"name": "day"}, {"name": "region", "default": "eu"}],
                "environment": {"x": 1},
            },
            "base": {
                "targets": ["t2", "t3"],
                "parameters": [{"name": "y", "default": 2}],
                "environment": {"x": 0, "z": 3},
            },
            "loop_a": {"jobs": ["loop_b"]},
            "loop_b": {"jobs": ["loop_a"]},
        },
    })
    return Context.for_project(project)


@pytest.fixture
def execution(engine):
    engine.put("db.events", EVENTS)
    return Execution(engine)


# =============================================================================
# Jobs
# =============================================================================


class TestJobArguments:
    def test_defaults_merged(self, context):
        job = context.get_job("daily")
        assert job.arguments({"day": "2024-01-01"}) == {"day": "2024-01-01", "region": "eu"}

    def test_explicit_wins(self, context):
        job = context.get_job("daily")
        assert job.arguments({"day": "d", "region": "us"})["region"] == "us"

    def test_unknown(self, context):
        with pytest.raises(JobArgumentError, match="unknown parameters: zone"):
            context.get_job("daily").arguments({"day": "d", "zone": "x"})

    def test_missing(self, context):
        with pytest.raises(JobArgumentError, match="missing required parameters: day") as exc:
            context.get_job("daily").arguments()
        assert exc.value.names == ["day"]
        assert isinstance(exc.value, ValueError)


class TestJobEnvironment:
    def test_precedence(self, context):
        env = context.get_job("daily").environment({"x": 9})
        assert env == {"y": 2, "x": 9, "z": 3}

    def test_own_environment_over_children(self, context):
        assert context.get_job("daily").environment()["x"] == 1

    def test_instance(self, context):
        instance = context.get_job("daily").instance({"day": "d", "region": "eu"})
        assert instance.key == "_/p/daily(day=d,region=eu)"


class TestEffectiveTargets:
    def test_children_appended_without_duplicates(self, context):
        targets = context.get_job("daily").effective_targets()
        assert targets == [Identifier("t1", "p"), Identifier("t2", "p"), Identifier("t3", "p")]

    def test_job_cycle(self, context):
        with pytest.raises(CyclicDependencyError) as exc:
            context.get_job("loop_a")
        assert exc.value.cycle == ["job 'p/loop_a'", "job 'p/loop_b'", "job 'p/loop_a'"]

    def test_describe(self, context):
        description = context.get_job("base").describe()
        assert description["name"] == "p/base"
        assert description["targets"] == ["t2", "t3"]
        assert description["parameters"] == ["y"]


# =============================================================================
# Kind registry
# =============================================================================


class TestKindRegistry:
    def test_default_kinds(self):
        registry = KindRegistry.create_default(Category.MAPPING)
        assert registry.list_kinds() == ["read", "filter", "union", "alias", "unit"]
        assert registry.get("read") is ReadMapping

    def test_unknown_kind(self):
        registry = KindRegistry.create_default(Category.RELATION)
        with pytest.raises(KeyError, match="No relation kind registered: view"):
            registry.get("view")
        assert not registry.has("view")

    def test_wrong_category(self):
        registry = KindRegistry(Category.TARGET)
        with pytest.raises(TypeError, match="Cannot register ReadMapping as target kind 'read'"):
            registry.register("read", ReadMapping)

    def test_register_custom(self):
        registry = KindRegistry(Category.MAPPING)
        registry.register("scan", ReadMapping)
        assert registry.has("scan")


# =============================================================================
# Mappings
# =============================================================================


class TestMappings:
    """Tests for mapping evaluation through Execution.instantiate."""

    def test_filter(self, context, execution):
        result = execution.instantiate(context.get_mapping("clicks"))
        assert [r["id"] for r in result] == [1, 3]

    def test_shared_input_read_once(self, context, engine, execution):
        execution.instantiate(context.get_mapping("both"))
        assert engine.calls.count(("read", "db.events")) == 1

    def test_union_order(self, context, execution):
        result = execution.instantiate(context.get_mapping("both"))
        assert [r["id"] for r in result] == [1, 3, 2]

    def test_alias_memoized(self, context, execution):
        clicks = execution.instantiate(context.get_mapping("clicks"))
        assert execution.instantiate(context.get_mapping("renamed")) is clicks

    def test_columns(self, context, execution):
        assert execution.instantiate(context.get_mapping("narrow")) == [{"id": 1}, {"id": 2}, {"id": 3}]

    def test_unknown_output(self, context, execution):
        with pytest.raises(UnresolvedReferenceError, match="has no output 'rejected'"):
            execution.instantiate(context.get_mapping("clicks"), "rejected")

    def test_for_target_shares_outputs(self, context, engine, execution):
        execution.instantiate(context.get_mapping("events_in"))
        view = execution.for_target(None)
        view.instantiate(context.get_mapping("events_in"))
        assert engine.calls.count(("read", "db.events")) == 1

    def test_requires(self, context):
        expected = {ResourceIdentifier.of_table("events", "db")}
        assert context.get_mapping("both").requires() == expected
        assert context.get_mapping("stage").requires() == expected

    def test_dependencies(self, context):
        assert context.get_mapping("clicks").dependencies() == [(Category.MAPPING, Identifier("events_in"))]


class TestConcurrentInstantiate:
    """Mapping outputs are shared between targets running on different threads."""

    @pytest.fixture
    def sleepy(self, session):
        session.add_project({
            "name": "m",
            "mappings": {
                "slow": {"kind": "sleep", "sleep": 0.3},
                "fast": {"kind": "sleep"},
                "downstream": {"kind": "sleep", "inputs": ["slow"]},
            },
        })
        return session.get_context("m")

    def test_shared_mapping_executed_once(self, sleepy, engine):
        execution = Execution(engine)
        results = []

        def work():
            view = execution.for_target(None)
            results.append(view.instantiate(sleepy.get_mapping("slow")))

        threads = [threading.Thread(target=work) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 3
        assert all(r is results[0] for r in results)
        assert engine.calls.count(("map", "slow")) == 1

    def test_unrelated_mapping_not_blocked(self, sleepy, engine):
        execution = Execution(engine)
        thread = threading.Thread(target=execution.instantiate, args=(sleepy.get_mapping("slow"),))
        thread.start()
        time.sleep(0.05)

        started = time.monotonic()
        assert execution.instantiate(sleepy.get_mapping("fast")) == [{"mapping": "fast"}]
        assert time.monotonic() - started < 0.2
        thread.join()

    def test_consumer_waits_for_upstream(self, sleepy, engine):
        execution = Execution(engine)
        thread = threading.Thread(target=execution.instantiate, args=(sleepy.get_mapping("slow"),))
        thread.start()
        time.sleep(0.05)

        assert execution.instantiate(sleepy.get_mapping("downstream")) == [{"mapping": "downstream"}]
        thread.join()
        assert engine.calls.count(("map", "slow")) == 1
        assert engine.calls.index(("map", "slow")) < engine.calls.index(("map", "downstream"))


class TestUnitMapping:
    def test_outputs_and_inputs(self, context):
        unit = context.get_mapping("stage")
        assert unit.outputs() == ["selected", "again"]
        assert unit.inputs() == [Identifier("events_in")]

    def test_members_see_unit_environment(self, context, execution):
        unit = context.get_mapping("stage")
        assert [r["id"] for r in execution.instantiate(unit, "selected")] == [2]

    def test_output_selector(self, context, execution):
        ident = Identifier.parse("stage:again")
        unit = context.get_mapping(ident)
        assert [r["id"] for r in execution.instantiate(unit, ident.output_or_default)] == [2]

    def test_unit_environment_is_local(self, context):
        unit = context.get_mapping("stage")
        assert unit.unit_context.evaluate("${wanted}") == "view"
        assert context.evaluate("${wanted}") == "${wanted}"


# =============================================================================
# InMemoryDatasetEngine
# =============================================================================


class TestInMemoryDatasetEngine:
    def test_filter_conditions(self, engine):
        records = [{"a": 1, "b": "x"}, {"a": 2, "b": "x"}]
        assert engine.transform("filter", [records], {"condition": {"a": 1}}) == [records[0]]
        assert engine.transform("filter", [records], {"condition": "a == 2 and b == 'x'"}) == [records[1]]

    def test_bad_condition(self, engine):
        with pytest.raises(ValueError, match="Unsupported filter condition"):
            engine.transform("filter", [[]], {"condition": "a > 1"})

    def test_union_distinct(self, engine):
        result = engine.transform("union", [[{"a": 1}], [{"a": 1}, {"a": 2}]], {"distinct": True})
        assert result == [{"a": 1}, {"a": 2}]

    def test_unknown_transform(self, engine):
        with pytest.raises(ValueError, match="Unsupported transformation: join"):
            engine.transform("join", [])

    def test_write_modes(self, engine):
        engine.write("t", [{"n": 1}])
        engine.write("t", [{"n": 2}], mode="append")
        assert engine.get("t") == [{"n": 1}, {"n": 2}]
        engine.write("t", [{"n": 3}], mode="ignore_if_exists")
        assert engine.get("t") == [{"n": 1}, {"n": 2}]
        with pytest.raises(ValueError, match="already contains data"):
            engine.write("t", [{"n": 3}], mode="error_if_exists")
        engine.write("t", [{"n": 3}])
        assert engine.get("t") == [{"n": 3}]

    def test_unknown_write_mode(self, engine):
        with pytest.raises(ValueError, match="Unknown write mode"):
            engine.write("t", [], mode="merge")

    def test_exists(self, engine):
        assert not engine.exists("t")
        engine.create("t")
        assert engine.exists("t")
        assert not engine.exists("t", {})
        engine.put("t", [{"n": 1}], {"day": "1"})
        assert engine.exists("t", {})
        assert engine.exists("t", {"day": "1"})
        assert not engine.exists("t", {"day": "2"})

    def test_create_and_destroy_errors(self, engine):
        engine.create("t")
        with pytest.raises(ValueError, match="already exists"):
            engine.create("t")
        engine.destroy("t")
        with pytest.raises(ValueError, match="does not exist"):
            engine.destroy("t")
        with pytest.raises(ValueError, match="does not exist"):
            engine.read("t")

    def test_truncate_partition(self, engine):
        engine.put("t", [{"n": 1}], {"day": "1"})
        engine.put("t", [{"n": 2}], {"day": "2"})
        engine.truncate("t", {"day": "1"})
        assert engine.get("t") == [{"n": 2}]
        engine.truncate("missing")

    def test_calls_recorded(self):
        engine = InMemoryDatasetEngine()
        engine.create("t")
        engine.exists("t")
        assert engine.calls == [("create", "t"), ("exists", "t")]
