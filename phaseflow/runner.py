"""
Runner - phase-based lifecycle orchestration of a job.

Runner.execute walks a job through a contiguous sequence of phases:

1. Validate the phase sequence and job arguments, open the job scope (a
   child context carrying job environment and arguments) and build one
   graph per phase. Structural errors (unresolved references, cycles)
   raise here, before any target executes.
2. For every phase, order the targets topologically: providers before
   consumers in the build lifecycle, consumers before providers in the clean
   lifecycle. Ties are broken by node id, i.e. declaration order.
3. Execute the targets of the phase on a bounded thread pool. A target starts
   once all of its predecessors have a terminal result. Before running, the
   target's dirty state is queried: NO means SKIPPED, YES and UNKNOWN mean
   run. Errors are caught at the target boundary and recorded as FAILED.
4. Phases are barriers. A FAILED phase stops the run (except for VALIDATE
   and VERIFY when continue_on_verify_failure is set); remaining phases are
   reported as ABORTED.

Fail-fast (default) stops scheduling after the first failure: running
targets finish, unstarted ones become ABORTED. Cancellation behaves the
same way and finishes the lifecycle as ABORTED.

Result children always follow the topological order, never completion order.
"""

import heapq
import logging
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Optional

from phaseflow.errors import (
    AbortedError,
    CyclicDependencyError,
    DirtyCheckError,
    InvalidPhaseSequenceError,
    PhaseflowError,
    TargetExecutionError,
    TargetTimeoutError,
)
from phaseflow.execution import Execution
from phaseflow.graph import EdgeKind, Graph, TargetNode, build_graph
from phaseflow.instance_registry import InstanceState
from phaseflow.listener import ExecutionListener, Token
from phaseflow.model import Job
from phaseflow.schemas import (
    ErrorInfo,
    Identifier,
    JobInstance,
    JobResult,
    LifecycleResult,
    Phase,
    Status,
    TargetResult,
    Trilean,
    validate_phase_sequence,
)
from phaseflow.utils import utcnow

if TYPE_CHECKING:
    from phaseflow.session import Session

logger = logging.getLogger(__name__)


def plan_phase(graph: Graph) -> list[TargetNode]:
    """
    Order the targets of a graph for execution.

    Build phases run providers first, clean phases run consumers first.
    Independent targets keep their node id order.

    Raises:
        CyclicDependencyError: If target dependencies form a cycle
    """
    forward = graph.phase.is_forward
    targets = graph.targets()
    preds = {n.id: _predecessor_ids(graph, n, forward) for n in targets}
    succs: dict[int, list[int]] = {n.id: [] for n in targets}
    for node_id, node_preds in preds.items():
        for p in node_preds:
            succs[p].append(node_id)

    remaining = {node_id: len(node_preds) for node_id, node_preds in preds.items()}
    ready = [node_id for node_id, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[TargetNode] = []
    while ready:
        node_id = heapq.heappop(ready)
        order.append(graph.node(node_id))
        for s in succs[node_id]:
            remaining[s] -= 1
            if remaining[s] == 0:
                heapq.heappush(ready, s)

    if len(order) != len(targets):
        blocked = {node_id for node_id, count in remaining.items() if count > 0}
        raise CyclicDependencyError(_find_cycle(graph, blocked, preds))
    return order


def _predecessor_ids(graph: Graph, node: TargetNode, forward: bool) -> set[int]:
    if forward:
        return {e.source for e in graph.incoming(node, EdgeKind.DEPENDENCY)}
    return {e.target for e in graph.outgoing(node, EdgeKind.DEPENDENCY)}


def _find_cycle(graph: Graph, blocked: set[int], preds: dict[int, set[int]]) -> list[str]:
    # Every blocked node has a blocked predecessor; walk back until a node repeats
    current = min(blocked)
    path: list[int] = []
    while current not in path:
        path.append(current)
        current = min(p for p in preds[current] if p in blocked)
    cycle = path[path.index(current):]
    cycle.reverse()
    names = [f"target '{graph.node(i).identifier}'" for i in cycle]
    return names + names[:1]


class Runner:
    """
    Executes jobs through phases.

    Usage:
        runner = session.runner()
        result = runner.execute(job, [Phase.CREATE, Phase.BUILD], args={"date": "2024-01-01"})

    A runner executes one job at a time; cancel() aborts the current run.
    """

    def __init__(self, session: "Session"):
        self._session = session
        self._config = session.config
        self._cancelled = threading.Event()
        self._cancel_reason = "cancelled"

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """
        Request cancellation of the current run.

        Running targets finish; nothing new is started.
        """
        self._cancel_reason = reason
        self._cancelled.set()
        logger.warning(f"Cancellation requested: {reason}")

    def execute(
        self,
        job: "Job | Identifier | str",
        phases: list[Any],
        args: Optional[dict[str, Any]] = None,
        force: bool = False,
    ) -> LifecycleResult:
        """
        Execute a job over a sequence of phases.

        Args:
            job: Job instance, or identifier resolved in the session
            phases: Contiguous phases of one lifecycle, in execution order
            args: Job arguments
            force: Run targets even if they are not dirty

        Returns:
            The LifecycleResult tree

        Raises:
            InvalidPhaseSequenceError: If the phases are not a valid sequence
            JobArgumentError: If the arguments do not match the parameters
            UnresolvedReferenceError: If a referenced node does not exist
            CyclicDependencyError: If nodes or targets depend on each other cyclically
        """
        if not isinstance(job, Job):
            job = self._session.get_job(job)
        self._cancelled.clear()

        phases = validate_phase_sequence(phases)
        unsupported = [p for p in phases if p not in job.phases]
        if unsupported:
            raise InvalidPhaseSequenceError(
                phases, f"job '{job.name}' does not support {[p.value for p in unsupported]}"
            )

        arguments = job.arguments(args)
        instance = job.instance(arguments)
        fail_fast = self._config.should_fail_fast(job.fail_fast)

        job_context = job.context.child(
            job.environment(arguments),
            definitions=job.context.definitions,
        )
        try:
            roots = job.effective_targets()
            plans = {}
            for phase in phases:
                graph = build_graph(job_context, roots, phase)
                plans[phase] = (graph, plan_phase(graph))
            return self._execute_lifecycle(job, instance, phases, plans, fail_fast, force)
        finally:
            job_context.close()

    def _execute_lifecycle(self, job: Job, instance: JobInstance, phases: list[Phase],
                           plans: dict, fail_fast: bool, force: bool) -> LifecycleResult:
        listener = self._session.listener
        run_id = uuid.uuid4().hex
        logger.info(f"Starting run {run_id} of job '{instance}'")

        token = listener.start_lifecycle(job, instance, phases)
        start = utcnow()
        results: list[JobResult] = []
        stop_reason: Optional[str] = None

        for phase in phases:
            if stop_reason is None and self.cancelled:
                stop_reason = self._cancel_reason
            if stop_reason is not None:
                now = utcnow()
                error = ErrorInfo.from_exception(AbortedError(stop_reason))
                results.append(JobResult(job.name, Status.ABORTED, now, now, phase=phase, error=error))
                continue

            graph, order = plans[phase]
            result = self._execute_phase(job, instance, phase, order, graph, token, run_id, fail_fast, force)
            results.append(result)

            if result.status == Status.FAILED:
                if phase.is_verification and self._config.continue_on_verify_failure:
                    logger.warning(f"Phase {phase.value} failed, continuing with next phase")
                else:
                    stop_reason = f"phase {phase.value} failed"
            elif result.status == Status.ABORTED:
                stop_reason = self._cancel_reason if self.cancelled else f"phase {phase.value} aborted"

        status = Status.ABORTED if self.cancelled else Status.aggregate(r.status for r in results)
        lifecycle = LifecycleResult(
            name=job.name,
            status=status,
            start_time=start,
            end_time=utcnow(),
            children=tuple(results),
        )
        listener.finish_lifecycle(token, lifecycle)

        for sink in self._session.result_sinks:
            try:
                sink.store(lifecycle)
            except Exception:
                logger.warning(f"Result sink {type(sink).__name__} failed to store run {run_id}", exc_info=True)
        return lifecycle

    def _execute_phase(self, job: Job, instance: JobInstance, phase: Phase, order: list[TargetNode],
                       graph: Graph, parent: Token, run_id: str, fail_fast: bool, force: bool) -> JobResult:
        listener = self._session.listener
        token = listener.start_job(job, instance, phase, parent)
        start = utcnow()
        execution = Execution(self._session.engine, listener)

        forward = phase.is_forward
        preds = {n.id: _predecessor_ids(graph, n, forward) for n in order}
        results: dict[int, TargetResult] = {}
        running: dict[Future, TargetNode] = {}
        abort_reason: Optional[str] = None
        parallelism = self._config.parallelism

        with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="phaseflow") as pool:
            while True:
                if abort_reason is None and self.cancelled:
                    abort_reason = self._cancel_reason
                if abort_reason is None:
                    self._schedule(pool, phase, order, preds, results, running, parallelism,
                                   lambda node: self._execute_target(node, phase, execution, listener,
                                                                     token, run_id, force))
                if not running:
                    break
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: running[f].id):
                    node = running.pop(future)
                    result = self._collect(future, node, phase)
                    results[node.id] = result
                    if result.status == Status.FAILED and fail_fast and abort_reason is None:
                        abort_reason = f"target '{node.name}' failed"

        for node in order:
            if node.id not in results:
                results[node.id] = self._aborted(node, phase, abort_reason or "aborted")

        children = tuple(results[n.id] for n in order)
        status = Status.aggregate(c.status for c in children)
        result = JobResult(job.name, status, start, utcnow(), phase=phase, children=children)
        listener.finish_job(token, result)
        return result

    def _schedule(self, pool: ThreadPoolExecutor, phase: Phase, order: list[TargetNode], preds: dict[int, set[int]],
                  results: dict[int, TargetResult], running: dict[Future, TargetNode],
                  parallelism: int, work) -> None:
        started = {n.id for n in running.values()}
        changed = True
        while changed:
            changed = False
            for node in order:
                if node.id in results or node.id in started:
                    continue
                upstream = [results.get(p) for p in preds[node.id]]
                if any(r is not None and r.status in (Status.FAILED, Status.ABORTED) for r in upstream):
                    failed = sorted(self._name_of(order, p) for p in preds[node.id]
                                    if p in results and results[p].status in (Status.FAILED, Status.ABORTED))
                    results[node.id] = self._aborted(node, phase, f"upstream target '{failed[0]}' did not succeed")
                    changed = True
                    continue
                if any(r is None for r in upstream):
                    continue
                if len(running) >= parallelism:
                    return
                future = pool.submit(work, node)
                running[future] = node
                started.add(node.id)

    def _collect(self, future: Future, node: TargetNode, phase: Phase) -> TargetResult:
        """Result of a finished worker; errors outside the target boundary become FAILED."""
        try:
            return future.result()
        except Exception as e:
            logger.error(f"Executing target '{node.name}' in {phase.value} failed: {e}", exc_info=True)
            now = utcnow()
            return TargetResult(node.name, Status.FAILED, now, now, phase=phase, error=ErrorInfo.from_exception(e))

    @staticmethod
    def _name_of(order: list[TargetNode], node_id: int) -> str:
        for node in order:
            if node.id == node_id:
                return node.name
        return str(node_id)

    def _aborted(self, node: TargetNode, phase: Optional[Phase], reason: str) -> TargetResult:
        now = utcnow()
        return TargetResult(
            name=node.name,
            status=Status.ABORTED,
            start_time=now,
            end_time=now,
            phase=phase,
            error=ErrorInfo.from_exception(AbortedError(reason)),
        )

    def _execute_target(self, node: TargetNode, phase: Phase, execution: Execution,
                        listener: ExecutionListener, parent: Token, run_id: str, force: bool) -> TargetResult:
        target = node.instance
        instance = target.instance
        registry = self._session.instance_registry

        with registry.execution_lock(instance):
            if registry.executed_in(instance, phase, run_id):
                logger.info(f"Target '{instance}' already executed {phase.value} in this run, skipping")
                now = utcnow()
                return TargetResult(target.name, Status.SKIPPED, now, now, phase=phase)

            if self.cancelled:
                return self._aborted(node, phase, self._cancel_reason)

            start = utcnow()
            if not force:
                dirty = self._dirty(target, phase, execution)
                if dirty == Trilean.NO:
                    logger.info(f"Target '{instance}' is clean for {phase.value}, skipping")
                    result = TargetResult(target.name, Status.SKIPPED, start, utcnow(), phase=phase)
                    self._record(registry, instance, phase, result, run_id)
                    return result

            token = listener.start_target(target, instance, phase, parent)
            children: tuple = ()
            error = None
            try:
                children = tuple(self._run_with_timeout(target, phase, execution.for_target(token)) or ())
                status = Status.SUCCESS
            except Exception as e:
                status = Status.FAILED
                if not isinstance(e, PhaseflowError):
                    e = TargetExecutionError(target.name, phase, e)
                children = tuple(getattr(e, "results", ()) or ())
                error = ErrorInfo.from_exception(e)
                logger.error(f"Target '{instance}' failed in {phase.value}: {e}", exc_info=True,
                             extra={"event": "target_failed", "phase": phase.value, "target": str(instance)})

            result = TargetResult(target.name, status, start, utcnow(), phase=phase,
                                  children=children, error=error)
            listener.finish_target(token, result)
            self._record(registry, instance, phase, result, run_id)
            return result

    def _dirty(self, target: Any, phase: Phase, execution: Execution) -> Trilean:
        try:
            return Trilean.of(target.dirty(execution, phase))
        except Exception as e:
            error = DirtyCheckError(target.name, phase, e)
            logger.warning(f"{error}; treating as unknown", exc_info=True)
            return Trilean.UNKNOWN

    def _run_with_timeout(self, target: Any, phase: Phase, execution: Execution) -> Any:
        timeout = self._config.target_timeout_s
        if timeout is None:
            return target.execute(execution, phase)

        outcome: dict[str, Any] = {}

        def work() -> None:
            try:
                outcome["result"] = target.execute(execution, phase)
            except Exception as e:
                outcome["error"] = e

        # The worker is not interrupted on timeout; it keeps running detached
        thread = threading.Thread(target=work, name=f"phaseflow-{target.name}", daemon=True)
        thread.start()
        thread.join(timeout)
        if thread.is_alive():
            raise TargetTimeoutError(target.name, phase, timeout)
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    @staticmethod
    def _record(registry: Any, instance: Any, phase: Phase, result: TargetResult, run_id: str) -> None:
        try:
            registry.record(InstanceState(
                instance=instance,
                phase=phase,
                status=result.status,
                run_id=run_id,
                start_time=result.start_time,
                end_time=result.end_time,
            ))
        except Exception:
            logger.warning(f"Could not record state of '{instance}' for {phase.value}", exc_info=True)
