"""
Execution - per-phase state shared by the targets of one phase.

An Execution gives targets access to the dataset engine, evaluates mapping
outputs on demand (each mapping output at most once per phase) and runs
checks bracketed by listener calls.
"""

import logging
import threading
from typing import Any, Optional

from phaseflow.engine import DatasetEngine
from phaseflow.errors import UnresolvedReferenceError
from phaseflow.listener import ExecutionListener, NoOpListener, Token
from phaseflow.schemas import Category, CheckResult, ErrorInfo, Status
from phaseflow.utils import utcnow

logger = logging.getLogger(__name__)


class _Slot:
    """Outputs of one mapping, filled in once by the thread that claimed it."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.outputs: dict[str, Any] = {}
        self.error: Optional[BaseException] = None


class Execution:
    """
    Execution state of one phase.

    Attributes:
        engine: Dataset engine performing all I/O
        listener: Listener receiving check brackets
        token: Token of the target currently executing (for check brackets)
    """

    def __init__(
        self,
        engine: DatasetEngine,
        listener: Optional[ExecutionListener] = None,
        token: Optional[Token] = None,
    ):
        self.engine = engine
        self.listener = listener or NoOpListener()
        self.token = token
        self._slots: dict[Any, _Slot] = {}
        self._lock = threading.Lock()

    def for_target(self, token: Optional[Token]) -> "Execution":
        """A view of this execution for one target, sharing the output cache."""
        view = Execution(self.engine, self.listener, token)
        view._slots = self._slots
        view._lock = self._lock
        return view

    def instantiate(self, mapping: Any, output: str = "main") -> Any:
        """
        Return one output of a mapping, computing it and its inputs if needed.

        The shared lock only guards claiming a mapping's slot. The mapping
        itself executes outside of it; other callers needing the same
        mapping wait for its slot only.

        Raises:
            UnresolvedReferenceError: If the mapping has no such output
        """
        if output not in mapping.outputs():
            raise UnresolvedReferenceError(
                mapping.identifier.with_output(output),
                Category.MAPPING,
                f"Mapping '{mapping.identifier}' has no output '{output}'",
            )

        with self._lock:
            slot = self._slots.get(mapping)
            owner = slot is None
            if owner:
                slot = self._slots[mapping] = _Slot()

        if owner:
            try:
                slot.outputs = self._execute(mapping)
            except BaseException as e:
                slot.error = e
                raise
            finally:
                slot.done.set()
        else:
            slot.done.wait()
            if slot.error is not None:
                raise slot.error

        if output not in slot.outputs:
            raise UnresolvedReferenceError(
                mapping.identifier.with_output(output),
                Category.MAPPING,
                f"Mapping '{mapping.identifier}' did not produce output '{output}'",
            )
        return slot.outputs[output]

    def _execute(self, mapping: Any) -> dict[str, Any]:
        inputs = {}
        for ident in mapping.inputs():
            upstream = mapping.context.get_mapping(ident)
            inputs[ident] = self.instantiate(upstream, ident.output_or_default)

        logger.debug(f"Executing mapping '{mapping.identifier}'")
        return dict(mapping.execute(self, inputs))

    def run_check(self, check: Any) -> CheckResult:
        """Run a check; failures and errors are recorded on the CheckResult."""
        token = self.listener.start_check(check, self.token)
        start = utcnow()
        error = None
        try:
            passed = check.run(self)
            if not passed:
                error = ErrorInfo(type="CheckFailed", message=check.description)
        except Exception as e:
            logger.warning(f"Check '{check.name}' raised: {e}", exc_info=True)
            passed = False
            error = ErrorInfo.from_exception(e)

        result = CheckResult(
            name=check.name,
            status=Status.SUCCESS if passed else Status.FAILED,
            start_time=start,
            end_time=utcnow(),
            error=error,
        )
        self.listener.finish_check(token, result)
        return result
