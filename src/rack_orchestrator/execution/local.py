"""
Local workflow executor.

An in process engine for the workflow definitions in execution.workflows.

Runtime model
One thread pool runs workflow bodies and a second one runs activity attempts.
A workflow thread blocks on each activity future, so the two pools never wait
on each other and a slow activity only holds its own workflow.

Each activity call is bounded by the start to close timeout of its options
and retried with bounded exponential backoff. Error types listed as non
retryable fail on the first attempt. When the budget is spent the last error
is wrapped in HardwareActionError.

Every run has an overall deadline taken from ExecutorConfig.workflow_timeout.
Deadline and cancellation are checked before each non detached activity call
and surface as WorkflowCancelled. Detached calls, used for terminal status
updates, still run after stop so a cancelled run records its outcome.

Idempotency
Runs are keyed by execution id, which is derived from the workflow name and
the task id. Scheduling the same task twice returns the existing run.

Retention
A run holds its rack snapshot only while it is in flight. Once it returns it
is replaced by a FinishedRun carrying the final state and error, and only the
newest ExecutorConfig.finished_run_limit of those are kept. A task whose
record was dropped can be scheduled again.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Type

from rack_orchestrator.core.errors import (
    DispatchError,
    HardwareActionError,
    NotFoundError,
    OrchestratorError,
    WorkflowCancelled,
)
from rack_orchestrator.execution.activities import Activities
from rack_orchestrator.execution.base import ActivityOptions, ExecutorConfig, execution_id_for
from rack_orchestrator.execution.workflows.common import Workflow, WorkflowState
from rack_orchestrator.execution.workflows.firmwarecontrol import FirmwareControlWorkflow
from rack_orchestrator.execution.workflows.injectexpectation import InjectExpectationWorkflow
from rack_orchestrator.execution.workflows.powercontrol import PowerControlWorkflow
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    InjectExpectationInfo,
    OperationInfo,
    PowerControlInfo,
)
from rack_orchestrator.task.types import ExecutionInfo, ExecutionRequest, ExecutionResponse, ExecutorType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinishedRun:
    """Outcome kept for a finished run. error is None when the run succeeded."""

    execution_id: str
    state: WorkflowState
    error: Optional[BaseException] = None


@dataclass
class WorkflowRun:
    """Bookkeeping for one scheduled workflow, held only while it is in flight."""

    execution_id: str
    workflow: Workflow
    deadline: float
    future: Optional[Future] = field(default=None, repr=False)
    finished: Optional[FinishedRun] = None


class _RunContext:
    """WorkflowContext bound to one run."""

    def __init__(self, executor: "LocalWorkflowExecutor", run: WorkflowRun) -> None:
        self._executor = executor
        self._run = run

    def execute_activity(
        self,
        name: str,
        *args: Any,
        options: ActivityOptions,
        detached: bool = False,
    ) -> Any:
        fn = self._executor.activities.lookup(name)
        policy = options.retry_policy
        timeout = options.start_to_close_timeout.total_seconds()

        attempt = 0
        while True:
            if not detached:
                self._check_cancelled(name)

            attempt += 1
            future = self._executor.submit_activity(fn, *args)
            wait_futures([future], timeout=timeout)

            last: BaseException
            if not future.done():
                future.cancel()
                last = TimeoutError(f"activity {name} timed out after {timeout:g}s")
            else:
                try:
                    return future.result()
                except policy.non_retryable:
                    raise
                except Exception as exc:
                    last = exc

            if attempt >= policy.max_attempts:
                raise HardwareActionError(name, attempt, last) from last

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s: activity %s attempt %d failed, retrying in %.1fs: %s",
                self._run.execution_id,
                name,
                attempt,
                delay,
                last,
            )
            self._executor.backoff(delay)

    def _check_cancelled(self, name: str) -> None:
        if self._executor.cancelled:
            raise WorkflowCancelled(f"{self._run.execution_id} cancelled before activity {name}")
        if self._executor.clock() > self._run.deadline:
            raise WorkflowCancelled(f"{self._run.execution_id} exceeded its deadline before activity {name}")


class LocalWorkflowExecutor:
    """
    Thread pool backed Executor.

    activities
    Activity implementations the workflows call by name.

    config
    Pool sizes, workflow deadline, finished run retention and component
    manager implementations.

    sleep
    Backoff sleep. Defaults to waiting on the cancellation event, so stop cuts
    pending backoffs short. Tests pass a no op.

    clock
    Monotonic clock used for workflow deadlines.
    """

    def __init__(
        self,
        activities: Activities,
        config: ExecutorConfig | None = None,
        sleep: Callable[[float], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.activities = activities
        self.clock = clock
        self._config = config or ExecutorConfig()
        self._cancel = threading.Event()
        self._sleep = sleep or self._cancel.wait
        self._lock = threading.Lock()
        self._runs: Dict[str, WorkflowRun] = {}
        self._finished: OrderedDict[str, FinishedRun] = OrderedDict()
        self._workflow_pool: Optional[ThreadPoolExecutor] = None
        self._activity_pool: Optional[ThreadPoolExecutor] = None
        self._started = False
        self._stopped = False

    @property
    def type(self) -> ExecutorType:
        return ExecutorType.local

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> None:
        """Validate config, activate component managers and bring up the pools. Idempotent."""
        with self._lock:
            if self._started:
                return
            self._config.validate()
            self.activities.registry.activate_all(self._config.implementations)
            self._workflow_pool = ThreadPoolExecutor(
                max_workers=self._config.max_workflows,
                thread_name_prefix="rack-workflow",
            )
            self._activity_pool = ThreadPoolExecutor(
                max_workers=self._config.max_activities,
                thread_name_prefix="rack-activity",
            )
            self._started = True

        logger.info(
            "local executor started, %d workflow worker(s), %d activity worker(s)",
            self._config.max_workflows,
            self._config.max_activities,
        )

    def stop(self) -> None:
        """Cancel running workflows and wait until every run has returned. Idempotent."""
        with self._lock:
            if not self._started or self._stopped:
                return
            self._stopped = True
            workflow_pool, activity_pool = self._workflow_pool, self._activity_pool

        self._cancel.set()
        if workflow_pool is not None:
            workflow_pool.shutdown(wait=True)
        if activity_pool is not None:
            activity_pool.shutdown(wait=True, cancel_futures=True)
        logger.info("local executor stopped")

    def power_control(self, request: ExecutionRequest, info: PowerControlInfo) -> ExecutionResponse:
        return self._schedule(PowerControlWorkflow, request, info)

    def firmware_control(self, request: ExecutionRequest, info: FirmwareControlInfo) -> ExecutionResponse:
        return self._schedule(FirmwareControlWorkflow, request, info)

    def inject_expectation(self, request: ExecutionRequest, info: InjectExpectationInfo) -> ExecutionResponse:
        return self._schedule(InjectExpectationWorkflow, request, info)

    def wait(self, execution_id: str, timeout: float | None = None) -> None:
        """Block until a run finishes and re-raise its error."""
        finished = self._await(execution_id, timeout)
        if finished.error is not None:
            raise finished.error

    def result(self, execution_id: str, timeout: float | None = None) -> WorkflowState:
        """Block until a run finishes and return its final workflow state."""
        return self._await(execution_id, timeout).state

    def in_flight(self) -> int:
        """Number of runs scheduled and not yet finished."""
        with self._lock:
            return len(self._runs)

    def drain(self, timeout: float | None = None) -> None:
        """Wait for every scheduled run to finish, without raising their errors."""
        with self._lock:
            futures = [r.future for r in self._runs.values() if r.future is not None]
        wait_futures(futures, timeout=timeout)

    def submit_activity(self, fn: Callable[..., Any], *args: Any) -> Future:
        pool = self._activity_pool
        if pool is None:
            raise DispatchError("executor is not started")
        return pool.submit(fn, *args)

    def backoff(self, seconds: float) -> None:
        self._sleep(seconds)

    def _schedule(
        self,
        workflow_cls: Type[Workflow],
        request: ExecutionRequest,
        info: OperationInfo,
    ) -> ExecutionResponse:
        execution_id = execution_id_for(workflow_cls.name, request.info.task_id)

        with self._lock:
            if not self._started or self._stopped or self._workflow_pool is None:
                raise DispatchError(f"cannot start {execution_id}: executor is not running")

            if execution_id in self._runs or execution_id in self._finished:
                logger.info("%s already scheduled, returning existing run", execution_id)
            else:
                # The run owns its rack snapshot. Later inventory edits do not leak in.
                execution = ExecutionInfo(
                    task_id=request.info.task_id,
                    rack=copy.deepcopy(request.info.rack),
                )
                run = WorkflowRun(
                    execution_id=execution_id,
                    workflow=workflow_cls(execution, info),
                    deadline=self.clock() + self._config.workflow_timeout.total_seconds(),
                )
                try:
                    run.future = self._workflow_pool.submit(self._execute, run)
                except RuntimeError as exc:
                    raise DispatchError(f"cannot start {execution_id}: {exc}") from exc
                self._runs[execution_id] = run
                logger.info("%s scheduled for rack %s", execution_id, execution.rack.id)

        if request.wait:
            self.wait(execution_id)

        return ExecutionResponse(execution_id=execution_id)

    def _execute(self, run: WorkflowRun) -> None:
        logger.debug("%s running", run.execution_id)
        error: Optional[BaseException] = None
        try:
            run.workflow.run(_RunContext(self, run))
        except BaseException as exc:
            error = exc
            logger.warning("%s finished with error: %s", run.execution_id, exc)
            raise
        finally:
            self._retire(run, error)
        logger.debug("%s finished", run.execution_id)

    def _retire(self, run: WorkflowRun, error: Optional[BaseException]) -> None:
        """Swap a finished run for its outcome record, dropping the rack snapshot."""
        finished = FinishedRun(execution_id=run.execution_id, state=run.workflow.state, error=error)
        with self._lock:
            self._runs.pop(run.execution_id, None)
            self._finished[run.execution_id] = finished
            while len(self._finished) > self._config.finished_run_limit:
                self._finished.popitem(last=False)
        run.finished = finished

    def _await(self, execution_id: str, timeout: float | None) -> FinishedRun:
        with self._lock:
            run = self._runs.get(execution_id)
            finished = self._finished.get(execution_id)

        if run is not None:
            if run.future is not None:
                wait_futures([run.future], timeout=timeout)
            if run.finished is None:
                raise OrchestratorError(f"{execution_id} did not finish within {timeout}s")
            return run.finished

        if finished is None:
            raise NotFoundError(f"execution {execution_id} not found")
        return finished
