"""Background execution of broker operations on a worker pool."""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from pgcluster.logging_config import OperationContext


class Operation:
    """Handle on a background operation.

    Request-facing calls return immediately with an Operation; callers that
    need the outcome either wait on it or poll the persisted SchedulingInfo.
    """

    def __init__(
        self,
        context: OperationContext,
        future: Future,
        on_cancelled: Callable[[], None] | None = None,
    ):
        self.context = context
        self.future = future
        self._on_cancelled = on_cancelled

    @property
    def name(self) -> str:
        return self.context.operation

    @property
    def instance_id(self) -> str | None:
        return self.context.instance_id

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> bool:
        """Cancel the operation if it has not started yet."""
        cancelled = self.future.cancel()
        if cancelled and self._on_cancelled is not None:
            self._on_cancelled()
        return cancelled

    def wait(self, timeout: float | None = None):
        """Block for the result, re-raising the operation's error."""
        return self.future.result(timeout)

    def __repr__(self) -> str:
        state = "done" if self.done() else "running"
        return f"Operation({self.context.prefix()}, {state})"


class TaskRunner:
    """Thread pool running one background task per broker operation."""

    def __init__(self, workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pgcluster")
        self._operations: list[Operation] = []

    def submit(
        self,
        context: OperationContext,
        fn: Callable,
        *args,
        on_cancelled: Callable[[], None] | None = None,
    ) -> Operation:
        log = context.logger(__name__)

        def run():
            log.info("Background task started")
            try:
                result = fn(*args)
            except Exception as e:
                log.error(f"Background task failed: {e}")
                raise
            log.info("Background task finished")
            return result

        future = self._executor.submit(run)
        operation = Operation(context, future, on_cancelled=on_cancelled)
        self._operations = [op for op in self._operations if not op.done()]
        self._operations.append(operation)
        return operation

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.

        Without waiting, operations that have not started are cancelled through
        their handles so their cancellation hooks run.
        """
        if not wait:
            for operation in self._operations:
                operation.cancel()
        self._executor.shutdown(wait=wait)
