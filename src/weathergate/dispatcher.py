"""Protocol dispatcher - turns one call into exactly one terminal frame.

For every accepted call the dispatcher writes precisely one frame to the
owning channel:

- a ``ResultFrame`` with the handler's return value, or
- an ``ErrorFrame`` for unknown operations and invalid arguments, with a
  human-readable message, or
- an ``ErrorFrame`` with the fixed "unavailable" message when the handler
  fails or times out. The cause is logged, never framed.

If the channel closed while the call was running, the frame write is
dropped and only logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from pydantic import ValidationError

from weathergate.error import GatewayError
from weathergate.operations import LIST_OPERATIONS, OperationSpec, format_validation_error
from weathergate.protocol.wire import CallRequest, ErrorFrame, Frame, ResultFrame

if TYPE_CHECKING:
    from weathergate.channel import PushChannel

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0


class ProtocolDispatcher:
    """Executes calls against the operation catalog.

    Calls run as background tasks; the dispatcher keeps a strong reference
    to each until it finishes so shutdown can drain them.
    """

    def __init__(
        self,
        operations: Mapping[str, OperationSpec],
        *,
        call_timeout: float | None = DEFAULT_CALL_TIMEOUT,
        log: logging.Logger | None = None,
    ) -> None:
        self.operations = dict(operations)
        self.call_timeout = call_timeout
        self._tasks: set[asyncio.Task[None]] = set()
        self._log = log or logger

    @property
    def pending(self) -> int:
        """Number of calls still executing."""
        return len(self._tasks)

    def submit(self, call: CallRequest, channel: PushChannel) -> asyncio.Task[None]:
        """Start executing ``call``; its frame will be written to ``channel``."""
        task = asyncio.create_task(self.dispatch(call, channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(self, call: CallRequest, channel: PushChannel) -> None:
        """Execute ``call`` and write its single terminal frame."""
        frame = await self.execute(call)
        try:
            await channel.send(frame)
        except GatewayError as e:
            self._log.debug(
                "Dropped %s frame for call %r on %r: %s", call.operation, call.call_id, channel, e
            )

    async def execute(self, call: CallRequest) -> Frame:
        """Execute ``call`` and build its terminal frame. Never raises."""
        self._log.debug("Executing %s (id=%r)", call.operation, call.call_id)

        if call.operation == LIST_OPERATIONS:
            catalog = [spec.describe() for spec in self.operations.values()]
            return ResultFrame(call.call_id, call.operation, catalog)

        spec = self.operations.get(call.operation)
        if spec is None:
            error = GatewayError.not_found(f"Unknown operation: {call.operation}")
            return ErrorFrame(call.call_id, call.operation, error)

        try:
            arguments = spec.validate(call.arguments)
        except ValidationError as e:
            error = GatewayError.bad_request(format_validation_error(e))
            return ErrorFrame(call.call_id, call.operation, error)

        try:
            async with asyncio.timeout(self.call_timeout):
                result = await spec.handler(arguments)
            frame = ResultFrame(call.call_id, call.operation, result)
            # Encode now so an unserializable result fails inside this boundary
            frame.data  # noqa: B018
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            self._log.warning(
                "%s (id=%r) timed out after %ss", call.operation, call.call_id, self.call_timeout
            )
            return ErrorFrame(call.call_id, call.operation, GatewayError.unavailable())
        except GatewayError as e:
            self._log.warning("%s (id=%r) failed: %s", call.operation, call.call_id, e)
            return ErrorFrame(call.call_id, call.operation, GatewayError.unavailable())
        except Exception:
            self._log.exception("%s (id=%r) failed", call.operation, call.call_id)
            return ErrorFrame(call.call_id, call.operation, GatewayError.unavailable())

        return frame

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight calls, cancelling any still running after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            self._log.warning("Cancelled %d call(s) still running at shutdown", len(still_running))
