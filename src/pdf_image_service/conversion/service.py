import asyncio
import logging
from typing import Callable, Generic, TypeVar

from .errors import ConversionError
from .interfaces import ConversionResult, OutputMode, RasterizerGateway, StoredSourceFile

logger = logging.getLogger(__name__)

R = TypeVar("R")


class HandleAlreadyCompleted(RuntimeError):
    pass


class ResponseHandle(Generic[R]):
    """Response channel owned by one conversion task, completed exactly once.

    The request handler awaits ``wait()``; the task calls ``succeed`` or ``fail``.
    A second completion raises ``HandleAlreadyCompleted``.
    """

    def __init__(
        self,
        on_success: Callable[[ConversionResult], R],
        on_failure: Callable[[BaseException], R],
    ) -> None:
        self._on_success = on_success
        self._on_failure = on_failure
        self._future: asyncio.Future[R] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def succeed(self, result: ConversionResult) -> None:
        self._complete(self._on_success(result))

    def fail(self, exc: BaseException) -> None:
        self._complete(self._on_failure(exc))

    def _complete(self, response: R) -> None:
        if self._future.done():
            raise HandleAlreadyCompleted("response already sent")
        self._future.set_result(response)

    async def wait(self) -> R:
        # shield: a disconnecting client must not cancel the shared future
        return await asyncio.shield(self._future)


class ConversionService:
    """Runs the blocking rasterizer off the event loop, one task per accepted request.

    There is no batching or de-duplication: every submission converts again,
    and once submitted a conversion runs to completion or failure.
    """

    def __init__(self, rasterizer: RasterizerGateway) -> None:
        self._rasterizer = rasterizer
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def imaging_available(self) -> bool:
        return self._rasterizer.available()

    async def dispatch(self, source: StoredSourceFile, mode: OutputMode) -> ConversionResult:
        images = await asyncio.to_thread(self._rasterizer.rasterize, str(source.path), source.base_name, mode)
        logger.info("Converted %s: %d page(s), output=%s", source.path.name, len(images), mode.value)
        return ConversionResult(pages=len(images), images=images, mode=mode)

    def submit(self, source: StoredSourceFile, mode: OutputMode, handle: ResponseHandle) -> asyncio.Task:
        task = asyncio.create_task(self._run(source, mode, handle), name=f"convert-{source.base_name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, source: StoredSourceFile, mode: OutputMode, handle: ResponseHandle) -> None:
        try:
            result = await self.dispatch(source, mode)
            handle.succeed(result)
        except asyncio.CancelledError:
            if not handle.done:
                handle.fail(ConversionError("Conversion cancelled by server shutdown"))
            raise
        except Exception as e:
            logger.warning("Conversion of %s failed: %s", source.path.name, e)
            if not handle.done:
                handle.fail(e)

    async def stop(self) -> None:
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
