import asyncio
from typing import Awaitable, Collection, Optional, TypeVar

import uvloop

from xordht.utils.logging import get_logger

T = TypeVar("T")
logger = get_logger(__name__)


def switch_to_uvloop() -> asyncio.AbstractEventLoop:
    """stop any running event loops; install uvloop; then create, set and return a new event loop"""
    try:
        asyncio.get_event_loop().stop()  # if we're in jupyter, get rid of its built-in event loop
    except RuntimeError as error_no_event_loop:
        pass  # this allows running DHT from background threads with no event loop
    uvloop.install()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    return loop


async def cancel_and_wait(tasks: Collection[asyncio.Task]) -> None:
    """cancel all given tasks and wait until they acknowledge the cancellation"""
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def first_not_none(*awaitables: Awaitable[Optional[T]]) -> Optional[T]:
    """
    Run awaitables concurrently and return the first result that is not None, cancelling the rest.
    Awaitables that raise are treated as if they returned None. Returns None if nothing else was found.
    """
    pending = {asyncio.ensure_future(awaitable) for awaitable in awaitables}
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    continue
                if task.exception() is not None:
                    logger.debug("Concurrent branch failed", exc_info=task.exception())
                    continue
                if task.result() is not None:
                    return task.result()
        return None
    finally:
        await cancel_and_wait(pending)
