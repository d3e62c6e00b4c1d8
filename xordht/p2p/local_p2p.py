""" An in-process transport that lets DHT peers talk to each other by exchanging messages """
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set, Tuple

from xordht.utils.asyncio import cancel_and_wait
from xordht.utils.logging import get_logger

logger = get_logger(__name__)

PeerID = Hashable
Handler = Callable[..., Awaitable[Any]]


class P2PHandlerError(Exception):
    """Raised on the caller side if a remote handler failed to process the request"""


class PeerNotFoundError(Exception):
    """Raised if a message is addressed to a peer that is not registered in this LocalP2P"""


@dataclass
class _Request:
    handle_name: str
    args: Tuple[Any, ...]
    response: asyncio.Future


@dataclass
class _PeerInbox:
    handlers: Dict[str, Handler] = field(default_factory=dict)
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    dispatcher: Optional[asyncio.Task] = None
    active_requests: Set[asyncio.Task] = field(default_factory=set)


class LocalP2P:
    """
    A shared arena of peers addressed by their ids. Every registered peer behaves like an actor:
    requests are put into the peer's inbox and a dispatcher task serves each of them in a separate task,
    so that a peer can handle new requests while its previous requests await responses from other peers.

    Peers never hold references to each other, only to their ids. Replacing LocalP2P with a network transport
    does not require changes in the peers themselves.
    """

    def __init__(self):
        self._peers: Dict[PeerID, _PeerInbox] = {}

    async def add_handler(self, peer: PeerID, handle_name: str, handler: Handler) -> None:
        """Register a handler that serves requests addressed to :peer: with a given :handle_name:"""
        inbox = self._peers.get(peer)
        if inbox is None:
            inbox = self._peers[peer] = _PeerInbox()
            inbox.dispatcher = asyncio.create_task(self._dispatch(peer, inbox))
        inbox.handlers[handle_name] = handler

    async def call_handler(self, peer: PeerID, handle_name: str, *args: Any, timeout: Optional[float] = None) -> Any:
        """
        Send a request to a peer and await its response

        :raises PeerNotFoundError: if the peer is not registered or does not serve this handle
        :raises P2PHandlerError: if the remote handler raised an exception
        :raises asyncio.TimeoutError: if there was no response in :timeout: seconds
        """
        inbox = self._peers.get(peer)
        if inbox is None or handle_name not in inbox.handlers:
            raise PeerNotFoundError(f"Peer {peer} does not serve {handle_name}")

        response = asyncio.get_running_loop().create_future()
        inbox.queue.put_nowait(_Request(handle_name, args, response))
        return await asyncio.wait_for(response, timeout=timeout)

    def is_registered(self, peer: PeerID) -> bool:
        return peer in self._peers

    @property
    def peers(self) -> Tuple[PeerID, ...]:
        return tuple(self._peers)

    async def remove_peer(self, peer: PeerID) -> None:
        """Stop serving requests for this peer; pending and future requests to this peer will fail"""
        inbox = self._peers.pop(peer, None)
        if inbox is None:
            return
        await cancel_and_wait([inbox.dispatcher, *inbox.active_requests])
        while not inbox.queue.empty():
            request = inbox.queue.get_nowait()
            if not request.response.done():
                request.response.set_exception(PeerNotFoundError(f"Peer {peer} was removed"))

    async def shutdown(self) -> None:
        for peer in list(self._peers):
            await self.remove_peer(peer)

    async def _dispatch(self, peer: PeerID, inbox: _PeerInbox) -> None:
        while True:
            request = await inbox.queue.get()
            if request.response.done():
                continue  # the caller is no longer waiting for this request
            task = asyncio.create_task(self._process_request(peer, inbox.handlers[request.handle_name], request))
            inbox.active_requests.add(task)
            task.add_done_callback(inbox.active_requests.discard)
            request.response.add_done_callback(partial(_cancel_if_abandoned, task))

    @staticmethod
    async def _process_request(peer: PeerID, handler: Handler, request: _Request) -> None:
        try:
            result = await handler(*request.args)
        except asyncio.CancelledError:
            if not request.response.done():
                request.response.set_exception(PeerNotFoundError(f"Peer {peer} stopped serving requests"))
            raise
        except Exception as e:
            logger.debug(f"Peer {peer} failed to process {request.handle_name}", exc_info=True)
            if not request.response.done():
                request.response.set_exception(P2PHandlerError(f"{request.handle_name} failed: {e!r}"))
        else:
            if not request.response.done():
                request.response.set_result(result)


def _cancel_if_abandoned(task: asyncio.Task, response: asyncio.Future) -> None:
    if response.cancelled():
        task.cancel()  # caller gave up on this request (timeout or cancellation), stop working on it
