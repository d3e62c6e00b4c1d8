from __future__ import annotations

import asyncio
import random
import threading
from concurrent.futures import Future
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from xordht.dht.node import DHTNode
from xordht.dht.routing import DHTID, BinaryDHTValue, DHTKey
from xordht.dht.traverse import StoreStatus
from xordht.p2p import LocalP2P
from xordht.utils import get_logger, switch_to_uvloop

logger = get_logger(__name__)
ReturnType = TypeVar("ReturnType")


class DHT(threading.Thread):
    """
    A high-level, synchronous interface to a DHT whose peers all run in one background event loop.
    Peers talk to each other through a shared LocalP2P. Each call to store / get is issued on behalf of one peer
    (the origin), which is chosen at random unless specified.

    :param start: if True, automatically starts the background thread on creation. Otherwise await manual start
    :param daemon: if True, the background thread is marked as daemon and won't keep the interpreter alive
    :param use_uvloop: if True, the background event loop is uvloop
    :param shutdown_timeout: when calling .shutdown, wait for up to this many seconds for the thread to finish
    :param await_ready: if True, the constructor waits until the background loop is ready to process requests
    :param kwargs: any other params will be forwarded to DHTNode.create for every node added via add_node
    """

    def __init__(
        self,
        *,
        start: bool,
        daemon: bool = True,
        use_uvloop: bool = True,
        shutdown_timeout: float = 3,
        await_ready: bool = True,
        **kwargs,
    ):
        super().__init__(daemon=daemon)
        self.use_uvloop, self.shutdown_timeout, self.kwargs = use_uvloop, shutdown_timeout, kwargs
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._p2p: Optional[LocalP2P] = None
        self._nodes: Dict[DHTID, DHTNode] = {}
        self._ready = Future()

        if start:
            self.run_in_background(await_ready=await_ready)

    def run(self) -> None:
        """Serve DHT forever. This function will not return until DHT is shut down"""
        if self.use_uvloop:
            loop = switch_to_uvloop()
        else:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
        self._loop, self._p2p = loop, LocalP2P()
        self._ready.set_result(None)

        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(self._p2p.shutdown())
            loop.close()

    def run_in_background(self, await_ready: bool = True, timeout: Optional[float] = None) -> None:
        """
        Starts DHT in a background thread. if await_ready, this method will wait until background DHT
        is ready to process incoming requests or for :timeout: seconds max.
        """
        self.start()
        if await_ready:
            self.wait_until_ready(timeout)

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        self._ready.result(timeout=timeout)

    def shutdown(self) -> None:
        """Shut down a running DHT thread"""
        if self.is_alive():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self.join(self.shutdown_timeout)
            if self.is_alive():
                logger.warning("DHT did not shut down within the grace period")

    def run_coroutine(
        self, coro: Callable[[DHT, LocalP2P], Awaitable[ReturnType]], return_future: bool = False
    ) -> ReturnType:
        """
        Execute an asynchronous function on the DHT event loop and return the result.

        :param coro: async function to be executed. Receives 2 arguments: this DHT and its LocalP2P
        :param return_future: if False (default), return when finished. Otherwise return concurrent.futures.Future
        :note: coro must not block the event loop
        """
        if not self.is_alive():
            raise RuntimeError("DHT is not running, please call run_in_background() first")
        future = asyncio.run_coroutine_threadsafe(coro(self, self._p2p), self._loop)
        return future if return_future else future.result()

    @property
    def node_ids(self) -> List[DHTID]:
        return list(self._nodes)

    def add_node(
        self,
        node_id: Optional[DHTID] = None,
        initial_peers: Sequence[DHTID] = (),
        return_future: bool = False,
        **kwargs,
    ) -> DHTID:
        """
        Create a new peer in this DHT.

        :param node_id: id of the new peer, defaults to random id
        :param initial_peers: ids of peers that will be added to the new peer's routing table
        :param kwargs: DHTNode.create params that override the ones given to the DHT constructor
        :returns: id of the new peer
        """
        return self.run_coroutine(
            lambda dht, p2p: dht._add_node(p2p, node_id, initial_peers, {**self.kwargs, **kwargs}),
            return_future,
        )

    async def _add_node(
        self, p2p: LocalP2P, node_id: Optional[DHTID], initial_peers: Sequence[DHTID], kwargs: dict
    ) -> DHTID:
        node = await DHTNode.create(p2p, node_id=node_id, initial_peers=initial_peers, **kwargs)
        self._nodes[node.node_id] = node
        return node.node_id

    def add_peers(self, node_id: DHTID, peer_ids: Sequence[DHTID]) -> int:
        """Add peer ids to the routing table of an existing peer, :returns: the number of peers actually added"""
        return self.run_coroutine(lambda dht, p2p: dht._add_peers(node_id, peer_ids))

    async def _add_peers(self, node_id: DHTID, peer_ids: Sequence[DHTID]) -> int:
        return self._get_node(node_id).add_peers(peer_ids)

    def store(
        self, key: DHTKey, value: BinaryDHTValue, *, origin: Optional[DHTID] = None, return_future: bool = False
    ) -> StoreStatus:
        """
        Store a value on behalf of the origin peer, see DHTNode.store

        :param origin: id of the peer that initiates the store, defaults to a random peer
        """
        return self.run_coroutine(lambda dht, p2p: dht._store(origin, key, value), return_future)

    async def _store(self, origin: Optional[DHTID], key: DHTKey, value: BinaryDHTValue) -> StoreStatus:
        return await self._get_node(origin).store(key, value)

    def get(
        self, key: DHTKey, *, origin: Optional[DHTID] = None, return_future: bool = False
    ) -> Optional[BinaryDHTValue]:
        """
        Find a value on behalf of the origin peer, see DHTNode.get

        :param origin: id of the peer that initiates the search, defaults to a random peer
        """
        return self.run_coroutine(lambda dht, p2p: dht._get(origin, key), return_future)

    async def _get(self, origin: Optional[DHTID], key: DHTKey) -> Optional[BinaryDHTValue]:
        return await self._get_node(origin).get(key)

    def find_nearest_nodes(
        self, query: DHTKey, k_nearest: int = 1, *, origin: Optional[DHTID] = None, return_future: bool = False
    ) -> List[DHTID]:
        """Find peers nearest to query on behalf of the origin peer, see DHTNode.find_nearest_nodes"""
        return self.run_coroutine(lambda dht, p2p: dht._find_nearest_nodes(origin, query, k_nearest), return_future)

    async def _find_nearest_nodes(self, origin: Optional[DHTID], query: DHTKey, k_nearest: int) -> List[DHTID]:
        return await self._get_node(origin).find_nearest_nodes(query, k_nearest=k_nearest)

    def _get_node(self, node_id: Optional[DHTID]) -> DHTNode:
        if not self._nodes:
            raise RuntimeError("DHT has no peers, please add_node first")
        if node_id is None:
            return random.choice(list(self._nodes.values()))
        if node_id not in self._nodes:
            raise KeyError(f"DHT has no peer {node_id}")
        return self._nodes[node_id]

    def __len__(self):
        return len(self._nodes)
