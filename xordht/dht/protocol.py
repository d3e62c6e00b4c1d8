""" RPC protocol that provides nodes a way to communicate with each other """
from __future__ import annotations

import threading
from typing import Any, List, Optional

from xordht.dht.routing import DHTID, BinaryDHTValue, RoutingTable
from xordht.dht.search import select_nearest
from xordht.dht.storage import DHTLocalStorage
from xordht.dht.traverse import StoreStatus, VisitedSet, traverse_get, traverse_store
from xordht.dht.validation import DHTRecord, RecordValidatorBase, SelfHashValidator
from xordht.p2p import LocalP2P, PeerNotFoundError, ServicerBase, StubBase
from xordht.utils import get_logger

logger = get_logger(__name__)


class DHTProtocol(ServicerBase):
    # fmt:off
    p2p: LocalP2P; node_id: DHTID; fanout: int; wait_timeout: float; num_retries: int
    storage: DHTLocalStorage; routing_table: RoutingTable; record_validator: RecordValidatorBase
    # fmt:on

    @classmethod
    async def create(
        cls,
        p2p: LocalP2P,
        node_id: DHTID,
        bucket_size: int,
        fanout: int,
        wait_timeout: float,
        num_buckets: Optional[int] = None,
        num_retries: int = 1,
        record_validator: Optional[RecordValidatorBase] = None,
    ) -> DHTProtocol:
        """
        A protocol that allows DHT nodes to store and request keys and neighbors from other DHT nodes.
        Each protocol instance owns the peer's routing table and its local storage.

        See DHTNode (node.py) for a more detailed description.

        :note: the rpc_* methods defined in this class will be automatically exposed to other DHT nodes,
         for instance, def rpc_find can be called as protocol.call_find(peer, target) from another peer.
         Only the call_* methods are meant to be called publicly, e.g. from DHTNode
        """
        self = cls(_initialized_with_create=True)
        self.p2p = p2p
        self.node_id, self.fanout = node_id, fanout
        self.wait_timeout, self.num_retries = wait_timeout, num_retries
        self.storage = DHTLocalStorage()
        self.routing_table = RoutingTable(node_id, bucket_size, num_buckets, storage=self.storage)
        self.record_validator = record_validator if record_validator is not None else SelfHashValidator()
        self._store_lock = threading.Lock()

        await self.add_p2p_handlers(self.p2p, node_id)
        return self

    def __init__(self, *, _initialized_with_create=False):
        """Internal init method. Please use DHTProtocol.create coroutine to spawn new protocol instances"""
        assert _initialized_with_create, "Please use DHTProtocol.create coroutine to spawn new protocol instances"
        super().__init__()

    def get_stub(self, peer: DHTID) -> StubBase:
        """get a stub that sends requests to a given peer"""
        return super().get_stub(self.p2p, peer)

    def select_neighbors(self, target: DHTID) -> List[DHTID]:
        """Peers to contact next on the way to target, nearest-first; never includes this peer itself"""
        return select_nearest(self.routing_table, target, self.fanout, exclude=self.node_id)

    def store_locally(self, key: DHTID, value: BinaryDHTValue) -> bool:
        """Store a record unless this peer already knows the key. :returns: True if it was stored just now"""
        with self._store_lock:
            if self.routing_table.contains(key):
                return False
            return self.storage.store_if_absent(key, value)

    def get_locally(self, key: DHTID) -> Optional[BinaryDHTValue]:
        return self.storage.get(key)

    async def call_find(self, peer: DHTID, target: DHTID, fanout: Optional[int] = None) -> Optional[List[DHTID]]:
        """
        Request peer's nearest neighbors of target (FIND_NODE)

        :returns: up to fanout peer ids known to that peer, nearest-first; None if peer did not respond
        """
        return await self._call_with_retries(peer, "rpc_find", target, fanout if fanout is not None else self.fanout)

    async def rpc_find(self, target: DHTID, fanout: int) -> List[DHTID]:
        """Someone wants to know which of our peers are nearest to target"""
        return select_nearest(self.routing_table, target, fanout)

    async def call_store(self, peer: DHTID, record: DHTRecord, visited: VisitedSet) -> Optional[StoreStatus]:
        """
        Ask peer to store a record and forward it further (STORE)

        :returns: peer's StoreStatus or None if peer did not respond
        """
        return await self._call_with_retries(peer, "rpc_store", record, visited)

    async def rpc_store(self, record: DHTRecord, visited: VisitedSet) -> StoreStatus:
        """Some node wants us to store a record and replicate it to our nearest peers"""
        return await traverse_store(
            self.node_id,
            record,
            visited,
            validator=self.record_validator,
            store_locally=self.store_locally,
            select_neighbors=self.select_neighbors,
            call_store=self.call_store,
        )

    async def call_get(self, peer: DHTID, key: DHTID, visited: VisitedSet) -> Optional[BinaryDHTValue]:
        """
        Ask peer to find a value for key, locally or among its nearest peers (GET)

        :returns: the value, or None if it was not found or peer did not respond
        """
        return await self._call_with_retries(peer, "rpc_get", key, visited)

    async def rpc_get(self, key: DHTID, visited: VisitedSet) -> Optional[BinaryDHTValue]:
        """Some node wants us to find a value for key"""
        return await traverse_get(
            self.node_id,
            key,
            visited,
            get_locally=self.get_locally,
            select_neighbors=self.select_neighbors,
            call_get=self.call_get,
        )

    async def _call_with_retries(self, peer: DHTID, method_name: str, *args: Any) -> Any:
        stub = self.get_stub(peer)
        for attempt in range(self.num_retries + 1):
            try:
                return await getattr(stub, method_name)(*args, timeout=self.wait_timeout)
            except PeerNotFoundError:
                logger.debug(f"{self.node_id} cannot reach {peer}: no such peer")
                return None
            except Exception:
                logger.debug(
                    f"{self.node_id} failed to call {method_name} on {peer} (attempt {attempt + 1})", exc_info=True
                )
        return None
