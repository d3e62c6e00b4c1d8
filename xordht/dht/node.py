from __future__ import annotations

import os
from typing import Iterable, List, Optional, Sequence

from xordht.dht.protocol import DHTProtocol
from xordht.dht.routing import DHTID, BinaryDHTValue, DHTKey, RoutingTable
from xordht.dht.search import select_nearest
from xordht.dht.storage import DHTLocalStorage
from xordht.dht.traverse import StoreStatus, VisitedSet, traverse_nearest
from xordht.dht.validation import DHTRecord, RecordValidatorBase
from xordht.p2p import LocalP2P
from xordht.utils import get_logger

logger = get_logger(__name__)


DEFAULT_FANOUT = int(os.getenv("XORDHT_FANOUT", 2))
DEFAULT_BUCKET_SIZE = int(os.getenv("XORDHT_BUCKET_SIZE", 16))


class DHTNode:
    """
    Asyncio-based class that represents one DHT participant (peer). Created via await DHTNode.create(...)
    Each DHTNode has an identifier, a routing table with ids of other peers, a local storage of records
    and access to other peers via DHTProtocol.

    Peers never hold references to each other: they know only peer ids and talk to each other through a shared
    LocalP2P, which dispatches every request to the addressed peer. The overlay may contain arbitrary cycles.

    Each DHTNode serves 3 RPCs:

    * find - return up to fanout peers from the local routing table that are nearest to a target (FIND_NODE)
    * store - validate a record, store it locally and forward it to up to fanout nearest peers (STORE)
    * get - return a locally stored value or ask up to fanout nearest peers for it (GET)

    A DHTNode follows the following contract:

    - store(key, value) is accepted only if record_validator approves (key, value); by default, the key must equal
      the hash of itself. A rejected store returns StoreStatus.KEY_INTEGRITY_VIOLATION.
      An accepted store is persisted locally and returns StoreStatus.STORED, replication to other peers is
      best-effort: unreachable or rejecting peers never fail the operation. Storing the same key twice is a no-op.
    - get(key) returns the first value found at this node or any peer reachable along the nearest-peer paths,
      or None if nobody has it. An empty value (b"") is a valid value and is distinct from None.
    - Every peer is contacted at most once per store or get, so both operations terminate on any topology.
    - Only peers that are at least as close to the key as the current peer are contacted (see select_nearest).
    """

    # fmt:off
    node_id: DHTID; p2p: LocalP2P; protocol: DHTProtocol; is_alive: bool
    # fmt:on

    @classmethod
    async def create(
        cls,
        p2p: Optional[LocalP2P] = None,
        node_id: Optional[DHTID] = None,
        initial_peers: Sequence[DHTID] = (),
        bucket_size: int = DEFAULT_BUCKET_SIZE,
        num_buckets: Optional[int] = None,
        fanout: int = DEFAULT_FANOUT,
        wait_timeout: float = 3,
        num_retries: int = 1,
        record_validator: Optional[RecordValidatorBase] = None,
    ) -> DHTNode:
        """
        :param p2p: an instance of LocalP2P shared by all peers of this DHT.
          If None, DHTNode will create and manage its own LocalP2P (useful for a single detached node)
        :param node_id: current node's DHTID, determines which keys it will store and find; defaults to random id
        :param initial_peers: ids of other peers that will be added to the routing table right away
        :param bucket_size: max number of peer ids in one bucket of the routing table
        :param num_buckets: if specified, the routing table will hold at most num_buckets * bucket_size peers
        :param fanout: store and get will contact up to this many nearest peers on every hop (like alpha in Kademlia)
        :param wait_timeout: a request is deemed lost if we did not receive a reply in this many seconds
          Note that a store or get request waits for the entire subtree of downstream requests
        :param num_retries: retry a failed or timed out request this many times before giving up on that peer
        :param record_validator: decides which records may be stored; defaults to SelfHashValidator (key == hash(key))
        """
        self = cls(_initialized_with_create=True)
        self.node_id = node_id if node_id is not None else DHTID.generate()
        self.is_alive = True

        if p2p is None:
            p2p = LocalP2P()
            self._should_shutdown_p2p = True
        else:
            self._should_shutdown_p2p = False
        if p2p.is_registered(self.node_id):
            raise ValueError(f"Peer {self.node_id} is already registered in this LocalP2P")
        self.p2p = p2p

        self.protocol = await DHTProtocol.create(
            self.p2p,
            self.node_id,
            bucket_size=bucket_size,
            fanout=fanout,
            wait_timeout=wait_timeout,
            num_buckets=num_buckets,
            num_retries=num_retries,
            record_validator=record_validator,
        )
        num_added = self.add_peers(initial_peers)
        logger.debug(f"Created {self.node_id} with {num_added} initial peers")
        return self

    def __init__(self, *, _initialized_with_create=False):
        """Internal init method. Please use DHTNode.create coroutine to spawn new node instances"""
        assert _initialized_with_create, "Please use DHTNode.create coroutine to spawn new node instances"
        super().__init__()

    @property
    def routing_table(self) -> RoutingTable:
        return self.protocol.routing_table

    @property
    def storage(self) -> DHTLocalStorage:
        return self.protocol.storage

    def add_peers(self, peer_ids: Iterable[DHTID]) -> int:
        """Add peer ids to the routing table, :returns: the number of peers that were actually added"""
        return sum(self.routing_table.add_node(peer_id) for peer_id in peer_ids)

    async def shutdown(self):
        """Stop serving requests from other peers"""
        self.is_alive = False
        if self._should_shutdown_p2p:
            await self.p2p.shutdown()
        else:
            await self.p2p.remove_peer(self.node_id)

    async def store(self, key: DHTKey, value: BinaryDHTValue) -> StoreStatus:
        """
        Store a value at this node and replicate it to the peers nearest to key

        :param key: a hex digest or a DHTID; the record validator sees the key exactly as given here
        :param value: binary value to be stored
        :returns: StoreStatus.STORED if this node holds the record, KEY_INTEGRITY_VIOLATION if it was rejected
        :note: if key equals the id of a peer in this node's routing table, the key counts as already known:
          store returns STORED without writing a record, and a subsequent get(key) will not find a value here
        """
        if not isinstance(key, (str, DHTID)):
            raise TypeError(f"DHT keys must be hex strings or DHTIDs, got {type(key).__name__}")
        if not isinstance(value, bytes):
            raise TypeError(f"DHT values must be bytes, got {type(value).__name__}")
        record = DHTRecord(key=key.to_hex() if isinstance(key, DHTID) else key, value=value)
        status = await self.protocol.rpc_store(record, VisitedSet())
        logger.debug(f"{self.node_id} store {record.key!r}: {status.value}")
        return status

    async def get(self, key: DHTKey) -> Optional[BinaryDHTValue]:
        """
        Find a value for key at this node or at the peers nearest to key

        :param key: a hex digest or a DHTID
        :returns: the value or None if it was not found
        """
        key_id = self._parse_key(key)
        if key_id is None:
            return None
        return await self.protocol.rpc_get(key_id, VisitedSet())

    async def find_nearest_nodes(
        self,
        query: DHTKey,
        k_nearest: int = 1,
        beam_size: Optional[int] = None,
        exclude_self: bool = False,
    ) -> List[DHTID]:
        """
        Iteratively ask peers for their neighbors (FIND_NODE) to find the peers nearest to query across the DHT.

        :param query: a hex digest or a DHTID
        :param k_nearest: return up to this many nearest peers
        :param beam_size: keep this many candidates during search; defaults to max(2 * k_nearest, fanout)
        :param exclude_self: if True, do not return this node even if it is among the nearest
        :returns: up to k_nearest peer ids, ordered nearest-first
        """
        query_id = self._parse_key(query)
        if query_id is None:
            return []
        beam_size = beam_size if beam_size is not None else max(2 * k_nearest, self.protocol.fanout)

        async def get_neighbors(peer: DHTID) -> Optional[List[DHTID]]:
            if peer == self.node_id:
                return select_nearest(self.routing_table, query_id, beam_size)
            return await self.protocol.call_find(peer, query_id, beam_size)

        nearest, visited = await traverse_nearest(
            query_id, self.routing_table.all_known_peers(), beam_size + int(exclude_self), get_neighbors
        )
        logger.debug(f"{self.node_id} searched for {query_id}, visited {len(visited)} peers")
        if exclude_self:
            nearest = [node_id for node_id in nearest if node_id != self.node_id]
        return nearest[:k_nearest]

    def _parse_key(self, key: DHTKey) -> Optional[DHTID]:
        if isinstance(key, DHTID):
            return key
        try:
            return DHTID.from_hex(key)
        except (ValueError, TypeError):
            logger.warning(f"{self.node_id} got a malformed key {key!r}, expected a hex digest or a DHTID")
            return None

    def __repr__(self):
        return f"{self.__class__.__name__}(node_id={self.node_id}, peers={len(self.routing_table)})"
