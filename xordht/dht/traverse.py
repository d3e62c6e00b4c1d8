""" Utility functions for crawling DHT nodes, used to get and store keys in a DHT """
from __future__ import annotations

import asyncio
import heapq
import threading
from collections import Counter
from enum import Enum
from typing import Awaitable, Callable, Collection, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from xordht.dht.routing import DHTID, BinaryDHTValue
from xordht.dht.validation import DHTRecord, RecordValidatorBase
from xordht.utils import first_not_none, get_logger

logger = get_logger(__name__)


class StoreStatus(Enum):
    STORED = "stored"  # the record is held by the peer (stored just now or before)
    EXHAUSTED = "exhausted"  # the peer was already visited by this operation, nothing was done
    KEY_INTEGRITY_VIOLATION = "key_integrity_violation"  # the record failed validation and was rejected


class VisitedSet:
    """
    Peers that were already contacted during one store or get operation, shared by all its concurrent branches.
    try_visit checks and marks a peer in one atomic step, so a peer is never processed twice by the same operation.
    """

    def __init__(self, visited_nodes: Iterable[DHTID] = ()):
        self._nodes: Set[DHTID] = set(visited_nodes)
        self._lock = threading.Lock()

    def try_visit(self, node_id: DHTID) -> bool:
        """Mark node as visited. :returns: True if it was not visited before, False otherwise"""
        with self._lock:
            if node_id in self._nodes:
                return False
            self._nodes.add(node_id)
            return True

    def __contains__(self, node_id: DHTID) -> bool:
        with self._lock:
            return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[DHTID]:
        with self._lock:
            return iter(list(self._nodes))

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self)} nodes)"


async def traverse_store(
    node_id: DHTID,
    record: DHTRecord,
    visited: VisitedSet,
    validator: RecordValidatorBase,
    store_locally: Callable[[DHTID, BinaryDHTValue], bool],
    select_neighbors: Callable[[DHTID], Sequence[DHTID]],
    call_store: Callable[[DHTID, DHTRecord, VisitedSet], Awaitable[Optional[StoreStatus]]],
) -> StoreStatus:
    """
    Store a record at :node_id: and recursively flood it to the peers nearest to its key.

    :param node_id: the peer that runs this step of the traversal
    :param record: a (key, value) pair, key is given in its textual (hex) form
    :param visited: peers that were already visited by this store operation, shared across all branches
    :param validator: checks whether this peer may accept the record
    :param store_locally: save the record at this peer unless it's already there;
       returns True if the record was stored just now, False if this peer already had it
    :param select_neighbors: choose peers (excluding this one) to forward the record to, nearest-first
    :param call_store: forward the record to another peer, returns None if that peer did not respond
    :returns: STORED if this peer holds the record, EXHAUSTED if this peer was already visited,
       KEY_INTEGRITY_VIOLATION if the record was rejected. Downstream outcomes never change the result.
    """
    if not validator.validate(record):
        logger.warning(f"{node_id} rejected a record: key {record.key!r} does not satisfy the key contract")
        return StoreStatus.KEY_INTEGRITY_VIOLATION
    try:
        key_id = DHTID.from_hex(record.key)
    except ValueError:
        logger.warning(f"{node_id} rejected a record: key {record.key!r} is not a valid identifier")
        return StoreStatus.KEY_INTEGRITY_VIOLATION

    if not visited.try_visit(node_id):
        return StoreStatus.EXHAUSTED

    if not store_locally(key_id, record.value):
        logger.debug(f"{node_id} already has {key_id}")
        return StoreStatus.STORED

    neighbors = select_neighbors(key_id)
    if neighbors:
        # replication is best-effort: wait for all branches, but failed branches do not fail this store
        downstream = await asyncio.gather(*(call_store(neighbor, record, visited) for neighbor in neighbors))
        outcomes = Counter("no_response" if status is None else status.value for status in downstream)
        logger.debug(f"{node_id} stored {key_id} and forwarded it to {len(neighbors)} peers: {dict(outcomes)}")
    return StoreStatus.STORED


async def traverse_get(
    node_id: DHTID,
    key: DHTID,
    visited: VisitedSet,
    get_locally: Callable[[DHTID], Optional[BinaryDHTValue]],
    select_neighbors: Callable[[DHTID], Sequence[DHTID]],
    call_get: Callable[[DHTID, DHTID, VisitedSet], Awaitable[Optional[BinaryDHTValue]]],
) -> Optional[BinaryDHTValue]:
    """
    Find a value for :key: at :node_id: or, recursively, at the peers nearest to key.

    :param node_id: the peer that runs this step of the traversal
    :param key: the key we are looking for
    :param visited: peers that were already visited by this get operation, shared across all branches
    :param get_locally: return the value stored at this peer or None
    :param select_neighbors: choose peers (excluding this one) to ask next, nearest-first
    :param call_get: ask another peer, returns None if that peer did not find the value or did not respond
    :returns: the first value found by any branch (other branches are cancelled) or None if nobody has it
    """
    if not visited.try_visit(node_id):
        return None

    value = get_locally(key)
    if value is not None:
        return value

    neighbors = select_neighbors(key)
    if not neighbors:
        return None
    return await first_not_none(*(call_get(neighbor, key, visited) for neighbor in neighbors))


async def traverse_nearest(
    query_id: DHTID,
    initial_nodes: Collection[DHTID],
    beam_size: int,
    get_neighbors: Callable[[DHTID], Awaitable[Optional[Collection[DHTID]]]],
    visited_nodes: Collection[DHTID] = (),
) -> Tuple[List[DHTID], Set[DHTID]]:
    """
    Traverse the DHT graph using get_neighbors function, find :beam_size: nearest nodes according to DHTID.ordering_key

    :param query_id: search query, find nearest neighbors of this DHTID
    :param initial_nodes: nodes used to pre-populate beam search heap, e.g. [my_own_DHTID, ...maybe_some_peers]
    :param beam_size: keep this many nearest nodes (to query_id) in the beam, return them at the end
    :param get_neighbors: A function that returns neighbors of a given node (or None if it did not respond)
        async def get_neighbors(node: DHTID) -> neighbors_of_that_node: Optional[List[DHTID]]
    :param visited_nodes: beam search will neither call get_neighbors on these nodes, nor return them as nearest
    :returns: a list of up to beam_size nearest nodes (nearest to farthest), and a set of all visited nodes
    """
    visited_nodes = set(visited_nodes)  # note: copy visited_nodes because we will add more nodes to this collection.
    initial_nodes = [node_id for node_id in dict.fromkeys(initial_nodes) if node_id not in visited_nodes]
    if not initial_nodes or beam_size <= 0:
        return [], visited_nodes

    def farthest_first(node_id: DHTID) -> Tuple[int, int]:
        distance, uid = node_id.ordering_key(query_id)
        return -distance, -uid

    unvisited_nodes = [(node_id.ordering_key(query_id), node_id) for node_id in initial_nodes]
    heapq.heapify(unvisited_nodes)  # nearest-first heap of candidates, unlimited size

    nearest_nodes = [(farthest_first(node_id), node_id) for _, node_id in heapq.nsmallest(beam_size, unvisited_nodes)]
    heapq.heapify(nearest_nodes)  # farthest-first heap of size beam_size, used for early-stopping and results
    known_nodes = set(initial_nodes)

    while unvisited_nodes:
        _, node_id = heapq.heappop(unvisited_nodes)
        if len(nearest_nodes) >= beam_size and farthest_first(node_id) < nearest_nodes[0][0]:
            break  # this candidate (and every candidate after it) is farther than all beam_size nearest nodes

        visited_nodes.add(node_id)
        neighbors = await get_neighbors(node_id)
        if neighbors is None:
            continue

        for neighbor_id in neighbors:
            if neighbor_id in known_nodes or neighbor_id in visited_nodes:
                continue
            known_nodes.add(neighbor_id)
            entry = (farthest_first(neighbor_id), neighbor_id)
            if len(nearest_nodes) < beam_size:
                heapq.heappush(nearest_nodes, entry)
            elif entry[0] > nearest_nodes[0][0]:
                heapq.heappushpop(nearest_nodes, entry)
            else:
                continue  # farther than everything in the beam, no need to explore
            heapq.heappush(unvisited_nodes, (neighbor_id.ordering_key(query_id), neighbor_id))

    return [node_id for _, node_id in sorted(nearest_nodes, reverse=True)], visited_nodes
