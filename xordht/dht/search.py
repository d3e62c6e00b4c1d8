import heapq
from typing import List, Optional

from xordht.dht.routing import DHTID, RoutingTable


def select_nearest(
    routing_table: RoutingTable, target: DHTID, fanout: int, exclude: Optional[DHTID] = None
) -> List[DHTID]:
    """
    Choose up to :fanout: peers from the routing table that should be contacted next on the way to :target:

    Only peers that are at least as close to target as the owner of the table are eligible, so that every hop
    moves the search no farther from the target. Peers are ranked by xor distance to target, ties are broken by
    peer id, which makes the result deterministic for the same table and target.

    :param routing_table: a table of known peers; its owner (see RoutingTable.get_self) is the reference point
    :param target: the key or node id that we are searching for
    :param fanout: return at most this many peers (like alpha in Kademlia)
    :param exclude: if specified, this peer will not be returned, e.g. the table owner itself
    :returns: a list of peer ids ordered from nearest to farthest, empty if the table has no owner
    """
    self_id = routing_table.get_self()
    if self_id is None or fanout <= 0:
        return []
    self_distance = self_id.xor_distance(target)

    candidates = [
        node_id
        for node_id in routing_table.all_known_peers()
        if node_id != exclude and node_id.xor_distance(target) <= self_distance
    ]
    return heapq.nsmallest(fanout, candidates, key=lambda node_id: node_id.ordering_key(target))
