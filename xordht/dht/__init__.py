"""
This is a Distributed Hash Table that stores and retrieves binary values addressed by fixed-width identifiers.
Peers are ranked by XOR distance to a key; every store and get recursively fans out to the peers nearest to that key.

The code is organized as follows:

 * **class DHT (dht.py)** - synchronous interface to a swarm of DHT peers running in a background thread.
 * **class DHTNode (node.py)** - an asyncio implementation of one DHT peer, stores AND gets keys.
 * **class DHTProtocol (protocol.py)** - an RPC protocol to request data from dht nodes.
 * **class RoutingTable (routing.py)** - a peer's bounded view of other peers, organized in buckets.
 * **def select_nearest (search.py)** - chooses which peers to contact on the next hop.
 * **async def traverse_store, traverse_get (traverse.py)** - recursive store and get over the peer graph.
"""

from xordht.dht.dht import DHT
from xordht.dht.node import DEFAULT_BUCKET_SIZE, DEFAULT_FANOUT, DHTNode
from xordht.dht.routing import DHTID, BinaryDHTValue, DHTKey, KBucket, RoutingTable
from xordht.dht.search import select_nearest
from xordht.dht.storage import DHTLocalStorage
from xordht.dht.traverse import StoreStatus, VisitedSet
from xordht.dht.validation import ContentHashValidator, DHTRecord, RecordValidatorBase, SelfHashValidator
