""" Utility data structures to represent DHT nodes (peers), data keys, and routing tables. """
from __future__ import annotations

import hashlib
import random
import re
from collections.abc import Iterable
from itertools import chain
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Sequence, Tuple, Union

from xordht.utils import MSGPackSerializer, get_logger

if TYPE_CHECKING:
    from xordht.dht.storage import DHTLocalStorage

logger = get_logger(__name__)

DHTKey = Union[str, "DHTID"]
BinaryDHTValue = bytes


class DHTID(int):
    """
    A fixed-width identifier of a DHT peer or a data key. Distance between identifiers is their bitwise xor.

    :note: DHTID is a python int, so xor and comparisons always operate over the full HASH_NBYTES * 8 bits
    """

    HASH_FUNC = hashlib.md5
    HASH_NBYTES = 16  # md5 produces a 16-byte (aka 128bit) number
    RANGE = MIN, MAX = 0, 2 ** (HASH_NBYTES * 8)  # inclusive min, exclusive max
    HEX_PATTERN = re.compile(r"[0-9a-fA-F]+")

    def __new__(cls, value: int):
        if not cls.MIN <= value < cls.MAX:
            raise ValueError(f"DHTID must be in [{cls.MIN}, {cls.MAX}) but got {value}")
        return super().__new__(cls, value)

    @classmethod
    def hexdigest(cls, data: bytes) -> str:
        """The hash primitive of this identifier space: a lowercase hex digest of HASH_NBYTES bytes"""
        return cls.HASH_FUNC(data).hexdigest()

    @classmethod
    def generate(cls, source: Optional[Any] = None, nbits: int = 255):
        """
        Generates random uid based on md5

        :param source: if provided, converts this value to bytes and uses it as input for hashing function;
            by default, generates a random dhtid from :nbits: random bits
        """
        source = random.getrandbits(nbits).to_bytes(nbits, byteorder="big") if source is None else source
        source = MSGPackSerializer.dumps(source) if not isinstance(source, bytes) else source
        return cls.from_hex(cls.hexdigest(source))

    @classmethod
    def from_hex(cls, text: str) -> DHTID:
        """Parse an identifier from plain hex digits, e.g. a digest. Raises ValueError if text is anything else"""
        if not cls.HEX_PATTERN.fullmatch(text):
            raise ValueError(f"{text!r} is not a hex string")
        if len(text) > cls.HASH_NBYTES * 2:
            raise ValueError(f"{text!r} is wider than {cls.HASH_NBYTES * 8} bits")
        return cls(int(text, 16))

    def to_hex(self) -> str:
        """A stable textual form: lowercase hex, zero-padded to the full identifier width"""
        return format(int(self), f"0{self.HASH_NBYTES * 2}x")

    def xor_distance(self, other: Union[DHTID, Sequence[DHTID]]) -> Union[int, List[int]]:
        """
        :param other: one or multiple DHTIDs. If given multiple DHTIDs as other, this function
         will compute distance from self to each of DHTIDs in other.
        :return: a number or a list of numbers whose binary representations equal bitwise xor between DHTIDs.
        """
        if isinstance(other, Iterable):
            return list(map(self.xor_distance, other))
        return int(self) ^ int(other)

    def ordering_key(self, target: DHTID) -> Tuple[int, int]:
        """Rank by distance to target, break ties by the id itself so that every peer sorts candidates alike"""
        return self.xor_distance(target), int(self)

    def __repr__(self):
        return f"{self.__class__.__name__}({hex(self)})"


class KBucket:
    """An ordered sequence of up to :size: peer ids. Buckets hold references to peers, never the peers themselves"""

    def __init__(self, size: int, nodes: Sequence[DHTID] = ()):
        assert size > 0, "bucket size must be positive"
        assert len(nodes) <= size, f"{len(nodes)} nodes do not fit into a bucket of size {size}"
        self.size = size
        self.nodes: List[DHTID] = []
        for node_id in nodes:
            self.add_node(node_id)

    def add_node(self, node_id: DHTID) -> bool:
        """Append node to the end of the bucket, return True if successful, False if it's already there or full"""
        if node_id in self.nodes or self.is_full:
            return False
        self.nodes.append(node_id)
        return True

    @property
    def is_full(self) -> bool:
        return len(self.nodes) >= self.size

    def __contains__(self, node_id: DHTID) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[DHTID]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self.nodes)} nodes, max size={self.size})"


class RoutingTable:
    """
    A peer's bounded view of the DHT: an ordered list of buckets with peer ids.
    The first entry of the first non-empty bucket is the peer that owns this table (see get_self).

    :param node_id: id of the owner peer; if specified, it is placed at the first position of the first bucket
    :param bucket_size: max number of peer ids in one bucket
    :param num_buckets: if specified, the table will not grow beyond this many buckets
    :param storage: records held by the owner peer; contains() reports keys found in this storage
    :note: buckets are filled in insertion order and never split or merged
    """

    def __init__(
        self,
        node_id: Optional[DHTID] = None,
        bucket_size: int = 16,
        num_buckets: Optional[int] = None,
        storage: Optional[DHTLocalStorage] = None,
    ):
        assert num_buckets is None or num_buckets > 0, "num_buckets must be positive"
        self.bucket_size, self.num_buckets, self.storage = bucket_size, num_buckets, storage
        self.buckets: List[KBucket] = []
        self._known_nodes = set()
        if node_id is not None:
            self.add_node(node_id)

    @classmethod
    def from_buckets(
        cls, buckets: Sequence[Sequence[DHTID]], bucket_size: int = 16, **kwargs
    ) -> RoutingTable:
        """Create a table from explicit bucket contents, e.g. [[self_id, peer1, peer2], [peer3, ...]]"""
        table = cls(bucket_size=bucket_size, **kwargs)
        for nodes in buckets:
            bucket = KBucket(bucket_size, [node_id for node_id in nodes if node_id not in table._known_nodes])
            table.buckets.append(bucket)
            table._known_nodes.update(bucket.nodes)
        return table

    def add_node(self, node_id: DHTID) -> bool:
        """
        Add a peer id to the last bucket, open a new bucket if the last one is full.

        :returns: True if the node was added, False if it is already known or the table is full
        """
        if node_id in self._known_nodes:
            return False
        if not self.buckets or self.buckets[-1].is_full:
            if self.num_buckets is not None and len(self.buckets) >= self.num_buckets:
                logger.debug(f"Routing table is full ({len(self.buckets)} buckets), dropping {node_id}")
                return False
            self.buckets.append(KBucket(self.bucket_size))
        self.buckets[-1].add_node(node_id)
        self._known_nodes.add(node_id)
        return True

    def get_self(self) -> Optional[DHTID]:
        """The owner of this table: first entry of the first non-empty bucket, or None if the table is empty"""
        for bucket in self.buckets:
            if len(bucket) > 0:
                return bucket.nodes[0]
        return None

    def contains(self, key: DHTID) -> bool:
        """Whether key is a known peer id or a key of a record held by the owner of this table"""
        return key in self._known_nodes or (self.storage is not None and key in self.storage)

    def all_known_peers(self) -> List[DHTID]:
        """Contents of all buckets concatenated (including the owner itself)"""
        return list(chain.from_iterable(self.buckets))

    def __contains__(self, node_id: DHTID) -> bool:
        return node_id in self._known_nodes

    def __iter__(self) -> Iterator[DHTID]:
        return chain.from_iterable(self.buckets)

    def __len__(self) -> int:
        return len(self._known_nodes)

    def __repr__(self):
        bucket_info = "\n".join(repr(bucket) for bucket in self.buckets)
        return (
            f"{self.__class__.__name__}(node_id={self.get_self()}, bucket_size={self.bucket_size},"
            f" num_buckets={self.num_buckets},\nbuckets=[\n{bucket_info}])"
        )
