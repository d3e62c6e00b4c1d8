import asyncio
import heapq
import random

import pytest

from xordht.dht.node import DHTID, DHTNode
from xordht.dht.traverse import StoreStatus, VisitedSet
from xordht.dht.validation import ContentHashValidator, DHTRecord, SelfHashValidator
from xordht.p2p import LocalP2P
from xordht.utils.logging import get_logger

from test_utils.dht_swarms import launch_fully_connected_swarm, launch_ring_swarm, launch_swarm, shutdown_swarm

logger = get_logger(__name__)


def accept_any_key() -> SelfHashValidator:
    # with an identity "hash", every key is a fixed point, which lets tests choose keys freely
    return SelfHashValidator(hash_function=lambda data: data.decode())


def count_calls(node: DHTNode, method_name: str) -> list:
    calls = []
    original = getattr(node.protocol, method_name)

    def wrapped(*args):
        calls.append(args)
        return original(*args)

    setattr(node.protocol, method_name, wrapped)
    return calls


async def create_nodes(p2p: LocalP2P, tables: dict, **kwargs) -> dict:
    """tables: {node_id: [peers in its routing table]}, :returns: {node_id: DHTNode}"""
    nodes = {}
    for node_id, peers in tables.items():
        nodes[node_id] = await DHTNode.create(p2p, node_id=DHTID(node_id), initial_peers=map(DHTID, peers), **kwargs)
    return nodes


@pytest.mark.asyncio
async def test_store_rejects_invalid_key():
    node = await DHTNode.create()
    assert DHTID.hexdigest(b"abc") != "abc"
    assert await node.store("abc", b"value") == StoreStatus.KEY_INTEGRITY_VIOLATION
    assert len(node.storage) == 0

    digest = DHTID.hexdigest(b"value")
    status = await node.store(digest, b"value")
    assert status == StoreStatus.KEY_INTEGRITY_VIOLATION, "default check is key == hash(key)"

    permissive = await DHTNode.create(record_validator=accept_any_key())
    assert await permissive.store("not a hex key", b"value") == StoreStatus.KEY_INTEGRITY_VIOLATION
    assert len(permissive.storage) == 0

    with pytest.raises(TypeError):
        await permissive.store("00", "not bytes")
    with pytest.raises(TypeError):
        await permissive.store(0, b"value")

    for unencodable_key in ["\ud800", "ab\udfffcd"]:
        assert await node.store(unencodable_key, b"value") == StoreStatus.KEY_INTEGRITY_VIOLATION
        assert await permissive.store(unencodable_key, b"value") == StoreStatus.KEY_INTEGRITY_VIOLATION
        assert await node.get(unencodable_key) is None
    assert len(node.storage) == len(permissive.storage) == 0

    await asyncio.gather(node.shutdown(), permissive.shutdown())


@pytest.mark.asyncio
async def test_store_idempotence():
    node = await DHTNode.create(record_validator=ContentHashValidator())
    value = b"some value"
    key = DHTID.hexdigest(value)

    assert await node.store(key, value) == StoreStatus.STORED
    assert await node.store(key, value) == StoreStatus.STORED
    assert len(node.storage) == 1
    assert await node.get(key) == value, "a value must be available right after store"
    assert await node.get(DHTID.from_hex(key)) == value

    statuses = await asyncio.gather(*[node.store(key, value) for _ in range(10)])
    assert statuses == [StoreStatus.STORED] * 10 and len(node.storage) == 1
    await node.shutdown()


@pytest.mark.asyncio
async def test_store_concurrent_identical():
    nodes = await launch_fully_connected_swarm(10, record_validator=ContentHashValidator(), fanout=3)
    value = b"concurrent value"
    key = DHTID.hexdigest(value)

    statuses = await asyncio.gather(*[node.store(key, value) for node in nodes for _ in range(3)])
    assert all(status == StoreStatus.STORED for status in statuses)
    for node in nodes:
        assert len(node.storage) <= 1
    assert sum(len(node.storage) for node in nodes) >= 1
    await shutdown_swarm(nodes)


@pytest.mark.asyncio
async def test_empty_value():
    node = await DHTNode.create(record_validator=ContentHashValidator())
    key = DHTID.hexdigest(b"")
    assert await node.get(key) is None
    assert await node.store(key, b"") == StoreStatus.STORED
    assert await node.get(key) == b"", "an empty value is a value, not a missing one"
    await node.shutdown()


@pytest.mark.asyncio
async def test_get_malformed_key():
    node = await DHTNode.create()
    assert await node.get("definitely not hex") is None
    assert await node.get("f" * 100) is None
    assert await node.find_nearest_nodes("xyz") == []
    await node.shutdown()


@pytest.mark.asyncio
async def test_two_cycle_terminates():
    p2p = LocalP2P()
    nodes = await create_nodes(p2p, {0x0F: [0x05], 0x05: [0x0F]}, record_validator=accept_any_key())
    first = nodes[0x0F]

    assert await asyncio.wait_for(first.get(DHTID(0x00)), timeout=5) is None
    assert await asyncio.wait_for(first.get(DHTID(0x0E)), timeout=5) is None
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_ring_terminates():
    node_ids = [DHTID.generate() for _ in range(10)]
    nodes = await launch_ring_swarm(node_ids, num_neighbors=3, record_validator=accept_any_key(), fanout=3)

    for node in nodes:
        assert await asyncio.wait_for(node.get(DHTID.generate()), timeout=5) is None
        key = DHTID.generate()
        assert await asyncio.wait_for(node.store(key, b"value"), timeout=5) == StoreStatus.STORED
    await shutdown_swarm(nodes)


@pytest.mark.asyncio
async def test_store_propagates_to_nearer_peers():
    p2p = LocalP2P()
    tables = {0x0F: [0x05, 0x0A, 0xF0], 0x05: [0x01], 0x0A: [0x01], 0x01: [], 0xF0: []}
    nodes = await create_nodes(p2p, tables, record_validator=accept_any_key(), fanout=2)
    key = DHTID(0x00)
    store_calls = count_calls(nodes[0x01], "store_locally")

    assert await nodes[0x0F].store(key, b"value") == StoreStatus.STORED
    for node_id in [0x0F, 0x05, 0x0A, 0x01]:
        assert nodes[node_id].storage.get(key) == b"value", f"{hex(node_id)} must hold the record"
    assert key not in nodes[0xF0].storage, "records are never sent to peers farther from the key"
    assert len(store_calls) == 1, "a peer reachable over two paths must be processed once"

    get_calls = count_calls(nodes[0x01], "get_locally")
    assert await nodes[0xF0].get(key) is None, "0xF0 knows nobody, so it cannot find the record"
    assert await nodes[0x0F].get(key) == b"value"
    assert len(get_calls) == 0, "0x0F holds the record itself"

    other_key = DHTID(0x02)
    await nodes[0x01].store(other_key, b"other value")
    assert key in nodes[0x01].storage and other_key not in nodes[0x0F].storage
    assert await nodes[0x0F].get(other_key) == b"other value"
    assert len(get_calls) == 1, "both branches reach 0x01, but it is visited once"
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_store_as_visited():
    node = await DHTNode.create(record_validator=accept_any_key())
    record = DHTRecord(key="00", value=b"value")
    assert await node.protocol.rpc_store(record, VisitedSet([node.node_id])) == StoreStatus.EXHAUSTED
    assert len(node.storage) == 0
    assert await node.protocol.rpc_get(DHTID(0), VisitedSet([node.node_id])) is None
    await node.shutdown()


@pytest.mark.asyncio
async def test_downstream_rejection_does_not_fail_store():
    p2p = LocalP2P()
    origin = await DHTNode.create(
        p2p, node_id=DHTID(0x0F), initial_peers=[DHTID(0x05), DHTID(0x01)], record_validator=accept_any_key()
    )
    strict = await DHTNode.create(p2p, node_id=DHTID(0x05), record_validator=SelfHashValidator())
    content = await DHTNode.create(p2p, node_id=DHTID(0x01), record_validator=ContentHashValidator())
    store_calls = count_calls(strict, "store_locally")

    key = DHTID(0x00)
    assert await origin.store(key, b"value") == StoreStatus.STORED
    assert origin.storage.get(key) == b"value"
    assert len(strict.storage) == 0 and len(content.storage) == 0, "both neighbors must reject the record"
    assert len(store_calls) == 0, "a rejected record never reaches the local storage"
    assert await origin.get(key) == b"value"
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_store_key_of_known_peer():
    p2p = LocalP2P()
    nodes = await create_nodes(p2p, {0x0F: [0x05], 0x05: []}, record_validator=accept_any_key())
    assert await nodes[0x0F].store(DHTID(0x05), b"value") == StoreStatus.STORED
    assert len(nodes[0x0F].storage) == 0, "the key is already known to the routing table"
    assert len(nodes[0x05].storage) == 0
    assert await nodes[0x0F].get(DHTID(0x05)) is None, "a known peer id is not a stored record"
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_unreachable_peers():
    p2p = LocalP2P()
    tables = {0x0F: [0x05, 0x01], 0x05: [], 0x01: []}
    nodes = await create_nodes(p2p, tables, record_validator=accept_any_key(), fanout=2, wait_timeout=1)
    await nodes[0x01].shutdown()
    missing = DHTID(0x03)
    nodes[0x0F].add_peers([missing])  # a peer that never existed

    key = DHTID(0x00)
    assert await nodes[0x0F].store(key, b"value") == StoreStatus.STORED
    assert nodes[0x0F].storage.get(key) == b"value"
    assert nodes[0x05].storage.get(key) is None, "0x05 is not among the 2 nearest peers"
    assert await nodes[0x0F].get(key) == b"value"

    another_key = DHTID(0x04)
    await nodes[0x05].store(another_key, b"another value")
    assert await nodes[0x0F].get(another_key) == b"another value", "dead branches must not abort the search"
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_duplicate_node_id():
    p2p = LocalP2P()
    node = await DHTNode.create(p2p)
    with pytest.raises(ValueError):
        await DHTNode.create(p2p, node_id=node.node_id)
    await p2p.shutdown()


@pytest.mark.asyncio
async def test_fully_connected_swarm_finds_everything():
    nodes = await launch_fully_connected_swarm(25, record_validator=ContentHashValidator(), fanout=2)

    records = {}
    for i in range(30):
        value = f"value {i}".encode()
        key = DHTID.hexdigest(value)
        assert await random.choice(nodes).store(key, value) == StoreStatus.STORED
        records[key] = value

    for key, value in records.items():
        assert await random.choice(nodes).get(key) == value
        key_id = DHTID.from_hex(key)
        nearest = min(nodes, key=lambda node: node.node_id.xor_distance(key_id))
        assert nearest.storage.get(key_id) == value, "the nearest peer must hold the record"

    assert await random.choice(nodes).get(DHTID.generate()) is None
    await shutdown_swarm(nodes)


@pytest.mark.asyncio
async def test_random_swarm():
    nodes = await launch_swarm(50, n_initial_peers=10, record_validator=ContentHashValidator(), fanout=3)

    for i in range(20):
        value = f"value {i}".encode()
        key = DHTID.hexdigest(value)
        origin = random.choice(nodes)
        assert await origin.store(key, value) == StoreStatus.STORED
        assert await origin.get(key) == value
        assert sum(DHTID.from_hex(key) in node.storage for node in nodes) >= 1

    assert await nodes[0].get(DHTID.generate()) is None
    await shutdown_swarm(nodes)


@pytest.mark.asyncio
async def test_find_nearest_nodes():
    nodes = await launch_swarm(40, n_initial_peers=10, fanout=4)
    all_node_ids = [node.node_id for node in nodes]
    me = random.choice(nodes)

    nearest = await me.find_nearest_nodes(me.node_id, k_nearest=1)
    assert nearest == [me.node_id]
    assert me.node_id not in await me.find_nearest_nodes(me.node_id, k_nearest=3, exclude_self=True)

    accuracy_numerator = accuracy_denominator = 0
    for _ in range(20):
        query_id = DHTID.generate()
        k_nearest = random.randint(1, 5)
        found = await me.find_nearest_nodes(query_id, k_nearest=k_nearest, beam_size=2 * k_nearest + 8)
        assert len(found) == k_nearest
        assert found == sorted(found, key=query_id.xor_distance), "results must be sorted by distance"

        ref_nearest = heapq.nsmallest(k_nearest, all_node_ids, key=query_id.xor_distance)
        accuracy_numerator += found[0] == ref_nearest[0]
        accuracy_denominator += 1

    accuracy = accuracy_numerator / accuracy_denominator
    logger.debug(f"Top-1 accuracy: {accuracy}")
    assert accuracy >= 0.75, f"Top-1 accuracy: {accuracy}"
    await shutdown_swarm(nodes)
