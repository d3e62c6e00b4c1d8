import random
import string
from typing import List, Optional, Sequence

import configargparse

from xordht.dht import DHT, DHTID, ContentHashValidator, SelfHashValidator, StoreStatus
from xordht.utils.logging import get_logger, use_xordht_log_style

use_xordht_log_style("among_xordht")
logger = get_logger(__name__)

VALIDATORS = {"content": ContentHashValidator, "self": SelfHashValidator}


def build_overlay(dht: DHT, num_peers: int, num_neighbors: int) -> List[DHTID]:
    """Add num_peers peers to dht, peer i knows peers i+1, ..., i+num_neighbors (wrapping around)"""
    node_ids = [DHTID.generate(source=index) for index in range(num_peers)]
    for index, node_id in enumerate(node_ids):
        neighbors = [node_ids[(index + offset) % num_peers] for offset in range(1, num_neighbors + 1)]
        dht.add_node(node_id, initial_peers=[peer for peer in neighbors if peer != node_id])
    return node_ids


def random_value(min_length: int = 5, max_length: int = 10) -> bytes:
    length = random.randint(min_length, max_length)
    return "".join(random.choices(string.ascii_letters + string.digits, k=length)).encode()


def main(args: Optional[Sequence[str]] = None):
    # fmt:off
    parser = configargparse.ArgParser(default_config_files=["config.yml"])
    parser.add('-c', '--config', required=False, is_config_file=True, help='config file path')
    parser.add_argument('--num_peers', type=int, default=100, required=False, help='create this many DHT peers')
    parser.add_argument('--num_neighbors', type=int, default=160, required=False,
                        help='each peer knows this many peers that follow it (capped by num_peers - 1)')
    parser.add_argument('--bucket_size', type=int, default=16, required=False,
                        help='max number of peer ids in one bucket of a routing table')
    parser.add_argument('--num_buckets', type=int, default=None, required=False,
                        help='if specified, routing tables will not grow beyond this many buckets')
    parser.add_argument('--fanout', type=int, default=2, required=False,
                        help='store and get contact up to this many nearest peers on every hop')
    parser.add_argument('--wait_timeout', type=float, default=3, required=False,
                        help='a request is deemed lost if there is no reply in this many seconds')
    parser.add_argument('--validator', type=str, choices=VALIDATORS.keys(), default='content',
                        help="'content' accepts keys equal to hash(value), 'self' accepts keys equal to hash(key)")
    parser.add_argument('--num_keys', type=int, default=200, required=False,
                        help='store this many random values, each one from a random peer')
    parser.add_argument('--num_gets', type=int, default=100, required=False,
                        help='get this many of the stored keys, each one from a random peer')
    parser.add_argument('--seed', type=int, default=None, required=False, help='random seed for reproducible runs')
    parser.add_argument('--no_uvloop', action='store_true', help='use the default asyncio event loop')
    # fmt:on
    args = vars(parser.parse_args(args))
    args.pop("config", None)

    if args["seed"] is not None:
        random.seed(args["seed"])
    num_peers = args["num_peers"]
    num_neighbors = min(args["num_neighbors"], num_peers - 1)

    dht = DHT(
        start=True,
        use_uvloop=not args["no_uvloop"],
        bucket_size=args["bucket_size"],
        num_buckets=args["num_buckets"],
        fanout=args["fanout"],
        wait_timeout=args["wait_timeout"],
        record_validator=VALIDATORS[args["validator"]](),
    )
    try:
        node_ids = build_overlay(dht, num_peers, num_neighbors)
        logger.info(f"Running a DHT with {len(node_ids)} peers, each one knows {num_neighbors} other peers")

        records = {}
        for _ in range(args["num_keys"]):
            value = random_value()
            key = DHTID.hexdigest(value)
            status = dht.store(key, value, origin=random.choice(node_ids))
            if status == StoreStatus.STORED:
                records[key] = value
            else:
                logger.info(f"Store {key} was not accepted: {status.value}")
        logger.info(f"Stored {len(records)} out of {args['num_keys']} records")

        selected_keys = random.sample(list(records), min(args["num_gets"], len(records)))
        num_found = 0
        for key in selected_keys:
            value = dht.get(key, origin=random.choice(node_ids))
            num_found += value == records[key]
            logger.debug(f"Key: {key}, Value: {value}")

        hit_rate = num_found / len(selected_keys) if selected_keys else 0.0
        logger.info(f"Found {num_found} out of {len(selected_keys)} keys, hit rate = {hit_rate:.3f}")
        return hit_rate
    except KeyboardInterrupt:
        logger.info("Caught KeyboardInterrupt, shutting down")
    finally:
        dht.shutdown()


if __name__ == "__main__":
    main()
