from xordht.dht import (
    DHT,
    DHTID,
    ContentHashValidator,
    DHTNode,
    RecordValidatorBase,
    RoutingTable,
    SelfHashValidator,
    StoreStatus,
    select_nearest,
)
from xordht.p2p import LocalP2P, P2PHandlerError, PeerNotFoundError
from xordht.utils import *

__version__ = "0.1.0.dev0"
