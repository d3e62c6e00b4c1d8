from xordht.p2p.local_p2p import LocalP2P, P2PHandlerError, PeerID, PeerNotFoundError
from xordht.p2p.servicer import ServicerBase, StubBase
