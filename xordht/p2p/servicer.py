import asyncio
import inspect
from typing import Any, List, Optional, Type

from xordht.p2p.local_p2p import LocalP2P, PeerID


class StubBase:
    """
    Base class for RPC stubs.

    Servicer derives stub classes for particular services (e.g. DHT) from StubBase,
    adding the necessary rpc_* methods. Calls to these methods are translated to calls to the remote peer.
    """

    def __init__(self, p2p: LocalP2P, peer: PeerID):
        self._p2p = p2p
        self._peer = peer


class ServicerBase:
    """
    Base class for RPC servicers (e.g. DHT). The interface mimicks gRPC servicers.

    - ``add_p2p_handlers(self, p2p, peer)`` registers all rpc_* methods of the derived class as handlers of :peer:,
      allowing other peers to call them.

    - ``get_stub(p2p, peer)`` creates a stub with all rpc_* methods. Calls to the stub methods are translated
      to calls to the remote peer.
    """

    _rpc_handlers: Optional[List[str]] = None
    _stub_type: Optional[Type[StubBase]] = None

    @classmethod
    def _collect_rpc_handlers(cls) -> None:
        if cls.__dict__.get("_rpc_handlers") is not None:
            return

        cls._rpc_handlers = []
        for method_name, method in inspect.getmembers(cls, predicate=inspect.isfunction):
            if method_name.startswith("rpc_"):
                if not inspect.iscoroutinefunction(method):
                    raise ValueError(f"{method_name} is expected to be a coroutine function (async def)")
                cls._rpc_handlers.append(method_name)

        cls._stub_type = type(
            f"{cls.__name__}Stub",
            (StubBase,),
            {method_name: cls._make_rpc_caller(method_name) for method_name in cls._rpc_handlers},
        )

    @classmethod
    def _make_rpc_caller(cls, method_name: str):
        # This method will be added to a new Stub type (a subclass of StubBase)
        async def caller(self: StubBase, *args: Any, timeout: Optional[float] = None) -> Any:
            handle_name = cls._get_handle_name(method_name)
            return await self._p2p.call_handler(self._peer, handle_name, *args, timeout=timeout)

        caller.__name__ = method_name
        return caller

    async def add_p2p_handlers(self, p2p: LocalP2P, peer: PeerID) -> None:
        self._collect_rpc_handlers()

        await asyncio.gather(
            *[
                p2p.add_handler(peer, self._get_handle_name(method_name), getattr(self, method_name))
                for method_name in self._rpc_handlers
            ]
        )

    @classmethod
    def get_stub(cls, p2p: LocalP2P, peer: PeerID) -> StubBase:
        cls._collect_rpc_handlers()
        return cls._stub_type(p2p, peer)

    @classmethod
    def _get_handle_name(cls, method_name: str) -> str:
        return f"{cls.__name__}.{method_name}"
