""" A unified interface for serializing python objects into deterministic byte strings """
from abc import ABC, abstractmethod

import msgpack


class SerializerBase(ABC):
    @staticmethod
    @abstractmethod
    def dumps(obj: object) -> bytes:
        pass


class MSGPackSerializer(SerializerBase):
    _TUPLE_EXT_TYPE_CODE = 0x40

    @classmethod
    def _encode_ext_types(cls, obj):
        if isinstance(obj, tuple):
            # Tuples are packed as an ext type, so that (1, 2) and [1, 2] produce different bytes (and DHTIDs)
            data = msgpack.packb(list(obj), strict_types=True, use_bin_type=True, default=cls._encode_ext_types)
            return msgpack.ExtType(cls._TUPLE_EXT_TYPE_CODE, data)
        return obj

    @classmethod
    def dumps(cls, obj: object) -> bytes:
        return msgpack.dumps(obj, use_bin_type=True, default=cls._encode_ext_types, strict_types=True)
