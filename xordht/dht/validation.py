import dataclasses
from abc import ABC, abstractmethod
from typing import Callable

from xordht.dht.routing import DHTID

HashFunction = Callable[[bytes], str]


@dataclasses.dataclass(init=True, repr=True, frozen=True)
class DHTRecord:
    key: str  # textual (hex) form of the key, exactly as supplied by the caller
    value: bytes


class RecordValidatorBase(ABC):
    """
    Decides whether a peer may accept a record. Every peer that is asked to store a record calls validate()
    before touching its local storage; a rejected record is neither stored nor forwarded.

    Validators can enforce a content-addressing contract (see SelfHashValidator and ContentHashValidator)
    or application-specific rules on keys and values.
    """

    @abstractmethod
    def validate(self, record: DHTRecord) -> bool:
        """:returns: True if the record may be stored, False otherwise"""


class SelfHashValidator(RecordValidatorBase):
    """
    Accepts a record only if its key is a fixed point of the hash function: key == hash(key).

    :param hash_function: maps bytes to a lowercase hex digest, defaults to DHTID.hexdigest
    :note: for a cryptographic hash, practically no key passes this check; see ContentHashValidator
    """

    def __init__(self, hash_function: HashFunction = DHTID.hexdigest):
        self.hash_function = hash_function

    def validate(self, record: DHTRecord) -> bool:
        try:
            encoded_key = record.key.encode()
        except UnicodeEncodeError:
            return False  # e.g. a lone surrogate, such a key cannot be a digest
        return self.hash_function(encoded_key) == record.key


class ContentHashValidator(RecordValidatorBase):
    """Accepts a record only if its key is the digest of its value: key == hash(value)"""

    def __init__(self, hash_function: HashFunction = DHTID.hexdigest):
        self.hash_function = hash_function

    def validate(self, record: DHTRecord) -> bool:
        return self.hash_function(record.value) == record.key.lower()

