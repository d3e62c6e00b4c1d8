import pytest

from xordht.dht.routing import DHTID
from xordht.dht.validation import ContentHashValidator, DHTRecord, RecordValidatorBase, SelfHashValidator


class KeyPrefixValidator(RecordValidatorBase):
    def __init__(self, prefix: str):
        self.prefix = prefix

    def validate(self, record: DHTRecord) -> bool:
        return record.key.startswith(self.prefix)


def test_self_hash_validator():
    validator = SelfHashValidator()
    assert DHTID.hexdigest(b"abc") != "abc"
    assert not validator.validate(DHTRecord(key="abc", value=b"value"))

    digest = DHTID.hexdigest(b"value")
    assert not validator.validate(DHTRecord(key=digest, value=b"value")), "the key must be the hash of itself"

    fixed_point_validator = SelfHashValidator(hash_function=lambda data: data.decode())
    assert fixed_point_validator.validate(DHTRecord(key="abc", value=b"value"))


def test_self_hash_validator_unencodable_key():
    assert not SelfHashValidator().validate(DHTRecord(key="\ud800", value=b"value"))
    assert not SelfHashValidator(hash_function=lambda data: data.decode()).validate(
        DHTRecord(key="ab\udfffcd", value=b"value")
    )


def test_content_hash_validator():
    validator = ContentHashValidator()
    digest = DHTID.hexdigest(b"value")
    assert validator.validate(DHTRecord(key=digest, value=b"value"))
    assert validator.validate(DHTRecord(key=digest.upper(), value=b"value"))
    assert not validator.validate(DHTRecord(key=digest, value=b"another value"))
    assert not validator.validate(DHTRecord(key="abc", value=b"value"))
    assert not validator.validate(DHTRecord(key="\ud800", value=b"value"))
    assert validator.validate(DHTRecord(key=DHTID.hexdigest(b""), value=b""))


def test_custom_validator():
    validator = KeyPrefixValidator("ab")
    assert validator.validate(DHTRecord(key="abcdef", value=b""))
    assert not validator.validate(DHTRecord(key="bcdef", value=b""))

    with pytest.raises(TypeError):
        RecordValidatorBase()


def test_dht_record_is_immutable():
    record = DHTRecord(key="abc", value=b"value")
    with pytest.raises(AttributeError):
        record.key = "def"
