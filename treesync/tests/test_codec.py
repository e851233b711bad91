import hashlib
import io
import os

import pytest

import treesync.codec as codec
from treesync.codec import Add, FileId, MetaRecord, Remove
from treesync.errors import FormatError


def test_digest_hex():
    assert codec.digest_to_hex(b"\x00\xff\x10") == "00ff10"
    assert codec.digest_from_hex("00ff10") == b"\x00\xff\x10"
    assert codec.digest_from_hex("ABcd") == b"\xab\xcd"


def test_digest_hex_odd_length():
    with pytest.raises(ValueError, match="odd number"):
        codec.digest_from_hex("abc")


def test_digest_hex_unknown_digit():
    with pytest.raises(ValueError, match="unknown hexadecimal digit 'z'"):
        codec.digest_from_hex("zz")


def test_file_digest_in_chunks():
    data = b"abcdefghij" * 10

    assert codec.file_digest(io.BytesIO(data), chunk_size=3) == (
        hashlib.sha256(data).digest()
    )


def test_explode():
    assert codec.explode("a/b/c") == ["a", "b", "c"]
    assert codec.explode("/a//b/./c/") == ["a", "b", "c"]
    assert codec.explode("a/x/../b") == ["a", "b"]
    assert codec.explode("") == []
    assert codec.explode(".") == []


def test_explode_host_separator():
    assert codec.explode(os.path.join("a", "b")) == ["a", "b"]


def test_explode_outside_root():
    with pytest.raises(ValueError):
        codec.explode("../x")

    with pytest.raises(ValueError):
        codec.explode("a/../../x")


def test_normalize():
    assert codec.normalize("./a//b/") == "a/b"
    assert codec.normalize("a/b/..") == "a"
    assert codec.normalize("") == ""


def test_to_host():
    assert codec.to_host("a/b") == os.path.join("a", "b")
    assert codec.to_host("") == os.curdir


def test_parent_and_basename():
    assert codec.parent("a/b/c.txt") == "a/b"
    assert codec.parent("a.txt") == ""

    assert codec.basename("a/b/c.txt") == "c.txt"


def test_ancestors():
    assert codec.ancestors("a/b/c.txt") == ["a/b", "a", ""]
    assert codec.ancestors("a.txt") == [""]
    assert codec.ancestors("") == []


def test_encode_add():
    digest = hashlib.sha256(b"x").digest()
    entry = Add("dir/é ü.txt", digest, 5)

    line = codec.encode_entry(entry)

    assert line == f'["Add","dir/é ü.txt","{digest.hex()}",5]'
    assert codec.decode_entry(line) == entry


def test_encode_remove():
    line = codec.encode_entry(Remove("a.txt"))

    assert line == '["Remove","a.txt"]'
    assert codec.decode_entry(line) == Remove("a.txt")


def test_decode_entry_normalizes_path():
    assert codec.decode_entry('["Remove","./a//b"]') == Remove("a/b")


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[]",
        '{"Add": 1}',
        '["Add","a"]',
        '["Add","a","zz",1]',
        '["Add","a","00ff",1]',
        f'["Add","a","{"0" * 64}",-1]',
        f'["Add",1,"{"0" * 64}",1]',
        '["Remove"]',
        '["Remove",5]',
        '["Rename","a","b"]',
    ],
)
def test_decode_malformed_entry(line):
    with pytest.raises(FormatError):
        codec.decode_entry(line)


def test_file_id_str():
    file_id = FileId(b"\x01" * 32, 3)

    assert str(file_id) == f"{'01' * 32} (3 bytes)"


def test_meta_round_trip():
    meta = MetaRecord(revision=3, size=120, digest=hashlib.sha256(b"log").digest())

    text = codec.encode_meta(meta)

    assert '"version": "1.0.0"' in text
    assert codec.decode_meta(text) == meta
    assert codec.decode_meta(text).log_id == FileId(meta.digest, 120)


def test_meta_compatible_version():
    text = f'{{"version": "1.4.2", "revision": 1, "size": 0, "digest": "{"0" * 64}"}}'

    assert codec.decode_meta(text).version == "1.4.2"


def test_meta_incompatible_version():
    text = f'{{"version": "2.0.0", "revision": 1, "size": 0, "digest": "{"0" * 64}"}}'

    with pytest.raises(FormatError, match="incompatible format"):
        codec.decode_meta(text)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "[]",
        '{"revision": 1, "size": 0}',
        f'{{"version": "x", "revision": 1, "size": 0, "digest": "{"0" * 64}"}}',
        '{"version": "1.0.0", "revision": 1, "size": 0, "digest": "00"}',
        f'{{"version": "1.0.0", "revision": -1, "size": 0, "digest": "{"0" * 64}"}}',
    ],
)
def test_decode_malformed_meta(text):
    with pytest.raises(FormatError):
        codec.decode_meta(text)


def test_describe_mismatch():
    a = FileId(b"\x00" * 32, 10)
    b = FileId(b"\x11" * 32, 12)

    assert codec.describe_mismatch(a, b) == (
        f"size: 10 <> 12; digest: {'00' * 32} <> {'11' * 32}"
    )

    assert codec.describe_mismatch(a, FileId(a.digest, 11)) == "size: 10 <> 11"
