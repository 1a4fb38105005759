from __future__ import annotations

import hashlib

from roaster.core.hasher import file_fingerprint, fingerprint, normalize_text


def test_fingerprint_is_sha256_of_concatenated_parts() -> None:
    expected = hashlib.sha256(b"abc" + b"def").hexdigest()
    assert fingerprint(["abc", "def"]) == expected
    assert fingerprint([b"abc", "def"]) == expected


def test_fingerprint_is_order_sensitive() -> None:
    assert fingerprint(["a", "b"]) != fingerprint(["b", "a"])


def test_single_byte_difference_changes_file_hash() -> None:
    data = b"%PDF-1.4 resume contents"
    changed = data[:-1] + b"t"
    assert file_fingerprint(data) != file_fingerprint(changed)
    assert len(file_fingerprint(data)) == 64


def test_normalize_text_collapses_whitespace_only_differences() -> None:
    left = "Senior   Engineer\r\n\tAcme  Corp  \r\n"
    right = "  Senior Engineer\nAcme Corp"
    assert normalize_text(left) == normalize_text(right) == "Senior Engineer\nAcme Corp"
    assert fingerprint([normalize_text(left)]) == fingerprint([normalize_text(right)])


def test_normalize_text_keeps_interior_blank_lines() -> None:
    assert normalize_text("\n\nTitle\n\nBody\n\n") == "Title\n\nBody"
