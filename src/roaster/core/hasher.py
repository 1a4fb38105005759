"""Content fingerprints used as deduplication keys.

Parts are hashed in the order given, with no separator, so every caller
must pass the same parts in the same order to get cache hits:

- raw upload:           ``[file bytes]``
- résumé extraction:    ``[file_hash, strategy, provider, model, version]``
- job extraction:       ``[normalized job text, strategy, version]``
- summaries:            ``[source kind, source content_hash, provider, model, version]``
- generated artifacts:  ``[kind, version, resume text, job text, provider, model, *extras]``
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

_INLINE_WHITESPACE = re.compile(r"[ \t\f\v]+")


def fingerprint(parts: Iterable[str | bytes]) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part if isinstance(part, bytes) else part.encode("utf-8"))
    return digest.hexdigest()


def file_fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize_text(value: str) -> str:
    text = value.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.split("\n")]
    return "\n".join(lines).strip("\n")
