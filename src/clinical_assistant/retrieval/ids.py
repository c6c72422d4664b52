"""
Document identifiers.

A DocId is 16 opaque bytes. Text formats carry it as 32 hex characters.
"""

import re

from clinical_assistant.core.exceptions import ConstructionError

DocId = bytes

DOC_ID_SIZE = 16

_HEX_ID = re.compile(rb"[0-9a-fA-F]{32}")


def decode_doc_id(data: bytes | str) -> DocId:
    """Decode a hex-encoded id, requiring exactly 16 bytes."""
    raw = data.encode("ascii", "replace") if isinstance(data, str) else data
    if _HEX_ID.fullmatch(raw) is None:
        raise ConstructionError(f"ID format is invalid: {raw[:64]!r}")
    return bytes.fromhex(raw.decode("ascii"))


def encode_doc_id(doc_id: DocId) -> str:
    """Lowercase hex form of `doc_id`."""
    return doc_id.hex()
