"""Content fingerprinting."""

import hashlib

# ASCII unit separator; never produced by titles, ids or URLs we ingest
FIELD_SEPARATOR = "\x1f"


def compute_fingerprint(
    source_kind: str,
    external_id: str | None,
    url: str | None,
    title: str | None,
) -> str:
    """
    Compute the dedupe hash for a content record.

    Titles are trimmed and lower-cased first, so trivial formatting changes
    upstream do not produce a new fingerprint.
    """
    normalized = FIELD_SEPARATOR.join(
        [
            source_kind,
            external_id or "",
            url or "",
            (title or "").strip().lower(),
        ]
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
