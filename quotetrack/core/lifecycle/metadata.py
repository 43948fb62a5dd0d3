"""Typed metadata carried by each kind of quote event.

Every event kind has exactly one metadata class with a fixed field set. Raw
mappings coming from handlers are validated against it: unknown keys are
rejected rather than stored.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar

from quotetrack.exceptions import ValidationError
from quotetrack.storage.database.models import QuoteEventKind


@dataclass(frozen=True)
class CreatedMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.CREATED

    created_by: str | None = None


@dataclass(frozen=True)
class SentMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.SENT

    recipient: str | None = None
    sent_by: str | None = None


@dataclass(frozen=True)
class SendFailedMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.SEND_FAILED

    recipient: str | None = None
    error: str = ""


@dataclass(frozen=True)
class OpenedMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.OPENED

    viewer_email: str | None = None
    source: str = "link"  # link | pixel | app
    user_agent: str | None = None
    ip: str | None = None


@dataclass(frozen=True)
class SignedMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.SIGNED

    signer_name: str | None = None
    signer_email: str | None = None
    signature_ref: str | None = None  # object-store path of the signature image


@dataclass(frozen=True)
class DeclinedMeta:
    kind: ClassVar[QuoteEventKind] = QuoteEventKind.DECLINED

    reason: str | None = None
    declined_by: str | None = None


EventMetadata = CreatedMeta | SentMeta | SendFailedMeta | OpenedMeta | SignedMeta | DeclinedMeta

METADATA_TYPES: dict[QuoteEventKind, type] = {
    cls.kind: cls
    for cls in (CreatedMeta, SentMeta, SendFailedMeta, OpenedMeta, SignedMeta, DeclinedMeta)
}


def build_metadata(
    kind: QuoteEventKind, data: EventMetadata | Mapping[str, Any] | None = None
) -> EventMetadata:
    """Return the metadata object for ``kind``.

    Raises:
        ValidationError: wrong metadata class for the kind, or unknown keys
    """
    meta_cls = METADATA_TYPES[kind]

    if data is None:
        return meta_cls()

    if isinstance(data, meta_cls):
        return data

    if not isinstance(data, Mapping):
        raise ValidationError(
            f"{type(data).__name__} is not valid metadata for '{kind.value}' events",
            field="metadata",
        )

    allowed = {f.name for f in fields(meta_cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(
            f"Unknown metadata for '{kind.value}' events: {', '.join(unknown)}",
            field="metadata",
            value=unknown,
        )

    return meta_cls(**{key: value for key, value in data.items() if value is not None})


def dump_metadata(meta: EventMetadata) -> str:
    return json.dumps(asdict(meta), sort_keys=True)


def load_metadata(kind: QuoteEventKind, raw: str | None) -> EventMetadata:
    """Inverse of :func:`dump_metadata`. Keys no longer defined are dropped."""
    meta_cls = METADATA_TYPES[kind]
    if not raw:
        return meta_cls()
    data = json.loads(raw)
    allowed = {f.name for f in fields(meta_cls)}
    return meta_cls(**{key: value for key, value in data.items() if key in allowed})
