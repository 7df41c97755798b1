"""
Document encoding and decoding.

The store is type-agnostic: it writes JSON-compatible dicts and hands raw
dicts to a caller-supplied decoder on the way out. A decoder raises
``DecodeError`` when a stored document cannot be turned into the caller's type.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from ..exceptions import ValidationError

T = TypeVar("T")

Decoder = Callable[[dict[str, Any]], T]

# Properties Cosmos DB adds to every stored item
SYSTEM_PROPERTIES = frozenset({"_rid", "_self", "_etag", "_attachments", "_ts", "_lsn"})


class DecodeError(Exception):
    """Raised by a decoder when a stored document is malformed."""

    def __init__(self, reason: str, document_id: str | None = None):
        message = f"Malformed document: {reason}"
        if document_id:
            message = f"Malformed document {document_id}: {reason}"
        super().__init__(message)
        self.reason = reason
        self.document_id = document_id


def strip_system_properties(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Remove Cosmos DB bookkeeping properties from a stored item."""
    return {k: v for k, v in raw.items() if k not in SYSTEM_PROPERTIES}


def identity_decoder(raw: dict[str, Any]) -> dict[str, Any]:
    """Default decoder: the stored document without system properties."""
    if not isinstance(raw, dict):
        raise DecodeError(f"expected an object, got {type(raw).__name__}")
    return strip_system_properties(raw)


def dataclass_decoder(cls: type[T]) -> Decoder[T]:
    """Build a decoder that constructs ``cls`` from the stored fields.

    Unknown fields are ignored; missing required fields or wrong shapes raise
    DecodeError.
    """
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"{cls!r} is not a dataclass")
    names = {f.name for f in dataclasses.fields(cls)}

    def decode(raw: dict[str, Any]) -> T:
        if not isinstance(raw, dict):
            raise DecodeError(f"expected an object, got {type(raw).__name__}")
        try:
            return cls(**{k: v for k, v in raw.items() if k in names})
        except (TypeError, ValueError) as e:
            raise DecodeError(str(e), raw.get("id")) from e

    return decode


def encode_document(item: Any) -> dict[str, Any]:
    """Serialize an item into a JSON-compatible dict for the provider.

    Accepts mappings, dataclass instances and objects exposing ``to_dict()``.

    Raises:
        ValidationError: If the item is not a supported type or not JSON-serializable
    """
    if isinstance(item, Mapping):
        document = dict(item)
    elif dataclasses.is_dataclass(item) and not isinstance(item, type):
        document = dataclasses.asdict(item)
    elif callable(getattr(item, "to_dict", None)):
        document = item.to_dict()
    else:
        raise ValidationError("item", f"cannot encode {type(item).__name__}")

    try:
        # Round-trip through JSON so dates and enums become plain values
        return json.loads(json.dumps(document, default=str))
    except (TypeError, ValueError) as e:
        raise ValidationError("item", f"not JSON serializable: {e}") from e
