"""Translation of user-entered datum/redeemer text into on-chain data.

Two representations are supported.  An *opaque* value is a literal that is
passed through as a bytestring: hex text denotes the bytes it spells, any
other text its UTF-8 bytes.  A *constructor* value is a JSON tree whose root
is a constructor object::

    {"constructor": 0, "fields": [{"bytes": "deadbeef"}, {"int": 42}]}

``"alternative"`` is accepted in place of ``"constructor"``.  Fields may be
nested constructors, ``{"int": n}``, ``{"bytes": hex}``, ``{"list": [...]}``,
``{"map": [{"k": key, "v": value}, ...]}``, or bare integers, strings and
lists.  Translation is attempted only when the value is encoded, so partially
typed input never raises until submission.
"""

from __future__ import annotations

import enum
import io
import json
import logging
import string
from dataclasses import dataclass
from typing import Any

import cbor2
from cbor2 import CBORTag
from pycardano import RawPlutusData
from pycardano.serialization import IndefiniteList

from .errors import MalformedValue

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset(string.hexdigits)


class ValueKind(str, enum.Enum):
    OPAQUE = "data"
    CONSTRUCTOR = "constructor"

    @classmethod
    def parse(cls, raw: "str | ValueKind") -> "ValueKind":
        if isinstance(raw, ValueKind):
            return raw
        normalized = str(raw).strip().lower()
        aliases = {"data": cls.OPAQUE, "opaque": cls.OPAQUE, "constructor": cls.CONSTRUCTOR}
        try:
            return aliases[normalized]
        except KeyError:
            raise MalformedValue(
                f"Unknown value representation '{raw}'; expected 'data' or 'constructor'"
            ) from None


@dataclass(frozen=True)
class StructuredValue:
    """A user's datum or redeemer together with its chosen representation."""

    kind: ValueKind
    raw: str

    def __post_init__(self) -> None:
        # representation-shape errors surface at construction, content errors at encode
        object.__setattr__(self, "kind", ValueKind.parse(self.kind))
        if not isinstance(self.raw, str):
            raise MalformedValue("Datum and redeemer values must be entered as text")

    @property
    def is_empty(self) -> bool:
        return not self.raw.strip()

    def encode(self) -> Any:
        return encode_value(self.kind, self.raw)


def encode_value(kind: ValueKind | str, raw: str) -> Any:
    """Return the on-chain value for ``raw`` under representation ``kind``.

    Opaque values come back as ``bytes``; constructor values as
    :class:`pycardano.RawPlutusData`.  The same inputs always produce equal
    outputs and ``raw`` is never modified.
    """

    kind = ValueKind.parse(kind)
    if kind is ValueKind.OPAQUE:
        return literal_bytes(raw)

    try:
        tree = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedValue(
            f"Constructor value is not valid JSON (line {exc.lineno}, column {exc.colno}): {exc.msg}"
        ) from exc
    if not _is_constructor(tree):
        raise MalformedValue(
            'Constructor value must be an object like {"constructor": 0, "fields": [...]}'
        )
    return RawPlutusData(_translate_constructor(tree, path="$"))


def literal_bytes(raw: str) -> bytes:
    text = raw.strip()
    if text.lower().startswith("0x"):
        text = text[2:]
    if text and len(text) % 2 == 0 and set(text) <= _HEX_DIGITS:
        return bytes.fromhex(text)
    return raw.encode("utf-8")


def constructor_tag(index: int, fields: list[Any]) -> CBORTag:
    """Wrap ``fields`` in the CBOR tag for constructor ``index``."""

    body = IndefiniteList(fields) if fields else []
    if 0 <= index <= 6:
        return CBORTag(121 + index, body)
    if 7 <= index <= 127:
        return CBORTag(1280 + index - 7, body)
    return CBORTag(102, [index, body])


def _is_constructor(node: Any) -> bool:
    return isinstance(node, dict) and ("constructor" in node or "alternative" in node)


def _translate_constructor(node: dict[str, Any], path: str) -> CBORTag:
    index = node.get("constructor", node.get("alternative"))
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise MalformedValue(f"{path}: constructor index must be a non-negative integer")
    fields = node.get("fields", [])
    if not isinstance(fields, list):
        raise MalformedValue(f"{path}.fields must be a list")
    translated = [
        _translate(item, path=f"{path}.fields[{position}]")
        for position, item in enumerate(fields)
    ]
    return constructor_tag(index, translated)


def _translate(node: Any, path: str) -> Any:
    if isinstance(node, bool) or node is None or isinstance(node, float):
        raise MalformedValue(f"{path}: {json.dumps(node)} has no on-chain representation")
    if isinstance(node, int):
        return node
    if isinstance(node, str):
        return literal_bytes(node)
    if isinstance(node, list):
        items = [_translate(item, f"{path}[{i}]") for i, item in enumerate(node)]
        return IndefiniteList(items) if items else []
    if _is_constructor(node):
        return _translate_constructor(node, path)
    if isinstance(node, dict) and len(node) == 1:
        ((key, value),) = node.items()
        if key == "int":
            if isinstance(value, bool) or not isinstance(value, int):
                raise MalformedValue(f"{path}.int must be an integer")
            return value
        if key == "bytes":
            if not isinstance(value, str):
                raise MalformedValue(f"{path}.bytes must be a hex string")
            try:
                return bytes.fromhex(value)
            except ValueError as exc:
                raise MalformedValue(f"{path}.bytes is not valid hex") from exc
        if key == "list":
            if not isinstance(value, list):
                raise MalformedValue(f"{path}.list must be a list")
            return _translate(value, f"{path}.list")
        if key == "map":
            return _translate_map(value, f"{path}.map")
    raise MalformedValue(f"{path}: unsupported value {json.dumps(node)[:60]}")


def _translate_map(entries: Any, path: str) -> dict[Any, Any]:
    if not isinstance(entries, list):
        raise MalformedValue(f"{path} must be a list of {{\"k\", \"v\"}} objects")
    result: dict[Any, Any] = {}
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict) or set(entry) != {"k", "v"}:
            raise MalformedValue(f"{path}[{position}] must have exactly the keys 'k' and 'v'")
        key = _translate(entry["k"], f"{path}[{position}].k")
        if isinstance(key, list):
            key = tuple(key)
        try:
            result[key] = _translate(entry["v"], f"{path}[{position}].v")
        except TypeError as exc:
            raise MalformedValue(f"{path}[{position}].k cannot be used as a map key") from exc
    return result


# Decoding -------------------------------------------------------------------


class _NotPlutusData(ValueError):
    pass


def describe_datum(data: bytes | str) -> Any:
    """Decode CBOR datum bytes into the JSON shape accepted by :func:`encode_value`.

    Returns ``None`` when the bytes are not exactly one Plutus data item.
    """

    raw = bytes.fromhex(data) if isinstance(data, str) else data
    stream = io.BytesIO(raw)
    try:
        decoded = cbor2.CBORDecoder(stream).decode()
        if stream.tell() != len(raw):
            raise _NotPlutusData("trailing bytes after the datum")
        return _describe(decoded)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as exc:
        logger.debug("Attached datum is not decodable Plutus data (%s): %s", exc, raw.hex())
        return None


def _describe(node: Any) -> Any:
    if isinstance(node, CBORTag):
        if 121 <= node.tag <= 127:
            return {"constructor": node.tag - 121, "fields": _describe_list(node.value)}
        if 1280 <= node.tag <= 1400:
            return {"constructor": node.tag - 1280 + 7, "fields": _describe_list(node.value)}
        if node.tag == 102 and isinstance(node.value, (list, tuple)) and len(node.value) == 2:
            return {"constructor": node.value[0], "fields": _describe_list(node.value[1])}
        if node.tag in (2, 3) and isinstance(node.value, bytes):
            magnitude = int.from_bytes(node.value, "big")
            return {"int": magnitude if node.tag == 2 else -1 - magnitude}
        raise _NotPlutusData(f"tag {node.tag}")
    if isinstance(node, bool):
        raise _NotPlutusData("boolean")
    if isinstance(node, int):
        return {"int": node}
    if isinstance(node, (bytes, bytearray)):
        return {"bytes": bytes(node).hex()}
    if isinstance(node, (list, tuple)):
        return {"list": _describe_list(node)}
    if isinstance(node, dict):
        return {"map": [{"k": _describe(k), "v": _describe(v)} for k, v in node.items()]}
    # text, floats, simple values and the break marker
    raise _NotPlutusData(type(node).__name__)


def _describe_list(values: Any) -> list[Any]:
    if not isinstance(values, (list, tuple)):
        raise _NotPlutusData("constructor fields must be a list")
    return [_describe(item) for item in values]
