"""Borsh encoding for Anchor instruction arguments and account data."""

from __future__ import annotations

import struct
from typing import Any, Dict, List, Mapping, Tuple

from solders.pubkey import Pubkey

from .util import ensure_int

_INT_TYPES: Dict[str, Tuple[int, bool]] = {
    "u8": (1, False),
    "i8": (1, True),
    "u16": (2, False),
    "i16": (2, True),
    "u32": (4, False),
    "i32": (4, True),
    "u64": (8, False),
    "i64": (8, True),
    "u128": (16, False),
    "i128": (16, True),
}

_FLOAT_TYPES = {"f32": "<f", "f64": "<d"}

_PUBKEY_TYPES = {"pubkey", "publicKey"}

TypeDefs = Mapping[str, Dict[str, Any]]


def _defined_name(spec: Any) -> str:
    if isinstance(spec, dict):
        name = spec.get("name")
        if isinstance(name, str):
            return name
    if isinstance(spec, str):
        return spec
    raise ValueError(f"Unsupported defined type: {spec!r}")


def _lookup(types: TypeDefs, name: str) -> Dict[str, Any]:
    typedef = types.get(name)
    if typedef is None:
        raise ValueError(f"Unknown defined type: {name}")
    return typedef


def _encode_int(value: Any, size: int, signed: bool, name: str) -> bytes:
    number = ensure_int(value, name)
    try:
        return number.to_bytes(size, "little", signed=signed)
    except OverflowError as exc:
        raise ValueError(f"{name} out of range for {size * 8}-bit integer") from exc


def encode_value(type_spec: Any, value: Any, types: TypeDefs, name: str = "value") -> bytes:
    if isinstance(type_spec, str):
        if type_spec in _INT_TYPES:
            size, signed = _INT_TYPES[type_spec]
            return _encode_int(value, size, signed, name)
        if type_spec in _FLOAT_TYPES:
            return struct.pack(_FLOAT_TYPES[type_spec], float(value))
        if type_spec == "bool":
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be a boolean")
            return b"\x01" if value else b"\x00"
        if type_spec == "string":
            if not isinstance(value, str):
                raise ValueError(f"{name} must be a string")
            raw = value.encode("utf-8")
            return len(raw).to_bytes(4, "little") + raw
        if type_spec in _PUBKEY_TYPES:
            return bytes(value if isinstance(value, Pubkey) else Pubkey.from_string(str(value)))
        if type_spec == "bytes":
            raw = bytes(value)
            return len(raw).to_bytes(4, "little") + raw
        raise ValueError(f"Unsupported type: {type_spec}")

    if not isinstance(type_spec, dict):
        raise ValueError(f"Unsupported type: {type_spec!r}")

    if "vec" in type_spec:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"{name} must be a list")
        body = b"".join(encode_value(type_spec["vec"], item, types, name) for item in value)
        return len(value).to_bytes(4, "little") + body
    if "option" in type_spec:
        if value is None:
            return b"\x00"
        return b"\x01" + encode_value(type_spec["option"], value, types, name)
    if "array" in type_spec:
        inner, length = type_spec["array"]
        if not isinstance(value, (list, tuple)) or len(value) != length:
            raise ValueError(f"{name} must be a list of length {length}")
        return b"".join(encode_value(inner, item, types, name) for item in value)
    if "defined" in type_spec:
        typedef = _lookup(types, _defined_name(type_spec["defined"]))
        return _encode_defined(typedef, value, types, name)
    raise ValueError(f"Unsupported type: {type_spec!r}")


def _encode_defined(typedef: Dict[str, Any], value: Any, types: TypeDefs, name: str) -> bytes:
    kind = typedef.get("kind")
    if kind == "struct":
        fields = typedef.get("fields") or []
        if not isinstance(value, dict):
            raise ValueError(f"{name} must be an object")
        out = b""
        for field in fields:
            fname = field["name"]
            if fname not in value:
                raise ValueError(f"{name}.{fname} is required")
            out += encode_value(field["type"], value[fname], types, f"{name}.{fname}")
        return out
    if kind == "enum":
        variants = typedef.get("variants") or []
        if isinstance(value, str):
            variant_name, payload = value, None
        elif isinstance(value, dict) and len(value) == 1:
            variant_name, payload = next(iter(value.items()))
        else:
            raise ValueError(f"{name} must name one enum variant")
        for index, variant in enumerate(variants):
            if variant.get("name", "").lower() != str(variant_name).lower():
                continue
            fields = variant.get("fields") or []
            out = bytes([index])
            if not fields:
                return out
            if isinstance(fields[0], dict) and "name" in fields[0]:
                return out + _encode_defined({"kind": "struct", "fields": fields}, payload or {}, types, name)
            items = payload if isinstance(payload, (list, tuple)) else [payload]
            for field_type, item in zip(fields, items):
                out += encode_value(field_type, item, types, name)
            return out
        raise ValueError(f"{name}: unknown enum variant {variant_name!r}")
    raise ValueError(f"{name}: unsupported defined kind {kind!r}")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise ValueError("buffer too short")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk


def _decode(type_spec: Any, reader: _Reader, types: TypeDefs) -> Any:
    if isinstance(type_spec, str):
        if type_spec in _INT_TYPES:
            size, signed = _INT_TYPES[type_spec]
            return int.from_bytes(reader.take(size), "little", signed=signed)
        if type_spec in _FLOAT_TYPES:
            fmt = _FLOAT_TYPES[type_spec]
            return struct.unpack(fmt, reader.take(struct.calcsize(fmt)))[0]
        if type_spec == "bool":
            return reader.take(1) != b"\x00"
        if type_spec == "string":
            length = int.from_bytes(reader.take(4), "little")
            return reader.take(length).decode("utf-8")
        if type_spec in _PUBKEY_TYPES:
            return str(Pubkey.from_bytes(reader.take(32)))
        if type_spec == "bytes":
            length = int.from_bytes(reader.take(4), "little")
            return list(reader.take(length))
        raise ValueError(f"Unsupported type: {type_spec}")

    if "vec" in type_spec:
        length = int.from_bytes(reader.take(4), "little")
        return [_decode(type_spec["vec"], reader, types) for _ in range(length)]
    if "option" in type_spec:
        if reader.take(1) == b"\x00":
            return None
        return _decode(type_spec["option"], reader, types)
    if "array" in type_spec:
        inner, length = type_spec["array"]
        return [_decode(inner, reader, types) for _ in range(length)]
    if "defined" in type_spec:
        typedef = _lookup(types, _defined_name(type_spec["defined"]))
        if typedef.get("kind") == "struct":
            return decode_struct(typedef.get("fields") or [], reader, types)
        if typedef.get("kind") == "enum":
            variants = typedef.get("variants") or []
            index = reader.take(1)[0]
            if index >= len(variants):
                raise ValueError("enum variant out of range")
            variant = variants[index]
            fields = variant.get("fields") or []
            if not fields:
                return variant["name"]
            if isinstance(fields[0], dict) and "name" in fields[0]:
                return {variant["name"]: decode_struct(fields, reader, types)}
            return {variant["name"]: [_decode(field, reader, types) for field in fields]}
    raise ValueError(f"Unsupported type: {type_spec!r}")


def decode_struct(fields: List[Dict[str, Any]], reader: "_Reader | bytes", types: TypeDefs) -> Dict[str, Any]:
    if isinstance(reader, (bytes, bytearray)):
        reader = _Reader(bytes(reader))
    out: Dict[str, Any] = {}
    for field in fields:
        out[field["name"]] = _decode(field["type"], reader, types)
    return out
