"""Typed view of an Anchor interface-definition (IDL) artifact.

Both IDL generations are accepted: the legacy layout (``isMut``/``isSigner``,
camelCase names, ``publicKey``) and the current one (``writable``/``signer``,
snake_case names, explicit ``discriminator`` arrays, struct layouts under
``types``). Names are normalized to snake_case so program-map names and IDL
names compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .borsh import decode_struct, encode_value
from .constants import DISCRIMINATOR_SIZE
from .errors import InstructionNotFound
from .util import snake_case


def sighash(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_SIZE]


@dataclass(frozen=True)
class ArgSpec:
    name: str
    type: Any


@dataclass(frozen=True)
class AccountRole:
    name: str
    is_mut: bool
    is_signer: bool


@dataclass
class InstructionInterface:
    name: str
    discriminator: bytes
    args: List[ArgSpec] = field(default_factory=list)
    accounts: List[AccountRole] = field(default_factory=list)
    types: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False)

    def account(self, name: str) -> Optional[AccountRole]:
        key = snake_case(name)
        for role in self.accounts:
            if role.name == key:
                return role
        return None

    def encode_args(self, values: Sequence[Any]) -> bytes:
        if len(values) != len(self.args):
            raise ValueError(
                f"Instruction \"{self.name}\" expects {len(self.args)} argument(s), got {len(values)}"
            )
        data = self.discriminator
        for spec, value in zip(self.args, values):
            data += encode_value(spec.type, value, self.types, spec.name)
        return data


@dataclass
class AccountLayout:
    name: str
    discriminator: bytes
    fields: List[Dict[str, Any]]


def _flatten_accounts(raw: Any) -> List[AccountRole]:
    roles: List[AccountRole] = []
    if not isinstance(raw, list):
        return roles
    for item in raw:
        if not isinstance(item, dict):
            continue
        nested = item.get("accounts")
        if isinstance(nested, list):
            roles.extend(_flatten_accounts(nested))
            continue
        name = item.get("name")
        if not isinstance(name, str):
            continue
        roles.append(
            AccountRole(
                name=snake_case(name),
                is_mut=bool(item.get("isMut", item.get("writable", False))),
                is_signer=bool(item.get("isSigner", item.get("signer", False))),
            )
        )
    return roles


def _struct_type(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    typ = entry.get("type")
    if isinstance(typ, dict) and typ.get("kind") in {"struct", "enum"}:
        return typ
    return None


class ProgramInterface:
    def __init__(
        self,
        name: str,
        instructions: Dict[str, InstructionInterface],
        layouts: List[AccountLayout],
        types: Dict[str, Dict[str, Any]],
    ) -> None:
        self.name = name
        self._instructions = instructions
        self.layouts = layouts
        self.types = types

    @classmethod
    def from_idl(cls, idl: Dict[str, Any]) -> "ProgramInterface":
        if not isinstance(idl, dict):
            raise ValueError("IDL must be a JSON object")
        metadata = idl.get("metadata") if isinstance(idl.get("metadata"), dict) else {}
        name = idl.get("name") or metadata.get("name") or "program"

        types: Dict[str, Dict[str, Any]] = {}
        for entry in idl.get("types") or []:
            if isinstance(entry, dict) and isinstance(entry.get("name"), str):
                typ = _struct_type(entry)
                if typ is not None:
                    types[entry["name"]] = typ

        instructions: Dict[str, InstructionInterface] = {}
        for entry in idl.get("instructions") or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                continue
            ix_name = snake_case(entry["name"])
            raw_disc = entry.get("discriminator")
            discriminator = bytes(raw_disc) if isinstance(raw_disc, list) else sighash("global", ix_name)
            args = [
                ArgSpec(name=arg["name"], type=arg["type"])
                for arg in entry.get("args") or []
                if isinstance(arg, dict) and "name" in arg and "type" in arg
            ]
            instructions[ix_name] = InstructionInterface(
                name=ix_name,
                discriminator=discriminator,
                args=args,
                accounts=_flatten_accounts(entry.get("accounts")),
                types=types,
            )

        layouts: List[AccountLayout] = []
        for entry in idl.get("accounts") or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                continue
            acc_name = entry["name"]
            typ = _struct_type(entry) or types.get(acc_name)
            if typ is None or typ.get("kind") != "struct":
                continue
            raw_disc = entry.get("discriminator")
            discriminator = bytes(raw_disc) if isinstance(raw_disc, list) else sighash("account", acc_name)
            layouts.append(AccountLayout(acc_name, discriminator, list(typ.get("fields") or [])))

        return cls(str(name), instructions, layouts, types)

    def instruction_names(self) -> List[str]:
        return list(self._instructions)

    def has_instruction(self, name: str) -> bool:
        return snake_case(name) in self._instructions

    def instruction(self, name: str) -> InstructionInterface:
        found = self._instructions.get(snake_case(name))
        if found is None:
            raise InstructionNotFound(f"Instruction \"{name}\" not found in IDL")
        return found

    def add_layouts(self, layouts: List[AccountLayout]) -> None:
        known = {layout.discriminator for layout in self.layouts}
        for layout in layouts:
            if layout.discriminator not in known:
                self.layouts.append(layout)
                known.add(layout.discriminator)

    def decode_account(self, data: bytes) -> Optional[Dict[str, Any]]:
        if len(data) < DISCRIMINATOR_SIZE:
            return None
        head = bytes(data[:DISCRIMINATOR_SIZE])
        for layout in self.layouts:
            if layout.discriminator != head:
                continue
            try:
                return decode_struct(layout.fields, bytes(data[DISCRIMINATOR_SIZE:]), self.types)
            except (ValueError, KeyError, IndexError):
                return None
        return None


def load_interface(path: str | Path) -> ProgramInterface:
    idl_path = Path(path)
    try:
        raw = json.loads(idl_path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Unable to parse IDL {idl_path}: {exc}") from exc
    return ProgramInterface.from_idl(raw)
