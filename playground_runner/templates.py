"""Template data model and loaders.

A template directory holds::

    <id>/program/lib.rs
    <id>/program-map.json
    <id>/precomputed-state.json
    <id>/metadata.json          (optional)
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .errors import TemplateNotFound
from .util import snake_case


@dataclass(frozen=True)
class AccountDecl:
    name: str
    is_mut: bool = False
    is_signer: bool = False
    is_pda: bool = False
    seeds: tuple = ()


@dataclass
class InstructionDecl:
    name: str
    accounts: List[AccountDecl] = field(default_factory=list)

    def account(self, name: str) -> Optional[AccountDecl]:
        key = snake_case(name)
        for decl in self.accounts:
            if snake_case(decl.name) == key:
                return decl
        return None


@dataclass
class AccountTypeDecl:
    name: str
    fields: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ProgramMap:
    instructions: List[InstructionDecl] = field(default_factory=list)
    accounts: List[AccountTypeDecl] = field(default_factory=list)

    def instruction(self, name: str) -> Optional[InstructionDecl]:
        for decl in self.instructions:
            if decl.name == name:
                return decl
        key = snake_case(name)
        for decl in self.instructions:
            if snake_case(decl.name) == key:
                return decl
        return None


@dataclass
class Scenario:
    name: str
    instruction: str
    description: str = ""
    args: Optional[List[Any]] = None
    accounts_before: List[Dict[str, Any]] = field(default_factory=list)
    accounts_after: List[Dict[str, Any]] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    compute_units: int = 0


@dataclass
class Template:
    id: str
    code: str
    program_map: ProgramMap
    scenarios: List[Scenario] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def find_scenario(self, scenario: Optional[str], instruction: Optional[str]) -> Optional[Scenario]:
        if scenario:
            for item in self.scenarios:
                if item.name == scenario:
                    return item
        if instruction:
            for item in self.scenarios:
                if item.instruction == instruction:
                    return item
        return None


def parse_program_map(raw: Any) -> ProgramMap:
    if not isinstance(raw, dict):
        raise ValueError("program map must be an object")
    instructions: List[InstructionDecl] = []
    for ix in raw.get("instructions") or []:
        if not isinstance(ix, dict) or not isinstance(ix.get("name"), str):
            raise ValueError("program map instructions need a name")
        accounts: List[AccountDecl] = []
        for acc in ix.get("accounts") or []:
            if not isinstance(acc, dict) or not isinstance(acc.get("name"), str):
                raise ValueError(f"instruction {ix['name']} has an account without a name")
            seeds = acc.get("seeds") or []
            accounts.append(
                AccountDecl(
                    name=acc["name"],
                    is_mut=bool(acc.get("isMut", False)),
                    is_signer=bool(acc.get("isSigner", False)),
                    is_pda=bool(acc.get("isPda", False)),
                    seeds=tuple(str(seed) for seed in seeds),
                )
            )
        instructions.append(InstructionDecl(name=ix["name"], accounts=accounts))

    account_types: List[AccountTypeDecl] = []
    for acc in raw.get("accounts") or []:
        if isinstance(acc, dict) and isinstance(acc.get("name"), str):
            fields = [f for f in acc.get("fields") or [] if isinstance(f, dict) and "name" in f]
            account_types.append(AccountTypeDecl(name=acc["name"], fields=fields))
    return ProgramMap(instructions=instructions, accounts=account_types)


def parse_scenarios(raw: Any) -> List[Scenario]:
    if raw is None:
        return []
    if not isinstance(raw, dict):
        raise ValueError("precomputed state must be an object")
    scenarios: List[Scenario] = []
    for item in raw.get("scenarios") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        instruction = item.get("instruction")
        if not isinstance(name, str) or not isinstance(instruction, str):
            raise ValueError("scenarios need a name and an instruction")
        args = item.get("args")
        scenarios.append(
            Scenario(
                name=name,
                instruction=instruction,
                description=str(item.get("description", "")),
                args=list(args) if isinstance(args, list) else None,
                accounts_before=list(item.get("accountsBefore") or []),
                accounts_after=list(item.get("accountsAfter") or []),
                logs=[str(line) for line in item.get("logs") or []],
                compute_units=int(item.get("computeUnits") or 0),
            )
        )
    return scenarios


def template_from_dict(template_id: str, raw: Mapping[str, Any]) -> Template:
    return Template(
        id=template_id,
        code=str(raw.get("code", "")),
        program_map=parse_program_map(raw.get("programMap") or {}),
        scenarios=parse_scenarios(raw.get("precomputedState")),
        metadata=dict(raw.get("metadata") or {}),
    )


class TemplateLoader(Protocol):
    def load(self, template_id: str) -> Template: ...


def validate_template_id(template_id: Any) -> str:
    if not isinstance(template_id, str) or not template_id.strip():
        raise ValueError("Template ID must be a non-empty string")
    if ".." in template_id or "/" in template_id or "\\" in template_id:
        raise ValueError("Invalid template ID")
    return template_id


def _read_json(path: Path, required: bool = True) -> Any:
    if not path.exists():
        if required:
            raise ValueError(f"Missing template file: {path.name}")
        return None
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to read JSON file at {path}: {exc}") from exc


class DirectoryTemplateLoader:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def load(self, template_id: str) -> Template:
        validate_template_id(template_id)
        base = self.root / template_id
        code_path = base / "program" / "lib.rs"
        if not base.is_dir() or not code_path.exists():
            raise TemplateNotFound(f"Template \"{template_id}\" not found at {base}")
        return Template(
            id=template_id,
            code=code_path.read_text(),
            program_map=parse_program_map(_read_json(base / "program-map.json")),
            scenarios=parse_scenarios(_read_json(base / "precomputed-state.json", required=False)),
            metadata=_read_json(base / "metadata.json", required=False) or {},
        )

    def list_templates(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and (entry / "program" / "lib.rs").exists()
        )


class StaticTemplateLoader:
    """In-memory loader keyed by template id."""

    def __init__(self, templates: Mapping[str, Template]) -> None:
        self._templates = dict(templates)

    def load(self, template_id: str) -> Template:
        validate_template_id(template_id)
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFound(f"Template \"{template_id}\" not found")
        return template

    def list_templates(self) -> List[str]:
        return sorted(self._templates)
