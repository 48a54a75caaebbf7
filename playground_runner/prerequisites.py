"""Setup invocations that must run before certain instructions.

Keyed by ``(template_id, instruction_name)``; each entry lists the
``(instruction, args)`` calls to make, in order, before the requested one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class Prerequisite:
    instruction: str
    args: Tuple[Any, ...] = ()


PREREQUISITES: Dict[Tuple[str, str], Tuple[Prerequisite, ...]] = {
    ("pda-vault", "deposit"): (Prerequisite("initialize"),),
    ("pda-vault", "withdraw"): (Prerequisite("initialize"), Prerequisite("deposit", (1_000_000,))),
    ("account-init", "update"): (Prerequisite("initialize", (42,)),),
}


def prerequisites_for(template_id: str, instruction: str) -> Tuple[Prerequisite, ...]:
    return PREREQUISITES.get((template_id, instruction), ())
