"""Anchor workspace generation and build.

``ProgramCompiler.compile`` never raises: every failure comes back as a
``CompileResult`` with ``success=False`` so the engine can attribute it.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import shutil
import threading
from typing import Any, Dict, Optional

from solders.keypair import Keypair
import tomli_w

from .accounts import write_keypair
from .constants import ANCHOR_VERSION, SOLANA_VERSION
from .errors import CompilationFailed, MissingBuildArtifact
from .process import ProcessRunner
from .util import program_name

logger = logging.getLogger(__name__)

DECLARE_ID_RE = re.compile(r'declare_id!\s*\(\s*"[^"]*"\s*\)')


@dataclass
class CompileResult:
    success: bool
    program_id: str = ""
    program_path: str = ""
    program_keypair_path: Optional[str] = None
    idl_path: Optional[str] = None
    error: Optional[str] = None
    reason: str = CompilationFailed.reason


def _anchor_toml(name: str, program_id: str) -> Dict[str, Any]:
    return {
        "toolchain": {"anchor_version": ANCHOR_VERSION, "solana_version": SOLANA_VERSION},
        "features": {"seeds": False, "skip-lint": False},
        "programs": {"localnet": {name: program_id}},
        "registry": {"url": "https://api.apr.dev"},
        "provider": {"cluster": "Localnet", "wallet": "keys/payer.json"},
    }


def _workspace_cargo_toml() -> Dict[str, Any]:
    return {
        "workspace": {"members": ["programs/*"], "resolver": "2"},
        "profile": {
            "release": {
                "overflow-checks": True,
                "lto": "fat",
                "codegen-units": 1,
                "build-override": {"opt-level": 3, "incremental": False, "codegen-units": 1},
            }
        },
    }


def _program_cargo_toml(name: str) -> Dict[str, Any]:
    return {
        "package": {"name": name.replace("_", "-"), "version": "0.1.0", "edition": "2021"},
        "lib": {"crate-type": ["cdylib", "lib"], "name": name},
        "features": {
            "no-entrypoint": [],
            "no-idl": [],
            "no-log-ix-name": [],
            "cpi": ["no-entrypoint"],
            "default": [],
        },
        "dependencies": {"anchor-lang": ANCHOR_VERSION},
    }


def pin_program_id(code: str, program_id: str) -> str:
    """Point the source's ``declare_id!`` at ``program_id``."""

    replaced, count = DECLARE_ID_RE.subn(f'declare_id!("{program_id}")', code, count=1)
    if count == 0:
        logger.warning("Source has no declare_id!; deployed id may not match")
    return replaced


class ProgramCompiler:
    def __init__(
        self,
        cache_dir: str | Path,
        runner: Optional[ProcessRunner] = None,
        anchor_bin: str = "anchor",
        timeout: Optional[float] = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.runner = runner or ProcessRunner()
        self.anchor_bin = anchor_bin
        self.timeout = timeout
        self._cache_locks: Dict[str, threading.Lock] = {}
        self._cache_locks_guard = threading.Lock()

    def _cache_target(self, template_id: str) -> Path:
        return self.cache_dir / template_id / "target"

    def _cache_lock(self, template_id: str) -> threading.Lock:
        # builds of one template run in parallel; the cache copy is not atomic
        with self._cache_locks_guard:
            return self._cache_locks.setdefault(template_id, threading.Lock())

    def write_workspace(self, template_id: str, code: str, workspace_dir: Path) -> Keypair:
        name = program_name(template_id)
        program_keypair = Keypair()
        program_id = str(program_keypair.pubkey())

        program_dir = workspace_dir / "programs" / name
        (program_dir / "src").mkdir(parents=True, exist_ok=True)
        (workspace_dir / "Anchor.toml").write_text(tomli_w.dumps(_anchor_toml(name, program_id)))
        (workspace_dir / "Cargo.toml").write_text(tomli_w.dumps(_workspace_cargo_toml()))
        (program_dir / "Cargo.toml").write_text(tomli_w.dumps(_program_cargo_toml(name)))
        (program_dir / "src" / "lib.rs").write_text(pin_program_id(code, program_id))

        cached = self._cache_target(template_id)
        with self._cache_lock(template_id):
            if cached.is_dir():
                logger.debug("Restoring build cache for %s", template_id)
                shutil.copytree(cached, workspace_dir / "target", dirs_exist_ok=True)

        write_keypair(program_keypair, workspace_dir / "target" / "deploy" / f"{name}-keypair.json")
        return program_keypair

    def _refresh_cache(self, template_id: str, workspace_dir: Path) -> None:
        target = workspace_dir / "target"
        cached = self._cache_target(template_id)
        try:
            with self._cache_lock(template_id):
                cached.parent.mkdir(parents=True, exist_ok=True)
                shutil.copytree(
                    target,
                    cached,
                    dirs_exist_ok=True,
                    ignore=shutil.ignore_patterns("*-keypair.json"),
                )
        except OSError as exc:
            logger.warning("Could not refresh build cache for %s: %s", template_id, exc)

    def compile(self, template_id: str, code: str, workspace_dir: str | Path) -> CompileResult:
        workspace = Path(workspace_dir)
        name = program_name(template_id)
        try:
            program_keypair = self.write_workspace(template_id, code, workspace)
        except (OSError, ValueError) as exc:
            return CompileResult(success=False, error=f"Unable to prepare workspace: {exc}")

        logger.info("Building %s in %s", template_id, workspace)
        try:
            proc = self.runner.run([self.anchor_bin, "build"], cwd=str(workspace), timeout=self.timeout)
        except OSError as exc:
            return CompileResult(success=False, error=f"{self.anchor_bin}: {exc}")
        if not proc.ok:
            return CompileResult(success=False, error=proc.error_text(f"anchor build failed (rc={proc.returncode})"))

        deploy_dir = workspace / "target" / "deploy"
        program_path = deploy_dir / f"{name}.so"
        keypair_path = deploy_dir / f"{name}-keypair.json"
        idl_path = workspace / "target" / "idl" / f"{name}.json"

        if not program_path.exists():
            return CompileResult(
                success=False,
                error=f"Program binary not found after build: {program_path.relative_to(workspace)}",
            )

        missing = [path for path in (keypair_path, idl_path) if not path.exists()]
        result = CompileResult(
            success=not missing,
            program_id=str(program_keypair.pubkey()),
            program_path=str(program_path),
            program_keypair_path=str(keypair_path) if keypair_path.exists() else None,
            idl_path=str(idl_path) if idl_path.exists() else None,
        )
        if missing:
            result.reason = MissingBuildArtifact.reason
            result.error = "Build artifact missing: " + ", ".join(
                str(path.relative_to(workspace)) for path in missing
            )
            return result

        self._refresh_cache(template_id, workspace)
        return result

    def cleanup(self, template_id: str) -> None:
        path = self.cache_dir / template_id
        try:
            with self._cache_lock(template_id):
                if path.exists():
                    shutil.rmtree(path)
        except OSError as exc:
            logger.error("Failed to cleanup %s: %s", template_id, exc)
