"""Runner settings resolved from the environment and an optional TOML file."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import tempfile
from typing import Any, Dict, Mapping, Optional

from .constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_MAX_EXECUTION_TIME_MS,
    DEFAULT_VALIDATOR_PORT,
    SUPPORTED_TEMPLATES,
)
from .util import parse_bool


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        import tomli as tomllib  # type: ignore
    return tomllib.loads(path.read_text())


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_HTTP_PORT
    validator_port: int = DEFAULT_VALIDATOR_PORT
    max_execution_time_ms: int = DEFAULT_MAX_EXECUTION_TIME_MS
    templates_dir: Path = Path("templates")
    workspace_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "solana-playground-workspaces"
    )
    build_cache_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "solana-programs")
    supported_templates: frozenset = SUPPORTED_TEMPLATES
    precomputed_fallback: bool = False
    anchor_bin: str = "anchor"
    solana_bin: str = "solana"
    validator_bin: str = "solana-test-validator"
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def max_execution_time(self) -> float:
        return self.max_execution_time_ms / 1000.0


def _positive_int(raw: Any, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _template_list(raw: Any, default: frozenset) -> frozenset:
    if raw is None:
        return default
    if isinstance(raw, (list, tuple)):
        items = [str(item).strip() for item in raw]
    else:
        items = [item.strip() for item in str(raw).split(",")]
    return frozenset(item for item in items if item)


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    path: Optional[str | Path] = None,
) -> Settings:
    """Resolve settings: environment first, then the ``[runner]`` TOML table, then defaults."""

    env = dict(os.environ if environ is None else environ)
    config_path = path or env.get("RUNNER_CONFIG")
    table: Dict[str, Any] = {}
    if config_path:
        cfg_path = Path(config_path).expanduser()
        if not cfg_path.exists():
            raise FileNotFoundError(f"Runner config not found: {cfg_path}")
        loaded = _load_toml(cfg_path)
        runner = loaded.get("runner")
        table = runner if isinstance(runner, dict) else {}

    def pick(env_key: str, toml_key: str) -> Any:
        value = env.get(env_key)
        if value is not None and value != "":
            return value
        return table.get(toml_key)

    defaults = Settings()
    templates_dir = pick("TEMPLATES_DIR", "templates_dir")
    workspace_dir = pick("WORKSPACE_DIR", "workspace_dir")
    build_cache_dir = pick("BUILD_CACHE_DIR", "build_cache_dir")

    return Settings(
        host=str(pick("HOST", "host") or defaults.host),
        port=_positive_int(pick("PORT", "port"), defaults.port),
        validator_port=_positive_int(pick("VALIDATOR_PORT", "validator_port"), defaults.validator_port),
        max_execution_time_ms=_positive_int(
            pick("MAX_EXECUTION_TIME_MS", "max_execution_time_ms"),
            defaults.max_execution_time_ms,
        ),
        templates_dir=Path(templates_dir).expanduser() if templates_dir else defaults.templates_dir,
        workspace_dir=Path(workspace_dir).expanduser() if workspace_dir else defaults.workspace_dir,
        build_cache_dir=Path(build_cache_dir).expanduser() if build_cache_dir else defaults.build_cache_dir,
        supported_templates=_template_list(
            pick("SUPPORTED_TEMPLATES", "supported_templates"), defaults.supported_templates
        ),
        precomputed_fallback=parse_bool(pick("PRECOMPUTED_FALLBACK", "precomputed_fallback")),
        anchor_bin=str(pick("ANCHOR_BIN", "anchor_bin") or defaults.anchor_bin),
        solana_bin=str(pick("SOLANA_BIN", "solana_bin") or defaults.solana_bin),
        validator_bin=str(pick("VALIDATOR_BIN", "validator_bin") or defaults.validator_bin),
        log_level=str(pick("LOG_LEVEL", "log_level") or defaults.log_level).upper(),
        log_format=str(pick("LOG_FORMAT", "log_format") or defaults.log_format).lower(),
    )
