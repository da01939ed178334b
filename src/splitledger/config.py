"""Tracker configuration.

Parameters are loaded from config/tracker_params.json at the project
root. Any of them can be overridden through SPLITLEDGER_* environment
variables, which are read after loading a .env file with python-dotenv.

    SPLITLEDGER_SELECTION_STRATEGY   linear | heap
    SPLITLEDGER_REQUIRE_ALLOWANCE    true | false
    SPLITLEDGER_DATA_DIR             directory for events.jsonl / state.json
    SPLITLEDGER_LOG_LEVEL            DEBUG | INFO | WARNING | ERROR
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from splitledger.settlement.selection import SELECTION_STRATEGIES

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_DIR = ROOT / "config"
DEFAULT_DATA_DIR = ROOT / "data"
PARAMS_FILE = "tracker_params.json"

ENV_PREFIX = "SPLITLEDGER_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")


@dataclass(frozen=True)
class TrackerConfig:
    """Runtime parameters for a SplitLedgerService."""

    selection_strategy: str = "linear"
    require_allowance: bool = True
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.selection_strategy not in SELECTION_STRATEGIES:
            raise ValueError(
                f"selection_strategy must be one of {sorted(SELECTION_STRATEGIES)}, "
                f"got {self.selection_strategy!r}"
            )
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")

    @property
    def events_path(self) -> Path:
        return self.data_dir / "events.jsonl"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> TrackerConfig:
        """Build a config from a parameter mapping (unknown keys rejected)."""
        known = {
            "selection_strategy",
            "require_allowance",
            "data_dir",
            "log_level",
        }
        unknown = set(params) - known
        if unknown:
            raise ValueError(f"Unknown tracker parameters: {sorted(unknown)}")
        kwargs: dict[str, Any] = {}
        if "selection_strategy" in params:
            kwargs["selection_strategy"] = str(params["selection_strategy"]).strip().lower()
        if "require_allowance" in params:
            kwargs["require_allowance"] = _parse_bool(
                "require_allowance", params["require_allowance"],
            )
        if "data_dir" in params and params["data_dir"]:
            kwargs["data_dir"] = Path(params["data_dir"])
        if "log_level" in params:
            kwargs["log_level"] = str(params["log_level"]).strip().upper()
        return cls(**kwargs)

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> TrackerConfig:
        """Load from tracker_params.json. Missing file → defaults."""
        path = Path(config_dir) / PARAMS_FILE
        if not path.exists():
            return cls()
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_mapping(params.get("tracker", params))

    @classmethod
    def from_env(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> TrackerConfig:
        """Load from the config dir, then apply SPLITLEDGER_* overrides.

        env_file defaults to .env at the project root. Values already in
        the process environment win over the .env file.
        """
        load_dotenv(env_file or ROOT / ".env")
        env = os.environ if environ is None else environ
        base = cls.from_config_dir(config_dir)

        overrides: dict[str, Any] = {}
        for key in (
            "selection_strategy",
            "require_allowance",
            "data_dir",
            "log_level",
        ):
            raw = env.get(ENV_PREFIX + key.upper())
            if raw is not None and raw != "":
                overrides[key] = raw
        if not overrides:
            return base
        patch = cls.from_mapping(overrides)
        return replace(base, **{k: getattr(patch, k) for k in overrides})
