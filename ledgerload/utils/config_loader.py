from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ledgerload.domain.models import Participant, Role, WalletAddress

logger = logging.getLogger(__name__)

_REQUIRED_NODE_KEYS = ("ip", "port", "id", "signature", "address_base", "key_identifier")
_TIMING_ATTEMPT_KEYS = ("funding_poll_attempts", "funder_balance_attempts", "sign_attempts")
_TIMING_SECONDS_KEYS = (
    "funding_settle_seconds",
    "funding_poll_backoff_seconds",
    "funder_balance_backoff_seconds",
    "prepare_cooldown_seconds",
)


@dataclass(frozen=True)
class HttpSettings:
    verify_tls: bool = False
    request_timeout_seconds: float | None = None


@dataclass(frozen=True)
class TimingSettings:
    funding_settle_seconds: float = 15.0
    funding_poll_attempts: int = 12
    funding_poll_backoff_seconds: float = 2.0
    funder_balance_attempts: int = 10
    funder_balance_backoff_seconds: float = 1.0
    prepare_cooldown_seconds: float = 60.0
    sign_attempts: int = 5

    def __post_init__(self) -> None:
        for k in _TIMING_ATTEMPT_KEYS:
            if getattr(self, k) < 1:
                raise ValueError(f"timing.{k} must be >= 1; got {getattr(self, k)!r}")
        for k in _TIMING_SECONDS_KEYS:
            if getattr(self, k) < 0:
                raise ValueError(f"timing.{k} must be >= 0; got {getattr(self, k)!r}")


@dataclass(frozen=True)
class LoadConfig:
    """Immutable run configuration handed to every component at construction."""

    participants: tuple[Participant, ...]
    transactions_per_node: int
    outputs_per_transaction: int
    worker_count: int
    receiver: WalletAddress
    http: HttpSettings = HttpSettings()
    timing: TimingSettings = TimingSettings()
    result_path: str = "result.json"

    @property
    def funder(self) -> Participant:
        return self.participants[0]

    @property
    def total_transactions(self) -> int:
        return len(self.participants) * self.transactions_per_node


def _project_root() -> Path:
    # ledgerload/utils/config_loader.py -> ledgerload/utils -> ledgerload -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    env_path = os.getenv("LEDGERLOAD_CONFIG_PATH") or os.getenv("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return _project_root() / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """Override selected settings with LEDGERLOAD_* environment variables."""
    if os.getenv("LEDGERLOAD_RESULT_PATH") or os.getenv("RESULT_PATH"):
        cfg["result_path"] = os.getenv("LEDGERLOAD_RESULT_PATH") or os.environ["RESULT_PATH"]
    if os.getenv("LEDGERLOAD_WORKER_COUNT"):
        cfg["worker_count"] = int(os.environ["LEDGERLOAD_WORKER_COUNT"])
    if os.getenv("LEDGERLOAD_TRANSACTIONS_PER_NODE"):
        cfg["transactions_per_node"] = int(os.environ["LEDGERLOAD_TRANSACTIONS_PER_NODE"])
    if os.getenv("LEDGERLOAD_OUTPUTS_PER_TRANSACTION"):
        cfg["outputs_per_transaction"] = int(os.environ["LEDGERLOAD_OUTPUTS_PER_TRANSACTION"])


def _positive_int(cfg: dict[str, Any], key: str) -> int:
    value = cfg.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer; got {value!r}")
    return value


def validate_config(cfg: dict[str, Any]) -> None:
    """Fail fast if the configuration is missing required settings."""
    # goroutine_count is the legacy name for worker_count.
    if "worker_count" not in cfg and "goroutine_count" in cfg:
        cfg["worker_count"] = cfg.pop("goroutine_count")

    required_top = [
        "nodes",
        "transactions_per_node",
        "outputs_per_transaction",
        "worker_count",
        "receiver_address_base",
        "receiver_key_identifier",
    ]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config keys: {', '.join(missing)}")

    nodes = cfg.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        raise ValueError("nodes must be a non-empty list")
    seen: set[tuple[str, str]] = set()
    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            raise ValueError(f"nodes[{i}] must be a mapping")
        for k in _REQUIRED_NODE_KEYS:
            if node.get(k) in (None, ""):
                raise ValueError(f"Missing nodes[{i}].{k} in config")
        wallet = (str(node["address_base"]), str(node["key_identifier"]))
        if wallet in seen:
            raise ValueError(f"nodes[{i}] reuses the wallet address of an earlier node")
        seen.add(wallet)

    for k in ("transactions_per_node", "outputs_per_transaction", "worker_count"):
        _positive_int(cfg, k)

    if cfg["outputs_per_transaction"] > cfg["transactions_per_node"]:
        raise ValueError("outputs_per_transaction must not exceed transactions_per_node")

    _validate_timing(cfg.get("timing"))
    _validate_http(cfg.get("http"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_timing(timing: Any) -> None:
    if timing is None:
        return
    if not isinstance(timing, dict):
        raise ValueError("timing must be a mapping")
    for k in _TIMING_ATTEMPT_KEYS:
        if k in timing:
            v = timing[k]
            if not isinstance(v, int) or isinstance(v, bool) or v < 1:
                raise ValueError(f"timing.{k} must be a positive integer; got {v!r}")
    for k in _TIMING_SECONDS_KEYS:
        if k in timing:
            v = timing[k]
            if not _is_number(v) or v < 0:
                raise ValueError(f"timing.{k} must be a non-negative number; got {v!r}")


def _validate_http(http: Any) -> None:
    if http is None:
        return
    if not isinstance(http, dict):
        raise ValueError("http must be a mapping")
    timeout = http.get("request_timeout_seconds")
    if timeout is not None and (not _is_number(timeout) or timeout <= 0):
        raise ValueError(f"http.request_timeout_seconds must be a positive number; got {timeout!r}")


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load the YAML (or JSON) config file.

    - Reads `config/config.yaml` by default, or the path in LEDGERLOAD_CONFIG_PATH.
    - Applies environment overrides for a small set of operational settings.
    """
    path = Path(config_path) if config_path else default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

    _apply_env_overrides(cfg)
    validate_config(cfg)
    logger.info("Loaded config from %s", path.resolve())
    return cfg


def build_load_config(cfg: dict[str, Any]) -> LoadConfig:
    validate_config(cfg)

    participants = tuple(
        Participant(
            node_id=str(node["id"]),
            node_signature=str(node["signature"]),
            host=str(node["ip"]),
            port=str(node["port"]),
            wallet=WalletAddress(base=str(node["address_base"]), key_identifier=str(node["key_identifier"])),
            role=Role.FUNDER if i == 0 else Role.PARTICIPANT,
        )
        for i, node in enumerate(cfg["nodes"])
    )

    http_cfg = cfg.get("http") or {}
    timeout = http_cfg.get("request_timeout_seconds")
    http = HttpSettings(
        verify_tls=bool(http_cfg.get("verify_tls", False)),
        request_timeout_seconds=float(timeout) if timeout is not None else None,
    )

    timing_cfg = cfg.get("timing") or {}
    defaults = TimingSettings()
    timing = TimingSettings(
        funding_settle_seconds=float(timing_cfg.get("funding_settle_seconds", defaults.funding_settle_seconds)),
        funding_poll_attempts=int(timing_cfg.get("funding_poll_attempts", defaults.funding_poll_attempts)),
        funding_poll_backoff_seconds=float(
            timing_cfg.get("funding_poll_backoff_seconds", defaults.funding_poll_backoff_seconds)
        ),
        funder_balance_attempts=int(timing_cfg.get("funder_balance_attempts", defaults.funder_balance_attempts)),
        funder_balance_backoff_seconds=float(
            timing_cfg.get("funder_balance_backoff_seconds", defaults.funder_balance_backoff_seconds)
        ),
        prepare_cooldown_seconds=float(timing_cfg.get("prepare_cooldown_seconds", defaults.prepare_cooldown_seconds)),
        sign_attempts=int(timing_cfg.get("sign_attempts", defaults.sign_attempts)),
    )

    return LoadConfig(
        participants=participants,
        transactions_per_node=int(cfg["transactions_per_node"]),
        outputs_per_transaction=int(cfg["outputs_per_transaction"]),
        worker_count=int(cfg["worker_count"]),
        receiver=WalletAddress(
            base=str(cfg["receiver_address_base"]),
            key_identifier=str(cfg["receiver_key_identifier"]),
        ),
        http=http,
        timing=timing,
        result_path=str(cfg.get("result_path") or "result.json"),
    )
