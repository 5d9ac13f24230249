"""
Parser configuration.

All thresholds are plain values on ``ParserConfig``. Nothing reads the
environment implicitly: ``from_env`` and ``from_yaml`` are for the process
that wires the parser together.
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from dex_trade_parser.core.constants import MAX_BATCH_SIZE
from dex_trade_parser.core.errors import ConfigError

ENV_PREFIX = "TRADE_PARSER_"
HELIUS_RPC_URL = "https://mainnet.helius-rpc.com/?api-key={key}"
PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"

_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


@dataclass
class ParserConfig:
    # Dust thresholds
    token_dust: float = 0.000001          # UI units, extractor
    native_dust_lamports: int = 100_000   # extractor
    heuristic_native_dust: float = 0.0001  # SOL, generic heuristic
    pair_dust: float = 0.0001             # representative pair selection

    # Result cache
    cache_ttl_seconds: float = 3600.0
    cache_capacity: int = 500

    # Batch pipeline
    batch_size: int = MAX_BATCH_SIZE
    max_concurrent_batches: int = 5

    # External trade oracle
    oracle_timeout_seconds: float = 2.0
    oracle_min_native_amount: float = 0.01
    oracle_url: str = "https://api.jup.ag/transactions"

    # SOL/USD price source
    price_url: str = "https://api.jup.ag/price/v3"
    price_cache_seconds: float = 10.0

    # Transaction fetcher
    rpc_endpoints: list[str] = field(default_factory=lambda: [PUBLIC_RPC_URL])
    rpc_timeout_seconds: float = 10.0
    rpc_rate_limit_per_second: float = 10.0
    rpc_max_retries: int = 3
    commitment: str = "confirmed"

    def __post_init__(self) -> None:
        # Bulk getTransaction requests are capped by providers
        if self.batch_size > MAX_BATCH_SIZE:
            self.batch_size = MAX_BATCH_SIZE

    def validate(self) -> "ParserConfig":
        """Raise ConfigError on values the parser cannot work with."""
        positive = (
            "cache_ttl_seconds", "cache_capacity", "batch_size",
            "max_concurrent_batches", "oracle_timeout_seconds",
            "rpc_timeout_seconds", "rpc_rate_limit_per_second",
            "rpc_max_retries", "price_cache_seconds",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        non_negative = (
            "token_dust", "native_dust_lamports", "heuristic_native_dust",
            "pair_dust", "oracle_min_native_amount",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ConfigError(f"unknown commitment {self.commitment!r}")
        if not self.rpc_endpoints:
            raise ConfigError("at least one RPC endpoint is required")
        return self

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "ParserConfig":
        """Build from TRADE_PARSER_* variables (after loading ``env_file``).

        HELIUS_API_KEY puts a Helius endpoint in front of the configured
        ones; SOLANA_NODE_RPC_ENDPOINT is used when no endpoint list is set.
        """
        load_dotenv(env_file)

        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, f.type, raw)

        endpoints = list(values.get("rpc_endpoints") or [])
        if not endpoints:
            node_rpc = os.getenv("SOLANA_NODE_RPC_ENDPOINT")
            if node_rpc:
                endpoints.append(node_rpc)
        helius_key = os.getenv("HELIUS_API_KEY")
        if helius_key:
            endpoints.insert(0, HELIUS_RPC_URL.format(key=helius_key))
        if endpoints:
            values["rpc_endpoints"] = endpoints

        return cls(**values).validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ParserConfig":
        """Build from a YAML mapping. ``${VAR}`` references are expanded."""
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e

        missing = [var for var in _ENV_VAR.findall(raw) if os.getenv(var) is None]
        if missing:
            raise ConfigError(f"unset environment variables in {path}: {', '.join(missing)}")
        raw = _ENV_VAR.sub(lambda m: os.environ[m.group(1)], raw)

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

        values = {}
        for key, value in data.items():
            if isinstance(value, str):
                value = _coerce(key, known[key].type, value)
            elif key == "rpc_endpoints" and not isinstance(value, list):
                raise ConfigError("rpc_endpoints must be a list")
            values[key] = value
        return cls(**values).validate()


def _coerce(name: str, annotation: Any, raw: str) -> Any:
    kind = str(annotation)
    try:
        if kind.startswith("list"):
            return [item.strip() for item in raw.split(",") if item.strip()]
        if kind == "int" or annotation is int:
            return int(raw)
        if kind == "float" or annotation is float:
            return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name}: cannot parse {raw!r}") from e
    return raw
