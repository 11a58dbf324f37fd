# src/core/config.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from core.models import DisputeContracts
from helper.hexutil import normalize_hex

ENV_PREFIX = "DISPUTE_"


class DisputeConfig(BaseModel):
    """
    Configuration of a challenger process.

    Sources, later ones overriding earlier ones:
        1. field defaults below;
        2. a YAML file (flat mapping of field names);
        3. DISPUTE_<FIELD> environment variables
           (e.g. DISPUTE_RPC_URL, DISPUTE_POLL_INTERVAL).
    """

    rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint of the host ledger node.",
    )

    challenger_address: Optional[str] = Field(
        default=None,
        description="Address used to send transactions. Must be unlocked on the node.",
    )

    abi_dir: str = Field(
        default="abi",
        description="Directory holding <ContractName>.json ABI files.",
    )

    # ---- contract addresses ----
    superblocks: Optional[str] = None
    superblock_claims: Optional[str] = None
    battle_manager: Optional[str] = None
    scrypt_claims: Optional[str] = None

    # ---- engine knobs ----
    poll_interval: float = Field(
        default=0.2,
        gt=0,
        description="Fixed delay between event scans, in seconds.",
    )

    response_timeout: float = Field(
        default=120.0,
        gt=0,
        description="How long to wait for the submitter's response before a defender timeout.",
    )

    from_block: int = Field(
        default=0,
        ge=0,
        description="Lowest block scanned when discovering battles and claims.",
    )

    default_deposit: int = Field(
        default=1000,
        ge=0,
        description="Deposit (wei) made before challenging when the balance is zero.",
    )

    advance_headers: int = Field(
        default=5,
        ge=0,
        description="Block headers queried by the advance-battle strategy.",
    )

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text | json")

    @field_validator(
        "challenger_address", "superblocks", "superblock_claims",
        "battle_manager", "scrypt_claims", mode="before",
    )
    @classmethod
    def _normalize_address(cls, v: Any) -> Optional[str]:
        return None if v in (None, "") else normalize_hex(v)

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {v!r}")
        return v

    def contracts(self) -> DisputeContracts:
        missing = [
            name for name in ("superblocks", "superblock_claims", "battle_manager", "scrypt_claims")
            if getattr(self, name) is None
        ]
        if missing:
            raise ValueError(f"Missing contract address(es): {', '.join(missing)}")
        return DisputeContracts.from_addresses(
            superblocks=self.superblocks,
            superblock_claims=self.superblock_claims,
            battle_manager=self.battle_manager,
            scrypt_claims=self.scrypt_claims,
        )


def _env_overrides(env: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for name in DisputeConfig.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in env:
            overrides[name] = env[key]
    return overrides


def load_config(
    path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> DisputeConfig:
    """
    Build a DisputeConfig from an optional YAML file and the environment.
    Validation errors propagate as pydantic.ValidationError.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ValueError(f"{path}: expected a mapping at top level")
            data.update(loaded)
    data.update(_env_overrides(os.environ if env is None else env))
    return DisputeConfig.model_validate(data)
