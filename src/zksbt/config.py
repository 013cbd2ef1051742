"""
runtime settings for registries, verifiers and the cli.

values come from keyword arguments or from ZKSBT_* environment variables
(e.g. ZKSBT_DATABASE_URL=postgresql://localhost/zksbt).
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import pydantic


ENV_PREFIX = "ZKSBT_"

# hardhat's default chain id and first deployment address
DEFAULT_CHAIN_ID = 31337
DEFAULT_REGISTRY_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


class Settings(pydantic.BaseModel):
    """registry, verifier and proving configuration"""

    model_config = pydantic.ConfigDict(frozen=True)

    name: str = "ZKP SBT"
    symbol: str = "ZKPSBT"
    base_uri: str = "https://testserver/"
    chain_id: int = DEFAULT_CHAIN_ID
    registry_address: str = DEFAULT_REGISTRY_ADDRESS
    database_url: str = "sqlite://"

    # eip-712 domain of the delegated mint signature
    domain_name: str = "ZKPSBTSelfSovereign"
    domain_version: str = "1.0.0"

    # directory holding <circuit>_js/<circuit>.wasm, <circuit>.zkey and verification_key.json
    circuit_dir: Optional[Path] = None
    circuit_name: str = "comparator"
    witness_timeout: int = 60
    prove_timeout: int = 120
    # node runs the poseidon bridge and the witness calculator
    node: str = "node"
    hash_timeout: int = 10

    revert_on_failure: bool = False
    # seconds a delegated mint signature stays valid; None keeps it valid indefinitely
    signature_ttl: Optional[int] = None
    max_workers: int = 4
    # registry and verifier keep only the most recent events in memory
    event_log_size: int = 10000
    log_level: str = "INFO"

    @pydantic.field_validator(
        "chain_id", "witness_timeout", "prove_timeout", "hash_timeout", "max_workers", "event_log_size"
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """
        build settings from ZKSBT_* variables.

        Args:
            environ: mapping to read instead of os.environ
            **overrides: explicit values, taking precedence over the environment

        Returns:
            validated Settings
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in cls.model_fields:
            key = ENV_PREFIX + field_name.upper()
            if key in environ and environ[key] != "":
                values[field_name] = environ[key]
        values.update(overrides)
        return cls.model_validate(values)

    @property
    def wasm_path(self) -> Optional[Path]:
        if self.circuit_dir is None:
            return None
        return self.circuit_dir / f"{self.circuit_name}_js" / f"{self.circuit_name}.wasm"

    @property
    def witness_generator(self) -> Optional[Path]:
        if self.circuit_dir is None:
            return None
        return self.circuit_dir / f"{self.circuit_name}_js" / "generate_witness.js"

    @property
    def zkey_path(self) -> Optional[Path]:
        if self.circuit_dir is None:
            return None
        return self.circuit_dir / f"{self.circuit_name}_final.zkey"

    @property
    def verification_key_path(self) -> Optional[Path]:
        if self.circuit_dir is None:
            return None
        return self.circuit_dir / f"{self.circuit_name}_vkey.json"


def configure_logging(level: str = "INFO") -> None:
    """install a root handler for command line use"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
