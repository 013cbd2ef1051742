"""
Poseidon hash over the BN254 scalar field.

Computed by circomlibjs through a Node.js subprocess (poseidon_bridge.js),
so commitments match the hasher the circom circuit evaluates bit for bit.
Inputs are range-checked here before node is started.
"""

import functools
import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from zksbt.config import Settings
from zksbt.errors import ArityMismatch, HashingFailed, ValueOutOfRange

logger = logging.getLogger(__name__)

# BN254 (alt_bn128) scalar field, the native field of circom circuits
SNARK_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# circomlib ships poseidon constants for 1..16 inputs
MAX_INPUTS = 16

# bridge script shipped next to this module; node resolves circomlibjs from here upwards
BRIDGE_SCRIPT = Path(__file__).parent / "poseidon_bridge.js"


class PoseidonHash:
    """Poseidon hash via the circomlibjs Node.js bridge."""

    def __init__(self, node: str = "node", bridge: Optional[Path] = None,
                 timeout: int = 10, cache_size: int = 4096):
        self.node = node
        self.bridge = Path(bridge) if bridge else BRIDGE_SCRIPT
        self.timeout = timeout
        # results cached per input tuple
        self._cached = functools.lru_cache(maxsize=cache_size)(self._hash)

    def _run_bridge(self, command: str, args: List[str]) -> str:
        """Run poseidon_bridge.js with given command and arguments."""
        cmd = [self.node, str(self.bridge), command] + args
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise HashingFailed(f"poseidon bridge error: {exc.stderr.strip()}") from exc
        except subprocess.TimeoutExpired as exc:
            raise HashingFailed(f"poseidon bridge timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise HashingFailed(f"cannot run {self.node}: {exc}") from exc
        return result.stdout.strip()

    @staticmethod
    def _check_inputs(inputs: Iterable[int]) -> Tuple[int, ...]:
        try:
            values = tuple(int(x) for x in inputs)
        except (TypeError, ValueError) as exc:
            raise ValueOutOfRange(f"poseidon inputs must be integers: {exc}") from exc
        if not values or len(values) > MAX_INPUTS:
            raise ArityMismatch(f"poseidon takes 1 to {MAX_INPUTS} inputs, got {len(values)}")
        for x in values:
            if x < 0 or x >= SNARK_SCALAR_FIELD:
                raise ValueOutOfRange(f"poseidon input {x} is outside the scalar field")
        return values

    def _hash(self, values: Tuple[int, ...]) -> int:
        output = self._run_bridge("hash", [str(x) for x in values])
        try:
            digest = int(output, 16)
        except ValueError as exc:
            raise HashingFailed(f"poseidon bridge returned {output!r}") from exc
        if digest >= SNARK_SCALAR_FIELD:
            raise HashingFailed("poseidon bridge returned a value outside the scalar field")
        logger.debug("poseidon of %d inputs", len(values))
        return digest

    def hash(self, *inputs: int) -> int:
        """
        Hash field elements with Poseidon.

        Args:
            *inputs: 1..16 integers in [0, SNARK_SCALAR_FIELD)

        Returns:
            field element

        Raises:
            ArityMismatch, ValueOutOfRange: bad inputs, node is not started
            HashingFailed: node or circomlibjs is missing, or the bridge failed
        """
        return self._cached(self._check_inputs(inputs))

    def digest(self, *inputs: int) -> bytes:
        """32-byte big-endian encoding of hash()"""
        return self.hash(*inputs).to_bytes(32, byteorder="big")


@functools.lru_cache(maxsize=None)
def default_hasher() -> PoseidonHash:
    """process-wide hasher configured from ZKSBT_NODE and ZKSBT_HASH_TIMEOUT"""
    settings = Settings.from_env()
    return PoseidonHash(node=settings.node, timeout=settings.hash_timeout)


# Convenience functions
def poseidon_hash(*inputs: int) -> int:
    """Compute Poseidon hash of inputs."""
    return default_hasher().hash(*inputs)
