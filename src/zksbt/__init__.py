"""zero-knowledge soulbound attestations"""

__version__ = "0.1.0"

from zksbt.commitment import CommitmentGenerator, commit
from zksbt.config import Settings
from zksbt.operators import Operator
from zksbt.poseidon import PoseidonHash, poseidon_hash

__all__ = [
    "CommitmentGenerator",
    "Operator",
    "PoseidonHash",
    "Settings",
    "commit",
    "poseidon_hash",
]
