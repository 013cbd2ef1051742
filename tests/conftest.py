"""shared fixtures: fixed identities, an in-memory registry and a development setup"""

import shutil
import subprocess

import pytest
from eth_utils import keccak

from zksbt.circuit import ComparatorCircuit
from zksbt.config import Settings
from zksbt.groth16 import DevelopmentSetup
from zksbt.identity import keypair_from_private_key
from zksbt.issuer import AttestationIssuer, Holder
from zksbt.poseidon import BRIDGE_SCRIPT, SNARK_SCALAR_FIELD, PoseidonHash
from zksbt.prover import DevelopmentBackend, ProofBuilder
from zksbt.registry import AttestationRegistry
from zksbt.verifier import Verifier

OWNER_KEY = "0x41c5ab8f659237772a24848aefb3700202ec730c091b3c53affe3f9ebedbc3c9"
OTHER_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"
ADMIN_KEY = "0x" + "11" * 32
AUTHORITY_KEY = "0x" + "22" * 32
STRANGER_KEY = "0x" + "33" * 32

SIGNATURE_DATE = 1_700_000_000


def _keccak_bridge(self, command, args):
    # stands in for node + circomlibjs when they are not installed
    digest = keccak(text=command + ":" + ",".join(args))
    return hex(int.from_bytes(digest, "big") % SNARK_SCALAR_FIELD)


class FakeClock:
    def __init__(self, now: int = SIGNATURE_DATE):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture(scope="session")
def circomlibjs_available() -> bool:
    node = shutil.which("node")
    if node is None:
        return False
    try:
        result = subprocess.run(
            [node, "-e", "require('circomlibjs')"],
            cwd=BRIDGE_SCRIPT.parent, capture_output=True, timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


@pytest.fixture(scope="session", autouse=True)
def poseidon_bridge(circomlibjs_available):
    if circomlibjs_available:
        yield
        return
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(PoseidonHash, "_run_bridge", _keccak_bridge)
        yield


@pytest.fixture(scope="session")
def owner():
    return keypair_from_private_key(OWNER_KEY)


@pytest.fixture(scope="session")
def other():
    return keypair_from_private_key(OTHER_KEY)


@pytest.fixture(scope="session")
def admin():
    return keypair_from_private_key(ADMIN_KEY)


@pytest.fixture(scope="session")
def authority():
    return keypair_from_private_key(AUTHORITY_KEY)


@pytest.fixture(scope="session")
def stranger():
    return keypair_from_private_key(STRANGER_KEY)


@pytest.fixture(scope="session")
def dev_setup():
    return DevelopmentSetup(n_public=5, seed=20240901)


@pytest.fixture(scope="session")
def circuit():
    return ComparatorCircuit(num_attributes=1)


@pytest.fixture(scope="session")
def builder(circuit, dev_setup):
    return ProofBuilder(circuit, DevelopmentBackend(dev_setup))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(admin, authority, clock):
    reg = AttestationRegistry(admin.address, settings=Settings(), clock=clock)
    reg.add_authority(admin.address, authority.address)
    return reg


@pytest.fixture
def verifier(registry, dev_setup, circuit):
    return Verifier(registry, dev_setup.verification_key, circuit)


@pytest.fixture
def issuer(authority):
    return AttestationIssuer(authority.private_key)


@pytest.fixture
def holder(owner):
    return Holder(owner.private_key)
