"""synthetic credit reports and a populated registry for demos and benchmarks"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

import numpy as np
import pydantic
from eth_utils import keccak
from faker import Faker
from tqdm import tqdm

from zksbt.identity import Keypair, keypair_from_private_key
from zksbt.issuer import AttestationIssuer
from zksbt.registry import AttestationRegistry


class CreditReport(pydantic.BaseModel):
    name: str
    credit_score: int = pydantic.Field(ge=300, le=850)
    income: int = pydantic.Field(ge=0)
    report_date: int  # unix milliseconds

    def as_attributes(self):
        return {
            "creditScore": self.credit_score,
            "income": self.income,
            "reportDate": self.report_date,
        }


@dataclass
class DemoHolder:
    keypair: Keypair
    report: CreditReport
    token_id: int


def random_report(fake: Faker, rng: np.random.Generator) -> CreditReport:
    """Generate one plausible credit report."""
    # scores cluster around 700, incomes are long-tailed
    score = int(np.clip(rng.normal(700, 60), 300, 850))
    income = int(rng.lognormal(mean=8.0, sigma=0.5))
    reported = fake.date_time_between(start_date=datetime.now() - timedelta(days=730))
    return CreditReport(
        name=fake.name(),
        credit_score=score,
        income=income,
        report_date=int(reported.timestamp() * 1000),
    )


def demo_keypair(seed: int, label) -> Keypair:
    return keypair_from_private_key(keccak(text=f"zksbt-demo-{seed}-{label}"))


def populate_demo_registry(
    registry: AttestationRegistry,
    issuer: AttestationIssuer,
    count: int = 10,
    seed: int = 42,
    progress: bool = False,
) -> List[DemoHolder]:
    """
    Mint `count` attestations with synthetic credit reports.

    Args:
        registry: registry where issuer is already an authority
        issuer: authority middleware; its schema picks the attributes committed
        count: number of holders
        seed: seeds Faker, numpy and the holder keys
        progress: show a tqdm bar

    Returns:
        one DemoHolder per mint, in mint order
    """
    fake = Faker()
    fake.seed_instance(seed)
    rng = np.random.default_rng(seed)

    holders = []
    for i in tqdm(range(count), desc="minting", disable=not progress):
        keypair = demo_keypair(seed, i)
        report = random_report(fake, rng)
        prepared = issuer.prepare(keypair.public_key, report.as_attributes(), owner=keypair.address)
        token_id = issuer.issue(registry, prepared)
        holders.append(DemoHolder(keypair=keypair, report=report, token_id=token_id))
    return holders
