from datetime import datetime

import pytest
from ledger_fakes import Ledger
from racereg.domain.expiry import ExpiryPolicy, HoldTtlConfig
from racereg.domain.pricing import PercentageFeePolicy

NOW = datetime(2026, 3, 1, 12, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def ledger(now: datetime) -> Ledger:
    return Ledger(now)


@pytest.fixture
def expiry_policy() -> ExpiryPolicy:
    return ExpiryPolicy(HoldTtlConfig(started_minutes=30, submitted_minutes=30, payment_pending_hours=24))


@pytest.fixture
def fee_policy() -> PercentageFeePolicy:
    return PercentageFeePolicy(percent=5)
