from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Deposit:
    client_id: int
    tx_id: int
    amount: Decimal
    record_type = "deposit"


@dataclass(frozen=True)
class Withdrawal:
    client_id: int
    tx_id: int
    amount: Decimal
    record_type = "withdrawal"


@dataclass(frozen=True)
class Dispute:
    client_id: int
    tx_id: int
    record_type = "dispute"


@dataclass(frozen=True)
class Resolve:
    client_id: int
    tx_id: int
    record_type = "resolve"


@dataclass(frozen=True)
class Chargeback:
    client_id: int
    tx_id: int
    record_type = "chargeback"


EVENT_TYPES = {cls.record_type: cls for cls in (Deposit, Withdrawal, Dispute, Resolve, Chargeback)}
