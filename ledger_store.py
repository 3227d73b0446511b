from dataclasses import dataclass
from decimal import MAX_EMAX, MAX_PREC, MIN_EMIN, Context, Decimal, InvalidOperation
from enum import Enum

# ledger arithmetic never rounds: sums of 4dp amounts stay exact at any size
AMOUNT_CONTEXT = Context(prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN, traps=[InvalidOperation])


class IgnoreReason(Enum):
    DUPLICATE_TX_ID = "duplicates existing tx_id"
    TX_NOT_FOUND = "tx not found"
    CLIENT_MISMATCH = "tx client_id mismatch"
    ALREADY_DISPUTED = "tx is already disputed"
    CHARGED_BACK = "tx is charged back"
    NOT_DISPUTED = "tx is not disputed"


@dataclass(frozen=True)
class Outcome:
    """Result of handing one event to the ledger.

    An ignored event is a normal outcome, not a failure. Callers may log the
    reason but never need to recover from it.
    """

    reason: IgnoreReason = None

    @property
    def applied(self):
        return self.reason is None

    @property
    def message(self):
        return self.reason.value if self.reason else "applied"

    def __repr__(self):
        if self.applied:
            return "Applied"
        return f"Ignored({self.reason.name})"


APPLIED = Outcome()


def ignored(reason):
    return Outcome(reason)


@dataclass
class Transaction:
    ordinal: int
    client_id: int
    tx_id: int
    amount: Decimal
    disputed: bool = False
    charged_back: bool = False


class LedgerStore:
    """In-memory append-only ledger.

    Transactions live in a list in ordinal order with a dict index by tx_id.
    Per-client ordinal lists make `transactions_for` cheap without a sort.
    """

    def __init__(self):
        self.entries = []
        self.tx_index = {}
        self.client_index = {}
        self.last_ordinal = 0

    def __len__(self):
        return len(self.entries)

    def append(self, client_id, tx_id, amount):
        if tx_id in self.tx_index:
            return ignored(IgnoreReason.DUPLICATE_TX_ID)

        self.last_ordinal += 1
        tx = Transaction(self.last_ordinal, client_id, tx_id, amount)
        self.entries.append(tx)
        self.tx_index[tx_id] = tx
        self.client_index.setdefault(client_id, []).append(tx)
        return APPLIED

    def lookup(self, tx_id):
        return self.tx_index.get(tx_id)

    def set_flags(self, tx_id, disputed, charged_back):
        tx = self.tx_index[tx_id]
        tx.disputed = disputed
        tx.charged_back = charged_back

    def transactions_for(self, client_id):
        # entries are appended in ordinal order so each client list already is too
        return iter(self.client_index.get(client_id, ()))

    def client_ids(self):
        return list(self.client_index)
