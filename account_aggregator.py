from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal, localcontext

from ledger_store import AMOUNT_CONTEXT

FOUR_PLACES = Decimal(".0001")


@dataclass(frozen=True)
class AccountSnapshot:
    client_id: int
    available: Decimal
    held: Decimal
    total: Decimal
    frozen: bool

    @property
    def locked(self):
        return self.frozen


def replay_account(client_id, transactions):
    """Derive one client's balances from its transactions in ordinal order.

    A charged back transaction freezes the account at its position: it adds
    nothing and every later transaction is skipped. A transaction that would
    take `available` below zero contributes nothing but stays in the ledger.
    """
    available = Decimal(0)
    held = Decimal(0)
    total = Decimal(0)
    frozen = False

    with localcontext(AMOUNT_CONTEXT):
        for tx in transactions:
            if tx.charged_back:
                frozen = True
                break

            new_available = available
            new_held = held
            if tx.disputed:
                new_held += abs(tx.amount)
                if tx.amount < 0:
                    # a disputed withdrawal keeps its funds out of available while held
                    new_available += tx.amount
            else:
                new_available += tx.amount

            if new_available < 0:
                continue

            available = new_available
            held = new_held
            total = new_available + new_held

        return AccountSnapshot(
            client_id=client_id,
            available=available.quantize(FOUR_PLACES),
            held=held.quantize(FOUR_PLACES),
            total=total.quantize(FOUR_PLACES),
            frozen=frozen,
        )


class AccountAggregator:
    def __init__(self, store, workers=1):
        if not isinstance(workers, int) or workers < 1:
            raise ValueError("workers must be a positive integer")
        self.store = store
        self.workers = workers

    def snapshot(self, client_id):
        return replay_account(client_id, self.store.transactions_for(client_id))

    def snapshots(self, client_ids=None):
        if client_ids is None:
            client_ids = self.store.client_ids()
        client_ids = list(client_ids)

        if self.workers == 1 or len(client_ids) < 2:
            return [self.snapshot(client_id) for client_id in client_ids]

        # accounts never interact so each replay reads the store independently
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            return list(pool.map(self.snapshot, client_ids))
