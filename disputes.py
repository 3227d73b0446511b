"""Dispute state machine.

A stored transaction is Normal, Disputed or ChargedBack:

    Normal --dispute--> Disputed --resolve--> Normal
                        Disputed --chargeback--> ChargedBack (terminal)

Each function checks the referenced transaction and flips its flags through
the store, or returns an ignored outcome and leaves the store untouched.
Balances are not touched here; the aggregator derives them from the flags.
"""

from ledger_store import APPLIED, IgnoreReason, ignored


def check_target(tx, client_id):
    if tx is None:
        return IgnoreReason.TX_NOT_FOUND
    if tx.client_id != client_id:
        return IgnoreReason.CLIENT_MISMATCH
    if tx.charged_back:
        return IgnoreReason.CHARGED_BACK
    return None


def dispute(store, client_id, tx_id):
    tx = store.lookup(tx_id)
    reason = check_target(tx, client_id)
    if reason is None and tx.disputed:
        reason = IgnoreReason.ALREADY_DISPUTED
    if reason is not None:
        return ignored(reason)

    store.set_flags(tx_id, disputed=True, charged_back=False)
    return APPLIED


def resolve(store, client_id, tx_id):
    tx = store.lookup(tx_id)
    reason = check_target(tx, client_id)
    if reason is None and not tx.disputed:
        reason = IgnoreReason.NOT_DISPUTED
    if reason is not None:
        return ignored(reason)

    store.set_flags(tx_id, disputed=False, charged_back=False)
    return APPLIED


def chargeback(store, client_id, tx_id):
    tx = store.lookup(tx_id)
    reason = check_target(tx, client_id)
    if reason is None and not tx.disputed:
        reason = IgnoreReason.NOT_DISPUTED
    if reason is not None:
        return ignored(reason)

    # freezing the account is implied by the flag, see account_aggregator.replay_account
    store.set_flags(tx_id, disputed=False, charged_back=True)
    return APPLIED
