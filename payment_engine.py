import argparse
import csv
import os
import sys
from decimal import Decimal, ROUND_DOWN, InvalidOperation, localcontext

import disputes
from account_aggregator import AccountAggregator
from events import EVENT_TYPES
from ledger_store import AMOUNT_CONTEXT, LedgerStore
from sql_ledger_store import SqlLedgerStore

DB_URL_ENV = "PAYMENT_ENGINE_DB_URL"
MAX_CLIENT_ID = 65535
MAX_TX_ID = 4294967295


class PaymentEngine:
    DEFAULT_FIELD_ORDER = ("type", "client", "tx", "amount")

    def __init__(self, filename, store=None, workers=1):
        self.filename = filename
        self.ledger = store if store is not None else LedgerStore()
        self.aggregator = AccountAggregator(self.ledger, workers=workers)
        # insertion ordered, doubles as the report order
        self.clients = {}

        self.type_field_idx = 0
        self.client_field_idx = 1
        self.tx_field_idx = 2
        self.amount_field_idx = 3

    def read_transaction_data(self):
        if not self.filename:
            raise RuntimeError("no filename to read has been set. aborting.")
        with open(self.filename, newline="") as file:
            csvreader = csv.reader(file)
            first_record = next(csvreader, None)
            if first_record is None:
                return
            if not self.discover_field_order(first_record):
                self.process_record(first_record)
            for record in csvreader:
                if not record:
                    continue
                self.process_record(record)

    def discover_field_order(self, header):
        """Take field positions from a header row.

        Returns False, leaving the default order in place, when the row does
        not name the type, client and tx fields; the row is then data.
        """
        names = [name.strip().lower() for name in header]
        if not all(field in names for field in self.DEFAULT_FIELD_ORDER[:3]):
            return False

        self.type_field_idx = names.index("type")
        self.client_field_idx = names.index("client")
        self.tx_field_idx = names.index("tx")
        self.amount_field_idx = names.index("amount") if "amount" in names else None
        return True

    def process_record(self, record):
        event = self.attempt_build_event(record)
        if event is None:
            return None
        return self.apply_event(event)

    def apply_event(self, event):
        self.clients.setdefault(event.client_id, True)
        record_type = event.record_type
        amount = getattr(event, "amount", None)

        if record_type == "deposit":
            outcome = self.ledger.append(event.client_id, event.tx_id, event.amount)
        elif record_type == "withdrawal":
            with localcontext(AMOUNT_CONTEXT):
                debit = -event.amount
            outcome = self.ledger.append(event.client_id, event.tx_id, debit)
        elif record_type == "dispute":
            outcome = disputes.dispute(self.ledger, event.client_id, event.tx_id)
        elif record_type == "resolve":
            outcome = disputes.resolve(self.ledger, event.client_id, event.tx_id)
        elif record_type == "chargeback":
            outcome = disputes.chargeback(self.ledger, event.client_id, event.tx_id)
        else:
            raise ValueError(f"unknown event type {record_type!r}")

        if not outcome.applied:
            self.error_log(outcome.message, event.tx_id, event.client_id, record_type, amount)
        return outcome

    def error_log(self, message, tx_id=None, client_id=None, record_type=None, amount=None):
        if tx_id is not None and client_id is not None and record_type is not None:
            formatted_prefix = f"tx_id {tx_id}, client_id {client_id}, failed to apply {record_type}"
            amount_detail = ""
            if amount is not None:
                amount_detail = f" of ${amount.normalize():f}"
            print(f"{formatted_prefix}{amount_detail}: {message}", file=sys.stderr)
        else:
            print(f"transaction error: {message}", file=sys.stderr)

    def get_tx(self, tx_id):
        return self.ledger.lookup(tx_id)

    def get_normalized_amount(self, record):
        if record[self.type_field_idx].strip() not in {"deposit", "withdrawal"}:
            return None
        if self.amount_field_idx is None or self.amount_field_idx >= len(record):
            return None
        raw_amount = record[self.amount_field_idx].strip()
        if not raw_amount:
            return None
        amount = Decimal(raw_amount).quantize(Decimal(".0001"), rounding=ROUND_DOWN)
        if amount < 0:
            raise ValueError(f"amount must not be negative, got {raw_amount}")
        return amount

    def normalize_record(self, record):
        record_type = record[self.type_field_idx].strip()
        client_id = int(record[self.client_field_idx].strip())
        tx_id = int(record[self.tx_field_idx].strip())
        amount = self.get_normalized_amount(record)
        return record_type, client_id, tx_id, amount

    def attempt_build_event(self, record):
        try:
            record_type, client_id, tx_id, amount = self.normalize_record(record)
        except (ValueError, InvalidOperation) as e:
            self.error_log(f"field format error: {e} while attempting to normalize row like: {repr(record)}")
            return None
        except IndexError as e:
            self.error_log(f"{e} while attempting to normalize row like: {repr(record)}")
            return None

        if not self.validate_record(record_type, client_id, tx_id, amount):
            return None

        event_cls = EVENT_TYPES[record_type]
        if record_type in {"deposit", "withdrawal"}:
            return event_cls(client_id, tx_id, amount)
        return event_cls(client_id, tx_id)

    def validate_record(self, record_type, client_id, tx_id, amount):
        if record_type not in EVENT_TYPES:
            self.error_log("invalid record_type", tx_id, client_id, record_type)
            return False

        if not (0 <= tx_id <= MAX_TX_ID):
            self.error_log("invalid tx_id", tx_id, client_id, record_type)
            return False

        if not (0 <= client_id <= MAX_CLIENT_ID):
            self.error_log("invalid client_id", tx_id, client_id, record_type)
            return False

        if record_type in {"deposit", "withdrawal"} and amount is None:
            self.error_log("missing amount", tx_id, client_id, record_type)
            return False

        return True

    def snapshots(self):
        return self.aggregator.snapshots(self.clients)

    def get_account_totals(self):
        self.read_transaction_data()
        return {snapshot.client_id: snapshot for snapshot in self.snapshots()}

    def generate_output(self, out=None):
        account_totals = self.get_account_totals()
        csvwriter = csv.writer(out or sys.stdout, lineterminator="\n")
        fieldnames = ["client", "available", "held", "total", "locked"]
        csvwriter.writerow(fieldnames)
        for snapshot in account_totals.values():
            csvwriter.writerow([
                snapshot.client_id,
                snapshot.available,
                snapshot.held,
                snapshot.total,
                str(snapshot.frozen).lower(),
            ])


def build_store(db_url):
    if not db_url:
        return LedgerStore()
    return SqlLedgerStore(db_url)


def positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="payment-engine",
        description="Apply a CSV of transactions and print the resulting client accounts as CSV.",
    )
    parser.add_argument("filename", help="input CSV with type, client, tx, amount columns")
    parser.add_argument(
        "--db-url",
        default=os.getenv(DB_URL_ENV),
        help=f"SQLAlchemy URL to keep the ledger in (default: ${DB_URL_ENV}, else in memory)",
    )
    parser.add_argument("--workers", type=positive_int, default=1, help="threads used to build account snapshots")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    PaymentEngine(args.filename, store=build_store(args.db_url), workers=args.workers).generate_output()
    return 0


if __name__ == '__main__':
    sys.exit(main())
