"""SQL-backed ledger store.

Same contract as ``ledger_store.LedgerStore`` but the ledger lives in a
``transactions`` table reachable through any SQLAlchemy URL, e.g.
``sqlite:///transactions.db``. Amounts are stored as text so SQLite keeps
them exact.
"""

import threading
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Integer, String, create_engine, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.pool import StaticPool

from ledger_store import APPLIED, IgnoreReason, Transaction, ignored


class Base(DeclarativeBase):
    pass


class TransactionRow(Base):
    __tablename__ = "transactions"

    ordinal: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    tx_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    amount: Mapped[str] = mapped_column(String, nullable=False)
    disputed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    charged_back: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_transaction(self):
        return Transaction(
            ordinal=self.ordinal,
            client_id=self.client_id,
            tx_id=self.tx_id,
            amount=Decimal(self.amount),
            disputed=self.disputed,
            charged_back=self.charged_back,
        )


def _create_engine(database_url):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # one shared connection, otherwise every pooled connection sees its own empty database
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url)


class SqlLedgerStore:
    def __init__(self, database_url, recreate=True):
        self.engine = _create_engine(database_url)
        self.lock = threading.Lock()
        if recreate:
            self.clean_and_recreate()
        self.last_ordinal = self._max_ordinal()

    def clean_and_recreate(self):
        with self.lock:
            Base.metadata.drop_all(self.engine)
            Base.metadata.create_all(self.engine)
            self.last_ordinal = 0

    def _max_ordinal(self):
        with self.lock:
            Base.metadata.create_all(self.engine)
            with Session(self.engine) as session:
                return session.scalar(select(func.max(TransactionRow.ordinal))) or 0

    def __len__(self):
        with self.lock, Session(self.engine) as session:
            return session.scalar(select(func.count()).select_from(TransactionRow))

    def append(self, client_id, tx_id, amount):
        with self.lock, Session(self.engine) as session:
            exists = session.scalars(select(TransactionRow.ordinal).where(TransactionRow.tx_id == tx_id)).first()
            if exists is not None:
                return ignored(IgnoreReason.DUPLICATE_TX_ID)

            ordinal = self.last_ordinal + 1
            session.add(
                TransactionRow(
                    ordinal=ordinal,
                    client_id=client_id,
                    tx_id=tx_id,
                    amount=str(amount),
                    disputed=False,
                    charged_back=False,
                )
            )
            session.commit()
            self.last_ordinal = ordinal
        return APPLIED

    def lookup(self, tx_id):
        with self.lock, Session(self.engine) as session:
            row = session.scalars(select(TransactionRow).where(TransactionRow.tx_id == tx_id)).first()
            return row.to_transaction() if row is not None else None

    def set_flags(self, tx_id, disputed, charged_back):
        with self.lock, Session(self.engine) as session:
            row = session.scalars(select(TransactionRow).where(TransactionRow.tx_id == tx_id)).one()
            row.disputed = disputed
            row.charged_back = charged_back
            session.commit()

    def transactions_for(self, client_id):
        # rows are fetched when iteration starts; each call reads the table again
        stmt = select(TransactionRow).where(TransactionRow.client_id == client_id).order_by(TransactionRow.ordinal)
        with self.lock, Session(self.engine) as session:
            transactions = [row.to_transaction() for row in session.scalars(stmt)]
        yield from transactions

    def client_ids(self):
        # first appearance order is the order of each client's lowest ordinal
        with self.lock, Session(self.engine) as session:
            rows = session.scalars(select(TransactionRow.client_id).order_by(TransactionRow.ordinal))
            return list(dict.fromkeys(rows))
