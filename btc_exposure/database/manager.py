"""Database management and operations."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from sqlalchemy import create_engine, func, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
import structlog

from btc_exposure.models.config import IndexerConfig
from btc_exposure.models.blockchain import SCRIPT_TYPE_DESCRIPTIONS
from btc_exposure.database.models import (
    Base, Address, AddressInput, AddressOutput, Block, ScriptTypeRecord,
    Transaction, TxidBlockIndex,
)

logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Manages database connections, sessions and read queries."""

    def __init__(self, config: IndexerConfig):
        self.config = config
        self.logger = logger.bind(component="database_manager")

        url = config.database_url
        if url.startswith("sqlite"):
            # Single shared connection so in-memory databases survive across sessions
            self.engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False,
            )
        else:
            self.engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=config.db_pool_size,
                max_overflow=config.db_max_overflow,
                pool_pre_ping=True,
                echo=False  # Set to True for SQL debugging
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        self.logger.info("Database manager initialized", dialect=self.engine.dialect.name)

    def create_tables(self):
        """Create all tables and seed the script type taxonomy."""
        Base.metadata.create_all(bind=self.engine)

        with self.session_scope() as session:
            existing = {row.script_type for row in session.query(ScriptTypeRecord).all()}
            for script_type, description in SCRIPT_TYPE_DESCRIPTIONS.items():
                if script_type.value not in existing:
                    session.add(ScriptTypeRecord(script_type=script_type.value,
                                                 description=description))

        self.logger.info("Database tables created")

    def drop_tables(self):
        """Drop all database tables."""
        Base.metadata.drop_all(bind=self.engine)
        self.logger.warning("Database tables dropped")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """One database transaction: commit on success, roll back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.logger.info("Database connection successful")
            return True
        except Exception as e:
            self.logger.error("Database connection failed", error=str(e))
            return False

    # Chain position
    def get_last_ingested_height(self) -> Optional[int]:
        """Highest committed block height, None on an empty index."""
        with self.get_session() as session:
            return session.query(func.max(Block.block_height)).scalar()

    def get_block_hash(self, height: int) -> Optional[str]:
        """Hex hash of a committed block."""
        with self.get_session() as session:
            block = session.query(Block).filter_by(block_height=height).first()
            return block.block_hash.hex() if block else None

    def get_transaction_heights(self, txid: str) -> List[int]:
        """All heights a bare txid occurs at."""
        with self.get_session() as session:
            rows = (session.query(TxidBlockIndex.block_height)
                    .filter(TxidBlockIndex.transaction_id == bytes.fromhex(txid))
                    .order_by(TxidBlockIndex.block_height)
                    .all())
            return [row.block_height for row in rows]

    def get_transaction(self, txid: str, height: int) -> Optional[Dict[str, Any]]:
        """Transaction row by its (txid, height) identity."""
        with self.get_session() as session:
            tx = session.query(Transaction).filter_by(
                transaction_id=bytes.fromhex(txid), block_height=height
            ).first()
            if tx is None:
                return None
            return {
                'txid': txid,
                'block_height': tx.block_height,
                'transaction_index': tx.transaction_index,
                'is_coinbase': tx.is_coinbase,
                'fee_satoshis': tx.fee_satoshis,
                'input_count': tx.input_count,
                'output_count': tx.output_count,
            }

    # Address reads
    def get_address(self, address_string: str) -> Optional[Dict[str, Any]]:
        """Exposure record for one address."""
        with self.get_session() as session:
            address = session.query(Address).filter_by(address_string=address_string).first()
            if address is None:
                return None

            unspent = (session.query(func.count(AddressOutput.output_id),
                                     func.coalesce(func.sum(AddressOutput.value_satoshis), 0))
                       .filter(AddressOutput.address_id == address.address_id,
                               AddressOutput.is_spent.is_(False))
                       .one())

            return {
                'address': address.address_string,
                'script_type': address.script_type,
                'first_seen_block_height': address.first_seen_block_height,
                'total_receive_count': address.total_receive_count,
                'total_spend_count': address.total_spend_count,
                'is_public_key_exposed': address.is_public_key_exposed,
                'public_key': address.public_key.hex() if address.public_key else None,
                'script_extra_data': address.script_extra_data,
                'unspent_output_count': unspent[0],
                'unspent_value_satoshis': int(unspent[1]),
            }

    def get_exposure_summary(self) -> List[Dict[str, Any]]:
        """Address and exposed-address counts per script type."""
        with self.get_session() as session:
            rows = (session.query(Address.script_type,
                                  Address.is_public_key_exposed,
                                  func.count(Address.address_id))
                    .group_by(Address.script_type, Address.is_public_key_exposed)
                    .all())

        summary: Dict[str, Dict[str, Any]] = {}
        for script_type, exposed, count in rows:
            entry = summary.setdefault(script_type, {
                'script_type': script_type, 'address_count': 0, 'exposed_count': 0
            })
            entry['address_count'] += count
            if exposed:
                entry['exposed_count'] += count

        return [summary[key] for key in sorted(summary)]

    def get_input_count_for_output(self, output_id: int) -> int:
        """Number of inputs that consume the given output."""
        with self.get_session() as session:
            return session.query(AddressInput).filter_by(spent_output_id=output_id).count()

    def close(self):
        """Close database connections."""
        self.engine.dispose()
        self.logger.info("Database connections closed")
