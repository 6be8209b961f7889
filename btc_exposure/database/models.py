"""SQLAlchemy database models for the exposure index."""

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, ForeignKey, ForeignKeyConstraint,
    Index, Integer, JSON, LargeBinary, String, Text, UniqueConstraint, text,
)
from sqlalchemy.dialects.postgresql import BYTEA, JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite
BigIdType = BigInteger().with_variant(Integer(), "sqlite")
BinaryType = LargeBinary().with_variant(BYTEA(), "postgresql")
JsonType = JSON().with_variant(JSONB(), "postgresql")


class ScriptTypeRecord(Base):
    """Closed script type taxonomy."""
    __tablename__ = 'script_types'

    script_type = Column(String(20), primary_key=True)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class Block(Base):
    """Ingested block."""
    __tablename__ = 'blocks'

    block_height = Column(Integer, primary_key=True, autoincrement=False)
    block_hash = Column(BinaryType, nullable=False, unique=True)
    block_timestamp = Column(DateTime, nullable=False)
    transaction_count = Column(Integer, nullable=False)


class Transaction(Base):
    """Transaction, identified by (transaction_id, block_height)."""
    __tablename__ = 'transactions'

    transaction_id = Column(BinaryType, primary_key=True)
    block_height = Column(Integer, ForeignKey('blocks.block_height'), primary_key=True,
                          autoincrement=False)
    transaction_index = Column(Integer, nullable=False)
    is_coinbase = Column(Boolean, nullable=False, default=False)
    fee_satoshis = Column(BigInteger)
    input_count = Column(Integer, nullable=False)
    output_count = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('block_height', 'transaction_index'),
    )


class TxidBlockIndex(Base):
    """Bare txid to height lookup. A lookup aid only, not an identity."""
    __tablename__ = 'txid_block_index'

    transaction_id = Column(BinaryType, primary_key=True)
    block_height = Column(Integer, primary_key=True, autoincrement=False)

    __table_args__ = (
        ForeignKeyConstraint(
            ['transaction_id', 'block_height'],
            ['transactions.transaction_id', 'transactions.block_height'],
        ),
        Index('idx_txid_block_index_txid', 'transaction_id'),
    )


class Address(Base):
    """One canonical address identity per classified script."""
    __tablename__ = 'addresses'

    address_id = Column(BigIdType, primary_key=True, autoincrement=True)
    address_string = Column(String(255), nullable=False, unique=True)
    script_type = Column(String(20), ForeignKey('script_types.script_type'), nullable=False)
    first_seen_block_height = Column(Integer, nullable=False)
    total_receive_count = Column(Integer, nullable=False, default=0)
    total_spend_count = Column(Integer, nullable=False, default=0)
    is_public_key_exposed = Column(Boolean, nullable=False, default=False)
    public_key = Column(BinaryType)
    script_extra_data = Column(JsonType)

    __table_args__ = (
        Index('idx_addresses_script_type', 'script_type'),
        Index('idx_addresses_script_pubkey_exposed', 'script_type', 'is_public_key_exposed'),
        Index('idx_addresses_first_seen', 'first_seen_block_height'),
        Index('idx_addresses_extra_data', 'script_extra_data', postgresql_using='gin'),
    )


class AddressOutput(Base):
    """Output received by an address."""
    __tablename__ = 'address_outputs'

    output_id = Column(BigIdType, primary_key=True, autoincrement=True)
    address_id = Column(BigInteger, ForeignKey('addresses.address_id'), nullable=False)
    transaction_id = Column(BinaryType, nullable=False)
    block_height = Column(Integer, nullable=False)
    output_index = Column(Integer, nullable=False)
    value_satoshis = Column(BigInteger, nullable=False)
    is_spent = Column(Boolean, nullable=False, default=False)
    spending_input_id = Column(BigInteger)

    __table_args__ = (
        ForeignKeyConstraint(
            ['transaction_id', 'block_height'],
            ['transactions.transaction_id', 'transactions.block_height'],
        ),
        UniqueConstraint('transaction_id', 'block_height', 'output_index'),
        Index('idx_address_outputs_not_spent', 'transaction_id', 'output_index',
              postgresql_where=text("is_spent = false")),
        Index('idx_address_outputs_addr_tx', 'address_id', 'transaction_id'),
        Index('idx_address_outputs_address_spent', 'address_id', 'is_spent'),
        Index('idx_address_outputs_value', 'value_satoshis'),
        Index('idx_address_outputs_address_block', 'address_id', 'block_height'),
    )


class AddressInput(Base):
    """Input spending an address's output."""
    __tablename__ = 'address_inputs'

    input_id = Column(BigIdType, primary_key=True, autoincrement=True)
    address_id = Column(BigInteger, ForeignKey('addresses.address_id'), nullable=False)
    transaction_id = Column(BinaryType, nullable=False)
    block_height = Column(Integer, nullable=False)
    input_index = Column(Integer, nullable=False)
    spent_output_id = Column(BigInteger, ForeignKey('address_outputs.output_id'), nullable=False)
    value_satoshis = Column(BigInteger, nullable=False)
    public_key_revealed = Column(BinaryType)

    __table_args__ = (
        ForeignKeyConstraint(
            ['transaction_id', 'block_height'],
            ['transactions.transaction_id', 'transactions.block_height'],
        ),
        UniqueConstraint('transaction_id', 'block_height', 'input_index'),
        Index('idx_address_inputs_addr_tx', 'address_id', 'transaction_id'),
        Index('idx_address_inputs_spent_output', 'spent_output_id'),
        Index('idx_address_inputs_pubkey', 'public_key_revealed',
              postgresql_where=text("public_key_revealed IS NOT NULL")),
        Index('idx_address_inputs_address_block', 'address_id', 'block_height'),
    )
