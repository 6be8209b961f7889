"""Canonical address records."""

from typing import Dict, Optional
from sqlalchemy.orm import Session
import structlog

from btc_exposure.models.blockchain import ClassifiedScript
from btc_exposure.database.models import Address
from btc_exposure.core.exceptions import ScriptTypeMismatchError

logger = structlog.get_logger(__name__)


class AddressResolver:
    """Creates or fetches address rows for classified scripts.

    One resolver lives for one block's session. Its cache makes
    create-or-fetch atomic per address string within the block.
    """

    def __init__(self, session: Session):
        self.session = session
        self.logger = logger.bind(component="address_resolver")
        self._cache: Dict[str, Address] = {}
        self.created_count = 0
        self.exposed_on_creation = 0

    def resolve(self, classified: ClassifiedScript, height: int,
                txid: Optional[str] = None, index: Optional[int] = None) -> Address:
        """Return the address row for a classified script, creating it on first sight."""
        address = self._cache.get(classified.address)
        if address is None:
            address = (self.session.query(Address)
                       .filter_by(address_string=classified.address)
                       .first())

        if address is None:
            address = self._create(classified, height)
        elif address.script_type != classified.script_type.value:
            raise ScriptTypeMismatchError(
                f"Address {classified.address} stored as {address.script_type}, "
                f"classified as {classified.script_type.value}",
                height=height, txid=txid, index=index,
            )

        self._cache[classified.address] = address
        return address

    def _create(self, classified: ClassifiedScript, height: int) -> Address:
        address = Address(
            address_string=classified.address,
            script_type=classified.script_type.value,
            first_seen_block_height=height,
            total_receive_count=0,
            total_spend_count=0,
            is_public_key_exposed=classified.exposes_public_key,
            public_key=classified.public_key,
            script_extra_data=classified.extra_data,
        )
        self.session.add(address)
        self.session.flush()  # assigns address_id

        self.created_count += 1
        if classified.exposes_public_key:
            self.exposed_on_creation += 1

        self.logger.debug("New address",
                          address=classified.address,
                          script_type=classified.script_type.value,
                          height=height,
                          exposed=classified.exposes_public_key)
        return address

    def get_by_id(self, address_id: int) -> Address:
        return self.session.get(Address, address_id)

    @staticmethod
    def record_receive(address: Address) -> None:
        address.total_receive_count += 1

    @staticmethod
    def record_spend(address: Address) -> None:
        address.total_spend_count += 1
