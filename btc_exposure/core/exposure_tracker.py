"""Public key exposure on spend."""

from typing import Optional
import structlog

from btc_exposure.models.blockchain import KEY_REVEALING_TYPES, RawInput, ScriptType
from btc_exposure.database.models import Address, AddressInput
from btc_exposure.core.script_classifier import ScriptClassifier

logger = structlog.get_logger(__name__)


class ExposureTracker:
    """Records keys revealed by spending inputs.

    Key-revealing types (p2pk, p2ms, p2tr) are exposed when the address is
    created and are never touched here. For the others the first revealed
    key is stored on the address and never replaced.
    """

    def __init__(self, classifier: Optional[ScriptClassifier] = None):
        self.classifier = classifier or ScriptClassifier()
        self.logger = logger.bind(component="exposure_tracker")

    def on_input_resolved(self, address: Address, input_row: AddressInput,
                          raw_input: RawInput) -> bool:
        """Returns True when this input exposed the address for the first time."""
        script_type = ScriptType(address.script_type)
        if script_type in KEY_REVEALING_TYPES:
            return False

        revealed = self.classifier.extract_revealed_public_key(
            script_type, raw_input.script_sig, raw_input.witness
        )
        if revealed is None:
            return False

        input_row.public_key_revealed = revealed

        if address.is_public_key_exposed:
            return False

        address.is_public_key_exposed = True
        address.public_key = revealed

        self.logger.debug("Public key exposed by spend",
                          address=address.address_string,
                          script_type=script_type.value,
                          height=input_row.block_height)
        return True
