"""Output script classification.

Maps raw scriptPubKey bytes onto the closed nine-value script type taxonomy
and extracts the address identity and any public key the script reveals.
Recognition order is fixed: witness programs, then legacy hash templates,
then bare keys, then bare multisig, then the non-standard/unknown buckets.
"""

from typing import Any, Dict, List, Optional, Sequence
import structlog

from btc_exposure.models.blockchain import ClassifiedScript, ScriptType
from btc_exposure.utils.bitcoin import (
    OP_0, OP_1, OP_CHECKMULTISIG, OP_CHECKSIG, OP_DUP, OP_EQUAL,
    OP_EQUALVERIFY, OP_HASH160, OP_RETURN,
    ScriptOp, ScriptParseError, encode_segwit_address, hash160_to_p2pkh_address,
    hash160_to_p2sh_address, is_public_key_shaped, parse_script, script_template,
    sha256_hex, small_int_value,
)

logger = structlog.get_logger(__name__)

# Fingerprints longer than this are cut to keep script_extra_data small
MAX_TEMPLATE_OPS = 64

MAX_MULTISIG_KEYS = 16


class ScriptClassifier:
    """Stateless scriptPubKey classifier."""

    def __init__(self, hrp: str = "bc"):
        self.hrp = hrp
        self.logger = logger.bind(component="script_classifier")

    def classify(self, script: bytes) -> ClassifiedScript:
        """Classify an output script. Never raises."""
        script = bytes(script)

        witness = self._classify_witness_program(script)
        if witness is not None:
            return witness

        # P2PKH: OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG
        if (len(script) == 25 and
                script[0] == OP_DUP and
                script[1] == OP_HASH160 and
                script[2] == 0x14 and
                script[23] == OP_EQUALVERIFY and
                script[24] == OP_CHECKSIG):
            return ClassifiedScript(
                script_type=ScriptType.P2PKH,
                address=hash160_to_p2pkh_address(script[3:23]),
            )

        # P2SH: OP_HASH160 <20> OP_EQUAL
        if (len(script) == 23 and
                script[0] == OP_HASH160 and
                script[1] == 0x14 and
                script[22] == OP_EQUAL):
            return ClassifiedScript(
                script_type=ScriptType.P2SH,
                address=hash160_to_p2sh_address(script[2:22]),
            )

        # P2PK: <33|65-byte pubkey> OP_CHECKSIG
        if ((len(script) == 35 and script[0] == 0x21) or
                (len(script) == 67 and script[0] == 0x41)) and script[-1] == OP_CHECKSIG:
            pubkey = script[1:-1]
            return ClassifiedScript(
                script_type=ScriptType.P2PK,
                address=pubkey.hex(),
                public_key=pubkey,
                extra_data={
                    "pubkey_format": "compressed" if len(pubkey) == 33 else "uncompressed"
                },
            )

        try:
            ops = parse_script(script)
        except ScriptParseError as e:
            self.logger.debug("Unparseable output script", error=str(e), length=len(script))
            return self._unknown(script, None, reason=str(e))

        multisig = self._classify_multisig(script, ops)
        if multisig is not None:
            return multisig

        return self._classify_nonstandard(script, ops)

    def _classify_witness_program(self, script: bytes) -> Optional[ClassifiedScript]:
        # P2WPKH: OP_0 <20>
        if len(script) == 22 and script[0] == OP_0 and script[1] == 0x14:
            return ClassifiedScript(
                script_type=ScriptType.P2WPKH,
                address=encode_segwit_address(self.hrp, 0, script[2:]),
            )

        # P2WSH: OP_0 <32>
        if len(script) == 34 and script[0] == OP_0 and script[1] == 0x20:
            return ClassifiedScript(
                script_type=ScriptType.P2WSH,
                address=encode_segwit_address(self.hrp, 0, script[2:]),
            )

        # P2TR: OP_1 <32-byte tweaked output key>
        if len(script) == 34 and script[0] == OP_1 and script[1] == 0x20:
            output_key = script[2:]
            return ClassifiedScript(
                script_type=ScriptType.P2TR,
                address=encode_segwit_address(self.hrp, 1, output_key),
                public_key=output_key,
                extra_data={"key_type": "x-only"},
            )

        return None

    def _classify_multisig(self, script: bytes, ops: List[ScriptOp]) -> Optional[ClassifiedScript]:
        """Bare multisig: OP_m <pubkey>... OP_n OP_CHECKMULTISIG."""
        parsed = parse_multisig(ops)
        if parsed is None:
            return None

        m, pubkeys = parsed
        return ClassifiedScript(
            script_type=ScriptType.P2MS,
            address=_script_identity(ScriptType.P2MS, script),
            public_key=pubkeys[0],
            extra_data={
                "m": m,
                "n": len(pubkeys),
                "pubkeys": [key.hex() for key in pubkeys],
            },
        )

    def _classify_nonstandard(self, script: bytes, ops: List[ScriptOp]) -> ClassifiedScript:
        if not ops:
            return self._unknown(script, ops, reason="empty script")

        template = script_template(ops)
        extra: Optional[Dict[str, Any]] = None

        if (len(ops) > 5 and
                ops[0].opcode == OP_DUP and
                ops[1].opcode == OP_HASH160 and
                ops[2].is_push and len(ops[2].data) == 20 and
                ops[3].opcode == OP_EQUALVERIFY and
                ops[4].opcode == OP_CHECKSIG):
            extra = {"pattern": "p2pkh-plus", "extra_ops": template[5:MAX_TEMPLATE_OPS]}

        elif (len(ops) == 2 and
                _witness_version(ops[0].opcode) is not None and
                ops[1].is_push and 2 <= len(ops[1].data) <= 40 and
                len(script) == len(ops[1].data) + 2):
            extra = {
                "pattern": f"witness-v{_witness_version(ops[0].opcode)}",
                "program_length": len(ops[1].data),
            }

        elif ops[0].opcode == OP_RETURN:
            data_length = sum(len(op.data) for op in ops[1:] if op.is_push)
            extra = {"pattern": "op-return", "data_length": data_length}

        elif ops[-1].opcode == OP_CHECKMULTISIG:
            extra = {"pattern": "multisig-like"}

        else:
            for position, op in enumerate(ops):
                if op.is_push and len(op.data) == 20:
                    extra = {"pattern": "hash160-push", "hash_position": position}
                    break
            else:
                for position, op in enumerate(ops):
                    if op.is_push and is_public_key_shaped(op.data):
                        extra = {"pattern": "pubkey-push", "pubkey_position": position}
                        break

        if extra is None:
            return self._unknown(script, ops, reason="no recognisable pattern")

        extra["script_ops"] = template[:MAX_TEMPLATE_OPS]
        if len(template) > MAX_TEMPLATE_OPS:
            extra["truncated"] = True

        self.logger.debug("Non-standard script", pattern=extra["pattern"], ops=len(ops))
        return ClassifiedScript(
            script_type=ScriptType.NON_STANDARD,
            address=_script_identity(ScriptType.NON_STANDARD, script),
            extra_data=extra,
        )

    def _unknown(self, script: bytes, ops: Optional[List[ScriptOp]], reason: str) -> ClassifiedScript:
        extra: Dict[str, Any] = {"reason": reason, "script_length": len(script)}
        if ops:
            template = script_template(ops)
            extra["script_pattern"] = template[:MAX_TEMPLATE_OPS]
            if len(template) > MAX_TEMPLATE_OPS:
                extra["truncated"] = True
        return ClassifiedScript(
            script_type=ScriptType.UNKNOWN,
            address=_script_identity(ScriptType.UNKNOWN, script),
            extra_data=extra,
        )

    def extract_revealed_public_key(self, script_type: ScriptType, script_sig: bytes,
                                    witness: Sequence[bytes] = ()) -> Optional[bytes]:
        """
        Return the public key a spend reveals for a hash-locked output.

        Args:
            script_type: Type of the output being spent
            script_sig: Spending input's scriptSig
            witness: Spending input's witness stack

        Returns None for key-revealing types (p2pk, p2ms, p2tr), whose key
        is already known from the output script.
        """
        if script_type in (ScriptType.P2PKH, ScriptType.NON_STANDARD):
            return _key_from_signature_script(script_sig)

        if script_type == ScriptType.P2WPKH:
            return _key_from_witness(witness)

        if script_type == ScriptType.P2SH:
            pushes = _pushes_only(script_sig)
            if not pushes:
                return None
            redeem_script = pushes[-1]
            # Nested P2WPKH: scriptSig is a single push of OP_0 <20>
            if len(pushes) == 1 and len(redeem_script) == 22 and redeem_script[:2] == b'\x00\x14':
                return _key_from_witness(witness)
            # Nested P2WSH: OP_0 <32>, the witness script is the last stack item
            if len(pushes) == 1 and len(redeem_script) == 34 and redeem_script[:2] == b'\x00\x20':
                if not witness:
                    return None
                return _key_from_embedded_script(witness[-1])
            return _key_from_embedded_script(redeem_script)

        if script_type == ScriptType.P2WSH:
            if not witness:
                return None
            return _key_from_embedded_script(witness[-1])

        return None


def parse_multisig(ops: List[ScriptOp]) -> Optional[tuple]:
    """Return (m, pubkeys) for a well-formed bare multisig op list."""
    if len(ops) < 4 or ops[-1].opcode != OP_CHECKMULTISIG:
        return None

    m = small_int_value(ops[0].opcode)
    n = small_int_value(ops[-2].opcode)
    if m is None or n is None or not (1 <= m <= n <= MAX_MULTISIG_KEYS):
        return None

    key_ops = ops[1:-2]
    if len(key_ops) != n:
        return None
    if not all(op.is_push and len(op.data) in (33, 65) for op in key_ops):
        return None

    return m, [op.data for op in key_ops]


def _witness_version(opcode: int) -> Optional[int]:
    """Witness version pushed by OP_0 or OP_1..OP_16."""
    if opcode == OP_0:
        return 0
    return small_int_value(opcode)


def _script_identity(script_type: ScriptType, script: bytes) -> str:
    """Identity for scripts without a standard address encoding."""
    return f"{script_type.value}:{sha256_hex(script)}"


def _pushes_only(script: bytes) -> Optional[List[bytes]]:
    """Push data of a push-only script, None otherwise."""
    try:
        ops = parse_script(script)
    except ScriptParseError:
        return None
    if not all(op.is_push for op in ops):
        return None
    return [op.data for op in ops]


def _key_from_signature_script(script_sig: bytes) -> Optional[bytes]:
    """<signature> <pubkey>"""
    pushes = _pushes_only(script_sig)
    if pushes is None or len(pushes) != 2:
        return None
    if is_public_key_shaped(pushes[1]):
        return pushes[1]
    return None


def _key_from_witness(witness: Sequence[bytes]) -> Optional[bytes]:
    """[signature, pubkey]"""
    if len(witness) != 2:
        return None
    if len(witness[1]) == 33 and is_public_key_shaped(witness[1]):
        return bytes(witness[1])
    return None


def _key_from_embedded_script(script: bytes) -> Optional[bytes]:
    """First key of a p2pk or multisig redeem/witness script."""
    if ((len(script) == 35 and script[0] == 0x21) or
            (len(script) == 67 and script[0] == 0x41)) and script[-1] == OP_CHECKSIG:
        return bytes(script[1:-1])
    try:
        ops = parse_script(script)
    except ScriptParseError:
        return None
    parsed = parse_multisig(ops)
    if parsed is None:
        return None
    return parsed[1][0]
