"""Bitcoin-specific utility functions."""

import hashlib
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Union
import base58
from embit import bech32


# Satoshis per Bitcoin
SATOSHIS_PER_BTC = Decimal('100000000')

# Base58check version bytes (mainnet)
P2PKH_VERSION = b'\x00'
P2SH_VERSION = b'\x05'

OP_0 = 0x00
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_PUSHDATA4 = 0x4e
OP_1NEGATE = 0x4f
OP_1 = 0x51
OP_16 = 0x60
OP_RETURN = 0x6a
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xa9
OP_CHECKSIG = 0xac
OP_CHECKMULTISIG = 0xae

OPCODE_NAMES = {
    0x00: "OP_0", 0x4c: "OP_PUSHDATA1", 0x4d: "OP_PUSHDATA2", 0x4e: "OP_PUSHDATA4",
    0x4f: "OP_1NEGATE", 0x50: "OP_RESERVED",
    0x61: "OP_NOP", 0x62: "OP_VER", 0x63: "OP_IF", 0x64: "OP_NOTIF", 0x65: "OP_VERIF",
    0x66: "OP_VERNOTIF", 0x67: "OP_ELSE", 0x68: "OP_ENDIF", 0x69: "OP_VERIFY", 0x6a: "OP_RETURN",
    0x6b: "OP_TOALTSTACK", 0x6c: "OP_FROMALTSTACK", 0x6d: "OP_2DROP", 0x6e: "OP_2DUP",
    0x6f: "OP_3DUP", 0x70: "OP_2OVER", 0x71: "OP_2ROT", 0x72: "OP_2SWAP", 0x73: "OP_IFDUP",
    0x74: "OP_DEPTH", 0x75: "OP_DROP", 0x76: "OP_DUP", 0x77: "OP_NIP", 0x78: "OP_OVER",
    0x79: "OP_PICK", 0x7a: "OP_ROLL", 0x7b: "OP_ROT", 0x7c: "OP_SWAP", 0x7d: "OP_TUCK",
    0x7e: "OP_CAT", 0x7f: "OP_SUBSTR", 0x80: "OP_LEFT", 0x81: "OP_RIGHT", 0x82: "OP_SIZE",
    0x83: "OP_INVERT", 0x84: "OP_AND", 0x85: "OP_OR", 0x86: "OP_XOR", 0x87: "OP_EQUAL",
    0x88: "OP_EQUALVERIFY", 0x89: "OP_RESERVED1", 0x8a: "OP_RESERVED2", 0x8b: "OP_1ADD",
    0x8c: "OP_1SUB", 0x8d: "OP_2MUL", 0x8e: "OP_2DIV", 0x8f: "OP_NEGATE", 0x90: "OP_ABS",
    0x91: "OP_NOT", 0x92: "OP_0NOTEQUAL", 0x93: "OP_ADD", 0x94: "OP_SUB", 0x95: "OP_MUL",
    0x96: "OP_DIV", 0x97: "OP_MOD", 0x98: "OP_LSHIFT", 0x99: "OP_RSHIFT", 0x9a: "OP_BOOLAND",
    0x9b: "OP_BOOLOR", 0x9c: "OP_NUMEQUAL", 0x9d: "OP_NUMEQUALVERIFY", 0x9e: "OP_NUMNOTEQUAL",
    0x9f: "OP_LESSTHAN", 0xa0: "OP_GREATERTHAN", 0xa1: "OP_LESSTHANOREQUAL",
    0xa2: "OP_GREATERTHANOREQUAL", 0xa3: "OP_MIN", 0xa4: "OP_MAX", 0xa5: "OP_WITHIN",
    0xa6: "OP_RIPEMD160", 0xa7: "OP_SHA1", 0xa8: "OP_SHA256", 0xa9: "OP_HASH160",
    0xaa: "OP_HASH256", 0xab: "OP_CODESEPARATOR", 0xac: "OP_CHECKSIG",
    0xad: "OP_CHECKSIGVERIFY", 0xae: "OP_CHECKMULTISIG", 0xaf: "OP_CHECKMULTISIGVERIFY",
    0xb0: "OP_NOP1", 0xb1: "OP_CHECKLOCKTIMEVERIFY", 0xb2: "OP_CHECKSEQUENCEVERIFY",
    0xb3: "OP_NOP4", 0xb4: "OP_NOP5", 0xb5: "OP_NOP6", 0xb6: "OP_NOP7", 0xb7: "OP_NOP8",
    0xb8: "OP_NOP9", 0xb9: "OP_NOP10", 0xba: "OP_CHECKSIGADD",
}
for _n in range(1, 17):
    OPCODE_NAMES[OP_1 + _n - 1] = f"OP_{_n}"


class ScriptParseError(ValueError):
    """Script bytes end inside a push."""
    pass


@dataclass(frozen=True)
class ScriptOp:
    """One parsed script element: an opcode and, for pushes, its data."""
    opcode: int
    data: Optional[bytes] = None

    @property
    def is_push(self) -> bool:
        return self.data is not None

    @property
    def name(self) -> str:
        if self.data is not None and self.opcode != OP_0:
            return f"PUSH({len(self.data)} bytes)"
        return OPCODE_NAMES.get(self.opcode, f"OP_UNKNOWN_0x{self.opcode:02x}")


def parse_script(script: bytes) -> List[ScriptOp]:
    """Tokenize script bytes into opcodes and pushes.

    Raises ScriptParseError when a push runs past the end of the script.
    """
    ops = []
    i = 0
    length = len(script)

    while i < length:
        opcode = script[i]
        i += 1

        if opcode == OP_0:
            ops.append(ScriptOp(opcode, b''))
            continue

        if opcode < OP_PUSHDATA1:
            size = opcode
        elif opcode == OP_PUSHDATA1:
            if i + 1 > length:
                raise ScriptParseError("truncated OP_PUSHDATA1 length")
            size = script[i]
            i += 1
        elif opcode == OP_PUSHDATA2:
            if i + 2 > length:
                raise ScriptParseError("truncated OP_PUSHDATA2 length")
            size = int.from_bytes(script[i:i + 2], 'little')
            i += 2
        elif opcode == OP_PUSHDATA4:
            if i + 4 > length:
                raise ScriptParseError("truncated OP_PUSHDATA4 length")
            size = int.from_bytes(script[i:i + 4], 'little')
            i += 4
        else:
            ops.append(ScriptOp(opcode))
            continue

        if i + size > length:
            raise ScriptParseError(f"push of {size} bytes exceeds script length")
        ops.append(ScriptOp(opcode, bytes(script[i:i + size])))
        i += size

    return ops


def small_int_value(opcode: int) -> Optional[int]:
    """Value of OP_1..OP_16, None for any other opcode."""
    if OP_1 <= opcode <= OP_16:
        return opcode - OP_1 + 1
    return None


def script_template(ops: List[ScriptOp]) -> List[str]:
    """Op template fingerprint, e.g. ['OP_DUP', 'OP_HASH160', 'PUSH(20 bytes)', ...]."""
    return [op.name for op in ops]


def is_public_key_shaped(data: bytes) -> bool:
    """33-byte compressed or 65-byte uncompressed/hybrid SEC encoding."""
    if len(data) == 33:
        return data[0] in (0x02, 0x03)
    if len(data) == 65:
        return data[0] in (0x04, 0x06, 0x07)
    return False


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash160_to_address(hash160: bytes, version_byte: bytes) -> str:
    """Base58check encode a 20-byte hash with the given version byte."""
    return base58.b58encode_check(version_byte + hash160).decode('ascii')


def hash160_to_p2pkh_address(pubkey_hash: bytes) -> str:
    """Convert pubkey hash to P2PKH address."""
    return hash160_to_address(pubkey_hash, P2PKH_VERSION)


def hash160_to_p2sh_address(script_hash: bytes) -> str:
    """Convert script hash to P2SH address."""
    return hash160_to_address(script_hash, P2SH_VERSION)


def encode_segwit_address(hrp: str, witness_version: int, program: bytes) -> str:
    """Encode a witness program as bech32 (v0) or bech32m (v1+, BIP350)."""
    address = bech32.encode(hrp, witness_version, program)
    if address is None:
        raise ValueError(f"Cannot encode witness v{witness_version} program of {len(program)} bytes")
    return address


def satoshi_to_btc(satoshis: int) -> Decimal:
    """Convert satoshis to BTC."""
    return Decimal(satoshis) / SATOSHIS_PER_BTC


def btc_to_satoshi(btc: Union[Decimal, float, int, str]) -> int:
    """Convert a BTC amount to satoshis without float rounding."""
    if not isinstance(btc, Decimal):
        btc = Decimal(str(btc))
    satoshis = btc * SATOSHIS_PER_BTC
    if satoshis != satoshis.to_integral_value():
        raise ValueError(f"BTC amount {btc} is not a whole number of satoshis")
    return int(satoshis)


def calculate_fee(inputs_value: int, outputs_value: int) -> int:
    """Calculate transaction fee in satoshis."""
    return inputs_value - outputs_value
