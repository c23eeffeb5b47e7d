"""
Tapscript witness matching for OP_CAT detection.

Three detection strategies of increasing precision are supported:

- bytescan:  any witness element contains the raw 0x7e byte.  Cheap, and
             happy to match 0x7e inside pushed data.
- tapscript: isolate the leaf script of a BIP341 script-path spend (skipping
             the annex and control block), disassemble it and look for the
             OP_CAT mnemonic.
- prevout:   tapscript matching, pre-filtered by a raw byte scan over the
             serialized transaction, and confirmed by resolving the spent
             output and requiring it to be P2TR.

None of these execute script; they only pattern-match.
"""

from typing import List, Optional

from bitcoin.core import CTransaction, b2lx
from bitcoin.core.script import CScript, CScriptInvalidError, OPCODE_NAMES, OP_PUSHDATA4

from catindexer.lib import util


OP_CAT = 0x7e
OP_CAT_NAME = 'OP_CAT'

# BIP341: a final witness element starting with 0x50 is the annex
ANNEX_TAG = 0x50

# BIP341 control block: leaf version byte, internal key, then 0..128 path nodes
TAPROOT_LEAF_MASK = 0xfe
TAPROOT_LEAF_TAPSCRIPT = 0xc0
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32
TAPROOT_CONTROL_MAX_NODE_COUNT = 128

OP_1 = 0x51
P2TR_SCRIPT_LEN = 34


class MatchStrategy:
    BYTESCAN = 'bytescan'
    TAPSCRIPT = 'tapscript'
    PREVOUT = 'prevout'

    ALL = (BYTESCAN, TAPSCRIPT, PREVOUT)


def witness_stack(tx: CTransaction, vin_idx: int) -> List[bytes]:
    """Return the witness stack of an input, empty if it has none."""
    vtxinwit = tx.wit.vtxinwit
    if vin_idx >= len(vtxinwit):
        return []
    return [bytes(item) for item in vtxinwit[vin_idx].scriptWitness.stack]


def witness_contains_byte(stack: List[bytes], byte: int = OP_CAT) -> bool:
    """Byte-scan: True if any witness element contains `byte`."""
    if not stack:
        return False
    needle = bytes([byte])
    return any(needle in item for item in stack)


def tapscript_from_witness(stack: List[bytes]) -> Optional[bytes]:
    """
    Return the leaf script of a script-path spend, or None.

    Witness layout is [args..., script, control_block] with an optional
    trailing annex.  The annex is dropped first; the script is then the
    element immediately before the control block.  Stacks whose last
    element is not a tapscript control block (key-path and segwit v0
    spends) have no leaf script.
    """
    if len(stack) >= 2 and stack[-1][:1] == bytes([ANNEX_TAG]):
        stack = stack[:-1]
    if len(stack) < 2 or not is_control_block(stack[-1]):
        return None
    return stack[-2]


def is_control_block(data: bytes) -> bool:
    """True if `data` is shaped like a control block for a tapscript leaf."""
    size = len(data)
    if size < TAPROOT_CONTROL_BASE_SIZE:
        return False
    nodes, rem = divmod(size - TAPROOT_CONTROL_BASE_SIZE, TAPROOT_CONTROL_NODE_SIZE)
    if rem or nodes > TAPROOT_CONTROL_MAX_NODE_COUNT:
        return False
    return data[0] & TAPROOT_LEAF_MASK == TAPROOT_LEAF_TAPSCRIPT


def disassemble(script: bytes) -> str:
    """
    Disassemble a script to an assembly string.

    Opcodes are rendered by mnemonic, pushed data as hex.  A truncated push
    terminates the output with '[error]'.
    """
    ops = []
    try:
        for opcode, data, _sop_idx in CScript(script).raw_iter():
            if opcode == 0:
                ops.append('OP_0')
            elif opcode <= OP_PUSHDATA4:
                ops.append(data.hex())
            else:
                ops.append(OPCODE_NAMES.get(opcode, f'OP_UNKNOWN_{opcode:#04x}'))
    except CScriptInvalidError:
        ops.append('[error]')
    return ' '.join(ops)


def tapscript_uses_opcode(stack: List[bytes], name: str = OP_CAT_NAME) -> bool:
    """Tapscript isolation: True if the leaf script disassembles to `name`."""
    script = tapscript_from_witness(stack)
    if not script:
        return False
    return name in disassemble(script).split()


def is_p2tr(script_pubkey: bytes) -> bool:
    """True for a segwit v1 output script: OP_1 <32-byte key>."""
    return (len(script_pubkey) == P2TR_SCRIPT_LEN
            and script_pubkey[0] == OP_1 and script_pubkey[1] == 32)


class WitnessMatcher:
    """
    Decides whether a transaction spends through an OP_CAT tapscript.

    Pure apart from the `prevout` strategy, which reads the spent
    transaction from the daemon.
    """

    def __init__(self, strategy: str = MatchStrategy.PREVOUT, daemon=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        if strategy not in MatchStrategy.ALL:
            raise ValueError(f'unknown match strategy {strategy!r}')
        if strategy == MatchStrategy.PREVOUT and daemon is None:
            raise ValueError('the prevout strategy needs a daemon')
        self.strategy = strategy
        self.daemon = daemon

    def tx_matches(self, tx: CTransaction) -> bool:
        """True if any input of `tx` matches."""
        if self.strategy == MatchStrategy.PREVOUT:
            if bytes([OP_CAT]) not in tx.serialize():
                return False
        return any(self.input_matches(tx, vin_idx)
                   for vin_idx in range(len(tx.vin)))

    def input_matches(self, tx: CTransaction, vin_idx: int) -> bool:
        stack = witness_stack(tx, vin_idx)
        if not stack:
            return False
        if self.strategy == MatchStrategy.BYTESCAN:
            return witness_contains_byte(stack)
        if not tapscript_uses_opcode(stack):
            return False
        if self.strategy == MatchStrategy.TAPSCRIPT:
            return True
        return self._spends_p2tr(tx.vin[vin_idx])

    def _spends_p2tr(self, txin) -> bool:
        prevout = txin.prevout
        if prevout.is_null():
            return False
        prev_tx = self.daemon.get_raw_transaction(prevout.hash)
        if prevout.n >= len(prev_tx.vout):
            self.logger.warning(f'prevout index {prevout.n} out of range '
                                f'for {b2lx(prevout.hash)}')
            return False
        return is_p2tr(bytes(prev_tx.vout[prevout.n].scriptPubKey))
