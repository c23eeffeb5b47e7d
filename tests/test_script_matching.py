"""
Witness Matching Tests

Exercises the three OP_CAT detection strategies in ``catindexer.lib.script``
against synthetic witness stacks covering both script-path shapes (with and
without an annex), data pushes that merely contain 0x7e, and prevout
confirmation through a fake daemon.
"""

import pytest

from bitcoin.core import COutPoint, CTransaction, CTxIn, CTxInWitness, CTxOut, CTxWitness
from bitcoin.core.script import CScript, CScriptWitness

from catindexer.lib.script import (
    MatchStrategy,
    WitnessMatcher,
    disassemble,
    is_control_block,
    is_p2tr,
    tapscript_from_witness,
    tapscript_uses_opcode,
    witness_contains_byte,
    witness_stack,
)
from fakes import (
    ANNEX, CAT_SCRIPT, COMPRESSED_PUBKEY, CONTROL_BLOCK, DER_SIG, P2TR_SPK,
    P2WPKH_SPK, PLAIN_SCRIPT,
    PUSHED_CAT_SCRIPT, SCHNORR_SIG, FakeDaemon, funding_txid, make_cat_tx,
    make_funding_tx, make_plain_tx, make_tx,
)


class TestByteScan:

    def test_empty_witness(self):
        assert witness_contains_byte([]) is False

    def test_byte_anywhere(self):
        assert witness_contains_byte([SCHNORR_SIG, b'\x01\x7e\x02']) is True

    def test_no_byte(self):
        assert witness_contains_byte([SCHNORR_SIG, PLAIN_SCRIPT, CONTROL_BLOCK]) is False

    def test_false_positive_on_pushed_data(self):
        assert witness_contains_byte([PUSHED_CAT_SCRIPT, CONTROL_BLOCK]) is True


class TestTapscriptExtraction:

    def test_single_element_has_no_tapscript(self):
        assert tapscript_from_witness([CAT_SCRIPT]) is None

    def test_empty_stack(self):
        assert tapscript_from_witness([]) is None

    def test_script_and_control_block(self):
        assert tapscript_from_witness([CAT_SCRIPT, CONTROL_BLOCK]) == CAT_SCRIPT

    def test_script_with_arguments(self):
        stack = [SCHNORR_SIG, CAT_SCRIPT, CONTROL_BLOCK]
        assert tapscript_from_witness(stack) == CAT_SCRIPT

    def test_annex_is_skipped(self):
        stack = [CAT_SCRIPT, CONTROL_BLOCK, ANNEX]
        assert tapscript_from_witness(stack) == CAT_SCRIPT

    def test_annex_with_arguments(self):
        stack = [SCHNORR_SIG, CAT_SCRIPT, CONTROL_BLOCK, ANNEX]
        assert tapscript_from_witness(stack) == CAT_SCRIPT

    def test_key_path_with_annex(self):
        assert tapscript_from_witness([SCHNORR_SIG, ANNEX]) is None

    def test_lone_annex_tagged_element(self):
        assert tapscript_from_witness([ANNEX]) is None

    def test_segwit_v0_spend_has_no_tapscript(self):
        assert tapscript_from_witness([DER_SIG, COMPRESSED_PUBKEY]) is None

    def test_control_block_with_merkle_path(self):
        control = CONTROL_BLOCK + b'\x77' * 64
        assert tapscript_from_witness([CAT_SCRIPT, control]) == CAT_SCRIPT


class TestControlBlock:

    def test_minimal(self):
        assert is_control_block(CONTROL_BLOCK) is True

    def test_parity_bit_is_ignored(self):
        assert is_control_block(bytes([0xc1]) + CONTROL_BLOCK[1:]) is True

    def test_other_leaf_version(self):
        assert is_control_block(bytes([0xc2]) + CONTROL_BLOCK[1:]) is False

    def test_too_short(self):
        assert is_control_block(CONTROL_BLOCK[:-1]) is False
        assert is_control_block(b'') is False

    def test_partial_path_node(self):
        assert is_control_block(CONTROL_BLOCK + b'\x77' * 31) is False

    def test_path_too_long(self):
        assert is_control_block(CONTROL_BLOCK + b'\x77' * 32 * 129) is False
        assert is_control_block(CONTROL_BLOCK + b'\x77' * 32 * 128) is True

    def test_pubkey_is_not_a_control_block(self):
        assert is_control_block(COMPRESSED_PUBKEY) is False


class TestDisassemble:

    def test_opcodes(self):
        assert disassemble(CAT_SCRIPT) == 'OP_CAT OP_EQUAL'

    def test_push_is_hex(self):
        assert disassemble(PUSHED_CAT_SCRIPT) == '7e7e OP_EQUAL'

    def test_checksig_script(self):
        assert disassemble(PLAIN_SCRIPT) == '55' * 32 + ' OP_CHECKSIG'

    def test_op_0(self):
        assert disassemble(bytes([0x00, 0x7e])) == 'OP_0 OP_CAT'

    def test_truncated_push(self):
        assert disassemble(bytes([0x7e, 0x05, 0x01])) == 'OP_CAT [error]'

    def test_empty(self):
        assert disassemble(b'') == ''


class TestTapscriptIsolation:

    def test_single_element_no_match(self):
        assert tapscript_uses_opcode([CAT_SCRIPT]) is False

    def test_script_and_control_block_match(self):
        assert tapscript_uses_opcode([CAT_SCRIPT, CONTROL_BLOCK]) is True

    def test_annex_shape_match(self):
        assert tapscript_uses_opcode([SCHNORR_SIG, CAT_SCRIPT, CONTROL_BLOCK, ANNEX]) is True
        assert tapscript_uses_opcode([CAT_SCRIPT, CONTROL_BLOCK, ANNEX]) is True

    def test_annex_not_treated_as_script(self):
        cat_annex = bytes([0x50, 0x7e])
        stack = [PLAIN_SCRIPT, CONTROL_BLOCK, cat_annex]
        assert disassemble(cat_annex).split()[-1] == 'OP_CAT'
        assert tapscript_uses_opcode(stack) is False

    def test_pushed_byte_is_not_an_opcode(self):
        stack = [PUSHED_CAT_SCRIPT, CONTROL_BLOCK]
        assert witness_contains_byte(stack) is True
        assert tapscript_uses_opcode(stack) is False

    def test_cat_in_arguments_only(self):
        stack = [b'\x7e\x7e', PLAIN_SCRIPT, CONTROL_BLOCK]
        assert tapscript_uses_opcode(stack) is False

    def test_segwit_v0_signature_bytes_ignored(self):
        stack = [DER_SIG, COMPRESSED_PUBKEY]
        assert witness_contains_byte(stack) is True
        assert tapscript_uses_opcode(stack) is False


class TestP2TR:

    def test_p2tr(self):
        assert is_p2tr(P2TR_SPK) is True

    def test_p2wpkh(self):
        assert is_p2tr(P2WPKH_SPK) is False

    def test_wrong_length(self):
        assert is_p2tr(P2TR_SPK[:-1]) is False
        assert is_p2tr(b'') is False


class TestWitnessStack:

    def test_stack_per_input(self):
        tx = make_tx([SCHNORR_SIG], [CAT_SCRIPT, CONTROL_BLOCK])
        assert witness_stack(tx, 0) == [SCHNORR_SIG]
        assert witness_stack(tx, 1) == [CAT_SCRIPT, CONTROL_BLOCK]

    def test_no_witness(self):
        tx = make_funding_tx()
        assert witness_stack(tx, 0) == []


class TestWitnessMatcher:

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            WitnessMatcher('regex')

    def test_prevout_needs_daemon(self):
        with pytest.raises(ValueError):
            WitnessMatcher(MatchStrategy.PREVOUT)

    def test_strategies_disagree_on_pushed_byte(self):
        tx = make_tx([PUSHED_CAT_SCRIPT, CONTROL_BLOCK])
        assert WitnessMatcher(MatchStrategy.BYTESCAN).tx_matches(tx) is True
        assert WitnessMatcher(MatchStrategy.TAPSCRIPT).tx_matches(tx) is False
        assert WitnessMatcher(MatchStrategy.PREVOUT, FakeDaemon()).tx_matches(tx) is False

    def test_tapscript_match(self):
        matcher = WitnessMatcher(MatchStrategy.TAPSCRIPT)
        assert matcher.tx_matches(make_cat_tx()) is True
        assert matcher.tx_matches(make_plain_tx()) is False

    def test_match_on_second_input(self):
        tx = make_tx([SCHNORR_SIG], [SCHNORR_SIG, CAT_SCRIPT, CONTROL_BLOCK])
        matcher = WitnessMatcher(MatchStrategy.TAPSCRIPT)
        assert matcher.input_matches(tx, 0) is False
        assert matcher.input_matches(tx, 1) is True
        assert matcher.tx_matches(tx) is True

    def test_prevout_p2tr(self):
        daemon = FakeDaemon()
        matcher = WitnessMatcher(MatchStrategy.PREVOUT, daemon)
        assert matcher.tx_matches(make_cat_tx()) is True
        assert daemon.prevout_lookups == 1

    def test_prevout_rejects_non_taproot_spend(self):
        daemon = FakeDaemon()
        daemon.prev_txs[funding_txid(0)] = make_funding_tx(P2WPKH_SPK)
        matcher = WitnessMatcher(MatchStrategy.PREVOUT, daemon)
        assert matcher.tx_matches(make_cat_tx()) is False
        assert WitnessMatcher(MatchStrategy.TAPSCRIPT).tx_matches(make_cat_tx()) is True

    def test_prevout_prefilter_skips_lookups(self):
        daemon = FakeDaemon()
        matcher = WitnessMatcher(MatchStrategy.PREVOUT, daemon)
        assert matcher.tx_matches(make_plain_tx()) is False
        assert daemon.prevout_lookups == 0

    def test_prevout_index_out_of_range(self):
        daemon = FakeDaemon()
        daemon.prev_txs[funding_txid(0)] = make_funding_tx(count=1)
        tx = make_tx([SCHNORR_SIG, CAT_SCRIPT, CONTROL_BLOCK], prev_n=3)
        assert WitnessMatcher(MatchStrategy.PREVOUT, daemon).tx_matches(tx) is False

    def test_coinbase_input_never_confirms(self):
        vin = [CTxIn(COutPoint())]
        vout = [CTxOut(5000, CScript(P2TR_SPK))]
        wit = CTxWitness([CTxInWitness(CScriptWitness([CAT_SCRIPT, CONTROL_BLOCK]))])
        tx = CTransaction(vin, vout, 0, 2, wit)
        daemon = FakeDaemon()
        assert WitnessMatcher(MatchStrategy.PREVOUT, daemon).tx_matches(tx) is False
        assert daemon.prevout_lookups == 0

    def test_no_witness_never_matches(self):
        tx = make_funding_tx()
        for strategy in (MatchStrategy.BYTESCAN, MatchStrategy.TAPSCRIPT):
            assert WitnessMatcher(strategy).tx_matches(tx) is False
