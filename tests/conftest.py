"""
Pytest configuration and fixtures for HTLC toolkit tests.

FakeChain is an in-memory chain backend that enforces the consensus rules the
contracts rely on: single spend of every output, lock-time finality, BIP68
relative locks, witness program commitments and signatures. FakeWallet is a
P2WPKH funding source on top of it.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from crypto.exceptions import InvalidSignatureError
from crypto.keys import PrivateKey, PublicKey, hash160, sha256
from crypto.signatures import ECDSASignature, verify_ecdsa, verify_schnorr
from transactions.address import address_to_script, script_to_address
from transactions.exceptions import BroadcastError, InsufficientFundsError, RejectionReason
from transactions.pipeline import Balance, ChainBackend, FundingSource, TransactionPipeline, Utxo
from transactions.script import (
    OP_0,
    OP_1,
    OP_16,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKSEQUENCEVERIFY,
    OP_CHECKSIG,
    OP_CHECKSIGVERIFY,
    OP_DROP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUALVERIFY,
    OP_IF,
    OP_SHA256,
    decode_script_number,
    parse_script,
)
from transactions.sighash import SIGHASH_ALL, SIGHASH_DEFAULT, segwit_v0_sighash, taproot_sighash
from transactions.taproot import TAPROOT_LEAF_MASK, calculate_tap_leaf_hash
from transactions.tx import (
    LOCKTIME_THRESHOLD,
    SEQUENCE_FINAL,
    SEQUENCE_LOCKTIME_DISABLE_FLAG,
    SEQUENCE_LOCKTIME_MASK,
    SEQUENCE_LOCKTIME_TYPE_FLAG,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from transactions.utils import (
    create_p2wpkh_script,
    estimate_vsize,
    is_p2tr,
    is_p2wpkh,
    is_p2wsh,
    p2wpkh_script_code,
)


class ScriptFailure(Exception):
    """Raised by the test interpreter when a script does not validate."""
    pass


def _truthy(element: bytes) -> bool:
    return decode_script_number(element) != 0 if element else False


class FakeChain(ChainBackend):
    """
    In-memory chain with a mempool.

    Broadcast transactions enter the mempool; mine() confirms them in the next
    block. Rejections carry the same reasons a node would report.
    """

    def __init__(self, height: int = 100):
        self.height = height
        self.transactions: Dict[str, Transaction] = {}
        self.confirmed_at: Dict[str, Optional[int]] = {}
        self.utxos: Dict[OutPoint, Tuple[TxOut, Optional[int]]] = {}
        self.broadcasts: List[Transaction] = []
        self._credit_counter = 0

    # Test helpers

    def mine(self, blocks: int = 1) -> int:
        """Confirm the mempool in the next block and advance the tip."""
        next_height = self.height + 1
        for txid, height in self.confirmed_at.items():
            if height is None:
                self.confirmed_at[txid] = next_height
        for outpoint, (tx_out, height) in list(self.utxos.items()):
            if height is None:
                self.utxos[outpoint] = (tx_out, next_height)
        self.height += blocks
        return self.height

    def credit(self, script_pubkey: bytes, value: int, confirmed: bool = True) -> OutPoint:
        """Create an output out of thin air, like a coinbase."""
        self._credit_counter += 1
        tx = Transaction(
            version=2,
            inputs=[TxIn(prevout=OutPoint('00' * 32, self._credit_counter))],
            outputs=[TxOut(value=value, script_pubkey=script_pubkey)],
        )
        height = self.height if confirmed else None
        self.transactions[tx.txid] = tx
        self.confirmed_at[tx.txid] = height
        outpoint = OutPoint(tx.txid, 0)
        self.utxos[outpoint] = (tx.outputs[0], height)
        return outpoint

    def is_unspent(self, outpoint: OutPoint) -> bool:
        return outpoint in self.utxos

    # ChainBackend

    def get_height(self) -> int:
        return self.height

    def get_tx(self, txid: str) -> Optional[Transaction]:
        return self.transactions.get(txid)

    def list_unspent(self, script_pubkey: bytes) -> List[Utxo]:
        result = []
        for outpoint, (tx_out, height) in self.utxos.items():
            if tx_out.script_pubkey == script_pubkey:
                confirmations = self.height - height + 1 if height is not None else 0
                result.append(Utxo(outpoint, tx_out.value, tx_out.script_pubkey, confirmations))
        return result

    def broadcast(self, tx: Transaction) -> str:
        txid = tx.txid
        self.broadcasts.append(tx)
        if txid in self.transactions:
            raise BroadcastError("txn-already-known", RejectionReason.ALREADY_KNOWN, txid)

        spent = []
        for tx_in in tx.inputs:
            if tx_in.prevout not in self.utxos:
                raise BroadcastError("bad-txns-inputs-missingorspent", RejectionReason.DOUBLE_SPEND, txid)
            spent.append(self.utxos[tx_in.prevout])

        if sum(o.value for o in tx.outputs) > sum(o.value for o, _ in spent):
            raise BroadcastError("bad-txns-in-belowout", RejectionReason.OTHER, txid)

        self._check_final(tx, txid)
        self._check_sequence_locks(tx, spent, txid)

        spent_outputs = [tx_out for tx_out, _ in spent]
        for index in range(len(tx.inputs)):
            try:
                self._verify_input(tx, index, spent_outputs)
            except ScriptFailure as e:
                raise BroadcastError(f"mandatory-script-verify-flag-failed ({e})",
                                     RejectionReason.OTHER, txid) from e

        for tx_in in tx.inputs:
            del self.utxos[tx_in.prevout]
        for vout, tx_out in enumerate(tx.outputs):
            self.utxos[OutPoint(txid, vout)] = (tx_out, None)
        self.transactions[txid] = tx
        self.confirmed_at[txid] = None
        return txid

    # Policy and consensus checks

    def _check_final(self, tx: Transaction, txid: str) -> None:
        if tx.locktime == 0 or all(i.sequence == SEQUENCE_FINAL for i in tx.inputs):
            return
        # The transaction would be mined in the next block, so height locks up to the tip pass
        if tx.locktime < LOCKTIME_THRESHOLD and tx.locktime > self.height:
            raise BroadcastError("non-final", RejectionReason.NON_FINAL, txid)

    def _check_sequence_locks(self, tx: Transaction, spent, txid: str) -> None:
        if tx.version < 2:
            return
        for tx_in, (_, height) in zip(tx.inputs, spent):
            if tx_in.sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
                continue
            if tx_in.sequence & SEQUENCE_LOCKTIME_TYPE_FLAG:
                raise BroadcastError("time-based relative locks unsupported", RejectionReason.OTHER, txid)
            required = tx_in.sequence & SEQUENCE_LOCKTIME_MASK
            confirmations = self.height - height + 1 if height is not None else 0
            if confirmations < required:
                raise BroadcastError("non-BIP68-final", RejectionReason.NON_FINAL, txid)

    def _verify_input(self, tx: Transaction, index: int, spent_outputs: List[TxOut]) -> None:
        script_pubkey = spent_outputs[index].script_pubkey
        witness = list(tx.inputs[index].witness)
        program = script_pubkey[2:]

        if is_p2wpkh(script_pubkey):
            if len(witness) != 2 or hash160(witness[1]) != program:
                raise ScriptFailure("witness program hash mismatch")
            digest = segwit_v0_sighash(tx, index, p2wpkh_script_code(program),
                                       spent_outputs[index].value, SIGHASH_ALL)
            if not self._check_ecdsa(witness[0], witness[1], digest):
                raise ScriptFailure("signature check failed")

        elif is_p2wsh(script_pubkey):
            if not witness or sha256(witness[-1]) != program:
                raise ScriptFailure("witness program hash mismatch")
            witness_script = witness[-1]

            def checksig(signature, pubkey):
                digest = segwit_v0_sighash(tx, index, witness_script, spent_outputs[index].value, SIGHASH_ALL)
                return self._check_ecdsa(signature, pubkey, digest)

            self._execute(witness_script, witness[:-1], tx, index, checksig)

        elif is_p2tr(script_pubkey):
            if len(witness) == 1:
                digest = taproot_sighash(tx, index, spent_outputs, SIGHASH_DEFAULT)
                if not self._check_schnorr(witness[0], program, digest):
                    raise ScriptFailure("invalid Schnorr signature")
                return

            if len(witness) < 2:
                raise ScriptFailure("empty witness")
            control_block = witness[-1]
            tapscript = witness[-2]
            leaf_version = control_block[0] & TAPROOT_LEAF_MASK
            leaf_hash = calculate_tap_leaf_hash(tapscript, leaf_version)
            internal_key = PublicKey(b'\x02' + control_block[1:33])
            output_key, parity = internal_key.taproot_tweak_public_key(leaf_hash)
            if output_key != program or parity != control_block[0] & 1:
                raise ScriptFailure("witness program mismatch")

            def checksig(signature, pubkey):
                digest = taproot_sighash(tx, index, spent_outputs, SIGHASH_DEFAULT, leaf_hash=leaf_hash)
                return self._check_schnorr(signature, pubkey, digest)

            self._execute(tapscript, witness[:-2], tx, index, checksig)

        else:
            raise ScriptFailure("unsupported output type")

    @staticmethod
    def _check_ecdsa(signature: bytes, pubkey: bytes, digest: bytes) -> bool:
        if not signature or signature[-1] != SIGHASH_ALL:
            return False
        try:
            parsed = ECDSASignature.from_der(signature[:-1])
        except InvalidSignatureError:
            return False
        # Relay policy only accepts low-S signatures
        return parsed.is_low_s and verify_ecdsa(PublicKey(pubkey), parsed, digest)

    @staticmethod
    def _check_schnorr(signature: bytes, xonly: bytes, digest: bytes) -> bool:
        return verify_schnorr(xonly, signature, digest)

    def _execute(self, script: bytes, stack: List[bytes], tx: Transaction, index: int, checksig) -> None:
        """Run the subset of Script used by the contracts."""
        stack = list(stack)
        executing = []  # one flag per open OP_IF

        def pop() -> bytes:
            if not stack:
                raise ScriptFailure("stack underflow")
            return stack.pop()

        for element in parse_script(script):
            active = all(executing)
            if not isinstance(element, bytes) and element in (OP_IF, OP_ELSE, OP_ENDIF):
                if element == OP_IF:
                    executing.append(_truthy(pop()) if active else False)
                elif not executing:
                    raise ScriptFailure("unbalanced conditional")
                elif element == OP_ELSE:
                    executing[-1] = all(executing[:-1]) and not executing[-1]
                else:
                    executing.pop()
                continue
            if not active:
                continue

            if isinstance(element, bytes):
                stack.append(element)
            elif element == OP_0:
                stack.append(b'')
            elif OP_1 <= element <= OP_16:
                stack.append(bytes([element - OP_1 + 1]))
            elif element == OP_SHA256:
                stack.append(sha256(pop()))
            elif element == OP_EQUALVERIFY:
                if pop() != pop():
                    raise ScriptFailure("OP_EQUALVERIFY failed")
            elif element == OP_DROP:
                pop()
            elif element in (OP_CHECKSIG, OP_CHECKSIGVERIFY):
                pubkey = pop()
                signature = pop()
                ok = bool(signature) and checksig(signature, pubkey)
                if element == OP_CHECKSIGVERIFY:
                    if not ok:
                        raise ScriptFailure("OP_CHECKSIGVERIFY failed")
                else:
                    stack.append(b'\x01' if ok else b'')
            elif element == OP_CHECKLOCKTIMEVERIFY:
                lock = decode_script_number(stack[-1])
                if tx.inputs[index].sequence == SEQUENCE_FINAL:
                    raise ScriptFailure("CLTV with final sequence")
                if (lock < LOCKTIME_THRESHOLD) != (tx.locktime < LOCKTIME_THRESHOLD) or lock > tx.locktime:
                    raise ScriptFailure("locktime requirement not satisfied")
            elif element == OP_CHECKSEQUENCEVERIFY:
                required = decode_script_number(stack[-1])
                sequence = tx.inputs[index].sequence
                if tx.version < 2 or sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
                    raise ScriptFailure("relative locktime disabled")
                if (sequence & SEQUENCE_LOCKTIME_MASK) < required:
                    raise ScriptFailure("relative locktime requirement not satisfied")
            else:
                raise ScriptFailure(f"unsupported opcode {element:#04x}")

        if executing:
            raise ScriptFailure("unbalanced conditional")
        if len(stack) != 1 or not _truthy(stack[-1]):
            raise ScriptFailure("script evaluated to false")


# Witness bytes per P2WPKH input: count + signature + pubkey
P2WPKH_WITNESS_WEIGHT = 1 + 1 + 72 + 1 + 33


class FakeWallet(FundingSource):
    """
    Single-key P2WPKH wallet spending from a FakeChain.

    Set ``finalize=False`` to simulate a signer that cannot complete.
    """

    def __init__(self, chain: FakeChain, private_key: Optional[PrivateKey] = None):
        self.chain = chain
        self.private_key = private_key or PrivateKey()
        self.pubkey = self.private_key.public_key()
        self.script_pubkey = create_p2wpkh_script(hash160(self.pubkey.bytes))
        self.address = script_to_address(self.script_pubkey, "regtest")
        self.finalize = True
        self.utxos: List[Utxo] = []
        self.sync_count = 0

    def sync(self) -> None:
        self.sync_count += 1
        self.utxos = self.chain.list_unspent(self.script_pubkey)

    def build(self, outputs: Sequence[Tuple[str, int]], fee_rate: int) -> Transaction:
        tx_outputs = [TxOut(amount, address_to_script(address)) for address, amount in outputs]
        target = sum(amount for _, amount in outputs)

        selected: List[Utxo] = []
        for utxo in sorted((u for u in self.utxos if u.confirmed), key=lambda u: -u.value):
            selected.append(utxo)
            scripts = [o.script_pubkey for o in tx_outputs] + [self.script_pubkey]
            fee = estimate_vsize(len(selected), scripts, P2WPKH_WITNESS_WEIGHT) * fee_rate
            total = sum(u.value for u in selected)
            if total >= target + fee:
                change = total - target - fee
                if change >= 330:
                    tx_outputs.append(TxOut(change, self.script_pubkey))
                return Transaction(
                    version=2,
                    inputs=[TxIn(prevout=u.outpoint) for u in selected],
                    outputs=tx_outputs,
                )

        raise InsufficientFundsError(target, sum(u.value for u in self.utxos if u.confirmed))

    def sign(self, tx: Transaction) -> Tuple[bool, Transaction]:
        signed = tx.copy()
        if not self.finalize:
            return False, signed
        values = {u.outpoint: u.value for u in self.utxos}
        script_code = p2wpkh_script_code(hash160(self.pubkey.bytes))
        for index, tx_in in enumerate(signed.inputs):
            digest = segwit_v0_sighash(signed, index, script_code, values[tx_in.prevout], SIGHASH_ALL)
            tx_in.witness = [self.private_key.sign(digest) + bytes([SIGHASH_ALL]), self.pubkey.bytes]
        return True, signed

    def balance(self) -> Balance:
        utxos = self.chain.list_unspent(self.script_pubkey)
        return Balance(
            confirmed=sum(u.value for u in utxos if u.confirmed),
            unconfirmed=sum(u.value for u in utxos if not u.confirmed),
        )


@pytest.fixture
def chain():
    """Fresh in-memory chain at height 100."""
    return FakeChain()


@pytest.fixture
def wallet(chain):
    """Wallet holding one confirmed 1 BTC output."""
    funded = FakeWallet(chain)
    chain.credit(funded.script_pubkey, 100_000_000)
    return funded


COIN = 100_000_000


@pytest.fixture
def admin(chain):
    """Faucet party holding one confirmed 10 BTC output."""
    party = FakeWallet(chain, PrivateKey.from_int(0xad01))
    chain.credit(party.script_pubkey, 10 * COIN)
    return party


@pytest.fixture
def maker(chain):
    """Party that locks funds in the HTLC. Starts empty."""
    return FakeWallet(chain, PrivateKey.from_int(0xad02))


@pytest.fixture
def taker(chain):
    """Party that claims the HTLC with the secret. Starts empty."""
    return FakeWallet(chain, PrivateKey.from_int(0xad03))


@pytest.fixture
def pipeline(chain):
    return TransactionPipeline(chain)


@pytest.fixture
def recipient_key():
    return PrivateKey.from_int(0x1111)


@pytest.fixture
def sender_key():
    return PrivateKey.from_int(0x2222)


@pytest.fixture
def destination():
    """A regtest P2WPKH address unrelated to the test wallets."""
    key = PrivateKey.from_int(0x3333)
    return script_to_address(create_p2wpkh_script(hash160(key.public_key().bytes)), "regtest")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: end-to-end scenarios against the in-memory chain")
    config.addinivalue_line("markers", "slow: long-running tests")


def pytest_collection_modifyitems(config, items):
    """Assign markers from the test's location."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        if "integration" in parts:
            item.add_marker(pytest.mark.integration)
        elif "unit" in parts:
            item.add_marker(pytest.mark.unit)
