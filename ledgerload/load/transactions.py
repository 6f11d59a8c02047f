from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ledgerload.domain.errors import InvariantViolation, PreconditionError
from ledgerload.domain.models import (
    KeyMaterial,
    ReceiverAmount,
    SignedTransaction,
    TransactionInput,
    TransactionOutput,
    UnsignedTransaction,
    UnspentOutput,
    WalletAddress,
)
from ledgerload.ports.node import NodeAPI

logger = logging.getLogger(__name__)


def select_outputs(outputs: Iterable[UnspentOutput], target: int) -> list[UnspentOutput]:
    """Pick outputs by descending amount until their sum covers `target`."""
    if target <= 0:
        return []

    chosen: list[UnspentOutput] = []
    total = 0
    for output in sorted(outputs, key=lambda o: o.amount, reverse=True):
        chosen.append(output)
        total += output.amount
        if total >= target:
            return chosen

    raise PreconditionError(f"Insufficient funds: {total} available in {len(chosen)} outputs, {target} needed")


def input_from_output(output: UnspentOutput, input_position: int = 0) -> TransactionInput:
    return TransactionInput(
        output_transaction_id=output.transaction_id,
        output_shard_id=output.shard_id,
        output_position=output.output_position,
        address_base=output.address_key_identifier,
        address_key_identifier=output.address_key_identifier,
        output_transaction_date=output.transaction_date,
        input_position=input_position,
    )


def check_conservation(inputs: Sequence[UnspentOutput], unsigned: UnsignedTransaction) -> None:
    total_input = sum(o.amount for o in inputs)
    total_output = unsigned.output_total
    if total_input != total_output:
        raise InvariantViolation(f"Total input {total_input} vs total output {total_output}")


def build_transaction(
    inputs: Sequence[UnspentOutput],
    receivers: Sequence[ReceiverAmount],
    change_to: WalletAddress,
    *,
    change_first: bool = False,
) -> UnsignedTransaction:
    """
    Build an unsigned transaction spending `inputs` into `receivers`.

    Any surplus goes to a change output owned by `change_to`, placed first
    (position 0) or last. No change output is added when the surplus is zero.
    """
    needed = sum(r.amount for r in receivers)
    change = sum(o.amount for o in inputs) - needed
    if change < 0:
        raise InvariantViolation(f"Inputs short by {-change} for outputs totalling {needed}")

    receiver_outputs = [
        TransactionOutput(
            address_base=r.wallet.base,
            address_key_identifier=r.wallet.key_identifier,
            amount=r.amount,
        )
        for r in receivers
    ]

    outputs = list(receiver_outputs)
    if change > 0:
        change_output = TransactionOutput(
            address_base=change_to.key_identifier,
            address_key_identifier=change_to.key_identifier,
            amount=change,
        )
        if change_first:
            outputs.insert(0, change_output)
        else:
            outputs.append(change_output)

    unsigned = UnsignedTransaction(
        inputs=tuple(input_from_output(o, i) for i, o in enumerate(inputs)),
        outputs=tuple(outputs),
    )
    check_conservation(inputs, unsigned)
    return unsigned


def sign_and_submit(node: NodeAPI, unsigned: UnsignedTransaction, keys: KeyMaterial) -> SignedTransaction:
    signed = node.sign_transaction(unsigned, keys.private_keys, keys.public_keys)
    node.submit_transaction(signed)
    logger.debug("Submitted transaction %s (shard %s)", signed.transaction_id, signed.shard_id)
    return signed
