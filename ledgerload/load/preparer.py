from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from ledgerload.domain.errors import PreconditionError
from ledgerload.domain.models import ReceiverAmount, SignedTransaction, UnspentOutput
from ledgerload.load.session import ParticipantSession
from ledgerload.load.transactions import build_transaction, sign_and_submit

logger = logging.getLogger(__name__)


def chain_root(previous: UnspentOutput, signed: SignedTransaction, spent: int) -> UnspentOutput:
    """
    Synthesize the change output of `signed` as the next root, without asking the ledger.

    This is optimistic: the next round spends an output the ledger may not have
    confirmed yet. The change output sits at position 0.
    """
    return replace(
        previous,
        transaction_id=signed.transaction_id,
        shard_id=signed.shard_id,
        output_position=0,
        amount=previous.amount - spent,
        transaction_date=0,
    )


class OutputPreparer:
    """Splits a participant's largest output into many unit outputs, one batch per round."""

    def __init__(
        self,
        session: ParticipantSession,
        *,
        cooldown_seconds: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.cooldown_seconds = float(cooldown_seconds)
        self._sleep = sleep

    def prepare_outputs(self, total_outputs: int, outputs_per_batch: int) -> list[SignedTransaction]:
        session = self.session
        node = session.node
        participant = session.participant

        logger.info(
            "[%s] Preparing %d outputs for the load test. %d outputs per transaction",
            session.address,
            total_outputs,
            outputs_per_batch,
        )
        node.verify_identity()

        outputs = node.list_unspent_outputs(participant.key_identifier)
        logger.info("[%s] Starting with %d available outputs.", session.address, len(outputs))
        if not outputs:
            raise PreconditionError("No outputs")

        root = max(outputs, key=lambda o: o.amount)
        if root.amount < total_outputs:
            raise PreconditionError(
                f"Insufficient fund in the biggest output: {root.amount} < {total_outputs}"
            )
        # Fill in the owner key identifier when the node left it blank.
        if not root.address_key_identifier:
            root = replace(root, address_key_identifier=participant.key_identifier)

        keys = session.obtain_key_material()
        receivers = [ReceiverAmount(wallet=participant.wallet, amount=1)] * outputs_per_batch

        # Remainder outputs (total_outputs % outputs_per_batch) are not prepared.
        rounds = total_outputs // outputs_per_batch
        batches: list[SignedTransaction] = []
        for i in range(1, rounds + 1):
            logger.info(
                "[%s] Round %d. Chose output on transaction %s position %d.",
                session.address,
                i,
                root.transaction_id,
                root.output_position,
            )
            unsigned = build_transaction([root], receivers, participant.wallet, change_first=True)
            signed = sign_and_submit(node, unsigned, keys)
            logger.info("[%s] Created transaction %s.", session.address, signed.transaction_id)
            batches.append(signed)
            root = chain_root(root, signed, outputs_per_batch)

        logger.info("[%s] Done preparing. Sleeping for %.0f seconds", session.address, self.cooldown_seconds)
        self._sleep(self.cooldown_seconds)

        # Settle read only; the refreshed set is not used.
        node.list_unspent_outputs(participant.key_identifier)
        return batches
