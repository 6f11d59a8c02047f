from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from ledgerload.domain.errors import LoadTestError, PreconditionError, StabilizationTimeout
from ledgerload.domain.models import ReceiverAmount, SignedTransaction
from ledgerload.load.policy import RetryPolicy, linear_backoff
from ledgerload.load.session import ParticipantSession, fetch_key_material
from ledgerload.load.transactions import build_transaction, select_outputs, sign_and_submit

logger = logging.getLogger(__name__)


class FundingCoordinator:
    """
    Seeds every participant from the funder and waits until all balances settle.

    Ledger settlement is asynchronous and unordered across participants, so the
    later phases only start once every balance has stopped moving.
    """

    def __init__(
        self,
        *,
        settle_seconds: float = 15.0,
        poll_policy: RetryPolicy | None = None,
        funder_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settle_seconds = float(settle_seconds)
        self.poll_policy = poll_policy or RetryPolicy(max_attempts=12, backoff=linear_backoff(2.0))
        self.funder_policy = funder_policy or RetryPolicy(max_attempts=10, backoff=linear_backoff(1.0))
        self._sleep = sleep

    def ensure_funds(
        self,
        funder: ParticipantSession,
        participants: Sequence[ParticipantSession],
        amount_per_participant: int,
    ) -> dict[str, int]:
        """Fund `participants` and return each node's settled starting balance (funder included)."""
        logger.info("Ensuring that all of the nodes have sufficient funds.")

        receivers = [ReceiverAmount(wallet=p.participant.wallet, amount=amount_per_participant) for p in participants]
        if receivers:
            tx = self._send_from_funder(funder, receivers)
            logger.info("Nodes funding transaction: %s.", tx.transaction_id)
        else:
            logger.info("No nodes to fund besides the funder; skipping funding transaction.")

        logger.info("Waiting for nodes to have stable balance. Sleeping %.0f seconds.", self.settle_seconds)
        self._sleep(self.settle_seconds)

        balances = self._wait_for_stable([funder, *participants])
        logger.info("Balances are stable. All nodes have sufficient funds.")
        return balances

    def _wait_for_funder(self, funder: ParticipantSession) -> None:
        policy = self.funder_policy
        for attempt in range(policy.max_attempts):
            delay = policy.delay(attempt)
            if delay > 0:
                self._sleep(delay)

            balance = funder.node.get_balance(funder.address)
            logger.info("Funder stable: %d. Unstable: %d", balance.stable, balance.unstable)
            if balance.unstable == 0:
                return

        raise StabilizationTimeout(f"Funder {funder.address} balance did not stabilize")

    def _send_from_funder(self, funder: ParticipantSession, receivers: list[ReceiverAmount]) -> SignedTransaction:
        self._wait_for_funder(funder)

        needed = sum(r.amount for r in receivers)
        outputs = funder.node.list_unspent_outputs(funder.participant.key_identifier)
        logger.info("Funder has %d outputs", len(outputs))
        if not outputs:
            raise PreconditionError("No outputs to consume")

        chosen = select_outputs(outputs, needed)
        total = sum(o.amount for o in chosen)
        logger.info("Chose %d outputs. Total chosen amount: %d. Needed: %d", len(chosen), total, needed)

        keys = fetch_key_material(funder.node, {o.address: o.address_key_identifier for o in chosen})
        unsigned = build_transaction(chosen, receivers, funder.participant.wallet)
        return sign_and_submit(funder.node, unsigned, keys)

    def _wait_for_stable(self, sessions: Sequence[ParticipantSession]) -> dict[str, int]:
        policy = self.poll_policy
        not_ready = ""
        for attempt in range(policy.max_attempts):
            delay = policy.delay(attempt)
            logger.info("Sleeping for %.0f seconds.", delay)
            if delay > 0:
                self._sleep(delay)

            balances: dict[str, int] = {}
            for session in sessions:
                address = session.address
                try:
                    balance = session.node.get_balance(address)
                except LoadTestError as e:
                    logger.error("Failed to get balance for %s: %s", address, e)
                    not_ready = address
                    break

                if not balance.is_ready:
                    logger.info(
                        "Address %s not settled. Stable: %d. Unstable: %d.",
                        address,
                        balance.stable,
                        balance.unstable,
                    )
                    not_ready = address
                    break

                logger.info("Address %s has %d stable.", address, balance.stable)
                balances[address] = balance.stable
            else:
                return balances

        logger.error("Balances failed to stabilise after %d rounds.", policy.max_attempts)
        raise StabilizationTimeout(
            f"Failed to stabilise after {policy.max_attempts} rounds (last pending: {not_ready})"
        )
