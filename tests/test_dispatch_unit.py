import threading

import pytest

from fakes import FakeLedger, FakeNode, make_participant
from ledgerload.domain.models import KeyMaterial, SignedTransaction, WalletAddress
from ledgerload.load.dispatch import DispatchEngine
from ledgerload.load.policy import RetryPolicy
from ledgerload.load.session import ParticipantSession

RECEIVER = WalletAddress(base="receiverbase", key_identifier="receiverkey")
KEYS = KeyMaterial(private_keys={"key1": "priv"}, public_keys={"base1": "pub"})


def _batches(ledger: FakeLedger, count: int, units: int = 4) -> list[SignedTransaction]:
    owner = make_participant(1).wallet
    return [ledger.seed_batch(owner, f"batch-{i}", units) for i in range(count)]


def _engine(ledger, *, worker_count: int = 4, outputs_per_batch: int = 4, nodes: list | None = None):
    participant = make_participant(1)

    def factory(p):
        node = FakeNode(ledger, p)
        if nodes is not None:
            nodes.append(node)
        return node

    session = ParticipantSession(participant, FakeNode(ledger, participant))
    return DispatchEngine(
        session,
        receiver=RECEIVER,
        outputs_per_batch=outputs_per_batch,
        worker_count=worker_count,
        client_factory=factory,
        sign_policy=RetryPolicy(max_attempts=5),
        sleep=lambda s: None,
    )


def _spends(tx_id: str, position: int):
    def _match(unsigned) -> bool:
        spent = unsigned.inputs[0]
        return spent.output_transaction_id == tx_id and spent.output_position == position

    return _match


def test_build_work_expands_every_unit_output(ledger):
    work = _engine(ledger).build_work(_batches(ledger, 3))

    assert len(work) == 12
    assert [(w.inputs[0].output_transaction_id, w.inputs[0].output_position) for w in work[:5]] == [
        ("batch-0", 1),
        ("batch-0", 2),
        ("batch-0", 3),
        ("batch-0", 4),
        ("batch-1", 1),
    ]
    for unsigned in work:
        assert len(unsigned.inputs) == 1
        assert [(o.address_base, o.amount) for o in unsigned.outputs] == [("receiverbase", 1)]
        assert unsigned.inputs[0].address_key_identifier == "key1"


def test_send_transactions_submits_the_whole_queue(ledger):
    report = _engine(ledger).send_transactions(_batches(ledger, 3), KEYS)

    assert report.queued_count == 12
    assert report.success_count == 12
    assert report.worker_count == 4
    assert len(ledger.submitted_ids()) == 12
    assert report.tps >= 0


def test_results_do_not_depend_on_worker_count():
    outcomes = []
    for worker_count in (1, 2, 16):
        ledger = FakeLedger()
        report = _engine(ledger, worker_count=worker_count).send_transactions(_batches(ledger, 5), KEYS)
        outcomes.append((report.success_count, frozenset(ledger.submitted_ids())))

    assert outcomes[0][0] == 20
    assert outcomes[0] == outcomes[1] == outcomes[2]


def test_signing_failures_are_retried(ledger):
    lock = threading.Lock()
    failures = {"left": 2}
    target = _spends("batch-0", 2)

    def flaky(unsigned) -> bool:
        if not target(unsigned):
            return False
        with lock:
            if failures["left"]:
                failures["left"] -= 1
                return True
        return False

    ledger.fail_sign = flaky
    report = _engine(ledger).send_transactions(_batches(ledger, 3), KEYS)

    assert report.success_count == 12
    assert ledger.sign_calls == 14


def test_transaction_that_never_signs_is_skipped(ledger):
    ledger.fail_sign = _spends("batch-1", 3)

    report = _engine(ledger).send_transactions(_batches(ledger, 3), KEYS)

    assert report.success_count == 11
    assert ledger.sign_calls == 11 + 5


def test_submission_failure_stops_the_worker(ledger):
    ledger.fail_submit = lambda signed: signed.payload["transaction_input_list"][0]["output_position"] == 4

    report = _engine(ledger, worker_count=1).send_transactions(_batches(ledger, 3), KEYS)

    # FIFO with one worker: three sends succeed, the fourth aborts the only worker.
    assert report.success_count == 3
    assert report.queued_count == 12


def test_workers_that_cannot_open_a_session_send_nothing(ledger):
    ledger.fail_new_address = True

    report = _engine(ledger).send_transactions(_batches(ledger, 2), KEYS)

    assert report.success_count == 0
    assert ledger.submitted == []


def test_each_worker_uses_and_closes_its_own_client(ledger):
    nodes: list = []
    _engine(ledger, worker_count=3, nodes=nodes).send_transactions(_batches(ledger, 2), KEYS)

    assert len(nodes) == 3
    assert all(n.closed for n in nodes)


def test_empty_batches_produce_an_empty_report(ledger):
    report = _engine(ledger).send_transactions([], KEYS)

    assert report.queued_count == 0
    assert report.success_count == 0


def test_worker_count_must_be_positive(ledger):
    with pytest.raises(ValueError):
        _engine(ledger, worker_count=0)


def test_batch_without_change_output_loses_its_last_unit(ledger):
    # A batch that spent its root exactly holds its units at 0..K-1 with no change.
    owner = make_participant(1).wallet
    for position in range(4):
        ledger.credit(owner, 1, tx_id="exact-fit", position=position)
    batch = SignedTransaction(transaction_id="exact-fit", shard_id="shard-0")

    report = _engine(ledger, worker_count=2).send_transactions([batch], KEYS)

    assert report.queued_count == 4
    assert report.success_count == 3
    assert [s.payload["transaction_input_list"][0]["output_position"] for s in ledger.rejected] == [4]


def test_workers_close_their_client_when_session_setup_fails(ledger):
    nodes: list = []
    ledger.fail_new_address = True

    _engine(ledger, worker_count=3, nodes=nodes).send_transactions(_batches(ledger, 1), KEYS)

    assert len(nodes) == 3
    assert all(n.closed for n in nodes)
