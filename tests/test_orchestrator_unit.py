import pytest

from fakes import FakeNode, make_config
from ledgerload.domain.errors import IdentityMismatch, PhaseError, PreconditionError
from ledgerload.load.orchestrator import PHASE_FUNDING, PHASE_PREPARE, Orchestrator, RunState


def _orchestrator(ledger, sleeps, config=None, *, imposters=(), nodes=None):
    config = config or make_config()

    def factory(participant):
        reported = "imposter" if participant.node_id in imposters else None
        node = FakeNode(ledger, participant, reported_node_id=reported)
        if nodes is not None:
            nodes.append(node)
        return node

    return Orchestrator(config, client_factory=factory, sleep=sleeps)


def test_three_node_run_end_to_end(ledger, sleeps):
    config = make_config(3, transactions_per_node=10, outputs_per_transaction=5, worker_count=4)
    ledger.credit(config.funder.wallet, 1000)
    orchestrator = _orchestrator(ledger, sleeps, config)

    result = orchestrator.load()

    funding = ledger.submitted[0].payload["transaction_output_list"]
    assert [o["amount"] for o in funding] == [10, 10, 980]
    assert all(v >= 10 for v in orchestrator.starting_balances.values())
    assert len(orchestrator.starting_balances) == 3

    funder, first, second = orchestrator.sessions
    assert {a: r.queued_count for a, r in orchestrator.dispatch_reports.items()} == {
        s.address: 10 for s in orchestrator.sessions
    }
    # Nodes funded with exactly 10 end preparation with no change output, so their
    # last batch holds units at positions 0..4 and the spend of position 5 is refused.
    assert {a: r.success_count for a, r in orchestrator.dispatch_reports.items()} == {
        funder.address: 10,
        first.address: 9,
        second.address: 9,
    }
    assert len(ledger.rejected) == 2
    assert sum(o.amount for o in ledger.unspent("receiverkey")) == 28
    # 1 funding tx, 2 preparation rounds per node, 28 accepted spends
    assert len(ledger.submitted) == 1 + 3 * 2 + 28

    assert result.total_transactions == 30
    assert result.node_count == 3
    assert result.start_time <= result.end_time
    assert result.achieved_tps >= 0
    assert orchestrator.state == RunState.SUCCEEDED


def test_key_material_is_fetched_once_per_participant(ledger, sleeps):
    config = make_config(3)
    ledger.credit(config.funder.wallet, 1000)
    orchestrator = _orchestrator(ledger, sleeps, config)

    orchestrator.load()

    funder, first, second = orchestrator.sessions
    assert ledger.key_fetches[first.address] == 1
    assert ledger.key_fetches[second.address] == 1
    # the funder also signs the funding transaction
    assert ledger.key_fetches[funder.address] == 2


def test_result_reports_target_even_when_submissions_fail(ledger, sleeps):
    config = make_config(2)
    ledger.credit(config.funder.wallet, 1000)
    orchestrator = _orchestrator(ledger, sleeps, config)
    ledger.fail_submit = lambda signed: signed.payload["transaction_output_list"][0]["address_base"] == "receiverbase"

    result = orchestrator.load()

    assert sum(r.success_count for r in orchestrator.dispatch_reports.values()) == 0
    assert result.total_transactions == 20


def test_funding_failure_is_tagged_with_phase_and_funder(ledger, sleeps):
    orchestrator = _orchestrator(ledger, sleeps)

    with pytest.raises(PhaseError) as excinfo:
        orchestrator.load()

    assert excinfo.value.phase == PHASE_FUNDING
    assert excinfo.value.participant == orchestrator.sessions[0].address
    assert isinstance(excinfo.value.error, PreconditionError)
    assert orchestrator.state == RunState.FAILED


def test_preparation_failure_names_the_failing_node(ledger, sleeps):
    config = make_config(3)
    ledger.credit(config.funder.wallet, 1000)
    orchestrator = _orchestrator(ledger, sleeps, config, imposters={"node-2"})

    with pytest.raises(PhaseError) as excinfo:
        orchestrator.load()

    assert excinfo.value.phase == PHASE_PREPARE
    assert excinfo.value.participant == orchestrator.sessions[2].address
    assert isinstance(excinfo.value.error, IdentityMismatch)
    assert "node base2lalkey2" in str(excinfo.value)
    assert orchestrator.state == RunState.FAILED
    # phase 3 never starts
    assert orchestrator.dispatch_reports == {}


def test_participant_clients_are_closed_after_a_run(ledger, sleeps):
    config = make_config(2)
    ledger.credit(config.funder.wallet, 1000)
    nodes: list = []

    _orchestrator(ledger, sleeps, config, nodes=nodes).load()

    # one client per participant plus one per dispatch worker
    assert len(nodes) == 2 + 2 * config.worker_count
    assert all(n.closed for n in nodes)


def test_participant_clients_are_closed_after_a_failed_run(ledger, sleeps):
    nodes: list = []
    orchestrator = _orchestrator(ledger, sleeps, nodes=nodes)

    with pytest.raises(PhaseError):
        orchestrator.load()

    assert [n.closed for n in nodes] == [True, True, True]
