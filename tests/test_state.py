import dataclasses

import pytest

from cdscan.models import ScanProjectInfo, ScanSnapshot
from cdscan.normalize import unify_all
from cdscan.state import ScanStateStore


@pytest.fixture
def store():
    return ScanStateStore()


def test_initial_snapshot(store):
    snap = store.snapshot()
    assert snap == ScanSnapshot()
    assert snap.last_scan_state == "N/A"
    assert not store.is_loading
    assert store.error is None
    assert store.total_vulnerabilities == 0


def test_snapshot_is_immutable(store):
    with pytest.raises(dataclasses.FrozenInstanceError):
        store.snapshot().is_loading = True


def test_set_loading_clears_error_and_records_branch(store):
    store.set_error("old")
    store.set_loading(True, branch="main")
    assert store.is_loading
    assert store.error is None
    assert store.current_branch == "main"


def test_set_loading_discards_previous_results(store, raw):
    store.update_results(unify_all("sast", [raw.sast("a")]), [], unify_all("sca", [raw.sca("b")]))
    seen = []
    store.add_listener(lambda: seen.append(store.snapshot()))

    store.set_loading(True, branch="dev")

    assert len(seen) == 1
    assert seen[0] == ScanSnapshot(is_loading=True, current_branch="dev")


def test_set_error_after_loading_notifies_once(store, raw):
    store.update_results(unify_all("sast", [raw.sast("a")]), [], [])
    store.set_loading(True)
    seen = []
    store.add_listener(lambda: seen.append(store.snapshot()))

    store.set_error("X")

    assert len(seen) == 1
    snap = seen[0]
    assert snap.error == "X"
    assert not snap.is_loading
    assert snap.sast == snap.iac == snap.sca == ()
    assert snap.total_vulnerabilities == 0


def test_update_results_totals_and_state(store, raw):
    sast = unify_all("sast", [raw.sast("a"), raw.sast("b")])
    sca = unify_all("sca", [raw.sca("c")])
    store.set_loading(True)

    store.update_results(sast, [], sca, ScanProjectInfo(scan_id="s1", state="COMPLETED_DEGRADED"))

    assert store.total_vulnerabilities == 3
    assert store.last_scan_state == "COMPLETED_DEGRADED"
    assert not store.is_loading
    assert [v.id for v in store.sast_results] == ["a", "b"]
    assert store.iac_results == ()
    assert len(store.sca_results) == 1


def test_update_results_without_scan_info_is_completed(store):
    store.update_results([], [], [])
    assert store.last_scan_state == "COMPLETED"


def test_listeners_called_in_registration_order(store):
    order = []
    store.add_listener(lambda: order.append("first"))
    store.add_listener(lambda: order.append("second"))
    store.set_loading(True)
    assert order == ["first", "second"]


def test_listener_sees_final_state(store):
    seen = []
    store.add_listener(lambda: seen.append((store.is_loading, store.current_branch)))
    store.set_loading(True, branch="dev")
    assert seen == [(True, "dev")]


def test_unsubscribe_handle(store):
    calls = []
    unsubscribe = store.add_listener(lambda: calls.append(1))
    store.set_loading(True)
    unsubscribe()
    store.set_loading(False)
    assert calls == [1]
    # unknown listeners are ignored
    store.remove_listener(lambda: None)


def test_failing_listener_does_not_block_others(store):
    calls = []

    def bad():
        raise RuntimeError("listener bug")

    store.add_listener(bad)
    store.add_listener(lambda: calls.append(1))
    store.reset()
    assert calls == [1]


def test_summary_and_results_lookup(store, raw):
    store.update_results([], unify_all("iac", [raw.iac("i1")]), [])
    snap = store.snapshot()
    assert snap.summary()["counts"] == {"sast": 0, "iac": 1, "sca": 0}
    assert snap.results("iac")[0].id == "i1"
    with pytest.raises(ValueError):
        snap.results("dast")


def test_listener_errors_logged_only_when_verbose(capsys):
    def bad():
        raise RuntimeError("listener bug")

    quiet = ScanStateStore()
    quiet.add_listener(bad)
    quiet.reset()
    assert capsys.readouterr().err == ""

    loud = ScanStateStore(verbose=True)
    loud.add_listener(bad)
    loud.reset()
    assert "listener bug" in capsys.readouterr().err
