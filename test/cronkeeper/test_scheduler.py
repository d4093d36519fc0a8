import pytest

from cronkeeper.access import DEPLOYER
from cronkeeper.errors import InvalidParam, NotAuthorized, NotFound
from cronkeeper.scheduler import Sequencer

OWNER = DEPLOYER


def _mapping(sequencer: Sequencer, ticks: int) -> list:
    return [sequencer.leader_at(tick) for tick in range(ticks)]


def test_exactly_one_leader_per_tick():
    sequencer = Sequencer()
    sequencer.add_participant("a", 3, caller=OWNER)
    sequencer.add_participant("b", 5, caller=OWNER)
    sequencer.add_participant("c", 2, caller=OWNER)
    total = sequencer.total_window()

    assert total == 10
    for tick in range(3 * total):
        leaders = [name for name in ("a", "b", "c") if sequencer.is_leader(name, tick)]
        assert len(leaders) == 1
        assert leaders[0] == sequencer.leader_at(tick)


def test_turns_follow_registration_order_and_windows():
    sequencer = Sequencer()
    sequencer.add_participant("a", 3, caller=OWNER)
    sequencer.add_participant("b", 5, caller=OWNER)
    sequencer.add_participant("c", 2, caller=OWNER)

    assert _mapping(sequencer, 10) == ["a"] * 3 + ["b"] * 5 + ["c"] * 2
    assert sequencer.leader_at(10) == "a"
    assert sequencer.leader_at(27) == "b"
    assert sequencer.slots() == [("a", 0, 3), ("b", 3, 8), ("c", 8, 10)]


def test_leader_is_stable_for_repeated_calls():
    sequencer = Sequencer()
    sequencer.add_participant("a", 4, caller=OWNER)
    sequencer.add_participant("b", 7, caller=OWNER)

    first = _mapping(sequencer, 50)
    assert _mapping(sequencer, 50) == first


def test_empty_schedule_has_no_leader():
    sequencer = Sequencer()

    assert sequencer.leader_at(0) is None
    assert sequencer.leader_at(12345) is None
    assert not sequencer.is_leader("a", 7)


def test_new_network_takes_over_its_window():
    sequencer = Sequencer()
    sequencer.add_participant("test", 1, caller=OWNER)
    sequencer.add_participant("test2", 100, caller=OWNER)

    assert sequencer.is_leader("test", 0)
    assert sequencer.is_leader("test2", 5)
    assert not sequencer.is_leader("test", 5)


def test_register_then_remove_restores_mapping():
    sequencer = Sequencer()
    sequencer.add_participant("a", 3, caller=OWNER)
    sequencer.add_participant("b", 4, caller=OWNER)
    before = _mapping(sequencer, 40)

    sequencer.add_participant("c", 6, caller=OWNER)
    assert _mapping(sequencer, 40) != before
    sequencer.remove_participant("c", caller=OWNER)

    assert _mapping(sequencer, 40) == before


def test_default_window_applies_when_omitted():
    sequencer = Sequencer(default_window=4)
    sequencer.add_participant("a", caller=OWNER)
    sequencer.set_default_window(6, caller=OWNER)
    sequencer.add_participant("b", caller=OWNER)

    assert sequencer.window_of("a") == 4
    assert sequencer.window_of("b") == 6
    assert sequencer.total_window() == 10


def test_set_window_changes_mapping_immediately():
    sequencer = Sequencer()
    sequencer.add_participant("a", 1, caller=OWNER)
    sequencer.add_participant("b", 1, caller=OWNER)
    assert sequencer.leader_at(1) == "b"

    sequencer.set_window("a", 5, caller=OWNER)

    assert sequencer.leader_at(1) == "a"
    assert sequencer.leader_at(5) == "b"


@pytest.mark.parametrize("window", [0, -1, True, 1.5])
def test_invalid_windows_are_rejected(window):
    sequencer = Sequencer()

    with pytest.raises(InvalidParam) as excinfo:
        sequencer.add_participant("a", window, caller=OWNER)
    assert excinfo.value.field == "window"
    assert len(sequencer) == 0


def test_invalid_names_and_duplicates_are_rejected():
    sequencer = Sequencer()
    sequencer.add_participant("a", 1, caller=OWNER)

    with pytest.raises(InvalidParam):
        sequencer.add_participant("", 1, caller=OWNER)
    with pytest.raises(InvalidParam):
        sequencer.add_participant("a", 2, caller=OWNER)
    with pytest.raises(InvalidParam):
        Sequencer(default_window=0)


def test_unknown_networks_raise_not_found():
    sequencer = Sequencer()

    with pytest.raises(NotFound):
        sequencer.remove_participant("ghost", caller=OWNER)
    with pytest.raises(NotFound):
        sequencer.set_window("ghost", 3, caller=OWNER)
    with pytest.raises(NotFound):
        sequencer.window_of("ghost")


def test_participants_returns_copies():
    sequencer = Sequencer()
    sequencer.add_participant("a", 2, caller=OWNER)

    snapshot = sequencer.participants()
    snapshot[0].window = 50

    assert sequencer.window_of("a") == 2
    assert "a" in sequencer


def test_membership_changes_require_owner():
    sequencer = Sequencer(owner="admin")
    sequencer.add_participant("maker", 10, caller="admin")
    sequencer.add_participant("gelato", 10, caller="admin")

    with pytest.raises(NotAuthorized):
        sequencer.set_window("gelato", 1000, caller="random-user")
    with pytest.raises(NotAuthorized):
        sequencer.remove_participant("maker")
    with pytest.raises(NotAuthorized):
        sequencer.add_participant("intruder", 5, caller="random-user")
    with pytest.raises(NotAuthorized):
        sequencer.set_default_window(1, caller="random-user")

    assert sequencer.leader_at(0) == "maker"
    assert sequencer.slots() == [("maker", 0, 10), ("gelato", 10, 20)]
    assert sequencer.default_window == 10


def test_schedule_without_explicit_owner_is_owned_by_deployer():
    sequencer = Sequencer()

    assert sequencer.owner == DEPLOYER
    with pytest.raises(NotAuthorized):
        sequencer.add_participant("a", 1)


def test_restore_reinstates_membership():
    sequencer = Sequencer()
    sequencer.add_participant("a", 3, caller=OWNER)
    saved = sequencer.snapshot()

    sequencer.set_window("a", 9, caller=OWNER)
    sequencer.add_participant("b", 2, caller=OWNER)
    sequencer.restore(saved)

    assert sequencer.slots() == [("a", 0, 3)]
