import pytest

from geocoin.sim.generator import TokenGenerator
from geocoin.sim.grid import CellId
from geocoin.sim.world import CellMemento, OverrideStore, Token, WorldState


def _luck_from_rolls(rolls: dict[tuple[int, int], float]):
    def lookup(key: str) -> float:
        i, j, _ = key.split(",")
        return rolls.get((int(i), int(j)), 0.0)

    return lookup


def _world(rolls: dict[tuple[int, int], float], now: list[int] | None = None) -> WorldState:
    clock_values = now if now is not None else [1000]
    store = OverrideStore(clock=lambda: clock_values[0])
    return WorldState(TokenGenerator(_luck_from_rolls(rolls)), store)


def test_reading_cells_never_grows_the_store() -> None:
    world = _world({(1, 1): 0.97})

    for i in range(-20, 20):
        for j in range(-20, 20):
            world.effective_token(CellId(i, j))

    assert len(world.store) == 0
    assert world.effective_token(CellId(1, 1)) == Token(2)


def test_memento_with_empty_token_overrides_generated_token() -> None:
    world = _world({(1, 1): 0.999})

    memento = world.set_cell_token(CellId(1, 1), None)

    assert memento == CellMemento(token=None, timestamp=1000)
    assert world.effective_token(CellId(1, 1)) is None
    assert world.is_modified(CellId(1, 1))


def test_set_stamps_clock_and_notifies_listeners() -> None:
    now = [5]
    world = _world({}, now)
    received: list[tuple[CellId, CellMemento]] = []

    def listener(cell: CellId, memento: CellMemento) -> None:
        received.append((cell, memento))

    world.store.add_listener(listener)
    now[0] = 42
    world.set_cell_token(CellId(0, 2), Token(8))
    world.store.remove_listener(listener)
    world.set_cell_token(CellId(0, 3), Token(8))

    assert received == [(CellId(0, 2), CellMemento(token=Token(8), timestamp=42))]


def test_export_is_sorted_and_import_replaces_contents() -> None:
    world = _world({})
    world.set_cell_token(CellId(2, 0), Token(4))
    world.set_cell_token(CellId(-1, 5), None)

    exported = world.store.export()
    assert [cell for cell, _ in exported] == [CellId(-1, 5), CellId(2, 0)]

    other = OverrideStore()
    other.set(CellId(9, 9), Token(2))
    other.import_entries(exported)

    assert other.export() == exported
    assert CellId(9, 9) not in other


def test_import_rejects_wrong_entry_types() -> None:
    store = OverrideStore()

    with pytest.raises(ValueError, match="keyed by CellId"):
        store.import_entries([((0, 0), CellMemento(token=None, timestamp=0))])
    with pytest.raises(ValueError, match="CellMemento values"):
        store.import_entries([(CellId(0, 0), Token(2))])


def test_evict_restores_generated_state() -> None:
    world = _world({(0, 0): 0.98})
    world.set_cell_token(CellId(0, 0), None)

    assert world.store.evict(CellId(0, 0)) is True
    assert world.store.evict(CellId(0, 0)) is False
    assert world.effective_token(CellId(0, 0)) == Token(4)


def test_token_rejects_values_that_are_not_powers_of_two() -> None:
    for value in (0, 1, 3, 12, -2):
        with pytest.raises(ValueError, match="power of two"):
            Token(value)
    with pytest.raises(ValueError, match="integer"):
        Token(True)
