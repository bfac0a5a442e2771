import pytest

from geocoin.sim.generator import TokenGenerator, token_for_roll, token_key
from geocoin.sim.grid import CellId
from geocoin.sim.luck import luck
from geocoin.sim.world import Token


def _value(roll: float) -> int | None:
    token = token_for_roll(roll)
    return token.value if token is not None else None


def test_spawn_table_thresholds() -> None:
    assert _value(0.0) is None
    assert _value(0.959) is None
    assert _value(0.96) == 2
    assert _value(0.975) == 2
    assert _value(0.976) == 4
    assert _value(0.99) == 4
    assert _value(0.991) == 8
    assert _value(0.997) == 8
    assert _value(0.998) == 16


def test_generator_hashes_cell_key_with_token_tag() -> None:
    seen: list[str] = []

    def recording_luck(key: str) -> float:
        seen.append(key)
        return 0.98

    generator = TokenGenerator(recording_luck)

    assert generator.generate(CellId(3, -4)) == Token(4)
    assert seen == ["3,-4,token"]
    assert token_key(CellId(3, -4)) == "3,-4,token"


def test_generator_is_deterministic_across_instances() -> None:
    first = TokenGenerator()
    second = TokenGenerator()
    cells = [CellId(i, j) for i in range(-10, 10) for j in range(-10, 10)]

    assert [first.generate(cell) for cell in cells] == [second.generate(cell) for cell in cells]
    assert [first.generate(cell) for cell in cells] == [first.generate(cell) for cell in cells]


def test_luck_stays_in_unit_interval() -> None:
    for index in range(2000):
        roll = luck(f"{index},{-index},token")
        assert 0.0 <= roll < 1.0


def test_token_density_roughly_matches_spawn_threshold() -> None:
    generator = TokenGenerator()
    cells = [CellId(i, j) for i in range(100) for j in range(100)]
    spawned = [token for token in (generator.generate(cell) for cell in cells) if token is not None]

    assert 0.02 < len(spawned) / len(cells) < 0.06
    assert {token.value for token in spawned} <= {2, 4, 8, 16}


def test_generator_rejects_out_of_range_luck() -> None:
    generator = TokenGenerator(lambda key: 1.0)

    with pytest.raises(ValueError, match="expected \\[0, 1\\)"):
        generator.generate(CellId(0, 0))
