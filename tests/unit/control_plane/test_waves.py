"""Unit tests for conflict-free wave partitioning and adaptive slot sizing."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from loopwarden.control_plane.waves import (
    WaveItem,
    cap_for_milestone,
    get_adaptive_parallel_count,
    items_conflict,
    normalize_wave_path,
    partition_into_waves,
    paths_overlap,
)
from loopwarden.domain.models import Complexity, Ticket


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ("src/a", "src/a/b.py", True),
        ("src/a", "src/ab", False),
        ("src/**", "src/x.py", True),
        ("**", "docs/anything.md", True),
        ("./lib/", "lib", True),
        ("lib/*", "lib/x/y.py", True),
        ("docs", "src", False),
    ],
)
def test_paths_overlap(left: str, right: str, expected: bool) -> None:
    assert paths_overlap(left, right) is expected
    assert paths_overlap(right, left) is expected


def test_normalize_wave_path() -> None:
    assert normalize_wave_path("./src/utils/**") == "src/utils"
    assert normalize_wave_path("*") == ""
    assert normalize_wave_path("a/./b/") == "a/b"


def test_partition_is_greedy_first_fit() -> None:
    a = WaveItem("a", ("src/a.py",), "refactor")
    b = WaveItem("b", ("src/a.py",))
    c = WaveItem("c", ("docs/guide.md",), "docs")
    d = WaveItem("d", ("src/b.py",), "refactor")

    waves = partition_into_waves([a, b, c, d])

    assert [[item.id for item in wave] for wave in waves] == [["a", "c"], ["b", "d"]]
    assert items_conflict(a, d)
    assert not items_conflict(b, d)


def test_empty_input_yields_no_waves() -> None:
    assert partition_into_waves([]) == []


_PATHS = st.sampled_from(
    ["src", "src/a.py", "src/b.py", "src/lib", "src/lib/x.py", "docs", "docs/a.md", "tests/t.py"]
)
_ITEMS = st.lists(
    st.tuples(
        st.lists(_PATHS, min_size=1, max_size=3),
        st.sampled_from([None, "docs", "refactor"]),
    ),
    max_size=8,
)


@settings(max_examples=100, deadline=None)
@given(_ITEMS)
def test_waves_are_conflict_free_and_preserve_items(
    raw: list[tuple[list[str], str | None]],
) -> None:
    items = [
        WaveItem(f"item-{index}", tuple(files), category)
        for index, (files, category) in enumerate(raw)
    ]
    waves = partition_into_waves(items)

    flattened = [item.id for wave in waves for item in wave]
    assert sorted(flattened) == sorted(item.id for item in items)
    for wave in waves:
        for i, left in enumerate(wave):
            for right in wave[i + 1 :]:
                assert not items_conflict(left, right)
        assert [item.id for item in wave] == sorted(
            (item.id for item in wave), key=lambda name: int(name.split("-")[1])
        )


@pytest.mark.parametrize(
    ("complexities", "expected"),
    [
        (["trivial", "simple"], 5),
        (["complex", "moderate"], 2),
        (["simple", "complex"], 4),
        (["simple", "complex", "complex", "moderate"], 3),
        ([], 5),
    ],
)
def test_adaptive_parallel_count(complexities: list[str], expected: int) -> None:
    items = [WaveItem(f"i{index}", complexity=value) for index, value in enumerate(complexities)]
    assert get_adaptive_parallel_count(items) == expected


def test_milestone_cap() -> None:
    assert cap_for_milestone(5, 3) == 2
    assert cap_for_milestone(1, 2) == 1
    assert cap_for_milestone(5, 4) == 5
    assert cap_for_milestone(5, None) == 5


def test_wave_item_from_ticket() -> None:
    ticket = Ticket(
        id="tkt-1",
        project_id="p",
        title="Fix",
        category="docs",
        allowed_paths=["docs/**"],
        complexity=Complexity.TRIVIAL,
    )
    item = WaveItem.from_ticket(ticket, sector_path="docs")

    assert item.files == ("docs/**",)
    assert item.complexity == "trivial"
    assert item.payload is ticket
    with pytest.raises(ValueError):
        WaveItem("")
