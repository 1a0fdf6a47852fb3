"""Tests for spread layout and navigation."""

from pathlib import Path

import pytest

from reader.layout import LayoutConfig, Page, PageLayoutEngine, ReadingDirection

TALL = (100, 150)
WIDE = (200, 150)


def _pages(*sizes):
    return [Page(i, Path(f"{i:03d}.jpg"), w, h) for i, (w, h) in enumerate(sizes)]


def _two_page(direction=ReadingDirection.RIGHT_TO_LEFT, cover_offset=True):
    return LayoutConfig(direction=direction, two_page_mode=True, cover_offset=cover_offset)


@pytest.fixture
def example():
    """P0 tall, P1 tall, P2 wide, P3 tall, P4 tall."""
    return _pages(TALL, TALL, WIDE, TALL, TALL)


def test_pairing_example(example):
    engine = PageLayoutEngine(example, _two_page())

    cover = engine.compute_layout(0)
    assert cover.center is example[0] and cover.step == 1

    before_wide = engine.compute_layout(1)
    assert before_wide.right is example[1] and before_wide.left is None
    assert before_wide.step == 1

    wide = engine.compute_layout(2)
    assert wide.center is example[2] and wide.step == 1

    pair = engine.compute_layout(3)
    assert pair.right is example[3] and pair.left is example[4]
    assert pair.step == 2


def test_out_of_range_layout_is_empty(example):
    engine = PageLayoutEngine(example, _two_page())

    assert engine.compute_layout(5).is_empty
    assert engine.compute_layout(-1).step == 0


def test_without_cover_offset_first_pages_pair():
    engine = PageLayoutEngine(_pages(TALL, TALL, TALL), _two_page(cover_offset=False))

    layout = engine.compute_layout(0)

    assert layout.is_pair
    assert layout.step == 2


def test_last_page_alone_is_solo(example):
    layout = PageLayoutEngine(example, _two_page()).compute_layout(4)

    assert layout.right is example[4]
    assert layout.step == 1


def test_placement_follows_direction(example):
    pair = PageLayoutEngine(example, _two_page()).compute_layout(3)

    assert pair.placement(ReadingDirection.RIGHT_TO_LEFT) == (example[4], example[3])
    assert pair.placement(ReadingDirection.LEFT_TO_RIGHT) == (example[3], example[4])
    assert pair.pages == [example[3], example[4]]


def test_vertical_never_pairs(example):
    engine = PageLayoutEngine(example, _two_page(direction=ReadingDirection.VERTICAL))

    for index in range(len(example)):
        layout = engine.compute_layout(index)
        assert layout.center is example[index]
        assert layout.step == 1


def test_single_page_mode_steps_one_at_a_time(example):
    engine = PageLayoutEngine(example, LayoutConfig(two_page_mode=False))

    assert engine.navigate_next() == 1
    assert engine.navigate_next() == 2
    assert engine.navigate_previous() == 1
    assert engine.navigate_previous() == 0
    assert engine.navigate_previous() == 0


def test_round_trip_from_cover(example):
    engine = PageLayoutEngine(example, _two_page())

    assert engine.navigate_next() == 1
    assert engine.navigate_previous() == 0


def test_round_trip_through_clamped_end(example):
    engine = PageLayoutEngine(example, _two_page(), current_index=3)

    assert engine.navigate_next() == 4
    assert engine.navigate_previous() == 3


def test_forward_then_back_returns_from_every_page(example):
    engine = PageLayoutEngine(example, _two_page())

    for start in range(len(example) - 1):
        engine.jump_to(start)
        engine.navigate_next()
        assert engine.navigate_previous() == start


def test_backwards_walk_retraces_forward_spreads(example):
    engine = PageLayoutEngine(example, _two_page())
    forward = [engine.current_index]
    while engine.current_index != engine.last_index:
        forward.append(engine.navigate_next())

    backward = [engine.current_index]
    engine.jump_to(engine.last_index)
    while engine.current_index != 0:
        backward.append(engine.navigate_previous())

    assert forward == [0, 1, 2, 3, 4]
    assert backward == [4, 3, 2, 1, 0]


def test_previous_steps_over_wide_page():
    pages = _pages(TALL, TALL, TALL, WIDE, TALL, TALL)
    engine = PageLayoutEngine(pages, _two_page(), current_index=4)

    assert engine.navigate_previous() == 3
    assert engine.navigate_previous() == 1


def test_previous_at_start_stays_at_zero(example):
    engine = PageLayoutEngine(example, _two_page())

    assert engine.navigate_previous() == 0


def test_jump_clamps_and_offset_moves_one(example):
    engine = PageLayoutEngine(example, _two_page())

    assert engine.jump_to(99) == 4
    assert engine.jump_to(-3) == 0
    engine.jump_to(1)
    assert engine.offset_by_one() == 2


def test_progress_fraction(example):
    engine = PageLayoutEngine(example, _two_page(), current_index=4)

    assert engine.progress_fraction == 1.0
    assert PageLayoutEngine([], _two_page()).progress_fraction == 0.0


def test_empty_volume_navigation_is_a_no_op():
    engine = PageLayoutEngine([], _two_page())

    assert engine.navigate_next() == 0
    assert engine.navigate_previous() == 0
    assert engine.layout.is_empty


def test_page_size_is_read_lazily(tmp_path):
    from PIL import Image

    path = tmp_path / "001.png"
    Image.new("RGB", (300, 200)).save(path)
    page = Page(0, path)

    assert page.is_wide
    assert page.size == (300, 200)


def test_layout_config_from_reader_config():
    from bunko.config import ReaderConfig

    layout = LayoutConfig.from_reader_config(ReaderConfig(direction="ltr", two_page_mode=True))

    assert layout.direction == ReadingDirection.LEFT_TO_RIGHT
    assert layout.pairs_pages
