"""
Раскладка таймлайна: примеры и свойства.
"""

import math
from datetime import date, timedelta

import pytest
from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from core.timeline import (
    MIN_BAR_WIDTH_PX,
    AxisDecorations,
    TimelineItem,
    TimeRange,
    ZoomLevel,
    build_layout,
    compute_geometry,
    first_of_month,
    current_marker,
    initial_scroll_px,
    last_of_month,
    pixels_per_day,
    resolve_range,
)

TODAY = date(2024, 6, 15)


# =============================================================================
# STRATEGIES
# =============================================================================

days = st.dates(min_value=date(2000, 1, 1), max_value=date(2050, 12, 31))
zooms = st.sampled_from(list(ZoomLevel))


@composite
def timeline_items(draw, item_id=0):
    open_date = draw(days)
    duration = draw(st.integers(min_value=-30, max_value=400))
    return TimelineItem(item_id, open_date, open_date + timedelta(days=duration))


@composite
def item_lists(draw):
    n = draw(st.integers(min_value=0, max_value=8))
    return [draw(timeline_items(item_id=i)) for i in range(n)]


# =============================================================================
# EXAMPLES
# =============================================================================

def test_single_item_coarse_layout():
    item = TimelineItem(1, date(2024, 7, 1), date(2024, 7, 15))
    layout = build_layout([item], today=TODAY, zoom=ZoomLevel.COARSE)

    assert layout.time_range.start <= date(2024, 4, 1)
    assert layout.time_range.end >= date(2025, 4, 30)
    assert layout.time_range.start.day == 1

    bar = layout.bar_for(1)
    assert bar.width_px == 56
    assert bar.duration_days == 14
    assert bar.left_px == (date(2024, 7, 1) - layout.time_range.start).days * 4
    assert bar.row == 0


def test_empty_range_pads_past_and_future():
    r = resolve_range([], TODAY)
    assert r.start == date(2023, 12, 1)
    assert r.end == date(2025, 6, 30)


def test_zero_duration_gets_minimum_width():
    item = TimelineItem("a", date(2024, 7, 1), date(2024, 7, 1))
    layout = build_layout([item], today=TODAY, zoom=ZoomLevel.COARSE)
    assert layout.bar_for("a").width_px == MIN_BAR_WIDTH_PX


def test_due_before_open_is_clamped_not_rejected():
    item = TimelineItem("a", date(2024, 7, 10), date(2024, 7, 1))
    layout = build_layout([item], today=TODAY, zoom=ZoomLevel.FINE)
    bar = layout.bar_for("a")
    assert bar.duration_days == -9
    assert bar.width_px == MIN_BAR_WIDTH_PX


def test_from_iso_drops_time_of_day():
    item = TimelineItem.from_iso(7, "2024-07-01T10:30:00Z", " 2024-07-15 ")
    assert item.open_date == date(2024, 7, 1)
    assert item.due_date == date(2024, 7, 15)


def test_from_iso_rejects_garbage():
    with pytest.raises(ValueError):
        TimelineItem.from_iso(1, "soon", "2024-07-15")


@pytest.mark.parametrize("text,expected", [
    ("month", ZoomLevel.COARSE),
    ("Week", ZoomLevel.MEDIUM),
    (" day ", ZoomLevel.FINE),
    ("fine", ZoomLevel.FINE),
])
def test_zoom_parse(text, expected):
    assert ZoomLevel.parse(text) is expected


def test_zoom_parse_unknown():
    with pytest.raises(ValueError):
        ZoomLevel.parse("year")


def test_pixels_per_day_per_zoom():
    assert pixels_per_day(ZoomLevel.COARSE) == 4
    assert pixels_per_day(ZoomLevel.MEDIUM) == 8
    assert pixels_per_day(ZoomLevel.FINE) == 48


# --- Прокрутка ---

@pytest.mark.parametrize("offset,viewport,expected", [
    (5000, 1000, 4500),
    (300, 1000, 0),
    (5000, None, 0),
    (5000, 0, 0),
    (5000, -10, 0),
    (5000, float("nan"), 0),
    (5000, float("inf"), 0),
])
def test_initial_scroll(offset, viewport, expected):
    assert initial_scroll_px(offset, viewport) == expected


def test_scroll_to_item_centers_bar():
    items = [
        TimelineItem(1, date(2024, 7, 1), date(2024, 7, 15)),
        TimelineItem(2, date(2025, 3, 1), date(2025, 4, 1)),
    ]
    layout = build_layout(items, today=TODAY, zoom=ZoomLevel.FINE, viewport_width=1000)
    bar = layout.bar_for(2)
    assert layout.scroll_to(2) == bar.left_px + bar.width_px / 2 - 500


def test_scroll_to_unknown_item():
    layout = build_layout([], today=TODAY, zoom=ZoomLevel.COARSE, viewport_width=1000)
    with pytest.raises(KeyError):
        layout.scroll_to(42)


def test_marker_outside_range_is_absent():
    r = TimeRange(date(2024, 1, 1), date(2024, 3, 31))
    assert current_marker(r, 4, date(2024, 6, 1)) is None
    assert current_marker(r, 4, date(2023, 12, 31)) is None
    marker = current_marker(r, 4, date(2024, 1, 11))
    assert marker.offset_px == 40
    assert marker.label == "11"


# --- Разметка оси ---

def _months_between(r: TimeRange) -> int:
    return (r.end.year - r.start.year) * 12 + r.end.month - r.start.month + 1


def test_month_decorations_one_per_month():
    layout = build_layout([], today=TODAY, zoom=ZoomLevel.COARSE)
    decs = list(layout.decorations)
    assert len(decs) == _months_between(layout.time_range)
    assert decs[0].label == "Dec"
    assert decs[0].year_label == "2023"
    assert decs[1].year_label == "2024"
    assert decs[2].year_label is None
    assert decs[1].offset_px == 31 * 4
    assert decs[1].width_px == 31 * 4


def test_week_decorations_start_on_monday_before_range():
    r = TimeRange(date(2024, 3, 1), date(2024, 3, 31))  # пятница
    decs = list(AxisDecorations(r, ZoomLevel.MEDIUM, TODAY))
    assert decs[0].day == date(2024, 2, 26)
    assert decs[0].offset_px == -4 * 8
    assert decs[0].label == "26-3"
    assert decs[0].month_label == "Feb"
    assert decs[1].label == "4-10"
    assert decs[1].month_label == "Mar"
    assert decs[2].month_label is None
    assert all(d.width_px == 56 for d in decs)
    assert all(d.day.weekday() == 0 for d in decs)


def test_day_decorations_flag_today():
    r = TimeRange(date(2024, 5, 30), date(2024, 6, 20))
    decs = list(AxisDecorations(r, ZoomLevel.FINE, TODAY))
    assert len(decs) == r.total_days + 1
    assert [d.day for d in decs if d.is_today] == [TODAY]
    assert decs[0].weekday == "T"
    assert decs[0].month_label == "May"
    assert decs[2].month_label == "Jun"
    assert decs[3].month_label is None


def test_decorations_can_be_iterated_twice():
    layout = build_layout([], today=TODAY, zoom=ZoomLevel.MEDIUM)
    assert list(layout.decorations) == list(layout.decorations)


# --- Края календаря ---

def test_extreme_dates_saturate_range():
    items = [
        TimelineItem(1, date(1, 1, 5), date(2024, 7, 1)),
        TimelineItem(2, date(2024, 7, 1), date(9999, 12, 1)),
    ]
    layout = build_layout(items, today=TODAY, zoom=ZoomLevel.COARSE, viewport_width=1000)
    assert layout.time_range.start == date.min
    assert layout.time_range.end == date.max
    assert layout.bar_for(1).left_px == 4 * 4
    assert layout.marker is not None
    assert layout.scroll_to(2) >= 0


def test_empty_range_near_calendar_ends():
    assert resolve_range([], date(9999, 6, 1)).end == date.max
    assert resolve_range([], date(1, 3, 1)).start == date.min


def test_month_decorations_stop_at_last_month():
    r = TimeRange(date(9999, 11, 1), date.max)
    decs = list(AxisDecorations(r, ZoomLevel.COARSE, TODAY))
    assert [d.label for d in decs] == ["Nov", "Dec"]
    assert decs[-1].width_px == 31 * 4


def test_week_decorations_stop_at_last_week():
    r = TimeRange(date(9999, 12, 1), date.max)
    decs = list(AxisDecorations(r, ZoomLevel.MEDIUM, TODAY))
    assert (date.max - decs[-1].day).days < 7
    assert all(d.day.weekday() == 0 for d in decs)


def test_week_decorations_from_first_day():
    r = TimeRange(date.min, date(1, 2, 28))  # 0001-01-01 понедельник
    decs = list(AxisDecorations(r, ZoomLevel.MEDIUM, TODAY))
    assert decs[0].day == date.min
    assert decs[0].offset_px == 0


def test_day_decorations_stop_at_last_day():
    r = TimeRange(date(9999, 12, 25), date.max)
    decs = list(AxisDecorations(r, ZoomLevel.FINE, TODAY))
    assert len(decs) == 7
    assert decs[-1].day == date.max


# =============================================================================
# PROPERTIES
# =============================================================================

@given(item_lists(), days)
def test_range_covers_items_and_today(items, today):
    r = resolve_range(items, today)
    assert r.start.day == 1
    assert r.end == last_of_month(r.end)
    assert r.start <= today <= r.end
    for item in items:
        assert r.start <= item.open_date <= r.end
        assert r.start <= item.due_date <= r.end


@given(item_lists(), days, zooms)
def test_one_bar_per_item_in_input_order(items, today, zoom):
    layout = build_layout(items, today=today, zoom=zoom)
    assert [b.item_id for b in layout.bars] == [i.item_id for i in items]
    assert [b.row for b in layout.bars] == list(range(len(items)))
    for bar in layout.bars:
        assert bar.width_px >= MIN_BAR_WIDTH_PX
        assert bar.left_px == bar.start_offset_days * layout.pixels_per_day
        assert bar.left_px >= 0
        assert bar.left_px + bar.width_px <= layout.width_px + MIN_BAR_WIDTH_PX


@given(item_lists(), days)
def test_zoom_only_scales_positions(items, today):
    coarse = compute_geometry(items, resolve_range(items, today), 4)
    fine = compute_geometry(items, resolve_range(items, today), 48)
    for c, f in zip(coarse, fine):
        assert f.left_px == c.left_px * 12
        assert f.duration_days == c.duration_days


@given(item_lists(), days, zooms, st.floats(allow_nan=True, allow_infinity=True))
def test_scroll_never_negative(items, today, zoom, viewport):
    layout = build_layout(items, today=today, zoom=zoom, viewport_width=viewport)
    assert layout.initial_scroll_px >= 0
    assert math.isfinite(layout.initial_scroll_px)
    for item in items:
        assert layout.scroll_to(item.item_id) >= 0


@given(item_lists(), days, zooms)
def test_marker_always_inside_range(items, today, zoom):
    layout = build_layout(items, today=today, zoom=zoom)
    assert layout.marker is not None
    assert 0 <= layout.marker.offset_px <= layout.width_px
    assert layout.marker.offset_px == layout.today_offset_px


@given(item_lists(), days)
def test_range_pads_around_today(items, today):
    r = resolve_range(items, today)
    assert r.start <= first_of_month(today)
    assert r.end >= today + timedelta(days=365)


@given(item_lists(), days, zooms)
def test_later_open_is_never_left_of_earlier(items, today, zoom):
    layout = build_layout(items, today=today, zoom=zoom)
    for a, bar_a in zip(items, layout.bars):
        for b, bar_b in zip(items, layout.bars):
            if a.open_date < b.open_date:
                assert bar_a.left_px <= bar_b.left_px


@given(item_lists(), days)
def test_month_decorations_match_months_spanned(items, today):
    r = resolve_range(items, today)
    decs = list(AxisDecorations(r, ZoomLevel.COARSE, today))
    assert len(decs) == _months_between(r)


@composite
def any_items(draw):
    n = draw(st.integers(min_value=1, max_value=4))
    out = []
    for i in range(n):
        out.append(TimelineItem(i, draw(st.dates()), draw(st.dates())))
    return out


@given(any_items(), st.dates(), zooms)
def test_any_calendar_dates_lay_out(items, today, zoom):
    layout = build_layout(items, today=today, zoom=zoom, viewport_width=1000)
    assert layout.marker is not None
    assert layout.time_range.start <= today <= layout.time_range.end
    for item in items:
        assert layout.scroll_to(item.item_id) >= 0
