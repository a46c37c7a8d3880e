"""
Раскладка таймлайна.

Из уже отфильтрованных/отсортированных заявок считает простые числа для
отрисовки: видимый диапазон дат, по полосе на запись, разметку оси для
текущего масштаба, отметку "сегодня" и цели прокрутки.

Всё здесь: чистые функции от (items, today, zoom). Часы не читаются,
ничего не кэшируется: при любом изменении входа просто считаем заново.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

# --- Константы раскладки ---

EMPTY_PAST_PADDING_DAYS = 180
FUTURE_HORIZON_DAYS = 365
RANGE_PADDING_DAYS = 90
MIN_BAR_WIDTH_PX = 20

MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
WEEKDAY_LETTERS = ("M", "T", "W", "T", "F", "S", "S")


class ZoomLevel(Enum):
    COARSE = "month"
    MEDIUM = "week"
    FINE = "day"

    @classmethod
    def parse(cls, text: str) -> "ZoomLevel":
        """'month' / 'week' / 'day' или имя члена, без учёта регистра."""
        t = (text or "").strip().lower()
        for zoom in cls:
            if t in (zoom.value, zoom.name.lower()):
                return zoom
        raise ValueError(f"unknown zoom level: {text!r}")


PIXELS_PER_DAY = {
    ZoomLevel.COARSE: 4,
    ZoomLevel.MEDIUM: 8,
    ZoomLevel.FINE: 48,
}


# --- Типы ---

@dataclass(frozen=True)
class TimelineItem:
    item_id: object
    open_date: date
    due_date: date

    @classmethod
    def from_iso(cls, item_id, open_iso: str, due_iso: str) -> "TimelineItem":
        return cls(item_id, parse_day(open_iso), parse_day(due_iso))


@dataclass(frozen=True)
class TimeRange:
    start: date
    end: date

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days


@dataclass(frozen=True)
class BarGeometry:
    item_id: object
    left_px: int
    width_px: int
    row: int
    start_offset_days: int
    duration_days: int

    @property
    def center_px(self) -> float:
        return self.left_px + self.width_px / 2


@dataclass(frozen=True)
class Decoration:
    """Одна граница на оси: линия сетки и её подписи."""
    day: date
    offset_px: int
    width_px: int
    label: str
    weekday: Optional[str] = None
    month_label: Optional[str] = None
    year_label: Optional[str] = None
    is_today: bool = False


@dataclass(frozen=True)
class CurrentMarker:
    day: date
    offset_px: int
    label: str


# --- Даты ---

def parse_day(value: str) -> date:
    """
    Строка ISO-8601 (дата или дата+время) -> date.
    Время суток отбрасывается. На мусор: ValueError.
    """
    return date.fromisoformat(str(value).strip()[:10])


def days_between(start: date, end: date) -> int:
    return (end - start).days


def shift_days(d: date, days: int) -> date:
    """d + days, упирается в date.min / date.max вместо OverflowError."""
    try:
        return d + timedelta(days=days)
    except OverflowError:
        return date.max if days > 0 else date.min


def first_of_month(d: date) -> date:
    return d.replace(day=1)


def last_of_month(d: date) -> date:
    if d.month == 12:
        return d.replace(day=31)
    return date(d.year, d.month + 1, 1) - timedelta(days=1)


# --- Диапазон оси ---

def resolve_range(items: Sequence[TimelineItem], today: date) -> TimeRange:
    if not items:
        return TimeRange(
            start=first_of_month(shift_days(today, -EMPTY_PAST_PADDING_DAYS)),
            end=last_of_month(shift_days(today, FUTURE_HORIZON_DAYS)),
        )

    dates: List[date] = []
    for item in items:
        dates.append(item.open_date)
        dates.append(item.due_date)
    dates.append(first_of_month(today))
    dates.append(last_of_month(shift_days(today, FUTURE_HORIZON_DAYS)))

    earliest = min(dates)
    latest = max(dates)
    return TimeRange(
        start=first_of_month(shift_days(earliest, -RANGE_PADDING_DAYS)),
        end=last_of_month(shift_days(latest, RANGE_PADDING_DAYS)),
    )


def pixels_per_day(zoom: ZoomLevel) -> int:
    return PIXELS_PER_DAY[zoom]


# --- Геометрия ---

def compute_geometry(
    items: Sequence[TimelineItem],
    time_range: TimeRange,
    ppd: int,
) -> Tuple[BarGeometry, ...]:
    """
    По строке на запись, в порядке входа. Ширина не меньше MIN_BAR_WIDTH_PX:
    и нулевой срок, и дедлайн раньше открытия дают видимую полосу.
    """
    bars = []
    for row, item in enumerate(items):
        start_offset = days_between(time_range.start, item.open_date)
        duration = days_between(item.open_date, item.due_date)
        bars.append(
            BarGeometry(
                item_id=item.item_id,
                left_px=start_offset * ppd,
                width_px=max(duration * ppd, MIN_BAR_WIDTH_PX),
                row=row,
                start_offset_days=start_offset,
                duration_days=duration,
            )
        )
    return tuple(bars)


# --- Разметка оси ---

class AxisDecorations:
    """
    Линии сетки и подписи для одного масштаба.

    Каждый iter() запускает новый генератор: объект можно обходить
    сколько угодно раз.
    """

    def __init__(self, time_range: TimeRange, zoom: ZoomLevel, today: date):
        self.time_range = time_range
        self.zoom = zoom
        self.today = today
        self.ppd = pixels_per_day(zoom)

    def __iter__(self) -> Iterator[Decoration]:
        if self.zoom is ZoomLevel.COARSE:
            return self._months()
        if self.zoom is ZoomLevel.MEDIUM:
            return self._weeks()
        return self._days()

    def _offset(self, d: date) -> int:
        return days_between(self.time_range.start, d) * self.ppd

    def _months(self) -> Iterator[Decoration]:
        current = first_of_month(self.time_range.start)
        last_year = None
        while current <= self.time_range.end:
            month_end = last_of_month(current)
            year = str(current.year)
            yield Decoration(
                day=current,
                offset_px=self._offset(current),
                width_px=(days_between(current, month_end) + 1) * self.ppd,
                label=MONTH_ABBR[current.month - 1],
                year_label=year if year != last_year else None,
            )
            last_year = year
            if month_end >= self.time_range.end:
                break
            current = month_end + timedelta(days=1)

    def _weeks(self) -> Iterator[Decoration]:
        start = self.time_range.start
        current = shift_days(start, -start.weekday())
        last_month = None
        while current <= self.time_range.end:
            month = MONTH_ABBR[current.month - 1]
            week_end = shift_days(current, 6)
            yield Decoration(
                day=current,
                offset_px=self._offset(current),
                width_px=7 * self.ppd,
                label=f"{current.day}-{week_end.day}",
                month_label=month if month != last_month else None,
            )
            last_month = month
            if days_between(current, self.time_range.end) < 7:
                break
            current += timedelta(days=7)

    def _days(self) -> Iterator[Decoration]:
        current = self.time_range.start
        last_month = None
        while current <= self.time_range.end:
            month = MONTH_ABBR[current.month - 1]
            yield Decoration(
                day=current,
                offset_px=self._offset(current),
                width_px=self.ppd,
                label=str(current.day),
                weekday=WEEKDAY_LETTERS[current.weekday()],
                month_label=month if month != last_month else None,
                is_today=current == self.today,
            )
            last_month = month
            if current >= self.time_range.end:
                break
            current += timedelta(days=1)


# --- Сегодня и прокрутка ---

def today_offset_px(time_range: TimeRange, ppd: int, today: date) -> int:
    return days_between(time_range.start, today) * ppd


def current_marker(time_range: TimeRange, ppd: int, today: date) -> Optional[CurrentMarker]:
    offset = today_offset_px(time_range, ppd, today)
    if 0 <= offset <= time_range.total_days * ppd:
        return CurrentMarker(day=today, offset_px=offset, label=str(today.day))
    return None


def _viewport_ok(viewport_width) -> bool:
    if viewport_width is None:
        return False
    try:
        width = float(viewport_width)
    except (TypeError, ValueError):
        return False
    return math.isfinite(width) and width > 0


def initial_scroll_px(today_offset: float, viewport_width) -> float:
    """Прокрутка, при которой сегодня по центру. 0, если ширина окна неизвестна."""
    if not _viewport_ok(viewport_width):
        return 0
    return max(0, today_offset - float(viewport_width) / 2)


def scroll_to_item_px(bar: BarGeometry, viewport_width) -> float:
    if not _viewport_ok(viewport_width):
        return 0
    return max(0, bar.center_px - float(viewport_width) / 2)


# --- Полный проход ---

@dataclass(frozen=True)
class TimelineLayout:
    time_range: TimeRange
    zoom: ZoomLevel
    pixels_per_day: int
    width_px: int
    bars: Tuple[BarGeometry, ...]
    decorations: AxisDecorations
    marker: Optional[CurrentMarker]
    today_offset_px: int
    initial_scroll_px: float
    viewport_width: Optional[float] = None

    def bar_for(self, item_id) -> BarGeometry:
        for bar in self.bars:
            if bar.item_id == item_id:
                return bar
        raise KeyError(item_id)

    def scroll_to(self, item_id) -> float:
        return scroll_to_item_px(self.bar_for(item_id), self.viewport_width)


def build_layout(
    items: Iterable[TimelineItem],
    today: date,
    zoom: ZoomLevel,
    viewport_width: Optional[float] = None,
) -> TimelineLayout:
    items = tuple(items)
    ppd = pixels_per_day(zoom)
    time_range = resolve_range(items, today)
    offset = today_offset_px(time_range, ppd, today)
    return TimelineLayout(
        time_range=time_range,
        zoom=zoom,
        pixels_per_day=ppd,
        width_px=time_range.total_days * ppd,
        bars=compute_geometry(items, time_range, ppd),
        decorations=AxisDecorations(time_range, zoom, today),
        marker=current_marker(time_range, ppd, today),
        today_offset_px=offset,
        initial_scroll_px=initial_scroll_px(offset, viewport_width),
        viewport_width=viewport_width,
    )
