"""
Отрисовка для чата.

Берёт готовую TimelineLayout и рисует окно шириной viewport_width пикселей
моноширинным текстом. Раскладку здесь не пересчитываем.
"""

from datetime import date
from html import escape
from typing import Dict, List, Optional

from .models import Application, DeadlineAlert
from .timeline import TimelineLayout, ZoomLevel, MONTH_ABBR

BAR_CHAR = "█"
EXPIRED_BAR_CHAR = "░"
EMPTY_CHAR = "·"
TODAY_CHAR = "|"
CLIPPED_LEFT = "◀"
CLIPPED_RIGHT = "▶"

STAGE_ICONS = {
    "To Apply": "⚪",
    "In Progress": "🟡",
    "Submitted": "🔵",
    "Done": "🟢",
}


def format_date(d: date) -> str:
    return f"{MONTH_ABBR[d.month - 1]} {d.day}, {d.year}"


def format_days_left(days: int) -> str:
    if days < 0:
        return f"expired {-days} d ago"
    if days == 0:
        return "due today"
    if days == 1:
        return "1 day left"
    return f"{days} days left"


# --- Карточки ---

def format_application(app: Application, today: date) -> str:
    org_label = "Granted by" if app.type == "scholarship" else "School"
    lines = [
        f"<b>#{app.id} {escape(app.name)}</b>",
        f"{STAGE_ICONS.get(app.stage, '⚪')} {escape(app.stage)} · {app.timeline_status} · {app.type}",
        f"{escape(app.country)} · {escape(app.region)}"
        + (f" · {org_label}: {escape(app.organization)}" if app.organization else ""),
        f"Opens: {format_date(app.application_open)}",
        f"Deadline: {format_date(app.deadline)} ({format_days_left(app.days_left(today))})",
    ]
    if app.notes:
        lines.append(f"\n{escape(app.notes)}")
    if app.link:
        lines.append(f'<a href="{escape(app.link, quote=True)}">View application</a>')
    if app.requirement_link:
        lines.append(f'<a href="{escape(app.requirement_link, quote=True)}">Requirements</a>')
    return "\n".join(lines)


def format_list(apps: List[Application], today: date, header: str = "Applications") -> str:
    if not apps:
        return f"{header}:\n\nNothing here yet."
    lines = [f"{header} (total: {len(apps)}):"]
    for app in apps:
        mark = " <i>(expired)</i>" if app.is_expired(today) else ""
        lines.append(
            f"{STAGE_ICONS.get(app.stage, '⚪')} <b>#{app.id}</b> {escape(app.name)} "
            f"({escape(app.country)}), due {format_date(app.deadline)}, "
            f"{format_days_left(app.days_left(today))}{mark}"
        )
    return "\n".join(lines)


def format_alert(alert: DeadlineAlert) -> str:
    app = alert.application
    if alert.days_left == 0:
        when = "today"
    elif alert.days_left == 1:
        when = "tomorrow"
    else:
        when = f"in {alert.days_left} days"
    return (
        f"⏰ Deadline {when}: <b>{escape(app.name)}</b> "
        f"({escape(app.country)}), due {format_date(app.deadline)}\n"
        f"Stage: {escape(app.stage)}"
    )


# --- Таймлайн ---

def _axis_label(dec, zoom: ZoomLevel) -> Optional[str]:
    if zoom is ZoomLevel.COARSE:
        return dec.label + (f" {dec.year_label}" if dec.year_label else "")
    if zoom is ZoomLevel.MEDIUM:
        return dec.month_label
    return dec.label


def _place(cells: List[str], col: int, text: str):
    """Пишем подпись, только если место свободно."""
    if col < 0 or col + len(text) > len(cells):
        return
    if any(c != " " for c in cells[col:col + len(text) + 1]):
        return
    cells[col:col + len(text)] = list(text)


def render_timeline(
    layout: TimelineLayout,
    apps: Dict[object, Application],
    today: date,
    columns: int = 40,
    scroll_px: Optional[float] = None,
) -> str:
    """
    Окно [scroll, scroll + viewport) делим на columns клеток.
    Первая строка: подписи оси, дальше по строке на полосу.
    """
    viewport = layout.viewport_width or layout.width_px or 1
    start_px = layout.initial_scroll_px if scroll_px is None else scroll_px
    px_per_col = viewport / columns

    def col_of(px: float) -> int:
        return int((px - start_px) // px_per_col)

    axis = [" "] * columns
    for dec in layout.decorations:
        if dec.offset_px + dec.width_px < start_px:
            continue
        if dec.offset_px >= start_px + viewport:
            break
        text = _axis_label(dec, layout.zoom)
        if text:
            _place(axis, max(col_of(dec.offset_px), 0), text)

    today_col = None
    if layout.marker is not None:
        c = col_of(layout.marker.offset_px)
        if 0 <= c < columns:
            today_col = c

    lines = ["".join(axis).rstrip()]
    for bar in layout.bars:
        app = apps.get(bar.item_id)
        fill = EXPIRED_BAR_CHAR if app is not None and app.is_expired(today) else BAR_CHAR
        cells = [EMPTY_CHAR] * columns
        if today_col is not None:
            cells[today_col] = TODAY_CHAR

        first = col_of(bar.left_px)
        last = col_of(bar.left_px + bar.width_px - 1)
        for c in range(max(first, 0), min(last, columns - 1) + 1):
            cells[c] = fill
        if first < 0 <= last:
            cells[0] = CLIPPED_LEFT
        if last >= columns > first:
            cells[-1] = CLIPPED_RIGHT
        if last < 0:
            cells[0] = CLIPPED_LEFT
        elif first >= columns:
            cells[-1] = CLIPPED_RIGHT

        name = app.name if app is not None else str(bar.item_id)
        if len(name) > 24:
            name = name[:23] + "…"
        lines.append(f"{''.join(cells)} #{bar.item_id} {name}")

    header = (
        f"<b>Timeline</b> ({layout.zoom.value} view) · "
        f"{format_date(layout.time_range.start)} to {format_date(layout.time_range.end)}"
    )
    if not layout.bars:
        return f"{header}\n\nNo applications match the current filters."
    return f"{header}\n<pre>{escape(chr(10).join(lines))}</pre>"
