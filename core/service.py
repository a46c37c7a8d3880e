import logging
from html import escape
from datetime import date, datetime
from typing import List, Optional, Tuple

from .models import Application, DeadlineAlert, ALERT_DAYS, STAGES
from . import storage
from .csv_io import parse_csv, rows_to_applications, applications_to_csv, RowError
from .parser import (
    ValidationError,
    parse_form,
    validate_fields,
    parse_filter_args,
    parse_sort_args,
)
from .render import format_application, format_list
from .timeline import TimelineLayout, ZoomLevel, build_layout

logger = logging.getLogger(__name__)

MAX_IMPORT_ERRORS_SHOWN = 10


def init():
    storage.init_db()


def _problems_text(header: str, e: ValidationError) -> str:
    return header + "\n" + "\n".join(f"- {escape(p)}" for p in e.problems)


# --- Записи ---

def add_from_text(user_id: str, text: str, now: Optional[datetime] = None) -> Tuple[str, Optional[Application]]:
    """
    Вход: текст формы ('ключ: значение' по строке).
    Выход: ответ + Application, либо текст ошибок и None.
    """
    now = now or datetime.now()
    fields = parse_form(text)
    try:
        data = validate_fields(fields, today=now.date())
    except ValidationError as e:
        return _problems_text("Can't add this application:", e), None

    app = storage.insert_application(Application(user_id=str(user_id), **data), now=now)
    logger.info("User %s added application %s", user_id, app.id)
    return "Added:\n\n" + format_application(app, now.date()), app


def edit_from_text(
    user_id: str,
    app_id: int,
    text: str,
    now: Optional[datetime] = None,
) -> Tuple[str, Optional[Application]]:
    now = now or datetime.now()
    uid = str(user_id)
    current = storage.get_application(uid, app_id)
    if current is None:
        return f"No application #{app_id}.", None

    fields = parse_form(text)
    if not fields:
        return "Nothing to change. Send lines like <code>deadline: 2025-01-15</code>.", None
    try:
        data = validate_fields(fields, today=now.date(), partial=True)
    except ValidationError as e:
        return _problems_text(f"Can't update #{app_id}:", e), None

    app = storage.update_application(uid, app_id, now=now, **data)
    if app is None:
        return f"No application #{app_id}.", None
    return "Updated:\n\n" + format_application(app, now.date()), app


def set_stage(user_id: str, app_id: int, stage_text: str, now: Optional[datetime] = None) -> Tuple[str, Optional[Application]]:
    now = now or datetime.now()
    try:
        data = validate_fields({"stage": stage_text}, today=now.date(), partial=True)
    except ValidationError as e:
        return _problems_text("Can't change stage:", e), None
    if "stage" not in data:
        return f"Stage must be one of: {', '.join(STAGES)}", None

    app = storage.update_application(str(user_id), app_id, now=now, stage=data["stage"])
    if app is None:
        return f"No application #{app_id}.", None
    return f"#{app.id} {escape(app.name)}: stage is now {app.stage}.", app


def delete(user_id: str, app_id: int) -> str:
    if storage.delete_application(str(user_id), app_id):
        logger.info("User %s deleted application %s", user_id, app_id)
        return f"Deleted #{app_id}."
    return f"No application #{app_id}."


def show(user_id: str, app_id: int, today: date) -> str:
    app = storage.get_application(str(user_id), app_id)
    if app is None:
        return f"No application #{app_id}."
    return format_application(app, today)


# --- Фильтры, сортировка, масштаб ---

def visible_applications(user_id: str) -> List[Application]:
    """Заявки через сохранённые фильтры и сортировку пользователя."""
    prefs = storage.get_preferences(str(user_id))
    return storage.list_applications(str(user_id), prefs.filters, prefs.sort)


def list_text(user_id: str, today: date) -> str:
    prefs = storage.get_preferences(str(user_id))
    apps = storage.list_applications(str(user_id), prefs.filters, prefs.sort)
    header = "Applications" if prefs.filters.is_empty() else "Applications (filtered)"
    return format_list(apps, today, header=header)


def set_filters(user_id: str, args: str) -> str:
    uid = str(user_id)
    try:
        filters = parse_filter_args(args)
    except ValidationError as e:
        countries = storage.list_countries(uid)
        hint = f"\nCountries: {escape(', '.join(countries))}" if countries else ""
        return _problems_text("Can't read filters:", e) + hint

    prefs = storage.get_preferences(uid)
    prefs.filters = filters
    storage.save_preferences(prefs)
    if filters.is_empty():
        return "Filters cleared."
    parts = []
    if filters.stages:
        parts.append("stage: " + ", ".join(filters.stages))
    if filters.countries:
        parts.append("country: " + escape(", ".join(filters.countries)))
    if filters.types:
        parts.append("type: " + ", ".join(filters.types))
    return "Filters set. " + "; ".join(parts)


def set_sort(user_id: str, args: str) -> str:
    try:
        sort = parse_sort_args(args)
    except ValidationError as e:
        return _problems_text("Can't read sort options:", e)
    prefs = storage.get_preferences(str(user_id))
    prefs.sort = sort
    storage.save_preferences(prefs)
    return f"Sorting by {sort.field}, {sort.direction}."


def set_zoom(user_id: str, text: str) -> Tuple[str, Optional[ZoomLevel]]:
    try:
        zoom = ZoomLevel.parse(text)
    except ValueError:
        return "View must be month, week or day.", None
    prefs = storage.get_preferences(str(user_id))
    prefs.zoom = zoom.value
    storage.save_preferences(prefs)
    return f"Timeline view: {zoom.value}.", zoom


# --- Таймлайн ---

def build_timeline(
    user_id: str,
    today: date,
    zoom: Optional[ZoomLevel] = None,
    viewport_width: Optional[float] = None,
    default_zoom: ZoomLevel = ZoomLevel.COARSE,
) -> Tuple[TimelineLayout, List[Application]]:
    """
    Раскладка по текущему (отфильтрованному/отсортированному) списку.
    zoom=None: берём сохранённый у пользователя, иначе default_zoom.
    """
    uid = str(user_id)
    prefs = storage.get_preferences(uid)
    if zoom is None:
        try:
            zoom = ZoomLevel.parse(prefs.zoom) if prefs.zoom else default_zoom
        except ValueError:
            logger.warning("User %s has bad saved zoom %r", uid, prefs.zoom)
            zoom = default_zoom
    apps = storage.list_applications(uid, prefs.filters, prefs.sort)
    layout = build_layout(
        (app.to_timeline_item() for app in apps),
        today=today,
        zoom=zoom,
        viewport_width=viewport_width,
    )
    return layout, apps


# --- CSV ---

def import_csv_text(user_id: str, text: str, now: Optional[datetime] = None) -> Tuple[str, List[Application], List[RowError]]:
    now = now or datetime.now()
    rows = parse_csv(text)
    if not rows:
        return "The file has no rows to import.", [], []

    apps, errors = rows_to_applications(rows, str(user_id), now=now)
    if apps:
        storage.insert_many(apps, now=now)

    lines = [f"Imported {len(apps)} of {len(rows)} rows."]
    if errors:
        logger.warning("CSV import for %s: %d bad rows", user_id, len(errors))
        lines.append("Skipped:")
        for err in errors[:MAX_IMPORT_ERRORS_SHOWN]:
            lines.append(f"- line {err.line}: {escape(err.message)}")
        if len(errors) > MAX_IMPORT_ERRORS_SHOWN:
            lines.append(f"... and {len(errors) - MAX_IMPORT_ERRORS_SHOWN} more")
    return "\n".join(lines), apps, errors


def export_csv(user_id: str) -> Tuple[str, int]:
    """Экспорт того, что пользователь видит сейчас (с фильтрами и сортировкой)."""
    apps = visible_applications(user_id)
    return applications_to_csv(apps), len(apps)


# --- Напоминания о дедлайнах ---

def pick_alert_kind(days_left: int, already_sent) -> Tuple[Optional[str], List[str]]:
    """
    Какой порог сработал сегодня.
    Возвращает (kind для отправки | None, все пороги, которые надо отметить).
    Если записали поздно и прошли сразу несколько порогов: шлём только самый
    близкий к дедлайну, остальные отмечаем вместе с ним.
    """
    if days_left < 0:
        return None, []
    reached = [k for k, d in ALERT_DAYS.items() if days_left <= d and k not in already_sent]
    if not reached:
        return None, []
    kind = min(reached, key=lambda k: ALERT_DAYS[k])
    return kind, reached


def due_alerts(today: date) -> List[Tuple[DeadlineAlert, List[str]]]:
    """Напоминания на сегодня по всем открытым заявкам."""
    out = []
    for app in storage.list_open_applications():
        days_left = app.days_left(today)
        kind, to_mark = pick_alert_kind(days_left, storage.get_sent_alerts(app.id))
        if kind is None:
            continue
        out.append((DeadlineAlert(application=app, kind=kind, days_left=days_left), to_mark))
    return out
