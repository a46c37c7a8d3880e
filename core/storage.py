import os
import json
import logging
import sqlite3
from datetime import date, datetime
from typing import List, Optional, Iterable
from pathlib import Path

from .models import (
    Application,
    FilterOptions,
    SortOptions,
    Preferences,
    SORT_FIELDS,
    SORT_DIRECTIONS,
    CLOSED_STAGES,
)

logger = logging.getLogger(__name__)

# --- Путь к БД всегда в корне проекта ---
ROOT_DIR = Path(__file__).resolve().parent.parent
DB_PATH = Path(os.getenv("DB_PATH", "data.db"))
if not DB_PATH.is_absolute():
    DB_PATH = ROOT_DIR / DB_PATH

APP_COLUMNS = (
    "id, user_id, type, name, organization, country, region, application_open, "
    "deadline, stage, timeline_status, notes, link, requirement_link, "
    "created_at, updated_at"
)

# поле сортировки -> колонка
SORT_COLUMNS = {
    "deadline": "deadline",
    "created": "created_at",
    "name": "name",
}

UPDATABLE_FIELDS = (
    "type",
    "name",
    "organization",
    "country",
    "region",
    "application_open",
    "deadline",
    "stage",
    "timeline_status",
    "notes",
    "link",
    "requirement_link",
)


def get_conn():
    return sqlite3.connect(DB_PATH)


def init_db():
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS applications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            name TEXT NOT NULL,
            organization TEXT NOT NULL DEFAULT '',
            country TEXT NOT NULL,
            region TEXT NOT NULL,
            application_open TEXT NOT NULL,
            deadline TEXT NOT NULL,
            stage TEXT NOT NULL DEFAULT 'To Apply',
            timeline_status TEXT NOT NULL DEFAULT 'EST',
            notes TEXT NOT NULL DEFAULT '',
            link TEXT NOT NULL DEFAULT '',
            requirement_link TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS preferences (
            user_id TEXT PRIMARY KEY,
            filters TEXT NOT NULL DEFAULT '{}',
            sort_field TEXT NOT NULL DEFAULT 'deadline',
            sort_direction TEXT NOT NULL DEFAULT 'asc',
            zoom TEXT
        );
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
            application_id INTEGER NOT NULL,
            kind TEXT NOT NULL,
            sent_at TEXT NOT NULL,
            PRIMARY KEY (application_id, kind)
        );
        """
    )
    conn.commit()
    conn.close()


# --- Строки <-> объекты ---

def _row_to_app(row) -> Application:
    (
        app_id, user_id, app_type, name, organization, country, region,
        open_at, deadline, stage, timeline_status, notes, link,
        requirement_link, created_at, updated_at,
    ) = row
    return Application(
        id=app_id,
        user_id=user_id,
        type=app_type,
        name=name,
        organization=organization,
        country=country,
        region=region,
        application_open=date.fromisoformat(open_at),
        deadline=date.fromisoformat(deadline),
        stage=stage,
        timeline_status=timeline_status,
        notes=notes,
        link=link,
        requirement_link=requirement_link,
        created_at=datetime.fromisoformat(created_at),
        updated_at=datetime.fromisoformat(updated_at),
    )


def _app_values(app: Application) -> tuple:
    return (
        app.user_id,
        app.type,
        app.name,
        app.organization,
        app.country,
        app.region,
        app.application_open.isoformat(),
        app.deadline.isoformat(),
        app.stage,
        app.timeline_status,
        app.notes,
        app.link,
        app.requirement_link,
        app.created_at.isoformat(),
        app.updated_at.isoformat(),
    )


def _db_value(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _stamp(app: Application, now: Optional[datetime]):
    now = now or datetime.now()
    if app.created_at is None:
        app.created_at = now
    if app.updated_at is None:
        app.updated_at = now


_INSERT_SQL = """
    INSERT INTO applications (
        user_id, type, name, organization, country, region, application_open,
        deadline, stage, timeline_status, notes, link, requirement_link,
        created_at, updated_at
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


# --- CRUD ---

def insert_application(app: Application, now: Optional[datetime] = None) -> Application:
    _stamp(app, now)
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(_INSERT_SQL, _app_values(app))
    app.id = cur.lastrowid
    conn.commit()
    conn.close()
    return app


def insert_many(apps: Iterable[Application], now: Optional[datetime] = None) -> List[Application]:
    """Пакетная вставка (импорт CSV) одной транзакцией."""
    apps = list(apps)
    conn = get_conn()
    try:
        cur = conn.cursor()
        for app in apps:
            _stamp(app, now)
            cur.execute(_INSERT_SQL, _app_values(app))
            app.id = cur.lastrowid
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()
    logger.info("Imported %d applications", len(apps))
    return apps


def get_application(user_id: str, app_id: int) -> Optional[Application]:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        f"SELECT {APP_COLUMNS} FROM applications WHERE user_id = ? AND id = ?",
        (user_id, app_id),
    )
    row = cur.fetchone()
    conn.close()
    return _row_to_app(row) if row else None


def update_application(
    user_id: str,
    app_id: int,
    now: Optional[datetime] = None,
    **fields,
) -> Optional[Application]:
    """
    Частичное обновление. Неизвестные поля -> ValueError.
    Возвращает обновлённую запись или None, если такой нет.
    """
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"unknown fields: {', '.join(sorted(unknown))}")

    now = now or datetime.now()
    assignments = [f"{name} = ?" for name in fields] + ["updated_at = ?"]
    values = [_db_value(v) for v in fields.values()] + [now.isoformat()]

    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        f"UPDATE applications SET {', '.join(assignments)} WHERE user_id = ? AND id = ?",
        (*values, user_id, app_id),
    )
    changed = cur.rowcount
    if changed and "deadline" in fields:
        # новый дедлайн: напоминания заново
        cur.execute("DELETE FROM alerts WHERE application_id = ?", (app_id,))
    conn.commit()
    conn.close()

    if not changed:
        return None
    return get_application(user_id, app_id)


def delete_application(user_id: str, app_id: int) -> bool:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        "DELETE FROM applications WHERE user_id = ? AND id = ?",
        (user_id, app_id),
    )
    deleted = cur.rowcount > 0
    if deleted:
        cur.execute("DELETE FROM alerts WHERE application_id = ?", (app_id,))
    conn.commit()
    conn.close()
    return deleted


def list_applications(
    user_id: str,
    filters: Optional[FilterOptions] = None,
    sort: Optional[SortOptions] = None,
) -> List[Application]:
    """
    Фильтры: stage / country / type (AND между группами, OR внутри).
    Сортировка: deadline / created / name, asc / desc; при равенстве: по id.
    """
    filters = filters or FilterOptions()
    sort = sort or SortOptions()
    if sort.field not in SORT_FIELDS or sort.direction not in SORT_DIRECTIONS:
        raise ValueError(f"bad sort options: {sort}")

    where = ["user_id = ?"]
    params: list = [user_id]
    for column, values in (
        ("stage", filters.stages),
        ("country", filters.countries),
        ("type", filters.types),
    ):
        if values:
            where.append(f"{column} IN ({', '.join('?' for _ in values)})")
            params.extend(values)

    order = f"{SORT_COLUMNS[sort.field]} {sort.direction.upper()}, id ASC"

    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        f"SELECT {APP_COLUMNS} FROM applications WHERE {' AND '.join(where)} ORDER BY {order}",
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return [_row_to_app(r) for r in rows]


def list_open_applications():
    """Все незакрытые заявки всех пользователей (для напоминаний)."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {APP_COLUMNS} FROM applications
        WHERE stage NOT IN ({', '.join('?' for _ in CLOSED_STAGES)})
        ORDER BY deadline, id
        """,
        CLOSED_STAGES,
    )
    rows = cur.fetchall()
    conn.close()
    return [_row_to_app(r) for r in rows]


def list_countries(user_id: str) -> List[str]:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT DISTINCT country FROM applications WHERE user_id = ? ORDER BY country",
        (user_id,),
    )
    rows = [row[0] for row in cur.fetchall()]
    conn.close()
    return rows


# --- Настройки вида ---

def get_preferences(user_id: str) -> Preferences:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT filters, sort_field, sort_direction, zoom FROM preferences WHERE user_id = ?",
        (user_id,),
    )
    row = cur.fetchone()
    conn.close()
    if not row:
        return Preferences(user_id=user_id)

    raw_filters, sort_field, sort_direction, zoom = row
    data = json.loads(raw_filters or "{}")
    return Preferences(
        user_id=user_id,
        filters=FilterOptions(
            stages=tuple(data.get("stages", ())),
            countries=tuple(data.get("countries", ())),
            types=tuple(data.get("types", ())),
        ),
        sort=SortOptions(field=sort_field, direction=sort_direction),
        zoom=zoom,
    )


def save_preferences(prefs: Preferences) -> Preferences:
    filters = {
        "stages": list(prefs.filters.stages),
        "countries": list(prefs.filters.countries),
        "types": list(prefs.filters.types),
    }
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO preferences (user_id, filters, sort_field, sort_direction, zoom)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            filters = excluded.filters,
            sort_field = excluded.sort_field,
            sort_direction = excluded.sort_direction,
            zoom = excluded.zoom
        """,
        (
            prefs.user_id,
            json.dumps(filters, ensure_ascii=False),
            prefs.sort.field,
            prefs.sort.direction,
            prefs.zoom,
        ),
    )
    conn.commit()
    conn.close()
    return prefs


# --- Напоминания ---

def get_sent_alerts(app_id: int) -> set:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute("SELECT kind FROM alerts WHERE application_id = ?", (app_id,))
    kinds = {row[0] for row in cur.fetchall()}
    conn.close()
    return kinds


def mark_alerts_sent(app_id: int, kinds: Iterable[str], when: Optional[datetime] = None):
    when = when or datetime.now()
    conn = get_conn()
    cur = conn.cursor()
    cur.executemany(
        "INSERT OR IGNORE INTO alerts (application_id, kind, sent_at) VALUES (?, ?, ?)",
        [(app_id, kind, when.isoformat()) for kind in kinds],
    )
    conn.commit()
    conn.close()

