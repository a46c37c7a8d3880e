import re
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from .models import (
    APPLICATION_TYPES,
    STAGES,
    GRANTED_BY,
    TIMELINE_STATUSES,
    REGIONS,
    SORT_FIELDS,
    SORT_DIRECTIONS,
    DEFAULT_REGION,
    DEFAULT_STAGE,
    DEFAULT_TIMELINE_STATUS,
    FilterOptions,
    SortOptions,
)


class ValidationError(ValueError):
    """Ошибки формы. problems: по строке на каждое поле."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


# --- Ключи формы ---

# псевдоним -> поле Application
FIELD_ALIASES = {
    "type": "type",
    "kind": "type",
    "name": "name",
    "title": "name",
    "program": "name",
    "scholarship": "name",
    "organization": "organization",
    "org": "organization",
    "school": "organization",
    "grantedby": "organization",
    "country": "country",
    "region": "region",
    "open": "application_open",
    "opens": "application_open",
    "applicationopen": "application_open",
    "deadline": "deadline",
    "due": "deadline",
    "stage": "stage",
    "status": "timeline_status",
    "timelinestatus": "timeline_status",
    "notes": "notes",
    "note": "notes",
    "link": "link",
    "url": "link",
    "requirements": "requirement_link",
    "requirementlink": "requirement_link",
}

REQUIRED_FIELDS = ("type", "name", "country", "deadline")

SORT_ALIASES = {
    "deadline": "deadline",
    "due": "deadline",
    "created": "created",
    "createdat": "created",
    "added": "created",
    "name": "name",
}

FILTER_KEYS = {
    "stage": "stages",
    "stages": "stages",
    "country": "countries",
    "countries": "countries",
    "type": "types",
    "types": "types",
}

# даты вне этих лет считаем опечаткой
MIN_YEAR = 1900
MAX_YEAR = 2200

# --- Регексы ---

ISO_DATE_REGEX = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
DATE_REGEX = re.compile(r"^(\d{1,2})[./](\d{1,2})(?:[./](\d{2,4}))?$")
FORM_LINE_REGEX = re.compile(r"^\s*([A-Za-z_ ]+?)\s*[:=]\s*(.*?)\s*$")
CLOCK_REGEX = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


# --- Вспомогательные ---

def _strip_spaces(s: str) -> str:
    return " ".join(s.split())


def _key(s: str) -> str:
    return re.sub(r"[\s_\-]", "", s.lower())


def _choice(value: str, allowed) -> Optional[str]:
    """Регистронезависимый выбор из списка; пробелы/дефисы не важны."""
    k = _key(value)
    for option in allowed:
        if _key(option) == k:
            return option
    return None


# --- Даты ---

def parse_date(text: str, today: Optional[date] = None) -> Optional[date]:
    """
    Форматы:
      - 2025-01-15 (можно с временем: 2025-01-15T10:00, оно отбрасывается)
      - 15.01.2025, 15/01/25
      - 15.01: ближайшее такое число начиная с today
    None, если не разобрали или год вне MIN_YEAR..MAX_YEAR.
    """
    if today is None:
        today = datetime.now().date()
    t = (text or "").strip()
    if not t:
        return None

    m = ISO_DATE_REGEX.match(t)
    if m:
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = DATE_REGEX.match(t)
        if not m:
            return None
        day = int(m.group(1))
        month = int(m.group(2))
        year = today.year
        if m.group(3):
            y_raw = int(m.group(3))
            year = 2000 + y_raw if y_raw < 100 else y_raw
        elif (month, day) < (today.month, today.day):
            year += 1

    if not MIN_YEAR <= year <= MAX_YEAR:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_clock(text: str) -> Optional[Tuple[int, int]]:
    """'09:00' -> (9, 0). None, если это не время суток."""
    m = CLOCK_REGEX.match((text or "").strip())
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


# --- Форма ---

def parse_form(text: str) -> Dict[str, str]:
    """
    'ключ: значение' по строке. Ключи: см. FIELD_ALIASES.
    Строки без ключа дописываются к notes.
    Первая строка с командой (/add, /edit 3) пропускается.
    """
    fields: Dict[str, str] = {}
    extra_notes = []

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("/"):
            continue
        m = FORM_LINE_REGEX.match(line)
        field = FIELD_ALIASES.get(_key(m.group(1))) if m else None
        if field is None:
            extra_notes.append(line)
            continue
        fields[field] = m.group(2)

    if extra_notes:
        notes = [fields["notes"]] if fields.get("notes") else []
        fields["notes"] = "\n".join(notes + extra_notes)

    return fields


def validate_fields(
    fields: Dict[str, str],
    today: Optional[date] = None,
    partial: bool = False,
) -> Dict[str, object]:
    """
    Проверяет и нормализует поля формы.

    partial=False: новая запись: обязательные поля, значения по умолчанию,
    open по умолчанию = today.
    partial=True: правка: проверяются только переданные поля.

    Все проблемы собираются вместе -> ValidationError.
    """
    if today is None:
        today = datetime.now().date()

    problems = []
    out: Dict[str, object] = {}

    if not partial:
        for name in REQUIRED_FIELDS:
            if not (fields.get(name) or "").strip():
                problems.append(f"{name} is required")

    for name, raw in fields.items():
        value = _strip_spaces(raw or "") if name != "notes" else (raw or "").strip()

        if name == "type":
            choice = _choice(value, APPLICATION_TYPES)
            if value and choice is None:
                problems.append(f"type must be one of: {', '.join(APPLICATION_TYPES)}")
            elif choice:
                out[name] = choice
        elif name == "stage":
            choice = _choice(value, STAGES)
            if value and choice is None:
                problems.append(f"stage must be one of: {', '.join(STAGES)}")
            elif choice:
                out[name] = choice
        elif name == "timeline_status":
            choice = _choice(value, TIMELINE_STATUSES)
            if value and choice is None:
                problems.append("status must be EST or CON")
            elif choice:
                out[name] = choice
        elif name == "region":
            choice = _choice(value, REGIONS)
            if value and choice is None:
                problems.append(f"region must be one of: {', '.join(REGIONS)}")
            elif choice:
                out[name] = choice
        elif name in ("application_open", "deadline"):
            if not value:
                continue
            d = parse_date(value, today)
            if d is None:
                problems.append(f"{name.replace('_', ' ')}: can't read date {value!r}")
            else:
                out[name] = d
        elif name == "name" and partial and not value:
            problems.append("name can't be empty")
        else:
            out[name] = value

    # у стипендии организация: кто её даёт
    if out.get("type") == "scholarship" and out.get("organization"):
        granted = _choice(str(out["organization"]), GRANTED_BY)
        if granted:
            out["organization"] = granted

    if not partial:
        out.setdefault("region", DEFAULT_REGION)
        out.setdefault("stage", DEFAULT_STAGE)
        out.setdefault("timeline_status", DEFAULT_TIMELINE_STATUS)
        if "application_open" not in out and not any("application open" in p for p in problems):
            out["application_open"] = today

    if problems:
        raise ValidationError(problems)
    return out


# --- Аргументы /filter и /sort ---

def parse_filter_args(args: str) -> FilterOptions:
    """
    'stage=Submitted,Done country=Germany type=scholarship'
    Пустая строка или 'clear': без фильтров.
    """
    t = (args or "").strip()
    if not t or t.lower() in ("clear", "reset", "off"):
        return FilterOptions()

    groups: Dict[str, list] = {"stages": [], "countries": [], "types": []}
    problems = []

    for m in re.finditer(r"(\w+)\s*=\s*([^=]+?)(?=\s+\w+\s*=|$)", t):
        target = FILTER_KEYS.get(m.group(1).lower())
        if target is None:
            problems.append(f"unknown filter {m.group(1)!r}")
            continue
        for raw in m.group(2).split(","):
            value = _strip_spaces(raw)
            if not value:
                continue
            if target == "stages":
                choice = _choice(value, STAGES)
            elif target == "types":
                choice = _choice(value, APPLICATION_TYPES)
            else:
                choice = value
            if choice is None:
                problems.append(f"unknown {m.group(1).lower()} {value!r}")
            else:
                groups[target].append(choice)

    if not any(groups.values()) and not problems:
        problems.append("expected key=value pairs, e.g. stage=Submitted country=Germany")
    if problems:
        raise ValidationError(problems)

    return FilterOptions(
        stages=tuple(groups["stages"]),
        countries=tuple(groups["countries"]),
        types=tuple(groups["types"]),
    )


def parse_sort_args(args: str) -> SortOptions:
    """'deadline', 'name desc', 'created asc'."""
    parts = (args or "").lower().split()
    if not parts:
        return SortOptions()

    field = SORT_ALIASES.get(_key(parts[0]))
    direction = parts[1] if len(parts) > 1 else "asc"

    problems = []
    if field is None:
        problems.append(f"sort by one of: {', '.join(SORT_FIELDS)}")
    if direction not in SORT_DIRECTIONS:
        problems.append("direction must be asc or desc")
    if problems:
        raise ValidationError(problems)
    return SortOptions(field=field, direction=direction)


def parse_id(text: str) -> Tuple[Optional[int], str]:
    """'12 rest of text' -> (12, 'rest of text'); (None, text), если числа нет."""
    t = (text or "").strip()
    m = re.match(r"#?(\d+)\b\s*(.*)$", t, re.DOTALL)
    if not m:
        return None, t
    return int(m.group(1)), m.group(2)
