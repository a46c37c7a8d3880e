import csv
import io
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Application
from .parser import ValidationError, validate_fields

CSV_HEADERS = (
    "type",
    "name",
    "organization",
    "country",
    "region",
    "link",
    "applicationOpen",
    "deadline",
    "stage",
    "timelineStatus",
    "notes",
)

# колонка CSV -> поле формы
CSV_TO_FIELD = {
    "type": "type",
    "name": "name",
    "organization": "organization",
    "country": "country",
    "region": "region",
    "link": "link",
    "applicationOpen": "application_open",
    "deadline": "deadline",
    "stage": "stage",
    "timelineStatus": "timeline_status",
    "notes": "notes",
}

TEMPLATE_ROWS = (
    ("scholarship", "Example Scholarship", "University", "USA", "North America",
     "https://example.com", "2024-01-01", "2024-03-15", "To Apply", "EST",
     "Sample scholarship notes"),
    ("admission", "Computer Science MS", "MIT", "USA", "North America",
     "https://mit.edu", "2024-02-01", "2024-04-01", "In Progress", "CON",
     "Sample admission notes"),
)


@dataclass
class RowError:
    line: int
    message: str


class CsvRow(dict):
    """Строка CSV по заголовку; line: номер строки файла, где она начинается."""

    line: Optional[int] = None


def parse_csv(text: str) -> List[CsvRow]:
    """
    CSV -> список словарей по заголовку.
    Кавычки, запятые и переносы внутри полей: через csv. Пустые строки
    пропускаются, недостающие ячейки -> "". Номера строк считаются по файлу,
    с учётом пропущенных строк и многострочных полей.
    """
    text = (text or "").lstrip("\ufeff")
    if not text.strip():
        return []

    reader = csv.reader(io.StringIO(text))
    headers = None
    for values in reader:
        if any(v.strip() for v in values):
            headers = [h.strip() for h in values]
            break
    if headers is None:
        return []

    rows: List[CsvRow] = []
    prev_line = reader.line_num
    for values in reader:
        line = prev_line + 1
        prev_line = reader.line_num
        if not any(v.strip() for v in values):
            continue
        row = CsvRow(
            (header, values[idx].strip() if idx < len(values) else "")
            for idx, header in enumerate(headers)
        )
        row.line = line
        rows.append(row)
    return rows


def rows_to_applications(
    rows: Iterable[Dict[str, str]],
    user_id: str,
    now: Optional[datetime] = None,
) -> Tuple[List[Application], List[RowError]]:
    """
    Строки CSV -> Application. Плохие строки не импортируются,
    по каждой: RowError. Номер берётся из CsvRow.line, для обычных
    словарей: позиция после заголовка.
    """
    now = now or datetime.now()
    apps: List[Application] = []
    errors: List[RowError] = []

    for pos, row in enumerate(rows, start=2):
        line = getattr(row, "line", None) or pos
        fields = {
            CSV_TO_FIELD[k]: v
            for k, v in row.items()
            if k in CSV_TO_FIELD and v is not None
        }
        try:
            data = validate_fields(fields, today=now.date())
        except ValidationError as e:
            errors.append(RowError(line=line, message=str(e)))
            continue
        apps.append(
            Application(
                user_id=user_id,
                created_at=now,
                updated_at=now,
                **data,
            )
        )
    return apps, errors


def _cell(value) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value if value is not None else "")


def applications_to_csv(apps: Iterable[Application]) -> str:
    buf = io.StringIO()
    buf.write(",".join(CSV_HEADERS) + "\n")
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for app in apps:
        w.writerow([
            _cell(app.type),
            _cell(app.name),
            _cell(app.organization),
            _cell(app.country),
            _cell(app.region),
            _cell(app.link),
            _cell(app.application_open),
            _cell(app.deadline),
            _cell(app.stage),
            _cell(app.timeline_status),
            _cell(app.notes),
        ])
    return buf.getvalue()


def template_csv() -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(CSV_HEADERS)
    w.writerows(TEMPLATE_ROWS)
    return buf.getvalue()
