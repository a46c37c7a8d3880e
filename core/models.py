from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Literal, Tuple

from .timeline import TimelineItem

ApplicationType = Literal["scholarship", "admission"]

APPLICATION_TYPES = ("scholarship", "admission")
STAGES = ("To Apply", "In Progress", "Submitted", "Done")
CLOSED_STAGES = ("Submitted", "Done")
GRANTED_BY = ("University", "Government", "Both")
TIMELINE_STATUSES = ("EST", "CON")  # оценочные / подтверждённые даты
REGIONS = (
    "Europe",
    "North America",
    "Asia",
    "Oceania",
    "Middle East",
    "Africa",
    "South America",
)

DEFAULT_REGION = "Europe"
DEFAULT_STAGE = "To Apply"
DEFAULT_TIMELINE_STATUS = "EST"

SORT_FIELDS = ("deadline", "created", "name")
SORT_DIRECTIONS = ("asc", "desc")

# за сколько дней до дедлайна напоминать
ALERT_DAYS = {
    "month": 30,
    "two_weeks": 14,
    "week": 7,
    "day": 1,
}


@dataclass
class Application:
    user_id: str
    type: ApplicationType
    name: str
    country: str
    application_open: date
    deadline: date
    organization: str = ""
    region: str = DEFAULT_REGION
    stage: str = DEFAULT_STAGE
    timeline_status: str = DEFAULT_TIMELINE_STATUS
    notes: str = ""
    link: str = ""
    requirement_link: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def days_left(self, today: date) -> int:
        return (self.deadline - today).days

    def is_expired(self, today: date) -> bool:
        return self.deadline < today

    def to_timeline_item(self) -> TimelineItem:
        return TimelineItem(self.id, self.application_open, self.deadline)


@dataclass(frozen=True)
class FilterOptions:
    stages: Tuple[str, ...] = ()
    countries: Tuple[str, ...] = ()
    types: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.stages or self.countries or self.types)


@dataclass(frozen=True)
class SortOptions:
    field: str = "deadline"
    direction: str = "asc"


@dataclass
class Preferences:
    user_id: str
    filters: FilterOptions = field(default_factory=FilterOptions)
    sort: SortOptions = field(default_factory=SortOptions)
    zoom: Optional[str] = None  # None -> масштаб по умолчанию


@dataclass
class DeadlineAlert:
    application: Application
    kind: str
    days_left: int
