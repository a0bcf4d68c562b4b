from datetime import datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, StringConstraints

from .query import normalize_tags
from .utils import to_naive_utc

# stored UTC-naive; clients may send any offset
UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]

Tag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=30)]
TagList = Annotated[list[Tag], AfterValidator(normalize_tags)]

Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]

SortOrder = Literal["asc", "desc"]
