"""Tool reporting the current date and time."""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping

from ..orchestration.tools import (
    ParameterSpec,
    ToolCategory,
    ToolExecutionResult,
    ToolSpecification,
    ToolViewData,
)

__all__ = ["TodayDateTool", "format_full_date", "format_short_time"]

Clock = Callable[[], _dt.datetime]


def _local_now() -> _dt.datetime:
    return _dt.datetime.now().astimezone()


def format_short_time(moment: _dt.datetime) -> str:
    """Return ``moment`` as ``3:04 PM``."""
    hour = moment.hour % 12 or 12
    return f"{hour}:{moment:%M} {moment:%p}"


def format_full_date(moment: _dt.datetime) -> str:
    """Return ``moment`` as ``Monday, October 19, 2026 at 3:04:05 PM``."""
    hour = moment.hour % 12 or 12
    return f"{moment:%A}, {moment:%B} {moment.day}, {moment.year} at {hour}:{moment:%M:%S} {moment:%p}"


@dataclass(slots=True)
class TodayDateTool:
    """Report today's date as a rich ``date`` view or as plain text."""

    clock: Clock = field(default=_local_now)

    specification: ClassVar[ToolSpecification] = ToolSpecification(
        name="getTodayDate",
        description="Get the current date and time with a beautiful display",
        parameters={
            "displayType": ParameterSpec(
                type="string",
                description="How to display the date - as a view or text",
                enum=("view", "text"),
            ),
        },
        category=ToolCategory.UTILITY,
    )

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        display_type = parameters.get("displayType") or "view"
        now = self.clock()
        full_date = format_full_date(now)
        if display_type != "view":
            return ToolExecutionResult.text(f"Today is {full_date}")
        view = ToolViewData(
            type="date",
            data={
                "fullDate": full_date,
                "time": format_short_time(now),
                "dayName": f"{now:%A}",
                "timestamp": now.timestamp(),
                "day": now.day,
                "month": now.month,
                "year": now.year,
            },
            template="date_display",
        )
        return ToolExecutionResult.view(view)
