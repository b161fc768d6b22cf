# src/nudge_companion/tools/meta_tools.py

from __future__ import annotations

from datetime import datetime
from typing import Any

from .memory_tools import NoArgs
from .registry import ToolContext, ToolName, ToolSpec


async def get_current_time(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    now = datetime.fromtimestamp(ctx.now, tz=ctx.tz).replace(microsecond=0)
    return {
        "now": now.isoformat(),
        "weekday": now.strftime("%A"),
        "timezone": str(ctx.tz),
    }


SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.GET_CURRENT_TIME,
        description="Current date and time in the user's timezone.",
        parameters={"type": "object", "properties": {}, "required": []},
        args_type=NoArgs,
        executor=get_current_time,
    ),
]
