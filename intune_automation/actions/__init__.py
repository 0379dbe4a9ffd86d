from .device_actions import (
    ACTION_RETIRE,
    ACTION_SYNC,
    ACTION_WIPE,
    ActionResult,
    DeviceActionRunner,
    DeviceTarget,
    summarize_results,
    wipe_body,
)

__all__ = [
    "ACTION_RETIRE",
    "ACTION_SYNC",
    "ACTION_WIPE",
    "ActionResult",
    "DeviceActionRunner",
    "DeviceTarget",
    "summarize_results",
    "wipe_body",
]
