"""
Dispatch layer for running batches of pending fill jobs.

Connects the job queue to CWC delivery and web form filling, handling
captcha ordering, regex filtering, field overrides, and run reporting.
"""

from contact_congress.dispatch.config import (
    CwcSettings,
    Settings,
    load_settings,
)
from contact_congress.dispatch.executors import (
    InlineExecutor,
    JobExecutor,
    PooledExecutor,
    make_executor,
)
from contact_congress.dispatch.runner import (
    FillRunReport,
    JobDisposition,
    JobResult,
    PerformFills,
)

__all__ = [
    "CwcSettings",
    "Settings",
    "load_settings",
    "InlineExecutor",
    "JobExecutor",
    "PooledExecutor",
    "make_executor",
    "FillRunReport",
    "JobDisposition",
    "JobResult",
    "PerformFills",
]
