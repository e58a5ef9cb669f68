"""Simulated work shared by the task implementations."""

import asyncio

from evcharge.core.config import get_global_settings


async def simulate_work() -> None:
    """Stand in for the call to the downstream service."""
    await asyncio.sleep(get_global_settings().task_simulated_duration_seconds)
