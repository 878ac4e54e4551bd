"""
shared/utils/simulation.py
Randomness and latency used by the simulated payment gateways and
email sender. Tests patch `roll` and `pause` here.
"""

import asyncio
import random


def roll() -> float:
    """Uniform draw in [0, 1)."""
    return random.random()


async def pause(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)
