"""Offline stand-in that fabricates a story locally after a fixed delay."""

from __future__ import annotations

import asyncio

from storyteller.domain.models import GenerationRequest


class SimulatedGenerationService:
    def __init__(self, *, delay_seconds: float = 1.5) -> None:
        self._delay_seconds = delay_seconds

    async def generate(self, request: GenerationRequest) -> str:
        await asyncio.sleep(self._delay_seconds)
        themes = [part.strip() for part in request.keywords.split(",") if part.strip()]
        if not themes:
            themes = [request.keywords.strip()]
        joined = ", ".join(themes[:-1]) + f" and {themes[-1]}" if len(themes) > 1 else themes[0]
        return (
            f"Once upon a time, in a world shaped by {joined}, an unlikely hero set out "
            "at dawn. The road was long and strange, and every turn tested their courage. "
            "By nightfall they had found what they were looking for, and the tale of "
            f"{themes[0]} was told for generations."
        )
