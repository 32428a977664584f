from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .recorder import EventRecorder, PendingGenerationCall
from .seeds import SeedDeriver


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    tokens_used: int = 0


GenerateFn = Callable[[int], Awaitable[GenerationResult]]


async def record_generation_call(
    recorder: EventRecorder,
    seeds: SeedDeriver,
    generate: GenerateFn,
    *,
    entity_id: str,
    call_kind: str,
    frame: int,
    prompt: str = "",
) -> tuple[PendingGenerationCall, GenerationResult]:
    """Issue one backend call with an issue-time seed and log its result.

    The call index, seed and sequence are reserved before the first `await`,
    so concurrent calls keep the stamps they were issued with no matter
    which one finishes first. Backend errors (and cancellation) propagate; the
    call is cancelled and nothing is logged.
    """
    pending = recorder.begin_generation_call(
        seeds,
        entity_id=entity_id,
        call_kind=call_kind,
        frame=frame,
        prompt=prompt,
    )
    try:
        result = await generate(pending.seed)
    except BaseException:
        pending.cancel()
        raise
    pending.complete(result.text, result.tokens_used)
    return pending, result
