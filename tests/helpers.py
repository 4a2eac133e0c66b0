"""
Helpers sending requests in a seeded random order with random delays.
"""

import asyncio
import json
import random
import typing as t

import httpx


class RequestSpec(t.TypedDict, total=False):
    url: str
    method: str
    body: t.Any


def random_delays(rng: random.Random, count: int, min_ms: int = 1, max_ms: int = 50) -> list[float]:
    """
    Draw one delay in seconds per request. The first request is never delayed.
    """
    return [0.0] + [rng.randint(min_ms, max_ms) / 1000 for _ in range(count - 1)]


async def execute_requests_randomly(
    rng: random.Random,
    client: httpx.AsyncClient,
    requests: list[RequestSpec],
) -> list[httpx.Response]:
    """
    Shuffle ``requests`` and send them concurrently, each after a random delay.

    Parameters
    ----------
    rng : random.Random
        Seeded random generator.
    client : httpx.AsyncClient
        Client sending the requests.
    requests : list[RequestSpec]
        Requests to send. ``body`` is serialized as compact JSON.

    Returns
    -------
    list[httpx.Response]
        Responses in shuffled order.
    """
    shuffled = list(requests)
    rng.shuffle(shuffled)
    delays = random_delays(rng=rng, count=len(shuffled))

    async def send(spec: RequestSpec, delay: float) -> httpx.Response:
        if delay:
            await asyncio.sleep(delay)
        kwargs: dict[str, t.Any] = {}
        if "body" in spec:
            kwargs["content"] = json.dumps(spec["body"], separators=(",", ":"))
            kwargs["headers"] = {"Content-Type": "application/json"}
        return await client.request(spec.get("method", "GET"), spec["url"], **kwargs)

    return list(
        await asyncio.gather(*(send(spec, delay) for spec, delay in zip(shuffled, delays)))
    )
