"""Shared fixtures."""

from __future__ import annotations

from collections import defaultdict

import pytest
import redis.asyncio as redis


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the queue uses.

    Values come back as bytes, as they do with ``decode_responses=False``.
    """

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.scores: dict[str, float] = {}
        self.streams: dict[str, list[tuple[bytes, dict[bytes, bytes]]]] = defaultdict(list)
        self.cursors: dict[tuple[str, str], int] = {}
        self.acked: list[str] = []
        self.healthy = True
        self.closed = False

    async def ping(self) -> bool:
        if not self.healthy:
            raise redis.ConnectionError("connection refused")
        return True

    async def set(self, key, value, ex=None):
        self.values[key] = value.encode() if isinstance(value, str) else value
        if ex is not None:
            self.ttls[key] = ex

    async def get(self, key):
        return self.values.get(key)

    async def exists(self, key):
        return int(key in self.values)

    async def zadd(self, key, mapping):
        self.scores.update(mapping)

    async def zrevrange(self, key, start, end):
        ordered = sorted(self.scores, key=self.scores.__getitem__, reverse=True)
        return [member.encode() for member in ordered[start:end + 1]]

    async def xadd(self, key, fields):
        msg_id = f"{len(self.streams[key]) + 1}-0".encode()
        encoded = {
            k.encode(): v.encode() if isinstance(v, str) else v for k, v in fields.items()
        }
        self.streams[key].append((msg_id, encoded))
        return msg_id

    async def xgroup_create(self, key, group, id="0", mkstream=False):
        if (key, group) in self.cursors:
            raise redis.ResponseError("BUSYGROUP Consumer Group name already exists")
        self.cursors[(key, group)] = 0

    async def xreadgroup(self, groupname, consumername, streams, count=1, block=0):
        raw = []
        for key in streams:
            position = self.cursors[(key, groupname)]
            batch = self.streams[key][position:position + count]
            self.cursors[(key, groupname)] = position + len(batch)
            if batch:
                raw.append((key.encode(), batch))
        return raw

    async def xack(self, key, group, msg_id):
        self.acked.append(msg_id)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
