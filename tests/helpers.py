"""
Test doubles and builders shared by the test modules.
"""
import asyncio
import base64
from contextlib import asynccontextmanager
from io import BytesIO
from types import SimpleNamespace

import numpy as np
from PIL import Image

from app.exceptions import DurabilityError


class FakeRepository:
    """Keeps rows in a list instead of PostgreSQL; can fail reads or writes."""

    def __init__(self):
        self.rows = []
        self.fail_reads = False
        self.fail_writes = False
        self.write_delay = 0.0

    async def create(self, session, target_uuid, origin, embedding):
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.fail_writes:
            raise DurabilityError(f"Failed to store target {target_uuid}")
        row = SimpleNamespace(
            id=len(self.rows) + 1,
            uuid=target_uuid,
            origin=origin,
            embeddings=list(embedding),
        )
        self.rows.append(row)
        return row

    async def get_all(self, session):
        if self.fail_reads:
            raise DurabilityError("Failed to read targets")
        return list(self.rows)


@asynccontextmanager
async def fake_session():
    yield None


def unit(dim, index):
    """One-hot vector; dot products between these are exact."""
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = 1.0
    return vector


def random_embeddings(count, dim, seed=0):
    rng = np.random.default_rng(seed)
    return rng.standard_normal((count, dim)).astype(np.float32)


def png_bytes(color=(200, 10, 10), size=(32, 32), mode="RGB"):
    image = Image.new(mode, size, color)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def png_base64(color=(200, 10, 10), size=(32, 32), mode="RGB"):
    return base64.b64encode(png_bytes(color, size, mode)).decode("ascii")
