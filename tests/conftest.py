import pytest

from knockout.models import Player, Team
from knockout.store import InMemoryMatchStore, InMemoryRoster


def make_teams(n, prefix="t"):
    return [
        Team(
            id=f"{prefix}{i}",
            players=(Player(id=f"{prefix}{i}a", name=f"Ana {i}"), Player(id=f"{prefix}{i}b", name=f"Bea {i}")),
        )
        for i in range(1, n + 1)
    ]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return InMemoryMatchStore()


@pytest.fixture
def roster():
    return InMemoryRoster({
        "cup4": make_teams(4),
        "cup5": make_teams(5),
        "cup2": make_teams(2),
        "solo": make_teams(1),
    })
