"""Unit tests for the code allocator."""

from unittest.mock import AsyncMock

import pytest

from app.allocator import CodeAllocator
from app.codes import ALPHABET
from app.exceptions import AllocationExhaustedError, CodeAlreadyTakenError
from app.store import LinkStore


@pytest.fixture
def mock_store() -> AsyncMock:
    store = AsyncMock(spec=LinkStore)
    store.exists = AsyncMock(return_value=False)
    return store


@pytest.mark.asyncio
async def test_allocate_unique_returns_free_code(mock_store) -> None:
    allocator = CodeAllocator(mock_store, code_length=7)

    code = await allocator.allocate_unique()

    assert len(code) == 7
    assert all(c in ALPHABET for c in code)
    mock_store.exists.assert_awaited_once_with(code)


@pytest.mark.asyncio
async def test_allocate_unique_retries_on_collision(mock_store) -> None:
    mock_store.exists.side_effect = [True, True, False]
    candidates = iter(["taken01", "taken02", "free003"])
    allocator = CodeAllocator(mock_store, generator=lambda length: next(candidates))

    assert await allocator.allocate_unique() == "free003"
    assert mock_store.exists.await_count == 3


@pytest.mark.asyncio
async def test_allocate_unique_exhausts_after_max_attempts(mock_store) -> None:
    mock_store.exists.return_value = True
    allocator = CodeAllocator(mock_store)

    with pytest.raises(AllocationExhaustedError) as exc_info:
        await allocator.allocate_unique(max_attempts=5)

    assert exc_info.value.attempts == 5
    assert mock_store.exists.await_count == 5


@pytest.mark.asyncio
async def test_allocate_unique_rejects_non_positive_attempts(mock_store) -> None:
    with pytest.raises(ValueError):
        await CodeAllocator(mock_store).allocate_unique(max_attempts=0)


@pytest.mark.asyncio
async def test_allocate_unique_sequential_codes_are_distinct(store: LinkStore, make_link) -> None:
    allocator = CodeAllocator(store)
    codes = set()
    for i in range(50):
        code = await allocator.allocate_unique()
        assert code not in codes
        codes.add(code)
        await make_link(code=code, target_url=f"https://example.com/{i}")
    assert len(codes) == 50


@pytest.mark.asyncio
async def test_allocate_unique_propagates_store_errors(mock_store) -> None:
    mock_store.exists.side_effect = RuntimeError("database down")

    with pytest.raises(RuntimeError, match="database down"):
        await CodeAllocator(mock_store).allocate_unique()


@pytest.mark.asyncio
async def test_reserve_custom_free_code(mock_store) -> None:
    assert await CodeAllocator(mock_store).reserve_custom("mylink") == "mylink"
    mock_store.exists.assert_awaited_once_with("mylink")


@pytest.mark.asyncio
async def test_reserve_custom_taken_code(mock_store) -> None:
    mock_store.exists.return_value = True

    with pytest.raises(CodeAlreadyTakenError) as exc_info:
        await CodeAllocator(mock_store).reserve_custom("mylink")

    assert exc_info.value.code == "mylink"
