"""Event identifier generation and validation."""

from __future__ import annotations

import pytest

from storekeeper.domain import ids


def test_generate_ulid_is_deterministic_with_fixed_inputs() -> None:
    first = ids.generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=lambda n: b"\x00" * n)
    second = ids.generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=lambda n: b"\x00" * n)

    assert first == second
    assert len(first) == ids.ULID_LENGTH
    assert set(first) <= set(ids.CROCKFORD_BASE32_ALPHABET)


def test_ulids_sort_by_timestamp() -> None:
    earlier = ids.generate_ulid(timestamp_ms=1_000)
    later = ids.generate_ulid(timestamp_ms=2_000)

    assert earlier < later


def test_generate_ulid_rejects_bad_inputs() -> None:
    with pytest.raises(ValueError, match="timestamp_ms"):
        ids.generate_ulid(timestamp_ms=-1)
    with pytest.raises(ValueError, match="randbytes"):
        ids.generate_ulid(timestamp_ms=0, randbytes=lambda n: b"\x00")


def test_event_ids_validate() -> None:
    event_id = ids.generate_event_id()

    assert event_id.startswith("evt-")
    ids.validate_event_id(event_id)


@pytest.mark.parametrize(
    "bad",
    ["run-01HZZZZZZZZZZZZZZZZZZZZZZZ", "evt-short", "evt-01HZZZZZZZZZZZZZZZZZZZZZZU"],
)
def test_validate_event_id_rejects_malformed_ids(bad: str) -> None:
    with pytest.raises(ValueError):
        ids.validate_event_id(bad)
