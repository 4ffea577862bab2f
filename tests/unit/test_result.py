"""Unit tests for Result types and the gateway error-mapping decorator."""

from __future__ import annotations

import pytest

from capx.infra.result import (
    Err,
    Error,
    MalformedResponseError,
    Ok,
    TransportError,
    async_returns_result,
    get_error_metrics,
)


@pytest.mark.unit
def test_ok_and_err_basics() -> None:
    ok: Ok[int, Error] = Ok(1)
    err: Err[int, Error] = Err(TransportError("down"))

    assert ok.is_ok() and not ok.is_err()
    assert ok.unwrap() == 1
    assert err.is_err() and not err.is_ok()
    assert isinstance(err.unwrap_err(), TransportError)
    with pytest.raises(RuntimeError):
        err.unwrap()
    with pytest.raises(RuntimeError):
        ok.unwrap_err()


@pytest.mark.unit
def test_error_log_safe_context_masks_secrets() -> None:
    error = TransportError("denied", context={"url": "https://x", "authorization": "Token abc"})
    safe = error.log_safe_context()
    assert safe["url"] == "https://x"
    assert safe["authorization"] != "Token abc"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_async_returns_result_wraps_values_and_maps_exceptions() -> None:
    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def parse(raw: str) -> int:
        if raw == "down":
            raise ConnectionError("refused")
        return int(raw)

    assert (await parse("7")).unwrap() == 7

    malformed = await parse("seven")
    assert isinstance(malformed.unwrap_err(), MalformedResponseError)
    assert isinstance(malformed.unwrap_err().cause, ValueError)

    transport = await parse("down")
    assert isinstance(transport.unwrap_err(), TransportError)
    assert get_error_metrics().get("MalformedResponseError") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_async_returns_result_keeps_domain_errors() -> None:
    original = MalformedResponseError("listing must be a JSON array")

    @async_returns_result(TransportError)
    async def fetch() -> int:
        raise original

    result = await fetch()
    assert result.unwrap_err() is original
