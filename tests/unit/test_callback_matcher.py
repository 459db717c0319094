import asyncio

import pytest

from redirector.errors import ValidatorError
from redirector.runtime.contracts import Operation, RedirectOptions
from redirector.runtime.matcher import CallbackMatcher, parse_candidate


def _operation(validator=None):
    return Operation(
        id="op0000000000test",
        url="https://provider.test/authorize",
        options=RedirectOptions(callback_validator=validator),
        transport="fake",
    )


@pytest.mark.parametrize(
    "candidate",
    [None, 42, "", "   ", "relative/path", "http://host:notaport/cb"],
)
def test_parse_candidate_rejects_unusable_values(candidate):
    assert parse_candidate(candidate) is None


def test_parse_candidate_accepts_absolute_uris_and_paths():
    assert parse_candidate("myapp://callback?code=1").scheme == "myapp"
    assert parse_candidate("/callback?code=1").path == "/callback"


def test_match_without_validator_accepts_well_formed_candidates():
    matcher = CallbackMatcher()
    assert matcher.match("https://app.test/cb?code=1", _operation()) is True
    assert matcher.match("not a uri", _operation()) is False


def test_match_treats_false_as_soft_reject():
    matcher = CallbackMatcher()
    operation = _operation(lambda uri: "code=" in uri)
    assert matcher.match("https://app.test/cb?error=denied", operation) is False
    assert matcher.match("https://app.test/cb?code=ok", operation) is True


def test_match_wraps_raising_validator():
    def _raise(_uri):
        raise KeyError("state")

    with pytest.raises(ValidatorError) as exc_info:
        CallbackMatcher().match("https://app.test/cb", _operation(_raise))

    assert exc_info.value.details == {"operation_id": "op0000000000test"}
    assert "KeyError" in str(exc_info.value)


def test_match_drives_async_validator_without_a_loop():
    async def _validator(uri):
        await asyncio.sleep(0)
        return uri.endswith("ok")

    matcher = CallbackMatcher()
    operation = _operation(_validator)
    assert matcher.needs_loop(operation) is True
    assert matcher.match("https://app.test/cb?state=ok", operation) is True
    assert matcher.match("https://app.test/cb?state=no", operation) is False


@pytest.mark.asyncio
async def test_match_async_awaits_validator_and_wraps_errors():
    async def _raise(_uri):
        raise RuntimeError("lookup failed")

    matcher = CallbackMatcher()
    assert await matcher.match_async("https://app.test/cb", _operation()) is True
    with pytest.raises(ValidatorError, match="lookup failed"):
        await matcher.match_async("https://app.test/cb", _operation(_raise))


@pytest.mark.asyncio
async def test_match_refuses_to_block_on_its_own_loop():
    async def _validator(_uri):
        return True

    operation = _operation(_validator)
    operation.loop = asyncio.get_running_loop()
    with pytest.raises(ValidatorError):
        CallbackMatcher().match("https://app.test/cb", operation)
