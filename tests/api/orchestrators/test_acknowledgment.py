"""Tests for the per-request acknowledgment guard."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from api.orchestrators.acknowledgment import AcknowledgmentTracker


@pytest.mark.asyncio
async def test_first_acknowledgment_calls_responder():
    responder = MagicMock()
    ack = AcknowledgmentTracker(responder, sender_id="whatsapp:+5511999990000")

    assert ack.acknowledged is False
    assert await ack.acknowledge("delivered") is True
    assert ack.acknowledged is True
    responder.assert_called_once_with()


@pytest.mark.asyncio
async def test_forced_double_acknowledgment_is_noop():
    responder = MagicMock()
    ack = AcknowledgmentTracker(responder)

    await ack.acknowledge("delivered")
    second = await ack.acknowledge("failure")

    assert second is False
    responder.assert_called_once()


@pytest.mark.asyncio
async def test_async_responder_is_awaited():
    responder = AsyncMock()
    ack = AcknowledgmentTracker(responder)

    await ack.acknowledge("deferred")

    responder.assert_awaited_once()


@pytest.mark.asyncio
async def test_raising_responder_still_counts_as_acknowledged():
    responder = MagicMock(side_effect=RuntimeError("client went away"))
    ack = AcknowledgmentTracker(responder)

    with pytest.raises(RuntimeError):
        await ack.acknowledge("delivered")

    assert ack.acknowledged is True
    assert await ack.acknowledge("failure") is False
    responder.assert_called_once()
