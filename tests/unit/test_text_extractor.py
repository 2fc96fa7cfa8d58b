"""Tests for the delegate/heuristic composition and the Claude delegate."""

import asyncio
from datetime import date, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.core.errors import UpstreamUnavailable
from booking_bot.core.extraction.delegate import (
    ClaudeExtractionDelegate,
    ExtractionContext,
    ExtractionDelegate,
)
from booking_bot.core.extraction.extractor import TextExtractor
from booking_bot.core.extraction.types import MISSING_DATETIME, MISSING_SERVICE, ExtractionResult
from booking_bot.core.scheduling.types import Modality
from booking_bot.infra.claude import ClaudeClientError, ClaudeResponse
from tests.conftest import BA_TZ, MONDAY_9AM

SERVICES = ["Consulta general", "Control"]


class StaticDelegate(ExtractionDelegate):
    """Returns a fixed result, records calls."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def extract(self, text, context):
        self.calls.append((text, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def claude_response(content: str) -> ClaudeResponse:
    return ClaudeResponse(
        content=content,
        model="claude-3-5-haiku-20241022",
        input_tokens=120,
        output_tokens=40,
        stop_reason="end_turn",
        latency_ms=85.0,
    )


class TestTextExtractor:
    """Delegate first, heuristic fallback."""

    @pytest.mark.asyncio
    async def test_heuristic_only(self):
        extractor = TextExtractor()

        result = await extractor.extract("control martes 10:00", BA_TZ, SERVICES, MONDAY_9AM)

        assert result.source == "heuristic"
        assert result.service == "Control"
        assert result.local_start == datetime(2026, 10, 20, 10, 0)

    @pytest.mark.asyncio
    async def test_delegate_timeout_falls_back(self):
        delegate = StaticDelegate(result=ExtractionResult(service="Control"), delay=1.0)
        extractor = TextExtractor(delegate=delegate, timeout=0.01)

        result = await extractor.extract("consulta general martes 10:00", BA_TZ, SERVICES, MONDAY_9AM)

        assert result.source == "heuristic"
        assert result.service == "Consulta general"
        assert result.is_complete

    @pytest.mark.asyncio
    async def test_delegate_failure_falls_back(self):
        delegate = StaticDelegate(error=UpstreamUnavailable("rate limited"))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        result = await extractor.extract("quiero un turno", BA_TZ, SERVICES, MONDAY_9AM)

        assert len(delegate.calls) == 1
        assert result.source == "heuristic"
        assert MISSING_SERVICE in result.missing_fields

    @pytest.mark.asyncio
    async def test_delegate_result_is_normalized(self):
        delegate = StaticDelegate(result=ExtractionResult(
            service="consulta general",
            day=date(2026, 10, 22),
            time_of_day=time(11, 0),
            modality=Modality.REMOTE,
            source="llm",
        ))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        result = await extractor.extract(
            "el jueves a las 11 por video, consulta general", BA_TZ, SERVICES, MONDAY_9AM
        )

        assert result.source == "llm"
        assert result.service == "Consulta general"
        assert result.local_start == datetime(2026, 10, 22, 11, 0)
        assert result.modality == Modality.REMOTE
        assert result.missing_fields == ()

    @pytest.mark.asyncio
    async def test_gaps_filled_from_heuristic(self):
        # Delegate invents a service and misses the time
        delegate = StaticDelegate(result=ExtractionResult(
            service="Kinesiología",
            day=date(2026, 10, 20),
            source="llm",
        ))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        result = await extractor.extract("control martes 10:00", BA_TZ, SERVICES, MONDAY_9AM)

        assert result.service == "Control"
        assert result.local_start == datetime(2026, 10, 20, 10, 0)
        assert result.is_complete

    @pytest.mark.asyncio
    async def test_weekday_keeps_heuristic_date(self):
        # Delegate reads "martes" as today on a Tuesday
        tuesday = MONDAY_9AM + timedelta(days=1)
        delegate = StaticDelegate(result=ExtractionResult(
            service="Control",
            day=date(2026, 10, 20),
            time_of_day=time(14, 30),
            source="llm",
        ))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        result = await extractor.extract("control el martes 14:30", BA_TZ, SERVICES, tuesday)

        assert result.local_start == datetime(2026, 10, 27, 14, 30)
        assert result.is_complete

    @pytest.mark.asyncio
    async def test_past_delegate_date_is_dropped(self):
        delegate = StaticDelegate(result=ExtractionResult(
            service="Control",
            day=date(2026, 10, 1),
            time_of_day=time(10, 0),
            source="llm",
        ))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        result = await extractor.extract("control a las 10", BA_TZ, SERVICES, MONDAY_9AM)

        assert result.day is None
        assert MISSING_DATETIME in result.missing_fields

    @pytest.mark.asyncio
    async def test_context_uses_local_time(self):
        delegate = StaticDelegate(result=ExtractionResult(source="llm"))
        extractor = TextExtractor(delegate=delegate, timeout=1.0)

        await extractor.extract("hola", BA_TZ, SERVICES, MONDAY_9AM)

        _, context = delegate.calls[0]
        assert context.local_now == datetime(2026, 10, 19, 9, 0)
        assert context.services == SERVICES


class TestClaudeExtractionDelegate:
    """Claude-backed delegate."""

    @pytest.fixture
    def context(self):
        return ExtractionContext(
            local_now=datetime(2026, 10, 19, 9, 0),
            timezone=BA_TZ,
            services=SERVICES,
        )

    @pytest.fixture
    def mock_client(self):
        client = MagicMock()
        client.generate = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_parses_json(self, mock_client, context):
        mock_client.generate.return_value = claude_response(
            '```json\n{"service": "Control", "date": "2026-10-20", "time": "14:30",'
            ' "duration_minutes": 45, "modality": "remote"}\n```'
        )
        delegate = ClaudeExtractionDelegate(claude_client=mock_client)

        result = await delegate.extract("control el martes 14:30 virtual, 45 min", context)

        assert result.service == "Control"
        assert result.local_start == datetime(2026, 10, 20, 14, 30)
        assert result.duration_minutes == 45
        assert result.modality == Modality.REMOTE
        assert result.source == "llm"

        kwargs = mock_client.generate.call_args.kwargs
        assert kwargs["max_retries"] == 1
        assert "lunes 2026-10-19" in kwargs["prompt"]
        assert "Consulta general, Control" in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_nulls_and_bad_values(self, mock_client, context):
        mock_client.generate.return_value = claude_response(
            '{"service": null, "date": "mañana", "time": null,'
            ' "duration_minutes": "treinta", "modality": "teleport"}'
        )
        delegate = ClaudeExtractionDelegate(claude_client=mock_client)

        result = await delegate.extract("mañana", context)

        assert result.service is None
        assert result.day is None
        assert result.duration_minutes is None
        assert result.modality is None

    @pytest.mark.asyncio
    async def test_client_error_is_upstream_unavailable(self, mock_client, context):
        mock_client.generate.side_effect = ClaudeClientError("Max retries exceeded")
        delegate = ClaudeExtractionDelegate(claude_client=mock_client)

        with pytest.raises(UpstreamUnavailable):
            await delegate.extract("martes 10:00", context)

    @pytest.mark.asyncio
    async def test_invalid_json_is_upstream_unavailable(self, mock_client, context):
        mock_client.generate.return_value = claude_response("Claro, el martes a las 10.")
        delegate = ClaudeExtractionDelegate(claude_client=mock_client)

        with pytest.raises(UpstreamUnavailable):
            await delegate.extract("martes 10:00", context)
