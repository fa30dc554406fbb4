"""Tests for reassembling streamed deltas."""

from __future__ import annotations

import asyncio
import json

import pytest

from ragchat.ai.client import AIStreamEvent
from ragchat.ai.orchestration.stream_accumulator import AccumulatorState, StreamAccumulator, StreamError
from ragchat.ai.orchestration.types import RagContext
from tests.helpers import content_chunk, events_for, finish_chunk, tool_chunk


async def _source(events, *, error: Exception | None = None, closed: list[bool] | None = None):
    try:
        for event in events:
            yield event
        if error is not None:
            raise error
    finally:
        if closed is not None:
            closed.append(True)


def _feed_all(chunks):
    accumulator = StreamAccumulator()
    for event in events_for(chunks):
        accumulator.feed(event)
    return accumulator.finish()


def test_text_is_concatenation_of_deltas_in_order():
    result = _feed_all([content_chunk("Hel"), content_chunk("lo, "), content_chunk("world"), finish_chunk("stop")])

    assert result.text == "Hello, world"
    assert result.finish_reason == "stop"
    assert result.tool_calls == ()


def test_tool_call_arguments_concatenate_per_index():
    result = _feed_all(
        [
            tool_chunk(0, call_id="call_a", name="get_resources", arguments='{"resource'),
            tool_chunk(1, call_id="call_b", name="get_resources", arguments='{"x"'),
            tool_chunk(0, arguments='Categories": ["A"]}'),
            tool_chunk(1, arguments=": 1}"),
            finish_chunk("tool_calls"),
        ]
    )

    assert [call.id for call in result.tool_calls] == ["call_a", "call_b"]
    assert result.tool_calls[0].arguments == '{"resourceCategories": ["A"]}'
    assert result.tool_calls[1].arguments == '{"x": 1}'


def test_invocations_are_ordered_by_index_not_arrival():
    result = _feed_all(
        [
            tool_chunk(2, call_id="late", name="b"),
            tool_chunk(0, call_id="early", name="a"),
        ]
    )

    assert [call.index for call in result.tool_calls] == [0, 2]
    assert [call.id for call in result.tool_calls] == ["early", "late"]


def test_repeated_name_fragment_overwrites():
    result = _feed_all(
        [
            tool_chunk(0, call_id="call_1", name="get_res"),
            tool_chunk(0, name="get_resources"),
        ]
    )

    assert result.tool_calls[0].name == "get_resources"


def test_missing_id_is_synthesized_and_unique():
    result = _feed_all([tool_chunk(0, name="a"), tool_chunk(1, name="b")])

    first, second = result.tool_calls
    assert first.id.startswith("call_0_")
    assert second.id.startswith("call_1_")
    assert first.id != second.id


def test_finish_reason_defaults_from_tool_calls():
    assert _feed_all([tool_chunk(0, call_id="c", name="a")]).finish_reason == "tool_calls"
    assert _feed_all([content_chunk("hi")]).finish_reason == "stop"


def test_feed_after_finish_is_rejected():
    accumulator = StreamAccumulator()
    accumulator.finish()

    assert accumulator.state is AccumulatorState.FINISHED
    with pytest.raises(RuntimeError):
        accumulator.feed(AIStreamEvent(type="content.delta", content="late"))
    with pytest.raises(RuntimeError):
        accumulator.finish()


@pytest.mark.asyncio
async def test_consume_keeps_reading_after_finish_reason():
    events = events_for(
        [
            tool_chunk(0, call_id="call_1", name="get_resources", arguments="{"),
            finish_chunk("tool_calls"),
            tool_chunk(0, arguments="}"),
        ]
    )

    result = await StreamAccumulator().consume(_source(events))

    assert result.tool_calls[0].arguments == "{}"


@pytest.mark.asyncio
async def test_consume_reports_growing_text_to_callback():
    seen: list[str] = []
    events = events_for([content_chunk("a"), content_chunk(""), content_chunk("b")])

    await StreamAccumulator().consume(_source(events), on_text=seen.append)

    assert seen == ["a", "ab"]


@pytest.mark.asyncio
async def test_consume_awaits_async_callbacks():
    seen: list[str] = []

    async def on_text(text: str) -> None:
        seen.append(text)

    await StreamAccumulator().consume(_source(events_for([content_chunk("x")])), on_text=on_text)

    assert seen == ["x"]


@pytest.mark.asyncio
async def test_source_failure_discards_partial_state_and_closes_source():
    closed: list[bool] = []
    accumulator = StreamAccumulator()
    events = events_for([content_chunk("partial"), tool_chunk(0, call_id="c", name="a")])

    with pytest.raises(ConnectionError):
        await accumulator.consume(_source(events, error=ConnectionError("reset"), closed=closed))

    assert closed == [True]
    assert accumulator.text == ""
    assert accumulator.state is AccumulatorState.FINISHED


@pytest.mark.asyncio
async def test_callback_failure_closes_source():
    closed: list[bool] = []

    def on_text(_: str) -> None:
        raise ValueError("display failed")

    with pytest.raises(ValueError):
        await StreamAccumulator().consume(
            _source(events_for([content_chunk("a"), content_chunk("b")]), closed=closed),
            on_text=on_text,
        )

    assert closed == [True]


@pytest.mark.asyncio
async def test_in_band_error_raises_stream_error():
    events = events_for([content_chunk("a"), {"error": {"message": "upstream died", "type": "stream_error"}}])

    with pytest.raises(StreamError) as excinfo:
        await StreamAccumulator().consume(_source(events))

    assert str(excinfo.value) == "upstream died"
    assert excinfo.value.payload["type"] == "stream_error"


@pytest.mark.asyncio
async def test_rag_context_event_is_recorded_and_reported():
    reported: list[RagContext] = []
    chunk = {"type": "rag_context", "context": "passage", "contextLength": 7, "enabled": True}

    result = await StreamAccumulator().consume(
        _source(events_for([chunk, content_chunk("answer")])),
        on_rag_context=reported.append,
    )

    assert result.text == "answer"
    assert result.rag_context == RagContext(context="passage", context_length=7, enabled=True)
    assert reported == [result.rag_context]


def test_split_argument_fragments_parse_as_one_object():
    result = _feed_all([tool_chunk(0, call_id="c", name="f", arguments='{"a":'), tool_chunk(0, arguments="1}")])

    (call,) = result.tool_calls
    assert call.arguments == '{"a":1}'
    assert json.loads(call.arguments) == {"a": 1}


def test_many_small_deltas_keep_running_text():
    accumulator = StreamAccumulator()
    pieces = [f"{n % 10}" for n in range(5000)]

    for piece in pieces:
        accumulator.feed(AIStreamEvent(type="content.delta", content=piece))

    assert accumulator.text == "".join(pieces)
    assert accumulator.finish().text == "".join(pieces)


@pytest.mark.asyncio
async def test_consume_awaits_future_returned_by_callback():
    loop = asyncio.get_running_loop()
    seen: list[str] = []

    def on_text(text: str) -> asyncio.Future[None]:
        future = loop.create_future()
        loop.call_soon(lambda: (seen.append(text), future.set_result(None)))
        return future

    await StreamAccumulator().consume(_source(events_for([content_chunk("a"), content_chunk("b")])), on_text=on_text)

    assert seen == ["a", "ab"]
