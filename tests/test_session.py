from __future__ import annotations

import asyncio
import json

from bridge.errors import GenerationError, InvalidMessageError, SessionConnectionError
from bridge.schemas import TranscriptEvent, Turn
from bridge.session import END_MARKER, FALLBACK_MARKER, SessionFactory, SessionState
from config.settings import Settings
from llm.base import BaseLLMClient

GREETING = {
    "response_id": 0,
    "content": "Hello, I'm your AI buddy. How did your day go?",
    "content_complete": True,
    "end_call": False,
}


class FakeConnection:
    def __init__(self, *, fail_after: int | None = None) -> None:
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue[str | Exception | None] = asyncio.Queue()
        self.closed = False
        self.close_calls = 0
        self.writes_after_close = 0
        self._fail_after = fail_after

    async def send_text(self, data: str) -> None:
        if self.closed:
            self.writes_after_close += 1
            raise SessionConnectionError("closed")
        if self._fail_after is not None and len(self.sent) >= self._fail_after:
            raise SessionConnectionError("broken pipe")
        self.sent.append(json.loads(data))

    async def receive_text(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise SessionConnectionError("peer closed")
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class ScriptedLLM(BaseLLMClient):
    """Plays one script per stream: strings are yielded, events awaited, exceptions raised."""

    def __init__(self, *scripts: list) -> None:
        self._scripts = list(scripts)
        self.calls: list[list[dict[str, str]]] = []

    async def stream_chat(self, messages):
        self.calls.append(list(messages))
        script = self._scripts.pop(0) if self._scripts else []
        for step in script:
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, asyncio.Event):
                await step.wait()
                continue
            yield step


def make_session(llm: BaseLLMClient, connection: FakeConnection, **overrides):
    settings = Settings(_env_file=None, system_prompt="SYS", **overrides)
    return SessionFactory(settings, llm).create("call-1", connection)


def transcript_event(response_id: int, interaction_type: str = "response_required", *turns) -> TranscriptEvent:
    turns = turns or (("user", "hi"),)
    return TranscriptEvent(
        response_id=response_id,
        transcript=[Turn(role=role, content=content) for role, content in turns],
        interaction_type=interaction_type,
    )


def fragment(response_id: int, content: str) -> dict:
    return {"response_id": response_id, "content": content, "content_complete": False, "end_call": False}


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


def test_greeting_is_first_fragment():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(), conn)
        await session.on_connect()
        return conn.sent, session.state

    sent, state = asyncio.run(_run())
    assert sent == [GREETING]
    assert state is SessionState.IDLE


def test_streams_fragments_then_end_marker():
    async def _run():
        conn = FakeConnection()
        llm = ScriptedLLM(["Hel", "lo"])
        session = make_session(llm, conn)
        await session.on_connect()
        session.on_transcript(transcript_event(1))
        assert session.state is SessionState.GENERATING
        await session.active_generation.wait()
        return conn.sent, session, llm

    sent, session, llm = asyncio.run(_run())
    assert sent == [
        GREETING,
        fragment(1, "Hel"),
        fragment(1, "lo"),
        fragment(1, "\n\n###### [END] ######"),
    ]
    assert session.state is SessionState.IDLE
    assert session.active_generation is None
    assert llm.calls[0] == [
        {"role": "system", "content": "SYS"},
        {"role": "user", "content": "hi"},
    ]


def test_empty_stream_sends_fallback_marker():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM([]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(4))
        await session.active_generation.wait()
        return conn.sent

    sent = asyncio.run(_run())
    assert sent[1:] == [fragment(4, "[ERROR] NO RESPONSE, PLEASE RETRY")]


def test_backend_error_after_fragments_still_sends_fallback():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(["Hi", GenerationError("backend down")]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(2))
        await session.active_generation.wait()
        return conn.sent, session.state

    sent, state = asyncio.run(_run())
    assert sent[1:] == [fragment(2, "Hi"), fragment(2, FALLBACK_MARKER)]
    assert state is SessionState.IDLE


def test_unexpected_client_failure_degrades_to_fallback():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM([RuntimeError("bug")]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(2))
        await session.active_generation.wait()
        return conn.sent

    sent = asyncio.run(_run())
    assert sent[-1] == fragment(2, FALLBACK_MARKER)


def test_generation_timeout_sends_fallback():
    async def _run():
        conn = FakeConnection()
        never = asyncio.Event()
        session = make_session(ScriptedLLM([never]), conn, generation_timeout_seconds=0.05)
        await session.on_connect()
        session.on_transcript(transcript_event(3))
        await session.active_generation.wait()
        return conn.sent, session.state

    sent, state = asyncio.run(_run())
    assert sent[1:] == [fragment(3, FALLBACK_MARKER)]
    assert state is SessionState.IDLE


def test_update_only_is_silent_and_idempotent():
    async def _run():
        conn = FakeConnection()
        llm = ScriptedLLM()
        session = make_session(llm, conn)
        await session.on_connect()
        update = transcript_event(5, "update_only", ("agent", "Hello"), ("user", "I was"))
        session.on_transcript(update)
        first_history = session.history
        session.on_transcript(update)
        await asyncio.sleep(0.01)
        return conn.sent, session, first_history, llm

    sent, session, first_history, llm = asyncio.run(_run())
    assert sent == [GREETING]
    assert session.history == first_history
    assert [turn.content for turn in session.history] == ["Hello", "I was"]
    assert session.state is SessionState.IDLE
    assert session.active_generation is None
    assert llm.calls == []


def test_newer_event_supersedes_running_generation():
    async def _run():
        conn = FakeConnection()
        gate = asyncio.Event()
        llm = ScriptedLLM(["a", gate, "b"], ["x", "y"])
        session = make_session(llm, conn)
        await session.on_connect()

        session.on_transcript(transcript_event(1))
        first = session.active_generation
        await wait_until(lambda: len(conn.sent) == 2)

        session.on_transcript(transcript_event(2, "response_required", ("user", "hi"), ("user", "wait")))
        mark = len(conn.sent)
        second = session.active_generation
        gate.set()
        await second.wait()
        await first.wait()
        return conn.sent, mark, first, second, llm

    sent, mark, first, second, llm = asyncio.run(_run())
    assert sent[1] == fragment(1, "a")
    assert all(item["response_id"] != 1 for item in sent[mark:])
    assert sent[mark:] == [fragment(2, "x"), fragment(2, "y"), fragment(2, END_MARKER)]
    assert first.is_cancelled
    assert first.task.cancelled()
    assert not second.is_cancelled
    assert llm.calls[1][-1] == {"role": "user", "content": "wait"}


def test_reminder_required_triggers_generation():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(["Still there?"]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(7, "reminder_required"))
        await session.active_generation.wait()
        return conn.sent

    sent = asyncio.run(_run())
    assert sent[1:] == [fragment(7, "Still there?"), fragment(7, END_MARKER)]


def test_disconnect_mid_generation_cancels_and_stops_writing():
    async def _run():
        conn = FakeConnection()
        gate = asyncio.Event()
        llm = ScriptedLLM(["a", gate, "b"])
        session = make_session(llm, conn)
        await session.on_connect()
        session.on_transcript(transcript_event(1))
        handle = session.active_generation
        await wait_until(lambda: len(conn.sent) == 2)

        await session.on_disconnect()
        gate.set()
        await asyncio.sleep(0.01)
        session.on_transcript(transcript_event(2))
        return conn, session, handle, llm

    conn, session, handle, llm = asyncio.run(_run())
    assert handle.is_cancelled
    assert session.state is SessionState.CLOSED
    assert conn.close_calls == 1
    assert conn.writes_after_close == 0
    assert len(conn.sent) == 2
    assert len(llm.calls) == 1


def test_write_failure_closes_session():
    async def _run():
        conn = FakeConnection(fail_after=2)
        session = make_session(ScriptedLLM(["a", "b", "c"]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(1))
        await session.active_generation.wait()
        return conn, session

    conn, session = asyncio.run(_run())
    assert session.state is SessionState.CLOSED
    assert conn.closed
    assert conn.sent == [GREETING, fragment(1, "a")]


def test_end_call_sends_terminal_fragment_and_closes():
    async def _run():
        conn = FakeConnection()
        gate = asyncio.Event()
        session = make_session(ScriptedLLM([gate, "late"]), conn)
        await session.on_connect()
        session.on_transcript(transcript_event(3))
        handle = session.active_generation
        await session.end_call("Goodbye!")
        gate.set()
        await handle.wait()
        return conn, session, handle

    conn, session, handle = asyncio.run(_run())
    assert conn.sent[-1] == {"response_id": 3, "content": "Goodbye!", "content_complete": True, "end_call": True}
    assert handle.is_cancelled
    assert session.state is SessionState.CLOSED
    assert conn.closed


def test_run_loop_decodes_messages_and_skips_garbage():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(["Hel", "lo"]), conn)
        runner = asyncio.create_task(session.run())

        conn.inbox.put_nowait("not json")
        conn.inbox.put_nowait(json.dumps({"interaction_type": "ping_pong", "timestamp": 1}))
        conn.inbox.put_nowait(
            json.dumps(
                {
                    "response_id": 1,
                    "transcript": [{"role": "user", "content": "hi"}],
                    "interaction_type": "response_required",
                }
            )
        )
        await wait_until(lambda: len(conn.sent) == 4)
        conn.inbox.put_nowait(None)
        await asyncio.wait_for(runner, 1)
        return conn, session

    conn, session = asyncio.run(_run())
    assert conn.sent == [
        GREETING,
        fragment(1, "Hel"),
        fragment(1, "lo"),
        fragment(1, END_MARKER),
    ]
    assert session.state is SessionState.CLOSED
    assert conn.close_calls == 1


def test_run_loop_exits_when_session_closed_elsewhere():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(), conn)
        runner = asyncio.create_task(session.run())
        await wait_until(lambda: len(conn.sent) == 1)
        await session.end_call("Bye", response_id=0)
        await asyncio.wait_for(runner, 1)
        return conn, session

    conn, session = asyncio.run(_run())
    assert conn.sent[-1]["end_call"] is True
    assert session.state is SessionState.CLOSED


def test_run_loop_skips_undecodable_frames():
    async def _run():
        conn = FakeConnection()
        session = make_session(ScriptedLLM(["ok"]), conn)
        runner = asyncio.create_task(session.run())

        conn.inbox.put_nowait(InvalidMessageError("Binary frame is not valid UTF-8"))
        conn.inbox.put_nowait(
            json.dumps(
                {
                    "response_id": 2,
                    "transcript": [{"role": "user", "content": "hi"}],
                    "interaction_type": "response_required",
                }
            )
        )
        await wait_until(lambda: len(conn.sent) == 3)
        conn.inbox.put_nowait(None)
        await asyncio.wait_for(runner, 1)
        return conn, session

    conn, session = asyncio.run(_run())
    assert conn.sent == [GREETING, fragment(2, "ok"), fragment(2, END_MARKER)]
    assert session.state is SessionState.CLOSED
