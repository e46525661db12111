"""
LiveKit worker entrypoint.

Each dispatched job connects audio-only, waits for the first participant and
runs one ConversationOrchestrator session until the participant leaves, the
room disconnects or the job shuts down.

Usage:
    python -m voice_agent.agent dev
"""
import asyncio
import os

from livekit import rtc
from livekit.agents import AutoSubscribe, JobContext, WorkerOptions, cli

from logging_setup import get_logger, Component, setup_logging
from observability.event_store import event_store
from .config import get_config
from .context import build_dispatch_context
from .errors import AcquisitionError
from .instructions import load_persona
from .livekit_audio import LiveKitAudioSource, LiveKitPlaybackSink
from .orchestrator import ConversationOrchestrator
from .pipeline_client import HttpPipelineClient

logger = get_logger(Component.AGENT)


async def entrypoint(ctx: JobContext):
    """Run one voice conversation for a dispatched room."""
    await ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)
    participant = await ctx.wait_for_participant()

    dispatch_ctx = build_dispatch_context(
        room_name=ctx.room.name or "unknown",
        job_metadata=getattr(ctx.job, "metadata", None),
        participant_attributes=getattr(participant, "attributes", None),
    )
    session_id = dispatch_ctx.session_id
    session_logger = logger.with_session(session_id)

    config = get_config()
    persona = load_persona(dispatch_ctx.persona or config.persona)
    session_logger.debug(
        "Voice agent starting",
        room=ctx.room.name,
        participant_identity=participant.identity,
        persona=persona.name,
    )

    pipeline = HttpPipelineClient(config)
    playback = LiveKitPlaybackSink(ctx.room, sample_rate=config.audio_sample_rate)
    audio_source = LiveKitAudioSource(
        ctx.room,
        participant,
        sample_rate=config.audio_sample_rate,
        fft_size=config.fft_size,
    )
    orchestrator = ConversationOrchestrator(
        config,
        audio_source,
        pipeline,
        playback,
        session_id=session_id,
        system_prompt=persona.prompt,
        greeting=persona.greeting_text,
    )

    async def shutdown() -> None:
        await orchestrator.disconnect()
        await playback.aclose()
        await pipeline.aclose()

    ctx.add_shutdown_callback(shutdown)

    def on_participant_disconnected(p: rtc.RemoteParticipant):
        if p.identity == participant.identity:
            session_logger.info("Participant left", participant_identity=p.identity)
            asyncio.create_task(orchestrator.disconnect())

    ctx.room.on("participant_disconnected", on_participant_disconnected)
    ctx.room.on("disconnected", lambda *_: asyncio.create_task(orchestrator.disconnect()))

    await playback.start()
    try:
        await orchestrator.connect()
    except AcquisitionError as e:
        session_logger.error("Session could not start", error=str(e))
        await shutdown()
        event_store.discard_session(session_id)
        return

    await orchestrator.wait_closed()
    counts = event_store.counts(session_id)
    session_logger.info(
        "Voice agent session ended",
        turns_completed=orchestrator.turns_completed,
        turns_failed=counts.get("turn.failed", 0),
        turns_discarded=counts.get("turn.discarded", 0),
        history_length=len(orchestrator.history),
    )
    event_store.discard_session(session_id)


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)

    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            agent_name=os.getenv("LIVEKIT_AGENT_NAME", ""),
        )
    )
