"""
Push-to-talk terminal client for the relay.

    realtime-voice-client --url ws://localhost:8000/realtime

Enter starts recording, Enter again stops and commits the turn,
`q` + Enter ends the session and prints its summary.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from billing.cost import format_cost
from client.capture import AudioCaptureAdapter, PermissionDenied
from client.playback import SoundDevicePlayback
from client.transport import RealtimeVoiceClient, TransportError
from constants import (
    CAPTURE_DEVICE_SAMPLE_RATE_HZ_DEFAULT,
    DEFAULT_USER_ID,
    S2C_RESPONSE_DONE,
    S2C_SPEECH_STARTED,
    S2C_TEXT_DELTA,
    S2C_TRANSCRIPT,
)
from protocol.messages import ServerMessage


def _print_message(msg: ServerMessage) -> None:
    if msg.event == S2C_TRANSCRIPT:
        print(f"\n[{msg.data.get('role')}] {msg.data.get('content')}")
    elif msg.event == S2C_TEXT_DELTA:
        print(msg.data.get("textChunk", ""), end="", flush=True)
    elif msg.event == S2C_RESPONSE_DONE:
        print()
    elif msg.event == S2C_SPEECH_STARTED:
        print("\n(listening...)")


def format_summary(summary: dict) -> str:
    return (
        f"session {summary.get('sessionId')}: "
        f"{summary.get('totalDuration', 0)}s, "
        f"{summary.get('messageCount', 0)} messages, "
        f"{format_cost(float(summary.get('estimatedCost', 0.0)))}"
    )


def parse_device(value: str) -> int | str:
    """sounddevice takes an int index or a name substring."""
    value = value.strip()
    return int(value) if value.isdigit() else value


async def finish_turn(capture: AudioCaptureAdapter) -> bool:
    """
    Stop recording and commit the turn.

    Returns False when the relay dropped the session mid-turn.
    """
    try:
        await capture.stop_capture()
    except TransportError as e:
        print(f"\nerror: {e}", file=sys.stderr)
        return False
    return True


async def run(args: argparse.Namespace) -> int:
    output = SoundDevicePlayback(device=args.output_device)
    client = RealtimeVoiceClient(
        url=args.url,
        user_id=args.user_id,
        playback=output.engine,
        on_message=_print_message,
    )
    capture = AudioCaptureAdapter(
        send_chunk=client.send_audio_chunk,
        commit=client.commit_audio,
        device_sample_rate_hz=args.input_rate,
        device=args.input_device,
    )

    try:
        await client.connect()
        session_id = await client.start_session()
    except TransportError as e:
        print(f"error: {e}", file=sys.stderr)
        output.close()
        return 1

    print(f"connected: {session_id}")
    output.start()
    try:
        while True:
            line = await asyncio.to_thread(input, "[Enter] talk, [q] quit > ")
            if line.strip().lower() == "q":
                break
            try:
                await capture.start_capture()
            except PermissionDenied as e:
                print(f"error: {e}", file=sys.stderr)
                continue
            await asyncio.to_thread(input, "recording... [Enter] to send > ")
            if not await finish_turn(capture):
                break
    finally:
        await finish_turn(capture)
        summary = None
        try:
            summary = await client.end_session()
        except TransportError as e:
            print(f"error: {e}", file=sys.stderr)
        await client.close()
        output.close()

    if summary:
        print(format_summary(summary))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Talk to the realtime voice relay")
    parser.add_argument("--url", default="ws://localhost:8000/realtime")
    parser.add_argument("--user-id", default=DEFAULT_USER_ID)
    parser.add_argument("--input-rate", type=int, default=CAPTURE_DEVICE_SAMPLE_RATE_HZ_DEFAULT)
    parser.add_argument("--input-device", type=parse_device, default=None)
    parser.add_argument("--output-device", type=parse_device, default=None)
    args = parser.parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
