"""
Stream a 16 kHz mono 16-bit WAV file to a running relay, like the browser does,
and print every transcript line and ASL gloss that comes back.

Run: python scripts/stream_wav.py sample.wav --asl --url ws://localhost:3001
"""
import argparse
import asyncio
import json
import sys
import wave

import requests
import websockets

CHUNK_MS = 256  # browser ScriptProcessor sends 4096 samples at 16 kHz


async def stream(path: str, url: str, asl: bool, tail_seconds: float) -> None:
    with wave.open(path, "rb") as wav:
        if wav.getframerate() != 16000 or wav.getnchannels() != 1 or wav.getsampwidth() != 2:
            print(f"Error: {path} must be 16 kHz mono 16-bit PCM")
            sys.exit(1)
        pcm = wav.readframes(wav.getnframes())

    chunk_bytes = 16000 * 2 * CHUNK_MS // 1000
    async with websockets.connect(url) as ws:
        await ws.send(json.dumps({"type": "aslMode", "enabled": asl}))

        async def reader():
            async for message in ws:
                try:
                    data = json.loads(message)
                except ValueError:
                    print(f"📝 {message}")
                    continue
                if isinstance(data, dict) and data.get("type") == "aslGloss":
                    print(f"🤟 {data['gloss']}")
                elif isinstance(data, dict) and data.get("type") == "error":
                    print(f"❌ {data.get('message')}")
                else:
                    print(f"📝 {message}")

        read_task = asyncio.create_task(reader())
        for i in range(0, len(pcm), chunk_bytes):
            await ws.send(pcm[i:i + chunk_bytes])
            await asyncio.sleep(CHUNK_MS / 1000)
        # Leave room for the pause timer and the gloss round-trip
        await asyncio.sleep(tail_seconds)
        read_task.cancel()


def main():
    parser = argparse.ArgumentParser(description="Stream a WAV file through the relay")
    parser.add_argument("wav", help="16 kHz mono 16-bit WAV file")
    parser.add_argument("--url", default="ws://localhost:3001/ws/transcribe")
    parser.add_argument("--asl", action="store_true", help="Enable ASL gloss mode")
    parser.add_argument("--tail", type=float, default=5.0, help="Seconds to wait after the last chunk")
    args = parser.parse_args()

    health_url = args.url.replace("ws://", "http://").replace("wss://", "https://").split("/ws/")[0].rstrip("/") + "/health"
    try:
        response = requests.get(health_url, timeout=5)
        print(f"Relay health: {response.status_code} {response.json().get('status')}")
    except Exception as e:
        print(f"❌ Relay not reachable at {health_url}: {e}")
        sys.exit(1)

    asyncio.run(stream(args.wav, args.url, args.asl, args.tail))


if __name__ == "__main__":
    main()
