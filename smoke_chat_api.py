#!/usr/bin/env python3
"""
Smoke script for a running chat relay: liveness, validation and a few
streamed multi-turn conversations.
Run with: python smoke_chat_api.py [BASE_URL]
Default BASE_URL: http://localhost:8000
"""
import json
import sys
import time
import urllib.error
import urllib.request

BASE_URL = "http://localhost:8000"
NUM_CONVERSATIONS = 3
TURNS_PER_CONVERSATION = 3
MODELS = ["gemini-1.5-pro", "gemini-1.5-flash"]


def request(method: str, path: str, body: dict = None) -> tuple[int, str]:
    url = f"{BASE_URL.rstrip('/')}{path}"
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, method=method)
    req.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(req, timeout=120) as resp:
            return resp.status, resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode("utf-8", errors="replace")
    except urllib.error.URLError as e:
        print(f"Connection error: {e}")
        sys.exit(1)


def stream_chat(messages: list[dict], model: str) -> tuple[int, str, int, float]:
    """POST /chat and read the body piece by piece; returns status, text, pieces, seconds to first piece."""
    url = f"{BASE_URL.rstrip('/')}/chat"
    data = json.dumps({"messages": messages, "model": model}).encode("utf-8")
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("Content-Type", "application/json")
    started = time.perf_counter()
    first_at = None
    pieces = 0
    raw = b""
    try:
        with urllib.request.urlopen(req, timeout=120) as resp:
            while True:
                piece = resp.read1(1024)
                if not piece:
                    break
                if first_at is None:
                    first_at = time.perf_counter() - started
                pieces += 1
                raw += piece
            return resp.status, raw.decode("utf-8"), pieces, first_at or 0.0
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode("utf-8", errors="replace"), 0, 0.0


def main():
    global BASE_URL
    if len(sys.argv) > 1:
        BASE_URL = sys.argv[1]
    print(f"Testing chat relay at {BASE_URL}\n")

    # --- Liveness ---
    print("0. Liveness")
    status, text = request("GET", "/chat")
    if status != 200:
        print(f"   FAIL: {status} {text}")
        sys.exit(1)
    print(f"   OK: {text}\n")

    # --- Validation ---
    print("1. Validation")
    for label, body in [
        ("empty messages", {"messages": []}),
        ("system only", {"messages": [{"role": "system", "content": "x"}]}),
        ("no messages", {}),
    ]:
        status, text = request("POST", "/chat", body)
        if status != 400 or "error" not in json.loads(text):
            print(f"   FAIL {label}: {status} {text}")
            sys.exit(1)
        print(f"   {label}: 400 OK")
    print()

    prompts = [
        "こんにちは。自己紹介を一文でお願いします。",
        "今の内容を箇条書き3つにまとめてください。",
        "最後に一言だけ励ましてください。",
    ]
    while len(prompts) < TURNS_PER_CONVERSATION:
        prompts.append(prompts[-1])

    failed = []
    for conv_idx in range(NUM_CONVERSATIONS):
        model = MODELS[conv_idx % len(MODELS)]
        history: list[dict] = []
        print(f"--- conversation {conv_idx + 1} ({model}) ---")

        for turn_idx in range(TURNS_PER_CONVERSATION):
            history.append({"role": "user", "content": prompts[turn_idx]})
            status, text, pieces, ttfb = stream_chat(history, model)
            if status != 200:
                print(f"   FAIL T{turn_idx + 1}: status {status} -> {text}")
                failed.append((conv_idx + 1, turn_idx + 1, status, text))
                break
            if not text:
                print(f"   FAIL T{turn_idx + 1}: empty reply")
                failed.append((conv_idx + 1, turn_idx + 1, status, text))
                break
            history.append({"role": "assistant", "content": text})
            preview = text[:60].replace("\n", " ")
            print(f"   T{turn_idx + 1} OK | {pieces} piece(s) | first after {ttfb:.2f}s | {preview}...")
        print()

    # --- Summary ---
    print("=" * 50)
    if failed:
        print(f"FAILED: {len(failed)} request(s)")
        for c, t, st, body in failed:
            print(f"  conversation {c} T{t}: {st} {body}")
        sys.exit(1)

    print("All checks passed.")
    print(f"  Conversations: {NUM_CONVERSATIONS}, turns each: {TURNS_PER_CONVERSATION}")


if __name__ == "__main__":
    main()
