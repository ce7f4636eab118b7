import os, sys, json, requests

API = os.getenv("API_BASE", "http://localhost:8080")

def main():
    if len(sys.argv) < 2:
        print("Usage: python stream_chat.py <userPrompt> [system] [--once]")
        sys.exit(1)
    once = "--once" in sys.argv
    args = [a for a in sys.argv[1:] if a != "--once"]
    payload = {"userPrompt": args[0], "system": args[1] if len(args) > 1 else ""}

    if once:
        r = requests.post(f"{API}/api/chat", json=payload, timeout=600)
        print(r.status_code, json.dumps(r.json() if r.headers.get("content-type","").startswith("application/json") else {"text": r.text}, indent=2))
        return

    event, data_lines = "message", 0
    with requests.post(f"{API}/api/chat/stream", json=payload, stream=True, timeout=600) as r:
        r.raise_for_status()
        for line in r.iter_lines(decode_unicode=True):
            if line is None:
                continue
            if line.startswith(":"):
                print(f"\n[{line[1:].strip()}]", file=sys.stderr)
            elif line.startswith("event:"):
                event, data_lines = line[6:].strip(), 0
            elif line.startswith("data:") and event == "message":
                # multi-line messages arrive as consecutive data: fields
                sys.stdout.write(("\n" if data_lines else "") + line[5:].removeprefix(" "))
                sys.stdout.flush()
                data_lines += 1
            elif line == "" and event == "done":
                print()
                break

if __name__ == "__main__":
    main()
