import json
import os
import time
import urllib.request

TIMEOUT = int(os.getenv("TIMEOUT_S", "120"))
SYNC_BACKEND_URL = os.getenv("SYNC_BACKEND_URL", "http://localhost:8000")


def http_ok(url: str) -> bool:
    try:
        with urllib.request.urlopen(url, timeout=2) as r:
            return 200 <= r.status < 300
    except Exception:
        return False


def main() -> int:
    url = SYNC_BACKEND_URL.rstrip("/") + "/health"
    deadline = time.time() + TIMEOUT
    ok = False
    while time.time() < deadline:
        ok = http_ok(url)
        if ok:
            break
        time.sleep(2)
    print(json.dumps({"ready": ok, "backend": url}))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
