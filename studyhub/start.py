import os
import subprocess
import sys
from typing import List

from .settings import settings


def uvicorn_cmd(port: int) -> List[str]:
    return [
        sys.executable, "-m", "uvicorn", "studyhub.main:app",
        "--host", "0.0.0.0",
        "--port", str(port),
        "--proxy-headers",
        "--forwarded-allow-ips", settings.FORWARDED_ALLOW_IPS,
        "--log-level", settings.LOG_LEVEL.lower(),
    ]


def main():
    port_env = os.getenv("PORT", "").strip()
    port = int(port_env) if port_env.isdigit() else 5000
    # single process: rate-limit counters are per process
    code = subprocess.call(uvicorn_cmd(port))
    raise SystemExit(code)


if __name__ == "__main__":
    main()
