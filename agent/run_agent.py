import json
import logging
import os
import secrets
import socket
import sys
from pathlib import Path

from plc_sql_agent.api.server import run
from plc_sql_agent.logging_setup import configure_logging


log = logging.getLogger("run_agent")

LOCK_DIR = Path("PLCLogger") / "agent"


def _choose_port(preferred: int, host: str = "127.0.0.1") -> int:
    # Try preferred; optionally fail-fast if busy, else fall back to free port
    strict = os.environ.get("AGENT_STRICT_PORT", "0").lower() not in ("0", "false")
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, preferred))
            return preferred
        except OSError:
            if strict:
                log.error("Port %s busy and strict mode enabled", preferred)
                sys.exit(97)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _lockfile_candidates():
    base = os.environ.get("ProgramData")
    if base:
        yield Path(base) / LOCK_DIR / "agent.lock.json"
    base_local = os.environ.get("LOCALAPPDATA")
    if base_local:
        yield Path(base_local) / LOCK_DIR / "agent.lock.json"


def _write_lockfile(port: int, token: str) -> None:
    """Advertise pid/port/token so a local UI can find this agent."""
    data = json.dumps({"pid": os.getpid(), "port": port, "token": token})
    wrote_any = False
    for path in _lockfile_candidates():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(data)
            log.info("Lockfile: %s", path)
            wrote_any = True
        except OSError as e:
            log.warning("Lockfile write failed (%s): %s", path, e)
    # CWD as a last resort (dev)
    if not wrote_any:
        path = Path.cwd() / "agent.dev.lock.json"
        try:
            path.write_text(data)
            log.info("Lockfile (cwd): %s", path)
        except OSError as e:
            log.warning("Lockfile write failed (cwd): %s", e)


def main():
    configure_logging()
    preferred = int(os.environ.get("AGENT_PORT", "5175"))
    host = os.environ.get("AGENT_HOST", "127.0.0.1")
    if not os.environ.get("AGENT_TOKEN"):
        os.environ["AGENT_TOKEN"] = secrets.token_urlsafe(24)
    port = _choose_port(preferred, host=host)
    os.environ["AGENT_PORT"] = str(port)
    _write_lockfile(port, os.environ["AGENT_TOKEN"])
    run(host=host, port=port)


if __name__ == "__main__":
    main()
