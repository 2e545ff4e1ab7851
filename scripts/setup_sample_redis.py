"""Launch a sample Redis Docker container with a few populated databases."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from redisui.config import CONFIG_FILE, SavedConnection, load_config, save_config

DEFAULT_CONTAINER = "redisui-sample-redis"
DEFAULT_PORT = 6380
DEFAULT_PASSWORD = "redisui"
DOCKER_IMAGE = "redis:7-alpine"
SAMPLE_LABEL = "Docker Sample"

# database index -> keys written there
SAMPLE_KEYS: dict[int, dict[str, str]] = {
    0: {"greeting": "hello", "user:1:name": "anna", "user:2:name": "ben"},
    2: {"session:abc": "active"},
    5: {"queue:jobs": "3", "queue:failed": "0"},
}


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-p",
                f"{port}:6379",
                DOCKER_IMAGE,
                "redis-server",
                "--requirepass",
                password,
            ]
        )
    wait_for_start(name, password)


def redis_cli(name: str, password: str, *args: str) -> list[str]:
    return ["docker", "exec", "-i", name, "redis-cli", "--no-auth-warning", "-a", password, *args]


def wait_for_start(name: str, password: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(redis_cli(name, password, "PING"), text=True, capture_output=True)
        if result.stdout.strip() == "PONG":
            return
        time.sleep(delay)
    print("Warning: redis did not answer PING; continuing anyway.")


def seed_data(name: str, password: str) -> None:
    for index, keys in SAMPLE_KEYS.items():
        pairs = [item for pair in keys.items() for item in pair]
        run(redis_cli(name, password, "-n", str(index), "MSET", *pairs))


def update_config(port: int, password: str) -> None:
    config = load_config()
    connections = list(config.connections)
    if any(connection.label == SAMPLE_LABEL for connection in connections):
        print(f"Connection '{SAMPLE_LABEL}' already present in config; leaving as-is.")
        return
    connections.append(
        SavedConnection(label=SAMPLE_LABEL, host="localhost", port=port, password=password)
    )
    save_config(config.with_connections(connections))
    print(f"Added '{SAMPLE_LABEL}' connection to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Redis on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Redis password")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.password)
        seed_data(args.container, args.password)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(args.port, args.password)
    print(f"Sample Redis is ready on localhost:{args.port}. Log in with the '{SAMPLE_LABEL}' connection.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
