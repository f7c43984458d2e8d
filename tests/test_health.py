from __future__ import annotations

import threading
from pathlib import Path

import allure
import pytest

from agentdesk.config import CliPathSettings
from agentdesk.models import CliType, HealthStatus
from agentdesk.runner.binaries import BinaryResolver
from agentdesk.runner.health import HealthChecker, parse_version

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("CLI Health"),
]

HEALTHY_CLI = """
    if sys.argv[1:] == ["--version"]:
        print("2.3.1 (Claude Code)")
    else:
        print("OK")
"""


def _checker(paths: dict[CliType, Path], **kwargs) -> HealthChecker:
    resolver = BinaryResolver(
        env_paths=CliPathSettings(paths={cli: str(path) for cli, path in paths.items()}),
        which=lambda _name: None,
    )
    return HealthChecker(resolver=resolver, **kwargs)


def test_healthy_cli_reports_version(fake_cli) -> None:
    binary = fake_cli(HEALTHY_CLI)
    checker = _checker({CliType.CLAUDE: binary}, cli_types=[CliType.CLAUDE])

    (result,) = checker.check_all()

    assert result.status == HealthStatus.HEALTHY
    assert result.healthy
    assert result.version == "2.3.1"
    assert result.binary_path == str(binary)
    assert result.duration_ms is not None
    assert checker.get(CliType.CLAUDE) is result


def test_missing_binary_is_not_found() -> None:
    checker = _checker({}, cli_types=[CliType.GEMINI])

    result = checker.check(CliType.GEMINI)

    assert result.status == HealthStatus.NOT_FOUND
    assert result.binary_path is None
    assert "not found" in result.error


@pytest.mark.parametrize(
    ("body", "error"),
    [
        ('sys.stderr.write("auth required\\n")\nsys.exit(1)\n', "auth required"),
        ("sys.exit(4)\n", "Exited with code 4"),
        ("pass\n", "Empty output"),
    ],
)
def test_unhealthy_cli(fake_cli, body: str, error: str) -> None:
    checker = _checker({CliType.CODEX: fake_cli(body)}, cli_types=[CliType.CODEX])

    result = checker.check(CliType.CODEX)

    assert result.status == HealthStatus.UNHEALTHY
    assert result.error == error
    assert result.version is None


def test_probe_timeout(fake_cli) -> None:
    checker = _checker(
        {CliType.OPENCODE: fake_cli("time.sleep(30)\n")},
        cli_types=[CliType.OPENCODE],
        timeout_seconds=0.5,
    )

    result = checker.check(CliType.OPENCODE)

    assert result.status == HealthStatus.UNHEALTHY
    assert result.error == "Timed out after 0.5s"


def test_first_healthy_follows_preference(fake_cli) -> None:
    healthy = fake_cli(HEALTHY_CLI)
    broken = fake_cli("sys.exit(1)\n")
    checker = _checker(
        {CliType.CLAUDE: broken, CliType.GEMINI: healthy, CliType.CODEX: healthy},
        cli_types=[CliType.CLAUDE, CliType.GEMINI, CliType.CODEX],
    )

    assert checker.first_healthy() is None

    checker.check_all()

    assert checker.first_healthy() == CliType.CODEX
    assert checker.first_healthy(order=[CliType.GEMINI, CliType.CODEX]) == CliType.GEMINI
    assert [result.cli_type for result in checker.get_all()] == [
        CliType.CLAUDE,
        CliType.GEMINI,
        CliType.CODEX,
    ]


def test_check_all_stops_when_signalled(fake_cli) -> None:
    stop_event = threading.Event()
    stop_event.set()
    checker = _checker({CliType.CLAUDE: fake_cli(HEALTHY_CLI)}, cli_types=[CliType.CLAUDE])

    assert checker.check_all(stop_event) == []
    assert checker.get(CliType.CLAUDE) is None


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("claude 1.0.44 (Claude Code)\n", "1.0.44"),
        ("codex-cli version: v0.46.0\n", "0.46.0"),
        ("0.9.2-beta.1", "0.9.2-beta.1"),
        ("gemini nightly build\nmore", "gemini nightly build"),
        ("   ", None),
    ],
)
def test_parse_version(output: str, expected: str | None) -> None:
    assert parse_version(output) == expected


def test_cancelled_health_check_keeps_previous_result(fake_cli, tmp_path: Path) -> None:
    slow_flag = tmp_path / "slow"
    binary = fake_cli(
        f"""
        import os
        if os.path.exists({str(slow_flag)!r}):
            time.sleep(30)
        if sys.argv[1:] == ["--version"]:
            print("2.3.1")
        else:
            print("OK")
        """,
    )
    checker = _checker({CliType.CLAUDE: binary}, cli_types=[CliType.CLAUDE])
    first = checker.check(CliType.CLAUDE)
    assert first.healthy

    slow_flag.touch()
    stop_event = threading.Event()
    timer = threading.Timer(0.3, stop_event.set)
    timer.start()
    try:
        result = checker.check(CliType.CLAUDE, stop_event=stop_event)
    finally:
        timer.cancel()

    assert result is first
    assert checker.get(CliType.CLAUDE) is first
    assert checker.first_healthy() == CliType.CLAUDE
