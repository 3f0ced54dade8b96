"""Checks the health of a node component and repairs it when allowed."""

from __future__ import annotations

import logging
import subprocess
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Union

from nodeproblem.healthchecker_types import (
    CMD_TIMEOUT,
    CRI_COMPONENT,
    DEFAULT_COOL_DOWN_TIME,
    DEFAULT_CRI_SOCKET_PATH,
    DEFAULT_CRICTL,
    DEFAULT_HEALTH_CHECK_TIMEOUT,
    DEFAULT_LOOP_BACK_TIME,
    DOCKER_COMPONENT,
    IS_WINDOWS,
    KUBE_PROXY_COMPONENT,
    KUBE_PROXY_HEALTH_CHECK_ENDPOINT,
    KUBELET_COMPONENT,
    KUBELET_HEALTH_CHECK_ENDPOINT,
    LOG_PARSING_STRFTIME,
    LOG_PARSING_TIME_FORMAT,
    UPTIME_TIME_LAYOUT,
    LogPatternFlag,
)
from nodeproblem.translator import parse_go_time

logger = logging.getLogger(__name__)

Timeout = Union[timedelta, float, int]
HealthCheckFunc = Callable[[], bool]
RepairFunc = Callable[[], None]
UptimeFunc = Callable[[], timedelta]


class CommandError(RuntimeError):
    """Raised when an external command fails, times out or cannot be started."""


def _seconds(timeout: Timeout) -> float:
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


def exec_command(timeout: Timeout, command: str, *args: str) -> str:
    """Run a command and return its output without the trailing newline.

    Raises CommandError if the command fails or does not finish in time.
    """
    argv = [command, *args]
    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=_seconds(timeout),
            check=True,
        )
    except subprocess.TimeoutExpired as exc:
        logger.info("command %s timed out: %s", argv, exc)
        raise CommandError(f"command {argv} timed out") from exc
    except subprocess.CalledProcessError as exc:
        logger.info("command %s failed: %s, %r", argv, exc, exc.stdout)
        raise CommandError(f"command {argv} failed with exit code {exc.returncode}") from exc
    except OSError as exc:
        logger.info("command %s failed: %s", argv, exc)
        raise CommandError(f"command {argv} could not be started: {exc}") from exc
    out = result.stdout or ""
    return out[:-1] if out.endswith("\n") else out


def _powershell(*args: str) -> str:
    """Run arguments in a powershell process and return its output."""
    argv = ["powershell", *args]
    try:
        result = subprocess.run(argv, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as exc:
        logger.info("command %s failed: %s, %r", argv, exc, exc.stdout)
        raise CommandError(f"command {argv} failed with exit code {exc.returncode}") from exc
    except OSError as exc:
        logger.info("command %s failed: %s", argv, exc)
        raise CommandError(f"command {argv} could not be started: {exc}") from exc
    out = result.stdout or ""
    return out[:-2] if out.endswith("\r\n") else out


def _docker_path() -> str:
    return "docker.exe" if IS_WINDOWS else "docker"


@dataclass
class HealthCheckerOptions:
    """Settings for checking and repairing one component."""

    component: str = ""
    service: str = ""
    enable_repair: bool = True
    cri_ctl_path: str = DEFAULT_CRICTL
    cri_socket_path: str = DEFAULT_CRI_SOCKET_PATH
    health_check_timeout: timedelta = DEFAULT_HEALTH_CHECK_TIMEOUT
    cool_down_time: timedelta = DEFAULT_COOL_DOWN_TIME
    loop_back_time: timedelta = DEFAULT_LOOP_BACK_TIME
    log_patterns: LogPatternFlag = field(default_factory=LogPatternFlag)


def _since(timestamp: datetime) -> timedelta:
    if timestamp.tzinfo is None:
        timestamp = timestamp.astimezone()
    return datetime.now().astimezone() - timestamp


def get_uptime_func(service: str) -> UptimeFunc:
    """Return a function giving how long ``service`` has been running."""

    def linux_uptime() -> timedelta:
        # InactiveExitTimestamp marks when systemd began starting the service,
        # which stays correct even if the service is killed while activating.
        out = exec_command(
            CMD_TIMEOUT, "systemctl", "show", service, "--property=InactiveExitTimestamp"
        )
        parts = out.split("=")
        if len(parts) < 2:
            raise ValueError("could not parse the service uptime time correctly")
        return _since(parse_go_time(UPTIME_TIME_LAYOUT, parts[1]))

    def windows_uptime() -> timedelta:
        command = (
            "$ProcessId = (Get-WMIObject -Class Win32_Service -Filter \"Name='" + service
            + "'\" | Select-Object -ExpandProperty ProcessId);"
            "if ([string]::IsNullOrEmpty($ProcessId) -or $ProcessId -eq 0) { "
            "(Get-WinEvent -FilterHashtable @{logname='system';id=7036} "
            "| Where-Object {$_.Message -match '.*(" + service + ").*(running).*'}  "
            "| Select-Object -Property TimeCreated -First 1 | "
            "foreach {$_.TimeCreated.ToUniversalTime().ToString('R')} | Out-String).Trim() } "
            "else { (Get-Process -Id $ProcessId | Select starttime | "
            "foreach {$_.starttime.ToUniversalTime().ToString('R')} | Out-String).Trim() }"
        )
        out = _powershell(command)
        if out == "":
            raise ValueError(f"service time creation not found for {service}")
        return _since(parse_go_time(UPTIME_TIME_LAYOUT, out.replace(",", "")))

    return windows_uptime if IS_WINDOWS else linux_uptime


def get_repair_func(options: HealthCheckerOptions) -> RepairFunc:
    """Return the best-effort repair action for the component; failures are ignored."""

    def attempt(run: Callable[..., str], *argv: str) -> None:
        try:
            run(*argv)
        except CommandError as exc:
            logger.info("repair step failed: %s", exc)

    if IS_WINDOWS:
        def restart_service() -> None:
            attempt(_powershell, "Restart-Service", options.service)

        return restart_service

    def kill_service() -> None:
        attempt(
            exec_command, CMD_TIMEOUT, "systemctl", "kill", "--kill-who=main", options.service
        )

    if options.component == DOCKER_COMPONENT:
        def repair_docker() -> None:
            attempt(exec_command, CMD_TIMEOUT, "pkill", "-SIGUSR1", "dockerd")
            kill_service()

        return repair_docker
    return kill_service


def _endpoint_ok_func(endpoint: str, timeout: Timeout) -> HealthCheckFunc:
    def check() -> bool:
        try:
            with urllib.request.urlopen(endpoint, timeout=_seconds(timeout)) as response:
                return response.status == 200
        except (OSError, ValueError):
            return False

    return check


def _command_ok_func(timeout: Timeout, command: str, *args: str) -> HealthCheckFunc:
    def check() -> bool:
        try:
            exec_command(timeout, command, *args)
        except CommandError:
            return False
        return True

    return check


def get_health_check_func(options: HealthCheckerOptions) -> Optional[HealthCheckFunc]:
    """Return the health check for the component, or None if it is unsupported."""
    timeout = options.health_check_timeout
    if options.component == KUBELET_COMPONENT:
        return _endpoint_ok_func(KUBELET_HEALTH_CHECK_ENDPOINT, timeout)
    if options.component == KUBE_PROXY_COMPONENT:
        return _endpoint_ok_func(KUBE_PROXY_HEALTH_CHECK_ENDPOINT, timeout)
    if options.component == DOCKER_COMPONENT:
        return _command_ok_func(timeout, _docker_path(), "ps")
    if options.component == CRI_COMPONENT:
        return _command_ok_func(
            timeout,
            options.cri_ctl_path,
            "--runtime-endpoint=" + options.cri_socket_path,
            "--image-endpoint=" + options.cri_socket_path,
            "pods",
        )
    logger.warning("Unsupported component: %s", options.component)
    return None


def check_for_pattern(
    service: str, log_start_time: str, log_pattern: str, log_count_threshold: int
) -> bool:
    """Return False if ``log_pattern`` occurs at least ``log_count_threshold`` times.

    Only logs of ``service`` since ``log_start_time`` are searched. Raises
    CommandError if the search fails and ValueError if its output is not a count.
    """
    if IS_WINDOWS:
        command = (
            "@(Get-WinEvent -Logname System | Where-Object {($_.TimeCreated -ge "
            "([datetime]::ParseExact('" + log_start_time + "','" + str(LOG_PARSING_TIME_FORMAT)
            + "', $null))) -and ($_.Message -Match '" + log_pattern + "')}).count"
        )
        out = _powershell(command)
    else:
        out = exec_command(
            CMD_TIMEOUT,
            "/bin/sh",
            "-c",
            f'journalctl --unit "{service}" --since "{log_start_time}"'
            f' | grep -i "{log_pattern}" | wc -l',
        )
    occurrences = int(out)
    if occurrences >= log_count_threshold:
        logger.info(
            "%s failed log pattern check, %s occurrences: %d", service, log_pattern, occurrences
        )
        return False
    return True


def log_pattern_health_check(
    service: str, loop_back_time: timedelta, log_patterns_to_check: Mapping[str, int]
) -> bool:
    """Return False if any pattern reaches its threshold since the service started.

    With a positive ``loop_back_time`` shorter than the uptime, only that
    much of the log is searched.
    """
    if not log_patterns_to_check:
        return True
    logger.info("Getting uptime for service: %s", service)
    try:
        uptime = get_uptime_func(service)()
    except (CommandError, ValueError) as exc:
        logger.warning("Failed to get the uptime: %s", exc)
        raise
    now = datetime.now()
    start = now - uptime
    if loop_back_time > timedelta(0) and uptime > loop_back_time:
        start = now - loop_back_time
    log_start_time = start.strftime(LOG_PARSING_STRFTIME)
    return all(
        check_for_pattern(service, log_start_time, pattern, count)
        for pattern, count in log_patterns_to_check.items()
    )


@dataclass
class HealthChecker:
    """Checks a component and, if it is unhealthy and repair is enabled, repairs it.

    Repair only happens once the component has been up longer than
    ``cool_down_time``.
    """

    health_check_func: HealthCheckFunc
    repair_func: RepairFunc
    uptime_func: UptimeFunc
    component: str = ""
    service: str = ""
    enable_repair: bool = True
    cri_ctl_path: str = DEFAULT_CRICTL
    health_check_timeout: timedelta = DEFAULT_HEALTH_CHECK_TIMEOUT
    cool_down_time: timedelta = DEFAULT_COOL_DOWN_TIME
    loop_back_time: timedelta = DEFAULT_LOOP_BACK_TIME
    log_patterns_to_check: dict[str, int] = field(default_factory=dict)

    def check_health(self) -> bool:
        """Return True if the component is healthy, repairing it if needed."""
        healthy = self.health_check_func()
        log_pattern_healthy = log_pattern_health_check(
            self.service, self.loop_back_time, self.log_patterns_to_check
        )
        if healthy and log_pattern_healthy:
            return True

        if self.enable_repair:
            try:
                uptime = self.uptime_func()
            except (CommandError, ValueError) as exc:
                logger.info("error in getting uptime for %s: %s", self.component, exc)
                return False
            logger.info("%s is unhealthy, component uptime: %s", self.component, uptime)
            if uptime > self.cool_down_time:
                logger.info(
                    "%s cooldown period of %s exceeded, repairing",
                    self.component,
                    self.cool_down_time,
                )
                self.repair_func()
        return False


def new_health_checker(options: HealthCheckerOptions) -> HealthChecker:
    """Create a health checker; raises ValueError for an unsupported component."""
    health_check_func = get_health_check_func(options)
    if health_check_func is None:
        raise ValueError(f"unsupported component: {options.component}")
    return HealthChecker(
        health_check_func=health_check_func,
        repair_func=get_repair_func(options),
        uptime_func=get_uptime_func(options.service),
        component=options.component,
        service=options.service,
        enable_repair=options.enable_repair,
        cri_ctl_path=options.cri_ctl_path,
        health_check_timeout=options.health_check_timeout,
        cool_down_time=options.cool_down_time,
        loop_back_time=options.loop_back_time,
        log_patterns_to_check=options.log_patterns.log_pattern_count_map(),
    )