"""Bunch of random utilities."""

import logging
import os
import random
import socket
import time
from typing import Optional

import coloredlogs
import psutil

logger = logging.getLogger(__name__)


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Is something already accepting TCP connections on this port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as a_socket:
        return a_socket.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random unused localhost port.

    Another process may grab the port between this check and our bind.

    :param max_attempt:
        Raise after this many busy ports
    """
    assert min_port < max_port, f"Bad port range {min_port} - {max_port}"

    for _ in range(max_attempt):
        candidate = random.randrange(min_port, max_port)
        if not is_localhost_port_listening(candidate, "127.0.0.1"):
            logger.debug("Port %d is free", candidate)
            return candidate

    raise RuntimeError(f"Could not open a port in range {min_port} - {max_port}, {max_attempt} attempts")


def shutdown_hard(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    block=True,
    block_timeout=30,
    check_port: Optional[int] = None,
) -> tuple[bytes, bytes]:
    """SIGKILL a background node and collect its output.

    :param log_level:
        Forward the captured stdout and stderr lines to logging at this level

    :param block:
        Wait until ``check_port`` stops listening

    :param block_timeout:
        Seconds to wait for the port to be released

    :param check_port:
        The JSON-RPC port of the node, required with ``block``

    :return:
        Captured stdout, stderr
    """
    if process.poll() is None:
        # Still alive, we need to kill to read the output
        process.kill()

    stdout, stderr = process.communicate()
    stdout = stdout or b""
    stderr = stderr or b""

    if log_level is not None:
        for line in stdout.splitlines():
            logger.log(log_level, "stdout: %s", line.decode("utf-8", errors="replace").strip())
        for line in stderr.splitlines():
            logger.log(log_level, "stderr: %s", line.decode("utf-8", errors="replace").strip())

    if block:
        assert check_port is not None, "Give check_port to block the execution"
        deadline = time.time() + block_timeout
        while time.time() < deadline:
            if not is_localhost_port_listening(check_port):
                return stdout, stderr
            time.sleep(0.1)

        raise AssertionError(f"Could not terminate the node in {block_timeout} seconds, stdout is {len(stdout)} bytes, stderr is {len(stderr)} bytes")

    return stdout, stderr


def setup_console_logging(default_log_level="info", simplified_logging=False) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in scripts.

    - ``LOG_LEVEL`` environment variable overrides the default level.

    - Tune down some noisy dependency library logging

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if simplified_logging:
        fmt = "%(message)s"
    else:
        fmt = "%(asctime)s %(name)-44s %(message)s"

    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt="%H:%M:%S")

    # Mute noise
    logging.getLogger("web3.providers.AsyncHTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()
