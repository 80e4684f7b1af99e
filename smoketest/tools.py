# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

from enum import StrEnum
import os
import re
from smoketest._logger import logger as _logger


class ShColors(StrEnum):
    YELLOW = "\033[93m"
    OKGREEN = "\033[92m"
    RED = "\033[91m"

    ENDC = "\033[0m"


def update_environ_with_local_env(path: str = ".env") -> None:
    # dynamically load .env file in environ if exists, it allow users to keep their conf via env vars
    try:
        with open(path, encoding="utf-8") as f:
            _logger.debug(f"Found a {path} file")
            for raw_line in f:
                line = raw_line.strip(" \t\n")
                if line.startswith("#"):
                    continue
                line = re.sub(r"^(export +)(.*)$", r"\2", line)
                if "=" in line:
                    key, value = line.split("=", 1)
                    _logger.debug(f"adding {key} in environ")
                    os.environ[key.strip()] = value.strip()

    except FileNotFoundError:
        pass


def o(message: str) -> str:
    return f"{ShColors.OKGREEN}{message}{ShColors.ENDC}"


def w(message: str) -> str:
    return f"{ShColors.YELLOW}{message}{ShColors.ENDC}"


def e(message: str) -> str:
    return f"{ShColors.RED}{message}{ShColors.ENDC}"


def read_lines(path: str) -> list[str]:
    """Returns non-empty, non-comment lines of a text resource, in order"""

    with open(path, encoding="utf-8") as f:
        lines = [line.strip() for line in f]

    return [line for line in lines if line and not line.startswith("#")]
