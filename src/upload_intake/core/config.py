"""Command-line overrides on top of the loaded configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from ..config.constants import VERBOSE_LOGGING_THRESHOLD

if TYPE_CHECKING:
    from ..config import IntakeConfig

LOG = logging.getLogger(__name__)


@dataclass
class RuntimeOptions:
    """Options given on the command line that override configuration."""

    verbose: int = 0
    poll_interval: float | None = None
    once: bool = False
    read_stdin: bool = False


def apply_runtime_options(config: IntakeConfig, options: RuntimeOptions) -> IntakeConfig:
    """Return a copy of ``config`` with the runtime overrides applied."""
    uploader = config.uploader
    global_ = config.global_

    if options.poll_interval is not None:
        if options.poll_interval <= 0:
            LOG.warning("Ignoring non-positive poll interval override: %s", options.poll_interval)
        else:
            uploader = replace(uploader, poll_interval=options.poll_interval)

    if options.verbose >= VERBOSE_LOGGING_THRESHOLD:
        global_ = replace(global_, log_level="DEBUG")
    elif options.verbose == 1 and global_.log_level not in {"DEBUG", "INFO"}:
        global_ = replace(global_, log_level="INFO")

    return replace(config, uploader=uploader, global_=global_)
