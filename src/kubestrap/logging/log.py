# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/kubestrap/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

# paramiko logs every channel open/close at DEBUG
NOISY_LOGGERS = ("paramiko", "paramiko.transport")

TRACE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)-12s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "kubestrap",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Configure the kubestrap logger for one CLI run.

    The trace file keeps everything at DEBUG, including each remote
    command, with the thread name so parallel worker joins can be told
    apart. The console shows INFO, or DEBUG with --verbose. Returns
    (logger, run_id, log_path); observers reuse run_id.
    """
    run_id = str(uuid.uuid4())
    base_dir = base_dir or Path.home() / ".kubestrap" / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{stamp}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    # re-initialising in the same process replaces the previous run's handlers
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    trace = logging.FileHandler(log_path)
    trace.setLevel(logging.DEBUG)
    trace.setFormatter(logging.Formatter(TRACE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(trace)

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)

    logger.debug("kubestrap run %s, trace at %s", run_id, log_path)
    return logger, run_id, log_path
