# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/utils/runner.py
from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from kubestrap.errors import CommandError, OperationCancelled
from kubestrap.utils.execution import ExecutionContext

log = logging.getLogger("kubestrap")

Cmd = Sequence[Union[str, "os.PathLike[str]"]]


@dataclass
class CommandRunner:
    """
    Runs local CLIs (kubectl, aws, gcloud) with logging, dry-run and the
    caller's deadline as the subprocess timeout.
    """

    label: Optional[str] = None
    dry_run: bool = False

    def run(
        self,
        cmd: Cmd,
        *,
        ctx: Optional[ExecutionContext] = None,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        ctx = ctx or ExecutionContext.background()
        label = self.label or "cmd"
        argv = [str(c) for c in cmd]
        cmd_str = " ".join(argv)

        log.debug("[%s] $ %s", label, cmd_str)

        if self.dry_run or ctx.dry_run:
            log.debug("[%s] dry-run: skipped execution", label)
            return subprocess.CompletedProcess(args=argv, returncode=0, stdout="", stderr="")

        ctx.check()
        merged_env = None
        if env:
            merged_env = dict(os.environ)
            merged_env.update(env)

        start = time.time()
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                cwd=cwd,
                env=merged_env,
                timeout=ctx.remaining(),
            )
        except subprocess.TimeoutExpired as exc:
            raise OperationCancelled("deadline exceeded") from exc
        except FileNotFoundError as exc:
            raise CommandError(cmd_str, 127, stderr=f"{argv[0]}: command not found") from exc

        duration = time.time() - start
        if result.stdout:
            log.debug("[%s][stdout]\n%s", label, result.stdout.rstrip())
        if result.stderr:
            log.debug("[%s][stderr]\n%s", label, result.stderr.rstrip())
        log.debug("[%s][exit %s] (%.2fs)", label, result.returncode, duration)

        if check and result.returncode != 0:
            raise CommandError(cmd_str, result.returncode, stderr=result.stderr or "", stdout=result.stdout or "")
        return result
