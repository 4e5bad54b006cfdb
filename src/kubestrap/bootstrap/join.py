# src/kubestrap/bootstrap/join.py
"""
Extraction of join credentials from kubeadm output.

kubeadm's own init summary is not a stable format, so the init stage prints
JOIN_MARKER followed by `kubeadm token create --print-join-command`. The
join command must sit on one of the first non-empty lines after the last
marker. Without it, the first line mentioning `kubeadm join` is taken and
up to three backslash-continued lines that follow it are folded back in.
A miss leaves fields empty.
"""
from __future__ import annotations

from typing import List

from .models import JoinArtifacts
from .scripts import JOIN_MARKER

JOIN_VERB = "kubeadm join"
_CONTINUATION_LINES = 3
_MARKER_WINDOW = 2


def parse_join_command(text: str) -> JoinArtifacts:
    """Pull --token and --discovery-token-ca-cert-hash out of a join command."""
    join_command = (text or "").strip()
    token = ""
    ca_cert_hash = ""
    parts = join_command.split()
    for i, part in enumerate(parts[:-1]):
        if part == "--token":
            token = parts[i + 1]
        elif part == "--discovery-token-ca-cert-hash":
            ca_cert_hash = parts[i + 1]
    return JoinArtifacts(join_command=join_command, token=token, ca_cert_hash=ca_cert_hash)


def _strip_continuation(line: str) -> str:
    line = line.strip()
    if line.endswith("\\"):
        line = line[:-1]
    return line.strip()


def _fold(lines: List[str], start: int) -> str:
    joined = _strip_continuation(lines[start])
    continued = lines[start].rstrip().endswith("\\")
    for nxt in lines[start + 1:start + 1 + _CONTINUATION_LINES]:
        if not continued:
            break
        part = _strip_continuation(nxt)
        if not part or part.startswith("#"):
            break
        joined += " " + part
        continued = nxt.rstrip().endswith("\\")
    return joined


def parse_init_output(output: str) -> JoinArtifacts:
    lines = (output or "").splitlines()

    # the init summary prints its own join command before the marker;
    # the last marker wins
    marker = None
    for i, line in enumerate(lines):
        if JOIN_MARKER in line:
            marker = i
    if marker is not None:
        seen = 0
        for i in range(marker + 1, len(lines)):
            if not lines[i].strip():
                continue
            if JOIN_VERB in lines[i]:
                return parse_join_command(_fold(lines, i))
            seen += 1
            if seen == _MARKER_WINDOW:
                break

    for i, line in enumerate(lines):
        if JOIN_VERB in line and JOIN_MARKER not in line:
            return parse_join_command(_fold(lines, i))

    return JoinArtifacts()
