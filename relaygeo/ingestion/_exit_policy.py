# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

from __future__ import annotations

from typing import Iterable, List

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_ABORTED = 2

BENIGN_SKIP_REASONS = {
    "already ingested",
    "missing: directory",
}


def compute_exit_code(results: Iterable[dict]) -> int:
    """
    results: iterable of item result dicts (files, locations or dates) with keys:
      - status: {"ok","error","skipped"}
      - reason: str or None
    Exit rules:
      - Any 'error' => 1
      - Any 'skipped' whose reason is not in BENIGN_SKIP_REASONS => 1
      - Otherwise (including no items at all) => 0
    Fatal errors never reach this policy; callers map them to EXIT_ABORTED.
    """

    seen_error = False
    reasons: List[str] = []
    for result in results:
        status = (str(result.get("status") or "")).lower()
        if status == "error":
            seen_error = True
        elif status == "skipped":
            reasons.append(str(result.get("reason") or "").lower())
    if seen_error:
        return EXIT_PARTIAL
    if any(reason not in BENIGN_SKIP_REASONS for reason in reasons):
        return EXIT_PARTIAL
    return EXIT_OK


def run_status(exit_code: int) -> str:
    """Map an exit code to the run summary label."""

    if exit_code == EXIT_OK:
        return "ok"
    if exit_code == EXIT_ABORTED:
        return "aborted"
    return "partial"
