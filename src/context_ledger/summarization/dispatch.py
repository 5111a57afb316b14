"""Background summary dispatch.

Summaries run in detached ``python -m context_ledger summarize`` processes so
syncs and hooks never wait for the summarizer. Output is discarded and
failures to launch are logged and ignored.
"""

import logging
import subprocess
import sys
from pathlib import Path

from context_ledger.utils.platform import get_process_detach_kwargs

logger = logging.getLogger(__name__)


def build_summary_command(session_id: str, data_dir: Path) -> list[str]:
    return [
        sys.executable,
        "-m",
        "context_ledger",
        "--data-dir",
        str(data_dir),
        "summarize",
        session_id,
        "--skip-if-fresh",
    ]


def dispatch_summary_jobs(session_ids: list[str], data_dir: Path) -> int:
    """Launch one detached summarize process per session.

    Returns:
        Number of processes launched.
    """
    launched = 0
    detach_kwargs = get_process_detach_kwargs()
    for session_id in dict.fromkeys(session_ids):
        try:
            subprocess.Popen(  # noqa: S603
                build_summary_command(session_id, data_dir),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                **detach_kwargs,
            )
        except OSError as e:
            logger.warning(f"Failed to dispatch summary for {session_id}: {e}")
            continue
        launched += 1
    if launched:
        logger.debug(f"Dispatched {launched} background summaries")
    return launched
