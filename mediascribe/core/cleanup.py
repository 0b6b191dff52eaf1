"""
Cleanup: per-job temporary workspaces.
Every workspace is removed when its job finishes, whatever the outcome.
Workspaces are named transcribe-<pid>-<job_id>-XXXX; leftovers whose owning
process has died are swept at start-up.
"""

import os
import shutil
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path

from mediascribe.core.constants import WORKSPACE_PREFIX

logger = logging.getLogger(__name__)


def remove_workspace(workspace: Path) -> bool:
    """Delete a workspace directory. Failures are logged, never raised."""
    if not workspace.exists():
        return True
    try:
        shutil.rmtree(workspace)
        logger.debug("Deleted workspace: %s", workspace)
        return True
    except OSError as e:
        logger.warning("Temp cleanup failed for %s: %s", workspace, e)
        return False


def workspace_prefix(job_id: str, pid: int | None = None) -> str:
    return f"{WORKSPACE_PREFIX}{os.getpid() if pid is None else pid}-{job_id}-"


@contextmanager
def job_workspace(work_root: Path, job_id: str):
    """Create a private temp directory for one job and always remove it."""
    work_root.mkdir(parents=True, exist_ok=True)
    workspace = Path(tempfile.mkdtemp(prefix=workspace_prefix(job_id), dir=work_root))
    try:
        yield workspace
    finally:
        remove_workspace(workspace)


def owner_pid(workspace_name: str) -> int | None:
    """PID encoded in a workspace name, or None for foreign/legacy names."""
    if not workspace_name.startswith(WORKSPACE_PREFIX):
        return None
    pid = workspace_name[len(WORKSPACE_PREFIX):].split('-', 1)[0]
    return int(pid) if pid.isdigit() else None


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    except (OSError, OverflowError):
        return False
    return True


def sweep_stale_workspaces(work_root: Path) -> int:
    """
    Remove workspaces left behind by processes that no longer exist.
    Workspaces of live processes (this one included) are never touched.
    """
    if not work_root.exists():
        return 0

    removed = 0
    for path in work_root.iterdir():
        if not path.is_dir() or not path.name.startswith(WORKSPACE_PREFIX):
            continue
        pid = owner_pid(path.name)
        if pid is not None and pid_alive(pid):
            continue
        if remove_workspace(path):
            removed += 1

    if removed:
        logger.info("Swept %d stale workspace(s) from %s", removed, work_root)
    return removed
