"""
File snapshots taken before every write, edit and delete.

Snapshots live under <project>/.devify/snapshots/: a JSON index plus one
file per saved version. Restoring never deletes history; the current state
is snapshotted first, so a restore can itself be undone.
"""

import json
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Union

from loguru import logger

SNAPSHOTS_DIR = ".devify/snapshots"
FILES_SUBDIR = "files"
INDEX_FILE = "index.json"
INDEX_VERSION = 1


@dataclass
class Snapshot:
    """One saved version of a project file."""
    id: str
    timestamp: float
    file_path: str  # project-relative POSIX path
    file_name: str
    action: str  # write | delete | restore
    file_size: int = 0
    snapshot_file: str = ""  # empty when the file did not exist yet
    is_new_file: bool = False
    label: Optional[str] = None


@dataclass
class SnapshotStats:
    total_snapshots: int
    files_tracked: int
    oldest_timestamp: Optional[float]
    newest_timestamp: Optional[float]


class SnapshotStore:
    """Snapshot index and saved file versions for one project."""

    def __init__(self, project_root: Union[str, Path]):
        self.project_root = Path(project_root).resolve()
        self.snapshots_dir = self.project_root / SNAPSHOTS_DIR
        self.files_dir = self.snapshots_dir / FILES_SUBDIR
        self.index_path = self.snapshots_dir / INDEX_FILE

    def _load_index(self) -> List[Snapshot]:
        if not self.index_path.exists():
            return []
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load snapshot index: {e}")
            return []
        return [Snapshot(**item) for item in data.get("snapshots", [])]

    def _save_index(self, snapshots: List[Snapshot]):
        data: Dict[str, Any] = {
            "version": INDEX_VERSION,
            "project_path": str(self.project_root),
            "snapshots": [asdict(s) for s in snapshots],
        }
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        self.index_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _append(self, snapshot: Snapshot) -> Snapshot:
        snapshots = self._load_index()
        snapshots.append(snapshot)
        self._save_index(snapshots)
        return snapshot

    def take(self, file_path: str, action: str, label: Optional[str] = None) -> Optional[Snapshot]:
        """
        Save the current content of a file before it changes.

        Args:
            file_path: Project-relative path
            action: What is about to happen (write, delete or restore)
            label: Optional human-readable note

        Returns:
            The new snapshot, or None when there is nothing to save (deleting a
            missing file, a directory, or a file inside the snapshot area)
        """
        rel = PurePosixPath(file_path).as_posix()
        if rel.startswith(SNAPSHOTS_DIR):
            return None

        target = self.project_root / rel
        snapshot_id = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        name = PurePosixPath(rel).name

        if not target.exists():
            if action == "delete":
                return None
            # First write: nothing to back up, but restoring it means removing the file
            return self._append(Snapshot(
                id=snapshot_id,
                timestamp=time.time(),
                file_path=rel,
                file_name=name,
                action=action,
                is_new_file=True,
                label=label,
            ))
        if target.is_dir():
            return None

        content = target.read_bytes()
        snapshot_file = f"{snapshot_id}_{name}"
        self.files_dir.mkdir(parents=True, exist_ok=True)
        (self.files_dir / snapshot_file).write_bytes(content)

        logger.debug(f"Snapshot {snapshot_id} of {rel} before {action}")
        return self._append(Snapshot(
            id=snapshot_id,
            timestamp=time.time(),
            file_path=rel,
            file_name=name,
            action=action,
            file_size=len(content),
            snapshot_file=snapshot_file,
            label=label,
        ))

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        for snapshot in self._load_index():
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def list_snapshots(self) -> List[Snapshot]:
        """All snapshots, newest first."""
        return list(reversed(self._load_index()))

    def file_snapshots(self, file_path: str) -> List[Snapshot]:
        """Snapshots of one file, newest first."""
        rel = PurePosixPath(file_path).as_posix()
        return [s for s in self.list_snapshots() if s.file_path == rel]

    def content(self, snapshot_id: str) -> Optional[bytes]:
        """Saved bytes of a snapshot, or None for new-file markers."""
        snapshot = self.get(snapshot_id)
        if not snapshot or not snapshot.snapshot_file:
            return None
        try:
            return (self.files_dir / snapshot.snapshot_file).read_bytes()
        except OSError as e:
            logger.warning(f"Snapshot file missing for {snapshot_id}: {e}")
            return None

    def restore(self, snapshot_id: str) -> str:
        """
        Put a file back to the state saved in a snapshot.

        The current state is snapshotted first. A new-file marker restores
        to "did not exist", which deletes the file.

        Returns:
            The restored project-relative path

        Raises:
            KeyError: Unknown snapshot id
            FileNotFoundError: The saved version is gone from disk
        """
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise KeyError(f"Snapshot not found: {snapshot_id}")

        target = self.project_root / snapshot.file_path
        when = time.strftime("%H:%M", time.localtime(snapshot.timestamp))

        if snapshot.is_new_file and not snapshot.snapshot_file:
            self.take(snapshot.file_path, "restore", label=f"Restore: removed {snapshot.file_name}")
            if target.is_file():
                target.unlink()
            logger.info(f"Restored {snapshot.file_path} to not existing")
            return snapshot.file_path

        saved = self.files_dir / snapshot.snapshot_file
        if not saved.exists():
            raise FileNotFoundError(f"Snapshot file missing: {snapshot.snapshot_file}")
        content = saved.read_bytes()

        self.take(snapshot.file_path, "restore", label=f"Before restore to {when}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info(f"Restored {snapshot.file_path} from snapshot {snapshot_id}")
        return snapshot.file_path

    def stats(self) -> SnapshotStats:
        snapshots = self._load_index()
        return SnapshotStats(
            total_snapshots=len(snapshots),
            files_tracked=len({s.file_path for s in snapshots}),
            oldest_timestamp=snapshots[0].timestamp if snapshots else None,
            newest_timestamp=snapshots[-1].timestamp if snapshots else None,
        )
