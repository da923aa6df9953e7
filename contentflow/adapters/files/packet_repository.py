"""
File-backed packet repository.

Layout (flow isolated):
    <files_dir>/flow_<flow_id>/job_<job_id>/<flow_step_id>.json

Each file holds the packets that are the input of that flow step.
"""
from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import List

from ...core.exceptions import StorageError
from ...core.logging import LoggerManager
from ...core.serialization import Serializer
from ...ports.packets import DataPacket, PacketRepository


logger = LoggerManager.get_logger(__name__)


class FilePacketRepository(PacketRepository):

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _job_dir(self, flow_id: str, job_id: str) -> Path:
        return self.base_dir / f"flow_{flow_id}" / f"job_{job_id}"

    def _resolve(self, data_ref: str) -> Path:
        path = (self.base_dir / data_ref).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"data_ref escapes the repository: {data_ref}", path=data_ref, operation="load")
        return path

    def store(self, flow_id: str, job_id: str, flow_step_id: str, packets: List[DataPacket]) -> str:
        job_dir = self._job_dir(flow_id, job_id)
        job_dir.mkdir(parents=True, exist_ok=True)
        target = job_dir / f"{flow_step_id}.json"
        document = {
            "flow_step_id": flow_step_id,
            "stored_at": time.time(),
            "packets": [p.to_dict() for p in packets],
        }
        try:
            payload = Serializer.dumps(document, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Packets for step {flow_step_id} are not JSON serializable: {e}",
                               path=str(target), operation="store") from e

        # write-then-rename so readers never see a partial file
        fd, tmp_name = tempfile.mkstemp(dir=str(job_dir), prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, target)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to store packets: {e}", path=str(target), operation="store") from e

        data_ref = target.relative_to(self.base_dir).as_posix()
        logger.debug(f"Stored {len(packets)} packet(s) at {data_ref}")
        return data_ref

    def load(self, data_ref: str) -> List[DataPacket]:
        path = self._resolve(data_ref)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise StorageError(f"No packets stored at {data_ref}", path=data_ref, operation="load") from e
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read packets at {data_ref}: {e}", path=data_ref, operation="load") from e
        return [DataPacket.from_dict(p) for p in document.get("packets", [])]

    def delete_job(self, flow_id: str, job_id: str) -> None:
        job_dir = self._job_dir(flow_id, job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir, ignore_errors=True)
            logger.debug(f"Deleted packet files of job {job_id}")

    def cleanup_older_than(self, days: int) -> int:
        cutoff = time.time() - days * 86400
        removed = 0
        for flow_dir in self.base_dir.glob("flow_*"):
            for job_dir in flow_dir.glob("job_*"):
                if job_dir.is_dir() and job_dir.stat().st_mtime < cutoff:
                    shutil.rmtree(job_dir, ignore_errors=True)
                    removed += 1
            if flow_dir.is_dir() and not any(flow_dir.iterdir()):
                flow_dir.rmdir()
        if removed:
            logger.info(f"Removed {removed} job packet director(ies) older than {days} days")
        return removed
