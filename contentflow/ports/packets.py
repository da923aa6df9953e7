"""
Ports - DataPacket and the packet repository

A DataPacket is the unit of payload passed between the steps of a job. Packets
handed to the next step are persisted through a PacketRepository, isolated per
flow and job.
"""
from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List


VALID_FORMATS = ("text", "html", "markdown")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _default_content() -> Dict[str, Any]:
    return {"title": "", "body": "", "summary": None, "tags": []}


def _default_metadata() -> Dict[str, Any]:
    return {"source_type": "unknown", "source_url": None, "date_created": _now_iso(),
            "language": "en", "format": "text"}


def _default_processing() -> Dict[str, Any]:
    return {"steps_completed": []}


def _default_attachments() -> Dict[str, List[Dict[str, Any]]]:
    return {"images": [], "files": [], "links": []}


@dataclass
class DataPacket:
    """
    Payload unit moving between steps.

    `type` tags who produced the packet (fetch, ai_response, tool_result,
    ai_handler_complete, publish, update...). `content` carries the text payload,
    `metadata` the source description, `processing` annotations added by
    intermediate steps and `attachments` image/file/link references.
    """
    type: str = "fetch"
    content: Dict[str, Any] = field(default_factory=_default_content)
    metadata: Dict[str, Any] = field(default_factory=_default_metadata)
    processing: Dict[str, Any] = field(default_factory=_default_processing)
    attachments: Dict[str, List[Dict[str, Any]]] = field(default_factory=_default_attachments)

    @classmethod
    def create(cls, title: str = "", body: str = "", source_type: str = "unknown", *,
               packet_type: str = "fetch", **metadata: Any) -> "DataPacket":
        packet = cls(type=packet_type)
        packet.content["title"] = title
        packet.content["body"] = body
        packet.metadata["source_type"] = source_type
        packet.metadata.update(metadata)
        return packet

    # -------------------------
    # Mutators
    # -------------------------

    def add_processing_step(self, step_name: str) -> "DataPacket":
        steps = self.processing.setdefault("steps_completed", [])
        if step_name not in steps:
            steps.append(step_name)
        return self

    def add_image(self, url: str, alt: str = "", **extra: Any) -> "DataPacket":
        self.attachments.setdefault("images", []).append(
            {"url": url, "alt": alt or self.content.get("title", ""), **extra})
        return self

    def add_file(self, url: str, name: str = "", **extra: Any) -> "DataPacket":
        self.attachments.setdefault("files", []).append(
            {"url": url, "name": name or url.rstrip("/").rsplit("/", 1)[-1], **extra})
        return self

    def add_link(self, url: str, title: str = "", **extra: Any) -> "DataPacket":
        self.attachments.setdefault("links", []).append({"url": url, "title": title or url, **extra})
        return self

    # -------------------------
    # Queries
    # -------------------------

    @property
    def title(self) -> str:
        return self.content.get("title") or ""

    @property
    def body(self) -> str:
        return self.content.get("body") or ""

    def has_content(self) -> bool:
        return bool(self.title or self.body)

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty when valid)"""
        errors = []
        if not self.has_content():
            errors.append("Packet must have either title or body content")
        if not self.metadata.get("source_type"):
            errors.append("Source type is required")
        date_created = self.metadata.get("date_created")
        if date_created:
            try:
                datetime.fromisoformat(str(date_created))
            except ValueError:
                errors.append("Date created must be in ISO 8601 format")
        if self.metadata.get("format", "text") not in VALID_FORMATS:
            errors.append("Format must be one of: " + ", ".join(VALID_FORMATS))
        return errors

    def content_for_ai(self) -> str:
        """Plain-text rendering used in prompts"""
        parts = []
        if self.content.get("title"):
            parts.append(f"Title: {self.content['title']}")
        if self.content.get("summary"):
            parts.append(f"Summary: {self.content['summary']}")
        if self.content.get("body"):
            parts.append(f"Content: {self.content['body']}")
        if self.content.get("tags"):
            parts.append("Tags: " + ", ".join(str(t) for t in self.content["tags"]))
        if self.metadata.get("source_url"):
            parts.append(f"Source: {self.metadata['source_url']}")
        return "\n\n".join(parts)

    # -------------------------
    # Serialization
    # -------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "content": copy.deepcopy(self.content),
            "metadata": copy.deepcopy(self.metadata),
            "processing": copy.deepcopy(self.processing),
            "attachments": copy.deepcopy(self.attachments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataPacket":
        packet = cls()
        packet.type = data.get("type") or packet.type
        for name in ("content", "metadata", "processing", "attachments"):
            value = data.get(name)
            if isinstance(value, dict):
                setattr(packet, name, copy.deepcopy(value))
        return packet

    def copy(self) -> "DataPacket":
        return DataPacket.from_dict(self.to_dict())


class PacketRepository(ABC):
    """Durable storage of the packets handed from one step to the next"""

    @abstractmethod
    def store(self, flow_id: str, job_id: str, flow_step_id: str, packets: List[DataPacket]) -> str:
        """
        Persist the input of `flow_step_id`

        Returns:
            data_ref that load() accepts
        """
        ...

    @abstractmethod
    def load(self, data_ref: str) -> List[DataPacket]:
        ...

    @abstractmethod
    def delete_job(self, flow_id: str, job_id: str) -> None:
        ...

    @abstractmethod
    def cleanup_older_than(self, days: int) -> int:
        """Remove job directories older than `days`, returning how many were removed"""
        ...
