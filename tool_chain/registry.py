"""Capability registry: remote actions discovered from service announcements."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError

from .documents import CORE_CATEGORY, SUPPORTED_PROTOCOL_VERSION, AnnouncementDocument
from .models import (
    CapabilityEntry,
    ParamSpec,
    RegistrationFailure,
    ServiceRecord,
    ToolListing,
    tool_key,
)

_log = logging.getLogger(__name__)


def decode_announcement(
    service_id: str,
    document: Union[str, bytes, Mapping[str, Any]],
) -> Union[AnnouncementDocument, RegistrationFailure]:
    """Decode and validate a capability announcement.

    Returns a :class:`RegistrationFailure` when the document cannot be decoded,
    does not declare protocol version 1.0, or lists no handlers.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as exc:
            return RegistrationFailure(service_id, f"not valid JSON: {exc}")
    if not isinstance(document, Mapping):
        return RegistrationFailure(service_id, "announcement is not an object")

    try:
        announcement = AnnouncementDocument.model_validate(dict(document))
    except ValidationError as exc:
        return RegistrationFailure(service_id, f"invalid announcement: {exc.error_count()} error(s)")

    if announcement.protocol_version != SUPPORTED_PROTOCOL_VERSION:
        return RegistrationFailure(
            service_id,
            f"unsupported protocol version {announcement.protocol_version!r}",
        )
    if not announcement.handlers:
        return RegistrationFailure(service_id, "announcement lists no handlers")
    return announcement


class CapabilityRegistry:
    """Maps ``serviceId:action`` keys to the capabilities services announced.

    Re-announcing a service replaces all of its previous entries.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, CapabilityEntry] = {}
        self._services: dict[str, ServiceRecord] = {}

    def register(
        self,
        service_id: str,
        document: Union[str, bytes, Mapping[str, Any]],
    ) -> int:
        """Register the capabilities in *document* for *service_id*.

        Returns the number of capabilities registered; 0 when the document is
        malformed, in which case any earlier registration is left untouched.
        """
        announcement = decode_announcement(service_id, document)
        if isinstance(announcement, RegistrationFailure):
            _log.warning(
                "Ignoring announcement from %s: %s", service_id, announcement.reason
            )
            return 0

        entries = [
            CapabilityEntry(
                service_id=service_id,
                action=handler.action,
                description=handler.description,
                parameters=tuple(
                    ParamSpec(
                        name=tag.name,
                        type=tag.type,
                        required=tag.required,
                        description=tag.description,
                    )
                    for tag in handler.tags
                ),
                category=handler.category,
            )
            for handler in announcement.handlers
            if handler.category != CORE_CATEGORY
        ]

        keys = list(dict.fromkeys(e.key for e in entries))
        with self._lock:
            previous = self._services.pop(service_id, None)
            if previous is not None:
                for key in previous.tool_keys:
                    self._entries.pop(key, None)
            for entry in entries:
                self._entries[entry.key] = entry
            self._services[service_id] = ServiceRecord(
                service_id=service_id,
                name=announcement.name,
                version=announcement.version,
                description=announcement.description,
                tool_keys=keys,
            )

        _log.info(
            "Registered %d tools from %s (%s v%s)",
            len(keys), service_id, announcement.name or "unnamed", announcement.version or "?",
        )
        return len(keys)

    def resolve(self, key: str) -> Optional[CapabilityEntry]:
        with self._lock:
            return self._entries.get(key)

    def list(self) -> list[ToolListing]:
        with self._lock:
            return [
                ToolListing(
                    tool_key=key,
                    service_id=entry.service_id,
                    action=entry.action,
                    description=entry.description,
                    category=entry.category,
                )
                for key, entry in self._entries.items()
            ]

    def services(self) -> list[ServiceRecord]:
        with self._lock:
            return list(self._services.values())

    def count(self, service_id: Optional[str] = None) -> int:
        with self._lock:
            if service_id is None:
                return len(self._entries)
            record = self._services.get(service_id)
            return len(record.tool_keys) if record else 0

    def describe(self) -> str:
        """Format every registered tool with its parameter signature."""
        with self._lock:
            entries = list(self._entries.values())
        lines = []
        for entry in entries:
            params = ", ".join(p.signature() for p in entry.parameters)
            lines.append(f"  - {tool_key(entry.service_id, entry.action)}({params}): {entry.description}")
        return "\n".join(lines)
