"""Capability surface: the tools a plan may invoke.

A capability is a named async callable with an input schema and a
declared side effect. The permission gate consults ``side_effect``
before any invocation.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import UnknownCapabilityError
from .models import SideEffect

logger = logging.getLogger(__name__)

CapabilityHandler = Callable[[dict[str, Any]], Awaitable[Any]]

_PREVIEW_LIMIT = 400


@dataclass
class Capability:
    """A named tool callable by the task executor."""
    name: str
    description: str
    invoke: CapabilityHandler
    input_schema: dict[str, Any] = field(default_factory=dict)
    side_effect: SideEffect = SideEffect.NONE

    @property
    def side_effecting(self) -> bool:
        return self.side_effect != SideEffect.NONE

    def describe_action(self, arguments: dict[str, Any]) -> str:
        """Human-readable one-liner for a permission prompt."""
        if self.side_effect == SideEffect.FILE_WRITE:
            target = arguments.get("path") or arguments.get("file_path") or "?"
            return f"Write to file: {target}"
        if self.side_effect == SideEffect.COMMAND:
            command = arguments.get("command") or self.name
            return f"Run command: {command}"
        return f"Use {self.name}"

    def preview(self, arguments: dict[str, Any]) -> str | None:
        """Short preview of what the action would change."""
        if self.side_effect == SideEffect.FILE_WRITE:
            content = arguments.get("content")
            if isinstance(content, str):
                if len(content) > _PREVIEW_LIMIT:
                    return content[:_PREVIEW_LIMIT] + "..."
                return content
            return None
        if self.side_effect == SideEffect.COMMAND:
            return None
        if not arguments:
            return None
        text = json.dumps(arguments, default=str)
        return text if len(text) <= _PREVIEW_LIMIT else text[:_PREVIEW_LIMIT] + "..."


class CapabilitySurface:
    """Registry of capabilities available to plans."""

    def __init__(self, capabilities: list[Capability] | None = None) -> None:
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities or []:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        if capability.name in self._capabilities:
            logger.warning("Replacing capability %s", capability.name)
        self._capabilities[capability.name] = capability

    def get(self, name: str) -> Capability:
        try:
            return self._capabilities[name]
        except KeyError:
            raise UnknownCapabilityError(name, self.names()) from None

    def names(self) -> list[str]:
        return sorted(self._capabilities)

    def describe(self) -> list[dict[str, Any]]:
        """Capability summaries for the planning prompt."""
        return [
            {
                "name": c.name,
                "description": c.description,
                "input_schema": c.input_schema,
                "side_effect": c.side_effect.value,
            }
            for c in sorted(self._capabilities.values(), key=lambda c: c.name)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)
