"""Probe module variants."""

from __future__ import annotations

from collections.abc import Callable

from scopescan.core.result import ModuleKind
from scopescan.probes.base import Capability, ProbeDescriptor, ProbeModule
from scopescan.probes.directories import DirectoryProbe
from scopescan.probes.headers import HeaderProbe
from scopescan.probes.ports import PortProbe

ProbeFactory = Callable[[], ProbeModule]


def default_probe_factories() -> dict[ModuleKind, ProbeFactory]:
    """Factories producing a fresh, unstarted module per session."""
    return {
        ModuleKind.HTTP_HEADERS: HeaderProbe,
        ModuleKind.PORTS: PortProbe,
        ModuleKind.DIRECTORIES: DirectoryProbe,
    }


__all__ = [
    "Capability",
    "DirectoryProbe",
    "HeaderProbe",
    "PortProbe",
    "ProbeDescriptor",
    "ProbeFactory",
    "ProbeModule",
    "default_probe_factories",
]
