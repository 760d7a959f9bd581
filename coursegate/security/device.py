"""Coarse device fingerprinting from request headers.

Matching is plain substring search on the user agent. Nothing here raises;
missing signals fall back to the ``Unknown`` sentinels.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field


UNKNOWN = "Unknown"
UNKNOWN_DEVICE = "Unknown Device"


class DeviceClass(str, enum.Enum):
    DESKTOP = "Desktop"
    MOBILE = "Mobile"
    TABLET = "Tablet"


@dataclass(frozen=True)
class RequestMetadata:
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def user_agent(self) -> str:
        return self.header("user-agent") or ""


@dataclass(frozen=True)
class DeviceContext:
    device_class: DeviceClass | None
    os: str
    browser: str
    ip_address: str

    def describe(self) -> str:
        if self.device_class is None:
            return UNKNOWN_DEVICE
        return f"{self.device_class.value} - {self.os} - {self.browser}"


_OS_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("Windows",), "Windows"),
    (("iPhone", "iPad", "iOS"), "iOS"),
    (("Mac",), "MacOS"),
    (("Android",), "Android"),
    (("Linux",), "Linux"),
)

# Edge and Chrome both advertise "Safari"; Edge also advertises "Chrome".
_BROWSER_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("Edg",), "Edge"),
    (("Firefox", "FxiOS"), "Firefox"),
    (("Chrome", "CriOS"), "Chrome"),
    (("Safari",), "Safari"),
)


def _first_match(user_agent: str, markers: tuple[tuple[tuple[str, ...], str], ...]) -> str:
    for needles, label in markers:
        if any(needle in user_agent for needle in needles):
            return label
    return UNKNOWN


def _device_class(user_agent: str) -> DeviceClass:
    if "iPad" in user_agent or "Tablet" in user_agent:
        return DeviceClass.TABLET
    if "Mobile" in user_agent or "Android" in user_agent or "iPhone" in user_agent:
        return DeviceClass.MOBILE
    return DeviceClass.DESKTOP


def extract_ip_address(metadata: RequestMetadata) -> str:
    forwarded = metadata.header("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if metadata.client_host:
        return metadata.client_host
    return UNKNOWN


def extract_device_context(metadata: RequestMetadata) -> DeviceContext:
    user_agent = metadata.user_agent.strip()
    ip_address = extract_ip_address(metadata)
    if not user_agent:
        return DeviceContext(device_class=None, os=UNKNOWN, browser=UNKNOWN, ip_address=ip_address)
    return DeviceContext(
        device_class=_device_class(user_agent),
        os=_first_match(user_agent, _OS_MARKERS),
        browser=_first_match(user_agent, _BROWSER_MARKERS),
        ip_address=ip_address,
    )
