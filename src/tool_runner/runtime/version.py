"""Tool version checks.

A VersionController asks a tool for its version once per process
(``<binary> --version``) and checks it against a supported range.
Range bounds may omit trailing parts: "2" matches any 2.x.y.
"""

from __future__ import annotations

import logging
import re

from .errors import ProcessFailedError, VersionNotSupportedError
from .handle import ProcessHandle
from .spec import ExecSpec

__all__ = ["Version", "VersionController", "clear_version_cache"]

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+\.\d+\.\d+")

_version_cache: dict[str, "Version"] = {}


def clear_version_cache() -> None:
    _version_cache.clear()


class Version:
    """Dotted version with up to three numeric parts; missing parts are wildcards."""

    def __init__(self, version: str) -> None:
        parts = [int(part) for part in version.strip().split(".")[:3] if part.isdigit()]
        if not parts:
            raise ValueError(f"invalid version: {version!r}")
        parts += [None] * (3 - len(parts))
        self.major, self.minor, self.hotfix = parts

    def _parts(self) -> tuple[int | None, int | None, int | None]:
        return (self.major, self.minor, self.hotfix)

    def _compare(self, other: "Version") -> int:
        for mine, theirs in zip(self._parts(), other._parts()):
            if mine is None or theirs is None:
                return 0
            if mine != theirs:
                return -1 if mine < theirs else 1
        return 0

    def is_older(self, other: "Version") -> bool:
        return self._compare(other) < 0

    def is_newer(self, other: "Version") -> bool:
        return self._compare(other) > 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._parts() == other._parts()

    def __hash__(self) -> int:
        return hash(self._parts())

    def __str__(self) -> str:
        return ".".join("x" if part is None else str(part) for part in self._parts())

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"


class VersionController:
    """Supported version range of one external tool.

    Attributes:
        name: Human readable tool name
        binary: Executable used to query the version
        lower: Oldest supported version
        upper: Newest supported version
    """

    def __init__(
        self,
        name: str,
        binary: str,
        lower: str,
        upper: str,
        install_link: str = "",
    ) -> None:
        self.name = name
        self.binary = binary
        self.lower = Version(lower)
        self.upper = Version(upper)
        self.install_message = f"You have to install latest version by mask {self.upper}"
        if install_link:
            self.install_message += f"\n{install_link}"

    def build_error_message(self, message: str) -> str:
        return f"{self.name} {message}. {self.install_message}"

    async def get(self) -> Version:
        """Return the installed version (cached per tool name).

        Raises:
            VersionNotSupportedError: The version could not be determined
        """
        cached = _version_cache.get(self.name)
        if cached is not None:
            return cached

        handle = ProcessHandle(
            ExecSpec(
                command_line=f"{self.binary} --version",
                process_name=f"{self.name} version",
                silent=True,
            )
        )
        try:
            lines = await handle.run()
        except (ProcessFailedError, OSError) as e:
            raise VersionNotSupportedError(self.build_error_message("version not available")) from e

        match = _VERSION_PATTERN.search("\n".join(lines))
        if match is None:
            raise VersionNotSupportedError(self.build_error_message("version not available"))

        version = Version(match.group(0))
        _version_cache[self.name] = version
        logger.debug(f"{self.name} version: {version}")
        return version

    async def check_support(self) -> None:
        """Raise VersionNotSupportedError if the installed version is out of range."""
        current = await self.get()
        if self.lower.is_newer(current) or self.upper.is_older(current):
            raise VersionNotSupportedError(
                self.build_error_message(f"version {current} is not supported")
            )
