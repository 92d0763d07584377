"""Platform probes for the foreground window and user idle time."""

from __future__ import annotations

import ctypes
import logging
import os
import re
import shutil
import subprocess
import sys
from datetime import datetime
from typing import Optional

import psutil

from .errors import ProbeUnavailable
from .models import WindowDescriptor
from .normalization import normalize_app_name, normalize_window_title

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 3.0


class WindowProbe:
    """Capability returning the foreground window and idle duration.

    Platform failures never escape :meth:`get_active_window` or
    :meth:`get_idle_seconds`; they degrade to an unknown descriptor and zero
    idle seconds respectively.
    """

    platform_name = "unsupported"

    def get_active_window(self) -> WindowDescriptor:
        try:
            app_name, app_identifier, window_title = self._read_active_window()
        except (ProbeUnavailable, OSError, psutil.Error) as exc:
            logger.debug("Active window probe failed: %s", exc)
            return WindowDescriptor.unknown()
        app_name = normalize_app_name(app_name)
        return WindowDescriptor(
            app_name=app_name,
            app_identifier=(app_identifier or "").strip(),
            window_title=normalize_window_title(app_name, window_title),
            observed_at=datetime.now(),
        )

    def get_idle_seconds(self) -> int:
        try:
            return max(0, int(self._read_idle_seconds()))
        except (ProbeUnavailable, OSError, ValueError) as exc:
            logger.debug("Idle probe failed; assuming active: %s", exc)
            return 0

    def has_permission(self) -> bool:
        return False

    def permission_instructions(self) -> str:
        return (
            "Window detection is not supported on this platform.\n"
            "Supported platforms: macOS (Accessibility API), Linux with X11 "
            "(xdotool) and Windows."
        )

    def _read_active_window(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        raise ProbeUnavailable(f"window detection unavailable on {sys.platform}")

    def _read_idle_seconds(self) -> float:
        raise ProbeUnavailable(f"idle detection unavailable on {sys.platform}")


def _run(args: list[str], timeout: float = PROBE_TIMEOUT) -> str:
    try:
        completed = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except FileNotFoundError as exc:
        raise ProbeUnavailable(f"{args[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeUnavailable(f"{args[0]} timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        raise ProbeUnavailable(f"{args[0]} exited with status {exc.returncode}") from exc
    return completed.stdout.strip()


def _process_name(pid: int) -> Optional[str]:
    try:
        return psutil.Process(pid).name() if pid else None
    except (psutil.Error, ProcessLookupError):
        return None


class LinuxX11Probe(WindowProbe):
    """Uses ``xdotool`` for windows and ``xprintidle`` for idle time."""

    platform_name = "Linux"

    _WM_CLASS_PATTERN = re.compile(r'WM_CLASS.*=\s*"([^"]+)"(?:,\s*"([^"]+)")?')

    def has_permission(self) -> bool:
        if not os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"):
            return False
        if shutil.which("xdotool") is None:
            return False
        return not self.get_active_window().is_unknown

    def permission_instructions(self) -> str:
        if not os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"):
            return (
                "Wayland detected: window detection requires X11.\n"
                "Run your desktop session in X11 mode or use XWayland."
            )
        if shutil.which("xdotool") is None:
            return (
                "xdotool not found. Install it with your package manager, e.g.\n"
                "  sudo apt install xdotool xprintidle"
            )
        return "Window detection failed. Run 'tt detect' to test window detection."

    def _read_active_window(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        window_id = _run(["xdotool", "getactivewindow"])
        title = _run(["xdotool", "getwindowname", window_id])
        app_name: Optional[str] = None
        identifier: Optional[str] = None
        try:
            pid = int(_run(["xdotool", "getwindowpid", window_id]))
            app_name = _process_name(pid)
        except (ProbeUnavailable, ValueError):
            logger.debug("Could not resolve the process of window %s", window_id)
        try:
            match = self._WM_CLASS_PATTERN.search(_run(["xprop", "-id", window_id, "WM_CLASS"]))
        except ProbeUnavailable:
            match = None
        if match:
            identifier = match.group(2) or match.group(1)
            app_name = app_name or match.group(1)
        return app_name or "Unknown", identifier, title

    def _read_idle_seconds(self) -> float:
        return int(_run(["xprintidle"])) / 1000.0


class MacOSProbe(WindowProbe):
    """Uses AppleScript (System Events) and the HID idle counter."""

    platform_name = "macOS"

    _SCRIPT = """
tell application "System Events"
  set frontApp to first application process whose frontmost is true
  set frontAppName to name of frontApp
  set frontAppId to bundle identifier of frontApp
  set windowTitle to ""
  try
    tell process frontAppName
      tell (1st window whose value of attribute "AXMain" is true)
        set windowTitle to value of attribute "AXTitle"
      end tell
    end tell
  on error
    try
      tell process frontAppName
        set windowTitle to name of front window
      end tell
    end try
  end try
  return frontAppName & "|||" & frontAppId & "|||" & windowTitle
end tell
"""

    _IDLE_PATTERN = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')

    def has_permission(self) -> bool:
        try:
            self._read_active_window()
        except ProbeUnavailable:
            return False
        return True

    def permission_instructions(self) -> str:
        return (
            "Accessibility permission required for window detection.\n"
            "Open System Settings > Privacy & Security > Accessibility and add\n"
            "your terminal application, then restart it."
        )

    def _read_active_window(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        output = _run(["osascript", "-e", self._SCRIPT])
        parts = output.split("|||")
        parts += [""] * (3 - len(parts))
        app_name, bundle_id, title = parts[:3]
        if bundle_id == "missing value":
            bundle_id = ""
        return app_name or "Unknown", bundle_id, title

    def _read_idle_seconds(self) -> float:
        match = self._IDLE_PATTERN.search(_run(["ioreg", "-c", "IOHIDSystem"]))
        if not match:
            raise ProbeUnavailable("HIDIdleTime not reported by ioreg")
        return int(match.group(1)) / 1_000_000_000


class WindowsProbe(WindowProbe):
    """Win32 foreground window and last-input APIs."""

    platform_name = "Windows"

    def __init__(self) -> None:
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._wintypes = wintypes
        self._last_input_info = LASTINPUTINFO
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        self._kernel32.GetTickCount64.restype = ctypes.c_ulonglong

    def has_permission(self) -> bool:
        return True

    def _read_active_window(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            raise ProbeUnavailable("no foreground window")

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        window_title = buffer.value.strip() or None

        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        identifier: Optional[str] = None
        process_name = _process_name(pid.value)
        if pid.value:
            try:
                identifier = psutil.Process(pid.value).exe()
            except (psutil.Error, ProcessLookupError):
                identifier = None
        return process_name or "Unknown", identifier, window_title

    def _read_idle_seconds(self) -> float:
        last_input = self._last_input_info()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ctypes.WinError()  # type: ignore[attr-defined]
        elapsed_ms = (self._kernel32.GetTickCount64() & 0xFFFFFFFF) - last_input.dwTime
        return (elapsed_ms & 0xFFFFFFFF) / 1000.0


def get_default_probe() -> WindowProbe:
    """Pick the probe for the running platform."""
    if sys.platform == "darwin":
        return MacOSProbe()
    if sys.platform.startswith("linux"):
        return LinuxX11Probe()
    if sys.platform == "win32":
        return WindowsProbe()
    return WindowProbe()
