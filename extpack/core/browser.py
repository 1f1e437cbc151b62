"""
Browser detection and relaunch

Finds installed Chromium-based browsers, closes a running instance and
starts it again with ``--load-extension`` pointing at the pack's
extension directories.

/ Detecta navegadores Chromium, los cierra y los relanza con extensiones.
"""

import logging
import platform
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import psutil

logger = logging.getLogger("extpack.core.browser")

BROWSER_PATHS = {
    "Darwin": {
        "brave": "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
        "chrome": "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "chromium": "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "edge": "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    },
    "Linux": {
        "brave": "/usr/bin/brave-browser",
        "chrome": "/usr/bin/google-chrome",
        "chromium": "/usr/bin/chromium",
        "edge": "/usr/bin/microsoft-edge",
    },
    "Windows": {
        "brave": r"C:\Program Files\BraveSoftware\Brave-Browser\Application\brave.exe",
        "chrome": r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        "chromium": r"C:\Program Files\Chromium\Application\chromium.exe",
        "edge": r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
    },
}

BROWSER_PROCESSES = {
    "Darwin": {
        "brave": "Brave Browser",
        "chrome": "Google Chrome",
        "chromium": "Chromium",
        "edge": "Microsoft Edge",
    },
    "Linux": {
        "brave": "brave-browser",
        "chrome": "chrome",
        "chromium": "chromium",
        "edge": "msedge",
    },
    "Windows": {
        "brave": "brave.exe",
        "chrome": "chrome.exe",
        "chromium": "chromium.exe",
        "edge": "msedge.exe",
    },
}

DISPLAY_NAMES = {
    "brave": "Brave",
    "chrome": "Google Chrome",
    "chromium": "Chromium",
    "edge": "Microsoft Edge",
}


@dataclass(frozen=True)
class Browser:
    name: str
    path: str
    process_name: str
    display_name: str


def detect_browsers(system: Optional[str] = None) -> list[Browser]:
    """Return every known browser whose executable exists on this machine."""
    system = system or platform.system()
    paths = BROWSER_PATHS.get(system, {})
    processes = BROWSER_PROCESSES.get(system, {})

    installed = []
    for name, path in paths.items():
        if Path(path).exists():
            installed.append(Browser(
                name=name,
                path=path,
                process_name=processes[name],
                display_name=DISPLAY_NAMES.get(name, name.capitalize()),
            ))
    return installed


def get_browser(
    name: Optional[str] = None,
    preference: Sequence[str] = ("brave", "chrome", "chromium", "edge"),
    system: Optional[str] = None,
) -> Optional[Browser]:
    """Pick a browser by name, or the first installed one in preference order."""
    installed = {b.name: b for b in detect_browsers(system)}
    if name:
        return installed.get(name.lower())
    for candidate in preference:
        if candidate in installed:
            return installed[candidate]
    return None


def _matches(proc: psutil.Process, process_name: str) -> bool:
    name = (proc.info.get("name") or "").lower()
    return name == process_name.lower()


class BrowserLauncher:
    """
    Kill-and-relaunch of a browser process.

    ``sleep`` is injectable so tests don't wait on real countdowns.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep, kill_timeout: float = 5.0):
        self._sleep = sleep
        self.kill_timeout = kill_timeout

    def _find(self, process_name: str) -> list[psutil.Process]:
        found = []
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                if _matches(proc, process_name):
                    found.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return found

    def is_running(self, process_name: str) -> bool:
        return bool(self._find(process_name))

    def kill(self, process_name: str) -> bool:
        """
        Terminate every process named ``process_name``; force-kill stragglers.

        Returns True when none remain.
        """
        procs = self._find(process_name)
        if not procs:
            return True

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                logger.warning(f"Cannot terminate {process_name} (pid {proc.pid}): {e}")

        _, alive = psutil.wait_procs(procs, timeout=self.kill_timeout)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                logger.warning(f"Cannot kill {process_name} (pid {proc.pid}): {e}")

        if alive:
            _, alive = psutil.wait_procs(alive, timeout=self.kill_timeout)
        return not alive

    def launch(
        self,
        browser_path: str,
        extension_paths: Sequence[str],
        user_data_dir: Optional[str] = None,
        additional_args: Sequence[str] = (),
    ) -> subprocess.Popen:
        """Start the browser detached with all extensions in one flag."""
        args = [browser_path, f"--load-extension={','.join(str(p) for p in extension_paths)}"]
        args.extend(additional_args)
        if user_data_dir:
            args.append(f"--user-data-dir={user_data_dir}")

        logger.info(f"Launching {browser_path} with {len(extension_paths)} extension(s)")
        return subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def relaunch(
        self,
        browser: Browser,
        extension_paths: Sequence[str],
        auto_kill: bool = True,
        countdown: int = 3,
        on_countdown: Optional[Callable[[int], None]] = None,
        user_data_dir: Optional[str] = None,
    ) -> dict:
        """
        Close ``browser`` if running and launch it with the extensions.

        Returns:
            {"success": bool, "reason": str (on failure), "message": str}

        / Cierra el navegador si esta abierto y lo relanza con las extensiones.
        """
        if self.is_running(browser.process_name):
            if not auto_kill:
                return {
                    "success": False,
                    "reason": "browser_running",
                    "message": f"{browser.display_name} is running. Please close it first.",
                }

            if countdown > 0 and on_countdown:
                for remaining in range(countdown, 0, -1):
                    on_countdown(remaining)
                    self._sleep(1)

            if not self.kill(browser.process_name):
                return {
                    "success": False,
                    "reason": "kill_failed",
                    "message": f"Failed to close {browser.display_name}. Please close it manually.",
                }

            # Give the profile lock a moment to clear
            self._sleep(1)

        try:
            process = self.launch(browser.path, extension_paths, user_data_dir=user_data_dir)
        except OSError as e:
            return {
                "success": False,
                "reason": "launch_failed",
                "message": f"Failed to launch {browser.display_name}: {e}",
            }

        return {
            "success": True,
            "pid": process.pid,
            "message": f"{browser.display_name} launched with {len(extension_paths)} extension(s)",
        }
