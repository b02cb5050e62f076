"""
Headless office engine (LibreOffice) wrapper.

The engine is an injected collaborator: orchestrator and converters receive an
OfficeEngine instance and never reach for module-level state. Availability
is probed once and cached until invalidate() is called.
"""

import asyncio
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import threading
import uuid
from dataclasses import dataclass
from typing import List, Optional

COMMON_ENGINE_PATHS = {
    "linux": [
        "/usr/bin/soffice",
        "/usr/bin/libreoffice",
        "/usr/lib/libreoffice/program/soffice",
        "/opt/libreoffice/program/soffice",
        "/snap/bin/libreoffice",
    ],
    "darwin": [
        "/Applications/LibreOffice.app/Contents/MacOS/soffice",
    ],
    "win32": [
        r"C:\Program Files\LibreOffice\program\soffice.exe",
        r"C:\Program Files (x86)\LibreOffice\program\soffice.exe",
    ],
}


class EngineError(RuntimeError):
    """The engine ran but did not produce a usable PDF."""


class EngineUnavailable(EngineError):
    """No engine binary could be located."""


@dataclass
class EngineStatus:
    is_installed: bool
    path: Optional[str] = None
    version: Optional[str] = None
    can_convert: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "isInstalled": self.is_installed,
            "path": self.path,
            "version": self.version,
            "canConvert": self.can_convert,
            "error": self.error,
        }


def _profile_uri(profile_dir: str) -> str:
    if sys.platform == "win32":
        return f"file:///{profile_dir.replace(os.sep, '/')}"
    return f"file://{profile_dir}"


def _new_process_group() -> dict:
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_process_tree(pid: int) -> None:
    """Kill the engine and every helper it started (soffice runs soffice.bin)."""
    if sys.platform == "win32":
        subprocess.run(["taskkill", "/F", "/T", "/PID", str(pid)], capture_output=True)
        return
    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


class OfficeEngine:
    """Locates, verifies and drives the headless conversion engine."""

    def __init__(
        self,
        explicit_path: Optional[str] = None,
        timeout_seconds: float = 30.0,
        enabled: bool = True,
        isolate_profile: bool = True,
    ):
        self.explicit_path = explicit_path
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled
        self.isolate_profile = isolate_profile
        self._status: Optional[EngineStatus] = None
        self._lock = threading.Lock()

    @classmethod
    def disabled(cls) -> "OfficeEngine":
        """An engine that always reports itself unavailable."""
        return cls(enabled=False)

    @classmethod
    def from_settings(cls, settings) -> "OfficeEngine":
        return cls(
            explicit_path=settings.libreoffice_path,
            timeout_seconds=settings.engine_timeout_seconds,
        )

    def candidate_paths(self) -> List[str]:
        candidates: List[str] = []
        if self.explicit_path:
            candidates.append(self.explicit_path)
        env_path = os.environ.get("LIBREOFFICE_PATH")
        if env_path and env_path not in candidates:
            candidates.append(env_path)
        platform_key = "win32" if sys.platform == "win32" else ("darwin" if sys.platform == "darwin" else "linux")
        candidates.extend(COMMON_ENGINE_PATHS[platform_key])
        return candidates

    def locate(self) -> Optional[str]:
        if not self.enabled:
            return None
        for candidate in self.candidate_paths():
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
        return shutil.which("soffice") or shutil.which("libreoffice")

    def _read_version(self, path: str) -> Optional[str]:
        try:
            completed = subprocess.run(
                [path, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        output = (completed.stdout or "").strip()
        return output.splitlines()[0] if output else None

    def status(self) -> EngineStatus:
        """Cached availability check."""
        with self._lock:
            if self._status is None:
                self._status = self._probe()
            return self._status

    def _probe(self) -> EngineStatus:
        if not self.enabled:
            return EngineStatus(is_installed=False, error="Office engine disabled")
        path = self.locate()
        if not path:
            return EngineStatus(is_installed=False, error="LibreOffice executable not found")
        version = self._read_version(path)
        return EngineStatus(is_installed=True, path=path, version=version, can_convert=True)

    def invalidate(self) -> None:
        with self._lock:
            self._status = None

    def is_available(self) -> bool:
        return self.status().is_installed

    def verify(self, probe_conversion: bool = True) -> EngineStatus:
        """Re-check the engine and optionally run a real text-to-PDF conversion."""
        self.invalidate()
        status = self.status()
        if not status.is_installed or not probe_conversion:
            return status

        work_dir = tempfile.mkdtemp(prefix="engine_probe_")
        try:
            probe_input = os.path.join(work_dir, "probe.txt")
            with open(probe_input, "w", encoding="utf-8") as handle:
                handle.write("Office engine probe document.\n")
            asyncio.run(self.convert(probe_input, os.path.join(work_dir, "probe.pdf")))
            status.can_convert = True
            status.error = None
        except EngineError as exc:
            status.can_convert = False
            status.error = str(exc)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
        return status

    def status_report(self) -> str:
        status = self.status()
        lines = ["=== Office Engine Status ==="]
        lines.append(f"Installed: {'YES' if status.is_installed else 'NO'}")
        if status.path:
            lines.append(f"Path: {status.path}")
        if status.version:
            lines.append(f"Version: {status.version}")
        lines.append(f"Can convert: {'YES' if status.can_convert else 'NO'}")
        if status.error:
            lines.append(f"Error: {status.error}")
        if not status.is_installed:
            lines.append("Install LibreOffice or set LIBREOFFICE_PATH for highest fidelity conversions.")
        return "\n".join(lines)

    def build_command(self, engine_path: str, input_path: str, out_dir: str, profile_dir: Optional[str]) -> List[str]:
        command = [engine_path, "--headless"]
        if profile_dir:
            command.append(f"-env:UserInstallation={_profile_uri(profile_dir)}")
        command.extend(["--convert-to", "pdf", "--outdir", out_dir, input_path])
        return command

    async def convert(self, input_path: str, output_pdf_path: str, timeout: Optional[float] = None) -> str:
        """
        Convert input_path to PDF at output_pdf_path.

        Every invocation uses a private output directory and, by default, an
        isolated user profile so concurrent conversions never share a lock file.
        Raises EngineUnavailable when no binary exists and EngineError for a
        non-zero exit, timeout or missing/empty output.
        """
        status = self.status()
        if not status.is_installed or not status.path:
            raise EngineUnavailable(status.error or "LibreOffice executable not found")

        timeout = timeout or self.timeout_seconds
        base_dir = os.path.dirname(os.path.abspath(output_pdf_path))
        os.makedirs(base_dir, exist_ok=True)
        work_dir = os.path.join(base_dir, f"engine_{uuid.uuid4().hex}")
        out_dir = os.path.join(work_dir, "out")
        profile_dir = os.path.join(work_dir, "profile") if self.isolate_profile else None
        os.makedirs(out_dir)
        if profile_dir:
            os.makedirs(profile_dir)

        command = self.build_command(status.path, os.path.abspath(input_path), out_dir, profile_dir)
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    **_new_process_group(),
                )
            except OSError as exc:
                raise EngineUnavailable(f"Could not start LibreOffice: {exc}") from exc

            try:
                _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                _kill_process_tree(process.pid)
                await process.wait()
                raise EngineError(f"LibreOffice conversion timed out after {timeout}s") from None
            except asyncio.CancelledError:
                _kill_process_tree(process.pid)
                raise

            if process.returncode != 0:
                detail = (stderr or b"").decode("utf-8", errors="replace").strip()
                raise EngineError(f"LibreOffice exited with code {process.returncode}: {detail or 'no output'}")

            stem = os.path.splitext(os.path.basename(input_path))[0]
            produced = os.path.join(out_dir, f"{stem}.pdf")
            if not os.path.exists(produced):
                # Some builds normalise the output name.
                pdfs = [name for name in os.listdir(out_dir) if name.lower().endswith(".pdf")]
                if not pdfs:
                    raise EngineError("LibreOffice did not produce an output file")
                produced = os.path.join(out_dir, pdfs[0])
            if os.path.getsize(produced) == 0:
                raise EngineError("LibreOffice produced an empty PDF")

            shutil.move(produced, output_pdf_path)
            return output_pdf_path
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
