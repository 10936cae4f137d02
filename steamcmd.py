import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from errors import IoError
from telemetry import start_span
from utils import ensure_dir

SUCCESS_MARKERS = ("Success. Downloaded item", "item state : 4")
DEFAULT_INSTALL_DIR_NAME = "necodl"
_OUTPUT_TAIL_LINES = 40


@dataclass(frozen=True)
class TransferResult:
    ok: bool
    reason: str | None = None
    retryable: bool = False


_ANSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


def _strip_ansi(value: str) -> str:
    return _ANSI_RE.sub("", value)


def extract_steamcmd_error(lines: Iterable[str]) -> str | None:
    for raw_line in lines:
        line = _strip_ansi(raw_line).strip()
        if not line:
            continue
        match = re.search(
            r"(ERROR!\s+Download item\s+\d+\s+failed\s+\([^)]+\)\.?)",
            line,
            flags=re.IGNORECASE,
        )
        if match:
            return " ".join(match.group(1).split())
        if "ERROR!" in line:
            return " ".join(line.split())
    return None


def is_success_line(line: str) -> bool:
    cleaned = _strip_ansi(line)
    return any(marker in cleaned for marker in SUCCESS_MARKERS)


def _is_retryable_reason(reason: str | None, returncode: int) -> bool:
    if reason:
        normalized = reason.lower()
        if "failed (failure)" in normalized or "timeout" in normalized:
            return True
        if "no subscription" in normalized or "file not found" in normalized:
            return False
    return returncode != 0


class SteamCmdAgent:
    """Downloads workshop items with steamcmd into a fixed install root.

    Items land in ``<install_root>/steamapps/workshop/content/<app>/<item>``.
    """

    def __init__(
        self,
        steamcmd_path: Path,
        install_root: Path | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self.steamcmd_path = Path(steamcmd_path)
        if install_root is None:
            install_root = self.steamcmd_path.parent / DEFAULT_INSTALL_DIR_NAME
        self.install_root = Path(install_root)
        self.verbose = verbose

    @property
    def agent_root(self) -> Path:
        return self.install_root / "steamapps" / "workshop"

    def content_path(self, app_id: str, item_id: str) -> Path:
        return self.agent_root / "content" / str(app_id) / str(item_id)

    def build_command(self, app_id: str, item_id: str) -> List[str]:
        return [
            str(self.steamcmd_path),
            "+force_install_dir",
            str(self.install_root),
            "+login",
            "anonymous",
            "+workshop_download_item",
            str(app_id),
            str(item_id),
            "+quit",
        ]

    def transfer(self, app_id: str, item_id: str) -> TransferResult:
        if not self.steamcmd_path.exists():
            logging.error("steamcmd not found at %s", self.steamcmd_path)
            return TransferResult(False, f"steamcmd not found at {self.steamcmd_path}")
        ensure_dir(self.install_root)
        with start_span(
            "steamcmd.transfer",
            {"steam.app_id": str(app_id), "steam.item_id": str(item_id)},
        ) as span:
            logging.info("SteamCMD download: app_id=%s workshop_id=%s", app_id, item_id)
            try:
                returncode, success_seen, lines = self._run(self.build_command(app_id, item_id))
            except (OSError, IoError) as exc:
                logging.error("Failed to start SteamCMD: %s", exc)
                return TransferResult(False, f"failed to start steamcmd: {exc}")
            span.set_attribute("steamcmd.returncode", returncode)
            return self._interpret(item_id, returncode, success_seen, lines)

    def _run(self, cmd: List[str]) -> tuple[int, bool, List[str]]:
        tail: List[str] = []
        error_lines: List[str] = []
        success_seen = False
        with subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        ) as process:
            if process.stdout is None:
                raise IoError("steamcmd output pipe is not available")
            for raw_line in process.stdout:
                line = raw_line.rstrip("\r\n")
                if self.verbose:
                    logging.debug("steamcmd: %s", _strip_ansi(line))
                if is_success_line(line):
                    success_seen = True
                if "ERROR!" in line:
                    error_lines.append(line)
                tail.append(line)
                if len(tail) > _OUTPUT_TAIL_LINES:
                    tail.pop(0)
            returncode = process.wait()
        return returncode, success_seen, error_lines + tail

    def _interpret(
        self,
        item_id: str,
        returncode: int,
        success_seen: bool,
        lines: List[str],
    ) -> TransferResult:
        if success_seen:
            return TransferResult(True)
        parsed_error = extract_steamcmd_error(lines)
        if returncode == 0 and parsed_error is None:
            return TransferResult(True)
        reason = parsed_error or f"steamcmd exit code {returncode}"
        logging.error("SteamCMD failed for workshop %s: %s", item_id, reason)
        output_tail = "\n".join(_strip_ansi(line) for line in lines[-_OUTPUT_TAIL_LINES:])
        if output_tail:
            logging.debug("SteamCMD output tail for %s:\n%s", item_id, output_tail)
        return TransferResult(
            False,
            reason,
            retryable=_is_retryable_reason(reason, returncode),
        )
