# ruo/services/storage.py
import logging
import os
import re
import time
from pathlib import Path
from typing import Iterable, Optional

from ruo import config

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    base = Path(name or "").name.strip()
    base = _UNSAFE.sub("_", base).strip("._")
    return base or "upload"


class EvidenceStore:
    """Stockage local des preuves: <root>/<case_number>/<ms>-<filename>."""

    def __init__(self, root: str = config.STATIC_DIR, url_path: str = config.STATIC_URL_PATH):
        self.root = Path(root)
        self.url_path = url_path.rstrip("/")

    def case_dir(self, case_number: str) -> Path:
        return self.root / safe_filename(case_number)

    def save(self, case_number: str, filename: str, data: bytes) -> Path:
        d = self.case_dir(case_number)
        d.mkdir(parents=True, exist_ok=True)
        path = d / f"{int(time.time() * 1000)}-{safe_filename(filename)}"
        with open(path, "wb") as fp:
            fp.write(data)
        return path

    def read(self, filepath: str) -> bytes:
        return Path(filepath).read_bytes()

    def public_url(self, filepath: str) -> Optional[str]:
        try:
            rel = Path(filepath).relative_to(self.root).as_posix()
        except ValueError:
            return None
        base = (config.BASE_PUBLIC_URL or "").rstrip("/")
        return f"{base}{self.url_path}/{rel}"

    def remove_case(self, case_number: str, filepaths: Iterable[str]) -> None:
        """Best effort: un échec est journalisé, jamais propagé."""
        for fp in filepaths:
            try:
                os.unlink(fp)
            except OSError as e:
                logger.warning("[storage] failed to delete %s: %s", fp, e)
        d = self.case_dir(case_number)
        try:
            d.rmdir()
        except OSError as e:
            logger.info("[storage] could not remove %s: %s", d, e)
