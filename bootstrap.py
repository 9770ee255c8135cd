"""
Seed the config directory with the factory files shipped in defaults/.

Run on `main.py serve` (and usable standalone) so a fresh volume gets the
settings overlay, the starter cost code list and the e-mail templates.
Files the admin has edited are never overwritten; an unreadable
app_settings.json is replaced.
"""
import json
import os
import shutil
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
DEFAULTS_DIR = PROJECT_ROOT / "defaults"

SETTINGS_FILE = "app_settings.json"
SEED_FILES = (SETTINGS_FILE, "cost_codes.json")
TEMPLATE_PATTERN = "*.j2"


def _readable_json(path: Path) -> bool:
    if path.stat().st_size == 0:
        return False
    try:
        with open(path, encoding="utf-8") as f:
            json.load(f)
    except (OSError, ValueError):
        return False
    return True


def _copy_default(src: Path, dst: Path, reason: str) -> str:
    print(f"[Bootstrap] {reason}: {dst.name}")
    shutil.copy2(src, dst)
    return dst.name


def ensure_config_files(config_dir: Path | None = None) -> list[str]:
    """Copy missing (or repair broken) config files.  Returns the names written."""
    target = Path(config_dir or CONFIG_DIR)
    target.mkdir(parents=True, exist_ok=True)
    written: list[str] = []

    if not DEFAULTS_DIR.is_dir():
        print(f"[Bootstrap] Warning: no defaults directory at {DEFAULTS_DIR}")
        return written

    for name in SEED_FILES:
        src, dst = DEFAULTS_DIR / name, target / name
        if not src.exists():
            continue
        if not dst.exists():
            written.append(_copy_default(src, dst, "Seeding"))
        elif name == SETTINGS_FILE and not _readable_json(dst):
            written.append(_copy_default(src, dst, "Replacing unreadable"))

    for src in sorted(DEFAULTS_DIR.glob(TEMPLATE_PATTERN)):
        dst = target / src.name
        if not dst.exists():
            written.append(_copy_default(src, dst, "Seeding template"))

    return written


if __name__ == "__main__":
    ensure_config_files()
