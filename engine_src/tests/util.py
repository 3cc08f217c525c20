from __future__ import annotations

import json
import stat
import sys
import shutil
from pathlib import Path
from typing import List, Optional
from uuid import uuid4


BASE_TMP = Path(__file__).resolve().parents[1] / "_test_tmp"
BASE_TMP.mkdir(exist_ok=True)

FAKE_TESSERACT = """\
import json
import sys
import time
from pathlib import Path

if "--version" in sys.argv:
    print("tesseract 5.3.0")
    sys.exit(0)

here = Path(__file__).resolve().parent
settings = json.loads((here / "fake_tesseract.json").read_text(encoding="utf-8"))
calls = here / "fake_tesseract.calls"
n = len(calls.read_text(encoding="utf-8").splitlines()) if calls.exists() else 0
with calls.open("a", encoding="utf-8") as f:
    f.write(json.dumps(sys.argv[1:]) + "\\n")
time.sleep(settings["sleep"])
texts = settings["texts"]
text = texts[n] if n < len(texts) else None
if text is None:
    sys.stderr.write("Error: cannot read image")
    sys.exit(1)
Path(sys.argv[2] + ".txt").write_text(text, encoding="utf-8")
"""


def make_temp_dir() -> Path:
    path = BASE_TMP / f"run_{uuid4().hex}"
    path.mkdir(parents=True, exist_ok=False)
    return path


def cleanup_temp_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def write_fake_tesseract(folder: Path, texts: List[Optional[str]], sleep: float = 0.0) -> Path:
    """Executable stand-in for tesseract answering the n-th call with texts[n].

    A None entry, or a call past the end of the list, fails like an unreadable image.
    """
    (folder / "fake_tesseract.json").write_text(json.dumps({"texts": texts, "sleep": sleep}), encoding="utf-8")
    (folder / "fake_tesseract.calls").unlink(missing_ok=True)
    script = folder / "tesseract"
    script.write_text(f"#!{sys.executable}\n" + FAKE_TESSERACT, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
