from __future__ import annotations

import shutil
import tempfile
from pathlib import Path


class TempDbSandbox:
    """Throwaway directory holding one test's SQLite file and photo uploads.

    Everything a test writes lives under the system temp dir, so ``cleanup`` can remove
    it wholesale without touching the checkout.
    """

    def __init__(self, prefix: str = "homeservice_tests", db_name: str = "home_service_test.db") -> None:
        self.temp_dir = tempfile.mkdtemp(prefix=f"{prefix}_")
        self.db_path = str(Path(self.temp_dir) / db_name)
        self.upload_dir = str(Path(self.temp_dir) / "uploads")

    def make_config(self, base_config, **overrides):
        attrs = {
            "DATABASE_DIR": self.temp_dir,
            "DB_PATH": self.db_path,
            "UPLOAD_DIR": self.upload_dir,
            "LOG_JSON": False,
        }
        attrs.update(overrides)
        return type("TempConfig", (base_config,), attrs)

    def cleanup(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)
