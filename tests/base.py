"""
Base test classes for Roadie Guard testing.
"""
import tempfile
from pathlib import Path
from typing import List
from unittest.mock import Mock, patch

from roadie_guard.core.database import DatabaseManager, SQLitePersistenceGateway


class BaseTestCase:
    """Base class for all test cases."""

    def setup_method(self):
        """Set up test method."""
        self.temp_files: List[Path] = []
        self.mock_patches = []

    def teardown_method(self):
        """Clean up after test method."""
        for temp_file in self.temp_files:
            if temp_file.exists():
                temp_file.unlink()

        for patch_obj in self.mock_patches:
            patch_obj.stop()

    def create_temp_file(self, content: str = "", suffix: str = ".tmp") -> Path:
        """Create a temporary file for testing."""
        handle = tempfile.NamedTemporaryFile(mode="w", suffix=suffix, delete=False, encoding="utf-8")
        with handle:
            handle.write(content)
        temp_file = Path(handle.name)
        self.temp_files.append(temp_file)
        return temp_file

    def add_patch(self, target: str, **kwargs) -> Mock:
        """Add a mock patch that will be automatically cleaned up."""
        patch_obj = patch(target, **kwargs)
        mock_obj = patch_obj.start()
        self.mock_patches.append(patch_obj)
        return mock_obj


class DatabaseTestCase(BaseTestCase):
    """Base class for tests against a file-backed SQLite database."""

    def setup_method(self):
        """Set up database test environment."""
        super().setup_method()
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self.temp_dir.name) / "roadie_guard.db")
        self.db = DatabaseManager(self.db_path)
        self.gateway = SQLitePersistenceGateway(self.db)

    def teardown_method(self):
        """Clean up database test environment."""
        self.db.close()
        self.temp_dir.cleanup()
        super().teardown_method()

    def reopen(self) -> SQLitePersistenceGateway:
        """Close and reopen the database file."""
        self.db.close()
        self.db = DatabaseManager(self.db_path)
        self.gateway = SQLitePersistenceGateway(self.db)
        return self.gateway
