"""Test configuration and fixtures"""
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["API_KEY_SALT"] = "test-salt-for-testing-only-0123456789"
os.environ["ADMIN_PASSWORD"] = "test-admin-password-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["USAGE_LEDGER_BACKEND"] = "sql"
os.environ["LOG_FORMAT"] = "console"
os.environ["LOG_FILE_ENABLED"] = "false"
os.environ.pop("DOWNSTREAM_URL", None)
