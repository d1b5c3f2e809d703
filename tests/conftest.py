"""
Shared test setup.

Logging to a file and to the console is switched off before devify is
imported, so test runs leave no devify.log behind.
"""

import os

os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("CONSOLE_LOGGING", "false")
os.environ.setdefault("MOCK_MODE", "false")
# Never reach the real GitHub API from tests
os.environ["GITHUB_TOKEN"] = ""
