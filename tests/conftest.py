import os
import warnings

# Ignore warnings from third-party media stacks
warnings.filterwarnings("ignore", category=DeprecationWarning, module="aiortc.*")

# Set test environment variables before any config is loaded
os.environ.update({"APP_ENV": "test", "DEBUG": "false"})

# Import fixtures so they are available to all tests
from tests.fixtures.rtc_fixtures import *  # noqa: E402, F403
