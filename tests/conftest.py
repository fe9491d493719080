import os
import warnings

# Ignore warnings from redis internals exercised through fakeredis
warnings.filterwarnings("ignore", category=DeprecationWarning, module="redis.*")

# Set test environment variables
os.environ.update({"WATCH_REDIS_LABEL": "default"})

# Import fixtures so they are available to all tests
from tests.fixtures.redis_fixtures import *  # noqa: E402, F403
from tests.fixtures.watch_fixtures import *  # noqa: E402, F403
