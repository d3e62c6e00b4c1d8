import gc

import pytest

from xordht.utils.logging import get_logger, use_xordht_log_style

use_xordht_log_style("everywhere")
logger = get_logger(__name__)


@pytest.fixture(autouse=True, scope="session")
def cleanup_leftovers():
    yield

    gc.collect()  # Call .__del__() for removed objects
