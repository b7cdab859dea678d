import os
import tempfile

# Keep the import-time engine (workbench.main creates one) away from the working tree
_TMP_DIR = tempfile.mkdtemp(prefix="workbench-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'import_time.db')}")
os.environ.setdefault("LOG_AS_JSON", "false")

import pytest

from workbench import db as dbmod
from workbench.storage import KeyValueStore, StorageManager
from workbench.schemas import ApiResponse, RequestConfig, RequestHistory


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'workbench.db'}"
    dbmod.reconfigure(url)
    dbmod.init_db()
    return url


@pytest.fixture
def kv(db_url):
    return KeyValueStore(quota=5 * 1024 * 1024, prefix="api-client-")


@pytest.fixture
def storage(kv):
    return StorageManager(kv)


def make_history_item(name="req", status=200, data=None, timestamp=None):
    kwargs = {}
    if timestamp is not None:
        kwargs["timestamp"] = timestamp
    return RequestHistory(
        request=RequestConfig(name=name, url=f"https://api.test/{name}"),
        response=ApiResponse(status=status, status_text="OK", headers={"content-type": "application/json"},
                             data=data if data is not None else {"name": name}, response_time=12, size=10),
        **kwargs,
    )


@pytest.fixture
def history_item():
    return make_history_item
