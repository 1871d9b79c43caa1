# social_publisher/dependencies/storage.py
from typing import Callable

from social_publisher.infrastructure.storage import ObjectStorage, get_storage


def get_storage_provider() -> Callable[[], ObjectStorage]:
    """Storage is resolved lazily so routes that never touch media don't need a bucket configured."""
    return get_storage
