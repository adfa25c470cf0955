"""Local backend primitives: blob storage, change feed, functions."""

from classroom.backend.functions import (
    FunctionInvocationError,
    FunctionRegistry,
    FunctionResult,
    get_function_registry,
    reset_function_registry,
)
from classroom.backend.realtime import (
    Change,
    ChangeFeed,
    Subscription,
    get_change_feed,
    reset_change_feed,
)
from classroom.backend.storage import (
    BucketStore,
    ObjectExistsError,
    ObjectNotFoundError,
    StorageError,
    get_bucket_store,
    reset_bucket_store,
)

__all__ = [
    "BucketStore",
    "Change",
    "ChangeFeed",
    "FunctionInvocationError",
    "FunctionRegistry",
    "FunctionResult",
    "ObjectExistsError",
    "ObjectNotFoundError",
    "StorageError",
    "Subscription",
    "get_bucket_store",
    "get_change_feed",
    "get_function_registry",
    "reset_bucket_store",
    "reset_change_feed",
    "reset_function_registry",
]
