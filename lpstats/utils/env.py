import os
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")


def str_to_bool(value) -> bool:
    """Parse common truthy/falsy spellings ("1", "true", "no", ...)."""
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Cannot interpret '{value}' as a boolean")


def get_env_variable(name: str, type_: Callable[..., T], default: Optional[T]) -> Optional[T]:
    """Type-safe wrapper for `os.getenv`.

    Args:
        name (str): Name of the environment variable.
        type_ (Callable[..., T]): Type (or parser) of the environment variable.
        default (T): Default value if the environment variable is not set.

    Returns:
        T: Value of the environment variable, or None when it is unset and
        has no default.

    Usage:
        ```python
        from lpstats.utils.env import get_env_variable

        # Get an integer environment variable with a default value.
        get_env_variable("CHAIN_ID", int, 1)

        # Booleans go through str_to_bool.
        get_env_variable("SUPPORTS_RANGE_LOGS", str_to_bool, True)
        ```
    """

    value = os.getenv(name)
    if value is None:
        return default
    try:
        return type_(value)
    except ValueError:
        type_name = getattr(type_, "__name__", repr(type_))
        raise ValueError(
            f"Environment variable '{name}' is not of type '{type_name}'."
        )


RPC_URL = get_env_variable(
    name="RPC_URL",
    type_=str,
    default="https://eth.llamarpc.com",
)
CHAIN_ID = get_env_variable(
    name="CHAIN_ID",
    type_=int,
    default=1,
)

# Uniswap V3 deployment
POSITION_MANAGER_ADDRESS = get_env_variable(
    name="POSITION_MANAGER_ADDRESS",
    type_=str,
    default="0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
)
POOL_FACTORY_ADDRESS = get_env_variable(
    name="POOL_FACTORY_ADDRESS",
    type_=str,
    default="0x1F98431c8aD98523631AE4a59f267346ea31F984",
)

# Retrieval behaviour
SUPPORTS_RANGE_LOGS = get_env_variable(
    name="SUPPORTS_RANGE_LOGS",
    type_=str_to_bool,
    default=True,
)
MAX_CONCURRENT_REQUESTS = get_env_variable(
    name="MAX_CONCURRENT_REQUESTS",
    type_=int,
    default=8,
)
CACHE_PATH = get_env_variable(
    name="CACHE_PATH",
    type_=str,
    default=None,
)

LOG_LEVEL = get_env_variable(
    name="LOG_LEVEL",
    type_=str,
    default="INFO",
)
