import asyncio
import functools
import inspect
import logging
from typing import Any, Callable


def async_retry(
    max_retries: int | None = None,  # Maximum number of retries, None for unlimited
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    logger: logging.Logger | None = None,
    key_name: str = "rule_name",  # Key to identify the rule in kwargs
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    def decorator(func: Callable):
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            retry_count = 0

            bound_args = signature.bind(*args, **kwargs)
            bound_args.apply_defaults()
            key_value = bound_args.arguments.get(key_name, None)

            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    retry_count += 1
                    wait_sec = min(base_delay * (2 ** (retry_count - 1)), max_delay)

                    log_prefix = f"{func.__name__}"
                    if key_value:
                        log_prefix += f" for {key_name}={key_value}"

                    if max_retries is not None and retry_count >= max_retries:
                        if logger:
                            logger.error(f"{log_prefix} failed after {retry_count} attempts. Giving up.")
                        raise e

                    if logger:
                        logger.warning(f"[Retry #{retry_count}] {log_prefix} failed: {e}. Retrying in {wait_sec}s")

                    await asyncio.sleep(wait_sec)

        return wrapper

    return decorator
