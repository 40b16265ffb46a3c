from collections.abc import Awaitable, Callable
from functools import wraps


def rethrow[**P, R, E: BaseException, NewE: BaseException](
    catch: type[E] | tuple[type[E], ...],
    into: Callable[[E], NewE],
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    def decorator(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await fn(*args, **kwargs)
            except catch as e:
                raise into(e) from e

        return wrapper

    return decorator
