import inspect
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

T = TypeVar('T')


@dataclass
class Context:
    """Per-event context handed to factories that take one argument."""
    sid: str
    # noinspection PyUnresolvedReferences
    app: 'SocketioApplication'


@dataclass(frozen=True)
class Dependency:
    key: str


@dataclass
class _Provider:
    factory: Callable[..., Any]
    wants_context: bool
    cache: bool


class DIContainer:
    def __init__(self):
        self._providers: dict[str, _Provider] = {}
        self._instances: dict[str, Any] = {}

    def register(self, key: str, factory: Callable[..., T], cache: bool = True) -> None:
        """
        Registers a factory for ``key``. The factory takes no argument or a single
        :py:class:`Context`. Uncached keys are built again on every lookup.
        """
        params = list(inspect.signature(factory).parameters.values())
        if len(params) > 1 or (params and params[0].annotation is not Context):
            raise TypeError(
                f"Factory for '{key}' must accept zero arguments or one 'Context'."
            )

        self._providers[key] = _Provider(factory, wants_context=bool(params), cache=cache)

    def override(self, key: str, instance: Any) -> None:
        """
        Pins a ready instance for ``key``. Used to hand the running application to
        the REST layer, and by tests to swap the database.
        """
        self._instances[key] = instance

    async def get(self, key: str, context: Context | None = None) -> Any:
        if key in self._instances:
            return self._instances[key]

        provider = self._providers.get(key)
        if provider is None:
            raise KeyError(f"No dependency registered for key: {key}")

        if provider.wants_context:
            if context is None:
                raise KeyError(f"Dependency '{key}' is only available inside an event")
            instance = provider.factory(context)
        else:
            instance = provider.factory()
        if inspect.isawaitable(instance):
            instance = await instance

        if provider.cache:
            self._instances[key] = instance
        return instance

    def reset(self) -> None:
        """Forgets cached instances and overrides, factories stay registered."""
        self._instances.clear()


container = DIContainer()


def register_dependency(key: str, cache: bool = True):
    def decorator(factory: Callable[..., T]) -> Callable[..., T]:
        container.register(key, factory, cache=cache)
        return factory

    return decorator


def Depends(dependency_key: str) -> Dependency:
    """Marks a handler parameter to be filled from the container."""
    return Dependency(dependency_key)
