"""Router that answers on both the bare and the trailing-slash path."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """Registers every endpoint twice, with and without a trailing slash.

    Only the path without the slash is exported in the OpenAPI schema. Stripe
    and the admin gateway both post to fixed URLs, so neither path may answer
    with a redirect.

    Examples:
        @router.post("/webhook") - in the schema as /webhook, answers /webhook and /webhook/

        @router.get("/prices/") - in the schema as /prices, answers /prices and /prices/
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register ``path`` and ``path + "/"`` for the decorated endpoint.

        Args:
            path (str): The path for the endpoint
            include_in_schema (bool): Whether to include the route in the OpenAPI schema
            **kwargs: Additional arguments to pass to the parent api_route method

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: A decorator registering both paths.
        """
        path = path.rstrip("/")

        add_path = super().api_route(path, include_in_schema=include_in_schema, **kwargs)
        add_slashed_path = super().api_route(f"{path}/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            add_slashed_path(func)
            return add_path(func)

        return decorator
