import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from torbox_index.config import Settings, get_settings
from torbox_index.errors import BadRequest, InvalidFilter, NotFound, UpstreamError
from torbox_index.filters import FilterMode, compile_filter, filter_and_sort_containers, filter_and_sort_files
from torbox_index.logging_config import configure_logging, mask_key
from torbox_index.models import ContainerEntry, FileEntry, ListingEntry
from torbox_index.ratelimit import Admission, RateLimiter
from torbox_index.render import Listing, render_listing
from torbox_index.routes import ListingQuery, Route, RouteKind, parse_query, parse_route, split_key_and_filter
from torbox_index.upstream import TorBoxClient

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
DEFAULT_FILTER = {FilterMode.PATTERN: ".+", FilterMode.TERMS: ""}
DEFAULT_FLAGS = "i"
NO_STORE = "private, no-store, no-transform"
HTML_HEADERS = {"Cache-Control": NO_STORE, "X-Robots-Tag": "noindex, nofollow"}

_EXTENSION = re.compile(r"\.([A-Za-z0-9]{2,8})$")


def text_response(status_code: int, message: str, headers: Optional[dict] = None) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code, headers={"Cache-Control": NO_STORE, **(headers or {})})


def client_ip(request: Request, header: str) -> Optional[str]:
    forwarded = request.headers.get(header, "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


def parent_entry() -> ListingEntry:
    return ListingEntry(href="../", name="../", description="parent directory")


def file_href(file: FileEntry) -> str:
    match = _EXTENSION.search(file.display_name)
    ext = f".{match.group(1).lower()}" if match else ""
    return f"{file.file_id}{ext}"


def container_entry(container: ContainerEntry, href: str, description: str) -> ListingEntry:
    return ListingEntry(
        href=href,
        name=f"{container.container_name}/",
        size=container.total_size,
        description=description,
    )


def create_app(
    settings: Settings | None = None,
    *,
    client: TorBoxClient | None = None,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    client = client or TorBoxClient.from_settings(settings)
    limiter = limiter or RateLimiter.from_settings(settings)
    filter_mode = FilterMode(settings.filter_mode)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.client = client
    app.state.limiter = limiter

    @app.exception_handler(InvalidFilter)
    async def invalid_filter_handler(_: Request, exc: InvalidFilter):
        return text_response(400, f"Invalid filter: {exc}")

    @app.exception_handler(BadRequest)
    async def bad_request_handler(_: Request, exc: BadRequest):
        return text_response(400, str(exc) or "Bad request")

    @app.exception_handler(NotFound)
    async def not_found_handler(_: Request, exc: NotFound):
        return text_response(404, str(exc) or "Not found")

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(_: Request, exc: UpstreamError):
        logger.warning("Upstream failure: %s", exc)
        return text_response(502, "Upstream provider unavailable")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.app_env}

    def compile_for(query: ListingQuery, path_filter: Optional[str]):
        raw_filter = path_filter or query.filter or DEFAULT_FILTER[filter_mode]
        flags = DEFAULT_FLAGS if query.flags is None else query.flags
        return raw_filter, compile_filter(raw_filter, flags, filter_mode, settings.filter_timeout_seconds)

    async def root_listing(key: str, query: ListingQuery, raw_filter: str, compiled) -> Listing:
        fan_out = await client.list_all(key)
        if fan_out.all_failed:
            raise UpstreamError("every source failed")

        result = filter_and_sort_containers(fan_out.containers, compiled, query.limit, query.column, query.order)
        entries = [
            container_entry(
                container,
                f"{container.source.short}-{container.container_id}/",
                f"{container.source.value} | {len(container.files)} file(s)",
            )
            for container in result.items
        ]
        return Listing(
            title="Index of /",
            entries=entries,
            displayed=len(result.items),
            total_matched=result.total_matched,
            limit=query.limit,
            summary_noun="folder(s)",
            filter_text=None if compiled.match_all else raw_filter,
            errors=[f"{source.value}: unavailable" for source, _ in fan_out.failures],
            passthrough=query.passthrough,
        )

    async def source_listing(route: Route, key: str, query: ListingQuery, raw_filter: str, compiled) -> Listing:
        containers = await client.list_by_source(route.source, key)
        result = filter_and_sort_containers(containers, compiled, query.limit, query.column, query.order)
        entries = [parent_entry()] + [
            container_entry(container, f"{container.container_id}/", f"{len(container.files)} file(s)")
            for container in result.items
        ]
        return Listing(
            title=f"Index of /{route.source.value}/",
            entries=entries,
            displayed=len(result.items),
            total_matched=result.total_matched,
            limit=query.limit,
            summary_noun="folder(s)",
            filter_text=None if compiled.match_all else raw_filter,
            passthrough=query.passthrough,
        )

    async def container_listing(route: Route, key: str, query: ListingQuery, raw_filter: str, compiled) -> Listing:
        container = await client.get_by_id(route.source, key, route.container_id)
        if container is None:
            raise NotFound("Container not found")

        result = filter_and_sort_files(container.files, compiled, query.limit, query.column, query.order)
        entries = [parent_entry()] + [
            ListingEntry(href=file_href(file), name=file.display_name, size=file.size, description="file")
            for file in result.items
        ]
        return Listing(
            title=f"Index of /{route.source.value}/{container.container_id}/",
            entries=entries,
            displayed=len(result.items),
            total_matched=result.total_matched,
            limit=query.limit,
            summary_noun="file(s)",
            filter_text=None if compiled.match_all else raw_filter,
            passthrough=query.passthrough,
        )

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def browse(path: str, request: Request) -> Response:
        if request.method not in ALLOWED_METHODS:
            return text_response(405, "Method not allowed", {"Allow": ", ".join(ALLOWED_METHODS)})

        pathname = f"/{path}"
        parts = split_key_and_filter(pathname)
        try:
            route = parse_route(parts.route_parts)
        except NotFound:
            route = None

        if parts.key_in_path and not pathname.endswith("/") and route is not None and route.is_listing:
            return RedirectResponse(str(request.url.replace(path=f"{request.url.path}/")), status_code=302)

        query = parse_query(request.query_params, default_limit=settings.default_limit, max_limit=settings.max_limit)
        key = query.key or parts.key
        if not key:
            raise BadRequest("Missing required parameter: key")

        if limiter.admit(client_ip(request, settings.client_ip_header), key) is Admission.LIMITED:
            return text_response(429, "Too many requests")

        if route is None:
            raise NotFound("Not found")

        if route.kind is RouteKind.DOWNLOAD:
            logger.debug(
                "Redirecting download %s/%s/%s (key %s)",
                route.source.value,
                route.container_id,
                route.file_id,
                mask_key(key),
            )
            return RedirectResponse(
                client.download_url(route.source, key, route.container_id, route.file_id),
                status_code=302,
            )

        raw_filter, compiled = compile_for(query, parts.filter)
        if route.kind is RouteKind.ROOT:
            listing = await root_listing(key, query, raw_filter, compiled)
        elif route.kind is RouteKind.SOURCE:
            listing = await source_listing(route, key, query, raw_filter, compiled)
        else:
            listing = await container_listing(route, key, query, raw_filter, compiled)

        return HTMLResponse(render_listing(listing), headers=HTML_HEADERS)

    return app


app = create_app()
