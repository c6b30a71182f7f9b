from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

METADATA_PATH = "/api/search/metadata/table"
DATA_PATH = "/api/access/data/table"
CENSUS_SEARCH_PATH = "/api/search"
REPORTER_SEARCH_PATH = "/1.0/table/search"

Handler = Union[Callable[[httpx.Request], Any], httpx.Response, Dict[str, Any], List[Any]]


class MockCensusServer:
    """In-process stand-in for the upstream endpoints.

    Routes are keyed by URL path. A handler is a ready response, a JSON body
    (served with 200) or a callable taking the request and returning either.
    Unrouted paths answer 404. Every request is recorded in arrival order.
    """

    def __init__(self, routes: Optional[Dict[str, Handler]] = None) -> None:
        self.routes: Dict[str, Handler] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def route(self, path: str, handler: Handler) -> None:
        self.routes[path] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"message": "Not Found"})

        result = handler(request) if callable(handler) else handler
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def ids(self, path: str) -> List[str]:
        """``id`` query parameters sent to a path, in order."""
        return [
            request.url.params.get("id")
            for request in self.requests
            if request.url.path == path
        ]

    def params(self, path: str) -> List[Dict[str, str]]:
        return [
            dict(request.url.params)
            for request in self.requests
            if request.url.path == path
        ]


def metadata_body(
    title: str = "SEX BY AGE",
    vintage: Optional[str] = "2021",
    **content: Any,
) -> Dict[str, Any]:
    """A wrapped metadata response as data.census.gov returns it."""
    body: Dict[str, Any] = {"title": title}
    if vintage:
        body["dataset"] = {"vintage": vintage, "name": "ACS 1-Year Estimates Detailed Tables"}
    body.update(content)
    return {"response": {"metadataContent": body}}


def data_body(table_id: str, rows: Optional[List[List[Any]]] = None) -> Dict[str, Any]:
    return {
        "response": {
            "tableId": table_id,
            "data": rows if rows is not None else [["NAME", "B01001_001E"], ["United States", "331893745"]],
        }
    }


def table_routes(
    known: Dict[str, Dict[str, Any]],
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Handler]:
    """Metadata and data routes serving ``known`` ids and 404 for the rest."""

    def metadata(request: httpx.Request) -> Any:
        table_id = request.url.params.get("id")
        if table_id in known:
            return known[table_id]
        return httpx.Response(404, json={"message": "Table not found"})

    def table_data(request: httpx.Request) -> Any:
        table_id = request.url.params.get("id")
        if data is not None and table_id in data:
            return data[table_id]
        if table_id in known:
            return data_body(table_id)
        return httpx.Response(404, json={"message": "Table not found"})

    return {METADATA_PATH: metadata, DATA_PATH: table_data}


def reporter_hits(*codes: str) -> List[Dict[str, Any]]:
    return [
        {
            "table_id": code,
            "table_name": f"Table {code}",
            "simple_table_name": f"Simple {code}",
            "universe": "Total population",
            "topics": ["age"],
        }
        for code in codes
    ]


def run(coro):
    """Helper to run async functions in synchronous tests."""
    return asyncio.run(coro)
