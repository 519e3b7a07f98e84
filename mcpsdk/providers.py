"""Provider interfaces for server capabilities and simple in-memory implementations."""

from __future__ import annotations

import abc
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_LIMIT = 50

_UNIMPLEMENTED_TOOL_RESULT = {"message": "Tool execution not implemented"}


@dataclass
class PaginationParams:
    """Requested page size and position."""

    limit: int = 0
    cursor: str = ""


@dataclass
class Page(Generic[T]):
    """One page of listed items."""

    items: list
    total: int
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class ResourcePage:
    """One page of resources and resource templates."""

    resources: list
    templates: list
    total: int
    next_cursor: str = ""
    has_more: bool = False


class NotFoundError(LookupError):
    """Raised when a requested item does not exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id


def _field(item: Any, key: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(key, default)
    return getattr(item, key, default)


def _limit(pagination: Optional[PaginationParams]) -> int:
    limit = pagination.limit if pagination is not None else 0
    return limit if limit > 0 else DEFAULT_LIMIT


def _paginate(items: list, limit: int) -> Page:
    total = len(items)
    end = min(limit, total)
    has_more = end < total
    next_cursor = f"cursor_{chr(end)}" if has_more else ""
    return Page(items=items[:end], total=total, next_cursor=next_cursor, has_more=has_more)


class ToolsProvider(abc.ABC):
    """Supplies tools that clients can list and invoke."""

    @abc.abstractmethod
    def list_tools(self, category: str, pagination: Optional[PaginationParams]) -> Page:
        """Return a page of tools, optionally restricted to a category."""

    @abc.abstractmethod
    def call_tool(self, name: str, tool_input: Any, context_data: Any) -> Any:
        """Run a tool and return its result."""


class ResourcesProvider(abc.ABC):
    """Supplies resources that clients can list, read and watch."""

    @abc.abstractmethod
    def list_resources(
        self, uri: str, recursive: bool, pagination: Optional[PaginationParams]
    ) -> ResourcePage:
        """Return a page of resources and templates under ``uri``."""

    @abc.abstractmethod
    def read_resource(self, uri: str, template_params: Any, range_opt: Any) -> Any:
        """Return the contents of a resource."""

    @abc.abstractmethod
    def subscribe_resource(self, uri: str, recursive: bool) -> bool:
        """Subscribe to changes of a resource."""


class PromptsProvider(abc.ABC):
    """Supplies prompt templates."""

    @abc.abstractmethod
    def list_prompts(self, tag: str, pagination: Optional[PaginationParams]) -> Page:
        """Return a page of prompts, optionally restricted to a tag."""

    @abc.abstractmethod
    def get_prompt(self, prompt_id: str) -> Any:
        """Return the prompt with the given id."""


class CompletionProvider(abc.ABC):
    """Generates completions."""

    @abc.abstractmethod
    def complete(self, params: Any) -> Any:
        """Return a completion for ``params``."""


class RootsProvider(abc.ABC):
    """Supplies root resources for discovery."""

    @abc.abstractmethod
    def list_roots(self, tag: str, pagination: Optional[PaginationParams]) -> Page:
        """Return a page of roots, optionally restricted to a tag."""


class BaseToolsProvider(ToolsProvider):
    """Keeps tools in memory, keyed by name."""

    def __init__(self) -> None:
        self.tools: dict[str, Any] = {}

    def register_tool(self, tool: Any) -> None:
        self.tools[_field(tool, "name")] = tool

    def list_tools(self, category: str, pagination: Optional[PaginationParams]) -> Page:
        tools = [
            tool
            for tool in self.tools.values()
            if not category or category in (_field(tool, "categories") or ())
        ]
        return _paginate(tools, _limit(pagination))

    def call_tool(self, name: str, tool_input: Any, context_data: Any) -> Any:
        """Run the tool's ``handler`` if it has one, else return a fixed result."""
        handler = _field(self.tools.get(name), "handler")
        if callable(handler):
            return {"result": handler(tool_input)}
        return {"result": dict(_UNIMPLEMENTED_TOOL_RESULT)}


class BaseResourcesProvider(ResourcesProvider):
    """Keeps resources and templates in memory, keyed by URI."""

    def __init__(self) -> None:
        self.resources: dict[str, Any] = {}
        self.templates: dict[str, Any] = {}
        self.subscribers: dict[str, bool] = {}

    def register_resource(self, resource: Any) -> None:
        self.resources[_field(resource, "uri")] = resource

    def register_template(self, template: Any) -> None:
        self.templates[_field(template, "uri")] = template

    @staticmethod
    def _matches(item_uri: str, uri: str, recursive: bool) -> bool:
        return item_uri == uri or (recursive and item_uri.startswith(uri + "/"))

    def list_resources(
        self, uri: str, recursive: bool, pagination: Optional[PaginationParams]
    ) -> ResourcePage:
        if uri:
            resources = [
                r for r in self.resources.values() if self._matches(_field(r, "uri"), uri, recursive)
            ]
            templates = [
                t for t in self.templates.values() if self._matches(_field(t, "uri"), uri, recursive)
            ]
        else:
            resources = list(self.resources.values())
            templates = list(self.templates.values())

        total_resources = len(resources)
        total_templates = len(templates)
        limit = _limit(pagination)

        # Resources fill the page first; templates take what is left.
        res_end = min(total_resources, limit)
        templ_start = max(0, res_end)
        templ_end = min(total_templates, templ_start + limit - res_end)

        has_more = res_end < total_resources or templ_end < total_templates
        next_cursor = f"cursor_{chr(res_end)}_{chr(templ_end)}" if has_more else ""

        return ResourcePage(
            resources=resources[:res_end],
            templates=templates[templ_start:templ_end] if templ_start < total_templates else [],
            total=total_resources + total_templates,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def read_resource(self, uri: str, template_params: Any, range_opt: Any) -> Any:
        """Return fixed plain-text contents; subclasses read real data."""
        return {"uri": uri, "type": "text/plain", "content": "Resource content not implemented"}

    def subscribe_resource(self, uri: str, recursive: bool) -> bool:
        self.subscribers[uri] = recursive
        return True


class BasePromptsProvider(PromptsProvider):
    """Keeps prompts in memory, keyed by id."""

    def __init__(self) -> None:
        self.prompts: dict[str, Any] = {}

    def register_prompt(self, prompt: Any) -> None:
        self.prompts[_field(prompt, "id")] = prompt

    def list_prompts(self, tag: str, pagination: Optional[PaginationParams]) -> Page:
        prompts = [
            p for p in self.prompts.values() if not tag or tag in (_field(p, "tags") or ())
        ]
        # The page size is fixed for prompts; the requested limit is not consulted.
        return _paginate(prompts, DEFAULT_LIMIT)

    def get_prompt(self, prompt_id: str) -> Any:
        try:
            return self.prompts[prompt_id]
        except KeyError:
            raise NotFoundError("prompt", prompt_id) from None


class BaseRootsProvider(RootsProvider):
    """Keeps roots in memory, keyed by id."""

    def __init__(self) -> None:
        self.roots: dict[str, Any] = {}

    def register_root(self, root: Any) -> None:
        self.roots[_field(root, "id")] = root

    def list_roots(self, tag: str, pagination: Optional[PaginationParams]) -> Page:
        roots = [r for r in self.roots.values() if not tag or tag in (_field(r, "tags") or ())]
        return _paginate(roots, _limit(pagination))