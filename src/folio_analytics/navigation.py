"""
Drill-down navigation state for the dashboard.

A drill-down starts from one of the overview tables ("View all") and can
nest: from the page list into the referrers of one page, from the referrer
list into the pages reached from one domain, and so on. The breadcrumb trail
records each step so the user can jump back to any earlier level.

Every transition returns the ``FetchRequest`` the caller should issue next.
Because the dashboard is server-rendered, the trail is carried between
requests as a query-string value (``to_query`` / ``from_query``).
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class DrillDownView(str, Enum):
    PAGES = "pages"
    REFERRERS = "referrers"
    NOT_FOUND = "404s"
    PAGE_REFERRERS = "page-referrers"
    REFERRER_PAGES = "referrer-pages"

    @property
    def action(self) -> str:
        """Query API action that serves this view."""
        return _ACTIONS[self]

    @property
    def title(self) -> str:
        return _TITLES[self]

    @property
    def needs_context(self) -> bool:
        return self in (DrillDownView.PAGE_REFERRERS, DrillDownView.REFERRER_PAGES)


_ACTIONS = {
    DrillDownView.PAGES: "all-pages",
    DrillDownView.REFERRERS: "all-referrers",
    DrillDownView.NOT_FOUND: "all-404s",
    DrillDownView.PAGE_REFERRERS: "page-referrers",
    DrillDownView.REFERRER_PAGES: "referrer-pages",
}

_TITLES = {
    DrillDownView.PAGES: "All Pages",
    DrillDownView.REFERRERS: "All Referrers",
    DrillDownView.NOT_FOUND: "All 404 Errors",
    DrillDownView.PAGE_REFERRERS: "Page Referrers",
    DrillDownView.REFERRER_PAGES: "Referrer Pages",
}


@dataclass(frozen=True)
class Breadcrumb:
    view: DrillDownView
    context: Optional[str] = None  # page path or referrer domain for nested views

    @property
    def label(self) -> str:
        if self.view == DrillDownView.PAGE_REFERRERS:
            return f"Referrers → {self.context}"
        if self.view == DrillDownView.REFERRER_PAGES:
            return f"Pages → {self.context}"
        return self.view.title


@dataclass(frozen=True)
class FetchRequest:
    """One query API call for a drill-down view."""
    view: DrillDownView
    days: int
    page: int = 1
    limit: int = 25
    context: Optional[str] = None

    @property
    def action(self) -> str:
        return self.view.action

    def to_params(self) -> dict[str, str]:
        """Query parameters for the query API."""
        params = {
            "action": self.action,
            "days": str(self.days),
            "page": str(self.page),
            "limit": str(self.limit),
        }
        if self.view == DrillDownView.PAGE_REFERRERS:
            params["pagePath"] = self.context
        elif self.view == DrillDownView.REFERRER_PAGES:
            params["domain"] = self.context
        return params


@dataclass
class DrillDownNavigator:
    """Breadcrumb trail plus the current page of the innermost view."""
    days: int
    limit: int = 25
    breadcrumbs: list[Breadcrumb] = field(default_factory=list)
    page: int = 1

    @property
    def is_open(self) -> bool:
        return bool(self.breadcrumbs)

    @property
    def current(self) -> Optional[Breadcrumb]:
        return self.breadcrumbs[-1] if self.breadcrumbs else None

    def _request(self) -> FetchRequest:
        crumb = self.current
        return FetchRequest(
            view=crumb.view,
            days=self.days,
            page=self.page,
            limit=self.limit,
            context=crumb.context,
        )

    def open(self, view: DrillDownView) -> FetchRequest:
        """Start a new drill-down at a top-level view."""
        view = DrillDownView(view)
        if view.needs_context:
            raise ValueError(f"{view.value} can only be reached by drilling into a row")
        self.breadcrumbs = [Breadcrumb(view)]
        self.page = 1
        return self._request()

    def drill_into(self, view: DrillDownView, context: str) -> FetchRequest:
        """Push a nested view filtered by ``context`` (page path or domain)."""
        if not self.is_open:
            raise ValueError("No drill-down is open")
        view = DrillDownView(view)
        if not view.needs_context or not context:
            raise ValueError(f"{view.value} is not a nested view with context")
        self.breadcrumbs.append(Breadcrumb(view, context))
        self.page = 1
        return self._request()

    def go_to(self, index: int) -> FetchRequest:
        """Jump back to the breadcrumb at ``index``, dropping later ones."""
        if not 0 <= index < len(self.breadcrumbs):
            raise IndexError(f"No breadcrumb at index {index}")
        del self.breadcrumbs[index + 1:]
        self.page = 1
        return self._request()

    def change_page(self, page: int) -> FetchRequest:
        """Re-fetch the current view at another page; the trail is unchanged."""
        if not self.is_open:
            raise ValueError("No drill-down is open")
        self.page = max(1, page)
        return self._request()

    def close(self) -> None:
        self.breadcrumbs = []
        self.page = 1

    # =========================================================================
    # QUERY STRING ROUND-TRIP
    # =========================================================================

    def to_query(self) -> str:
        """Encode the trail as a compact JSON string for a query parameter."""
        return json.dumps(
            [[crumb.view.value, crumb.context] if crumb.context else [crumb.view.value] for crumb in self.breadcrumbs],
            separators=(",", ":"),
        )

    @classmethod
    def from_query(cls, trail: str | None, days: int, page: int = 1, limit: int = 25) -> "DrillDownNavigator":
        """Rebuild a navigator from ``to_query`` output.

        Malformed trails raise ValueError. The first crumb must be a
        top-level view and every later one a nested view with context.
        """
        navigator = cls(days=days, limit=limit)
        if not trail:
            return navigator

        try:
            raw = json.loads(trail)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid breadcrumb trail: {exc}") from exc
        if not isinstance(raw, list) or not raw:
            raise ValueError("Invalid breadcrumb trail")

        for index, item in enumerate(raw):
            if not isinstance(item, list) or not 1 <= len(item) <= 2:
                raise ValueError("Invalid breadcrumb trail")
            view = DrillDownView(item[0])
            if index == 0:
                navigator.open(view)
            else:
                context = item[1] if len(item) == 2 else None
                if not isinstance(context, str):
                    raise ValueError("Nested breadcrumbs need a string context")
                navigator.drill_into(view, context)

        navigator.page = max(1, page)
        return navigator
