"""Shared fixtures: canned FlashScore pages and a fake page fetcher."""
from pathlib import Path

import pytest

import scraper
from scraper import SelectorTimeout


def countries_page(*countries):
    """countries: (id, name, tournament path) tuples"""
    items = "".join(
        f'<div id="{cid}" data-tournament-url="{path}"><span>{name}</span></div>'
        for cid, name, path in countries
    )
    return f'<div id="category-left-menu"><div><span>Countries</span></div>{items}</div>'


def leagues_page(country_id, *leagues):
    """leagues: (name, href) tuples, rendered as the expanded country menu"""
    links = "".join(f'<span><a href="{href}">{name}</a></span>' for name, href in leagues)
    return f'<div><div id="{country_id}"><span>Country</span></div>{links}</div>'


def teams_page(*teams):
    """teams: (href, name) tuples"""
    rows = "".join(f'<div class="row"><a href="{href}">{name}</a></div>' for href, name in teams)
    return f"<html><body><div class='standings'>{rows}</div></body></html>"


class FakeFetcher:
    """
    Serves canned HTML by URL / clicks, records every navigate() call.
    A value in `pages` that is an exception (class or instance) is raised instead.
    """

    def __init__(self, countries_html, leagues_html=None, pages=None):
        self.countries_html = countries_html
        self.leagues_html = leagues_html or {}
        self.pages = pages or {}
        self.calls = []
        self.closed = False

    async def navigate(self, url, *, ready_selector, timeout_ms, clicks=(), dump_name=None):
        self.calls.append({"url": url, "clicks": tuple(clicks), "timeout_ms": timeout_ms})

        if url == scraper.BASE_URL:
            if len(clicks) == 1:
                result = self.countries_html
            else:
                result = self.leagues_html.get(clicks[-1].lstrip("#"))
        else:
            result = self.pages.get(url)

        if result is None:
            raise SelectorTimeout(f"'{ready_selector}' not found on {url}")
        if isinstance(result, BaseException) or (
            isinstance(result, type) and issubclass(result, BaseException)
        ):
            raise result
        return result

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        self.closed = True

    def standings_calls(self):
        return [call["url"] for call in self.calls if call["url"].endswith("/standings/")]


@pytest.fixture
def run_files(tmp_path: Path):
    return (tmp_path / "flashscore-temp-20260101.json", tmp_path / "flashscore-final-20260101.json")
