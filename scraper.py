"""
FlashScore Country / League / Team Scraper - PRODUCTION VERSION
Walks FlashScore's country -> league -> team tree with headless Chromium

FEATURES:
- Discovers every country from the left-hand category menu
- Discovers each country's leagues (failure skips the country for this run only)
- Scrapes teams from each league's standings page (2 attempts per league)
- Shorter timeout + "isCup" sentinel for cup/knockout competitions
- Checkpoint flushed after every league (atomic write, no data loss on kill)
- Resume capability: completed leagues are never fetched twice
- Final immutable snapshot + summary of leagues still missing teams
"""

import asyncio
import json
import logging
import os
import re
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import (
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

logger = logging.getLogger("scraper")

# =============================================================================
# CONFIGURATION
# =============================================================================

BASE_URL = os.getenv('BASE_URL', 'https://www.flashscore.com').rstrip('/')
OUTPUT_DIR = Path(os.getenv('OUTPUT_DIR', 'data'))
TEST_MODE = os.getenv('TEST_MODE', 'false').lower() == 'true'
DEBUG_DUMP = os.getenv('DEBUG_DUMP', 'false').lower() == 'true'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Resume from a specific checkpoint (e.g. yesterday's temp file)
CHECKPOINT_FILE = os.getenv('CHECKPOINT_FILE', '')

DEFAULT_TIMEOUT = 1500 if TEST_MODE else 5000   # ms for league table selectors
CUP_TIMEOUT = 1000 if TEST_MODE else 3000       # ms for cup/knockout tournaments
NAV_TIMEOUT = 30000
COOKIE_TIMEOUT = 5000
REQUEST_PAUSE = int(os.getenv('REQUEST_PAUSE_MS', '0' if TEST_MODE else '1500'))

MAX_ATTEMPTS = 2
CONFIRM_EMPTY_AFTER = int(os.getenv('CONFIRM_EMPTY_AFTER', '3'))
TEST_COUNTRY_LIMIT = 2

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

# Selectors
COUNTRY_MENU_SELECTOR = '#category-left-menu > div > span'
COUNTRY_SELECTOR = '[id^="country_"]'
TEAM_SELECTOR = 'a[href*="/team/"]'
COOKIE_BUTTON_SELECTOR = '#onetrust-accept-btn-handler'

CUP_PATTERN = re.compile(r'cup|copa|trophy|shield|knockout', re.IGNORECASE)
TEAM_ID_PATTERN = re.compile(r'/team/[^/]+/([^/?#]+)')

# =============================================================================
# DATA STRUCTURES
# =============================================================================

# League status in the snapshot
PENDING = "pending"
COMPLETE = "complete"
CONFIRMED_EMPTY = "confirmed-empty"

# Placeholder team for cup competitions without a standings table
CUP_SENTINEL = {"id": "isCup", "name": "isCup", "url": None}


class FetchError(Exception):
    """Navigation or rendering of a page failed."""


class SelectorTimeout(FetchError):
    """Page loaded, but a readiness selector never showed up."""


class DiscoveryError(Exception):
    """Country discovery failed: the crawl has no scope."""


@dataclass
class CrawlStats:
    countries: int = 0
    leagues_fetched: int = 0
    leagues_skipped: int = 0
    teams: int = 0
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def slug(url: str) -> str:
    return url.rstrip('/').split('/')[-1]

def to_usa(url: str) -> str:
    return url.replace('flashscore.com', 'flashscoreusa.com')

def is_cup(url: str) -> bool:
    return bool(url and CUP_PATTERN.search(url))

def standings_url(league_url: str) -> str:
    return f"{league_url.rstrip('/')}/standings/"

def select_timeout(url: str) -> int:
    """Cup pages render brackets instead of tables, so don't wait long for them"""
    return CUP_TIMEOUT if is_cup(url) else DEFAULT_TIMEOUT

def is_sentinel(teams: list) -> bool:
    return any(team.get('id') == CUP_SENTINEL['id'] for team in teams)

def count_teams(league_entry: dict) -> int:
    return sum(1 for team in league_entry.get('teams') or [] if team.get('id') != CUP_SENTINEL['id'])

def run_paths(output_dir: Path, day: datetime = None) -> tuple:
    """Checkpoint + final file for one calendar day: (temp, final)"""
    stamp = (day or datetime.now()).strftime('%Y%m%d')
    return (
        output_dir / f"flashscore-temp-{stamp}.json",
        output_dir / f"flashscore-final-{stamp}.json",
    )

def find_checkpoints(output_dir: Path) -> list:
    """All checkpoint files in output_dir, oldest first"""
    return sorted(output_dir.glob("flashscore-temp-*.json"))

# =============================================================================
# EXTRACTORS
# =============================================================================

def extract_countries(html: str, base_url: str = BASE_URL) -> dict:
    soup = BeautifulSoup(html, 'html.parser')
    countries = {}
    for el in soup.select(COUNTRY_SELECTOR):
        country_id = el.get('id')
        name_elem = el.select_one('span')
        name = name_elem.get_text(strip=True) if name_elem else ''
        path = el.get('data-tournament-url') or ''
        if not country_id or not name or country_id in countries:
            continue
        countries[country_id] = {
            'id': country_id,
            'name': name,
            'url': urljoin(base_url + '/', path.lstrip('/')),
        }
    return countries

def extract_leagues(html: str, country_id: str, base_url: str = BASE_URL) -> dict:
    soup = BeautifulSoup(html, 'html.parser')
    leagues = {}
    for link in soup.select(f'#{country_id} ~ span > a'):
        name = link.get_text(strip=True)
        href = link.get('href')
        if not name or not href:
            continue
        url = urljoin(base_url + '/', href)
        league_id = slug(url)
        if league_id in leagues:
            continue
        leagues[league_id] = {
            'id': league_id,
            'name': name,
            'url': url,
            'isCup': is_cup(url),
        }
    return leagues

def extract_teams(html: str, page_url: str) -> dict:
    """
    Team links of a standings page, keyed by team id.
    The same team shows up several times (table, form guide, ...): first one wins.
    """
    soup = BeautifulSoup(html, 'html.parser')
    teams = {}
    for link in soup.select(TEAM_SELECTOR):
        url = urljoin(page_url, link.get('href', ''))
        match = TEAM_ID_PATTERN.search(url)
        name = link.get_text(strip=True)
        if not match or not name:
            continue
        team_id = match.group(1)
        if team_id not in teams:
            teams[team_id] = {'id': team_id, 'name': name, 'url': url}
    return teams

# =============================================================================
# PAGE FETCHER
# =============================================================================

class PageFetcher:
    """
    Headless Chromium behind a single navigate() call.
    Every navigation gets a fresh page in a shared context, so the cookie
    consent only has to be accepted once per run.
    """

    def __init__(self, headless: bool = True, dump_dir: Path = None):
        self.headless = headless
        self.dump_dir = dump_dir
        self._playwright = None
        self._browser = None
        self._context = None
        self._cookies_checked = False

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def start(self):
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless, args=['--no-sandbox']
            )
            self._context = await self._browser.new_context(user_agent=USER_AGENT)
        except Exception as e:
            await self.close()
            raise FetchError(f"Could not launch headless browser: {e}") from e

    async def close(self):
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def navigate(self, url: str, *, ready_selector: str, timeout_ms: int,
                       clicks: tuple = (), dump_name: str = None) -> str:
        """
        Opens url, clicks through `clicks` in order, waits for ready_selector
        and returns the rendered HTML.
        Raises SelectorTimeout if a selector never appears, FetchError otherwise.
        """
        if self._context is None:
            raise FetchError("Browser not started")

        try:
            page = await self._context.new_page()
        except PlaywrightError as e:
            raise FetchError(f"Could not open a page for {url}: {e}") from e

        try:
            try:
                await page.goto(url, wait_until='domcontentloaded', timeout=NAV_TIMEOUT)
            except PlaywrightError as e:
                raise FetchError(f"Navigation to {url} failed: {e}") from e

            await self._dismiss_cookie_banner(page)

            if dump_name and self.dump_dir:
                await self._dump_page(page, dump_name)

            for selector in clicks:
                await self._wait_for(page, selector, timeout_ms, url)
                try:
                    await page.click(selector)
                except PlaywrightError as e:
                    raise FetchError(f"Could not click '{selector}' on {url}: {e}") from e

            await self._wait_for(page, ready_selector, timeout_ms, url)
            try:
                return await page.content()
            except PlaywrightError as e:
                raise FetchError(f"Could not read rendered {url}: {e}") from e
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug(f"  Page for {url} already gone: {e}")

    async def _wait_for(self, page, selector: str, timeout_ms: int, url: str):
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise SelectorTimeout(f"'{selector}' not found on {url} within {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise FetchError(f"Waiting for '{selector}' on {url} failed: {e}") from e

    async def _dismiss_cookie_banner(self, page):
        # Checked once per run, banner or not
        if self._cookies_checked:
            return
        self._cookies_checked = True
        try:
            await page.wait_for_selector(COOKIE_BUTTON_SELECTOR, timeout=COOKIE_TIMEOUT)
            await page.click(COOKIE_BUTTON_SELECTOR)
            logger.debug("  ✓ Cookie banner dismissed")
        except PlaywrightError:
            logger.debug("  ⚠️  No cookie banner found")

    async def _dump_page(self, page, name: str):
        safe_name = re.sub(r'[^a-z0-9]', '_', name, flags=re.IGNORECASE)
        try:
            self.dump_dir.mkdir(parents=True, exist_ok=True)
            html_path = self.dump_dir / f"debug-{safe_name}.html"
            html_path.write_text(await page.content(), encoding='utf-8')
            await page.screenshot(path=str(self.dump_dir / f"debug-{safe_name}.png"), full_page=True)
            logger.debug(f"  📄 Debug dump written: {html_path}")
        except (PlaywrightError, OSError) as e:
            logger.debug(f"  ⚠️  Debug dump for {name} failed: {e}")


# =============================================================================
# DISCOVERY
# =============================================================================

async def discover_countries(fetcher) -> list:
    logger.info("🌍 Loading country list...")
    try:
        html = await fetcher.navigate(
            BASE_URL,
            clicks=(COUNTRY_MENU_SELECTOR,),
            ready_selector=COUNTRY_SELECTOR,
            timeout_ms=DEFAULT_TIMEOUT,
        )
    except FetchError as e:
        raise DiscoveryError(f"Could not load country list: {e}") from e

    countries = list(extract_countries(html).values())
    if not countries:
        raise DiscoveryError("Country menu rendered without any countries")

    logger.info(f"  ✓ Found {len(countries)} countries")
    return countries

async def discover_leagues(fetcher, country: dict) -> list:
    """Leagues of one country, or [] if they could not be loaded"""
    country_selector = f"#{country['id']}"
    try:
        html = await fetcher.navigate(
            BASE_URL,
            clicks=(COUNTRY_MENU_SELECTOR, country_selector),
            ready_selector=f"{country_selector} ~ span > a",
            timeout_ms=DEFAULT_TIMEOUT,
        )
        leagues = list(extract_leagues(html, country['id']).values())
    except Exception as e:
        logger.warning(f"⚠️  Could not load leagues for {country['name']}: {e}")
        return []

    logger.info(f"  → fetched {len(leagues)} leagues for {country['name']}")
    return leagues

# =============================================================================
# RETRY POLICY + RATE LIMITER
# =============================================================================

class RetryPolicy:
    """
    Bounded retry around one standings fetch + extract.
    fetch_teams() never raises: exhausted leagues come back as [] or,
    for cup competitions, as a single CUP_SENTINEL record.
    """

    def __init__(self, fetcher, attempts: int = MAX_ATTEMPTS, timeout_for=select_timeout):
        self.fetcher = fetcher
        self.attempts = attempts
        self.timeout_for = timeout_for

    async def fetch_teams(self, league: dict) -> list:
        url = standings_url(league['url'])
        timeout_ms = self.timeout_for(league['url'])

        for attempt in range(1, self.attempts + 1):
            teams = {}
            try:
                html = await self.fetcher.navigate(
                    url,
                    ready_selector=TEAM_SELECTOR,
                    timeout_ms=timeout_ms,
                    dump_name=slug(league['url']),
                )
                teams = extract_teams(html, url)
            except SelectorTimeout as e:
                logger.debug(f"    {e}")
            except Exception as e:
                logger.warning(f"    ⚠️  fetchTeams({league['name']}) attempt {attempt}/{self.attempts} → {e}")

            if teams:
                logger.info(f"    ✓ Found {len(teams)} teams for {league['name']}")
                return list(teams.values())

            if attempt < self.attempts:
                logger.info(f"    ↻ Retry league {league['name']} #{attempt}")

        if is_cup(league['url']):
            logger.info(f"    🏆 {league['name']} has no standings table (cup format)")
            return [dict(CUP_SENTINEL)]

        logger.warning(f"    ❌ No teams for {league['name']} after {self.attempts} attempts")
        return []


class RateLimiter:
    """Fixed pause after every league fetch, whatever its outcome"""

    def __init__(self, delay_ms: int = REQUEST_PAUSE, sleep=asyncio.sleep):
        self.delay_ms = delay_ms
        self._sleep = sleep

    async def wait(self):
        if self.delay_ms > 0:
            await self._sleep(self.delay_ms / 1000)

# =============================================================================
# PROGRESS STORE (CHECKPOINT I/O)
# =============================================================================

def load_checkpoint(path: Path):
    """Snapshot stored at path, or None if it is missing or unreadable"""
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            snapshot = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️  Ignoring unreadable checkpoint {path}: {e}")
        return None
    if not isinstance(snapshot, dict):
        logger.warning(f"⚠️  Ignoring checkpoint {path}: top level is not an object")
        return None
    return snapshot

def save_checkpoint(snapshot: dict, path: Path):
    """Full rewrite on every flush; readers never see a half-written file"""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + '.part')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(snapshot, f, indent=2, ensure_ascii=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)

def ensure_country(snapshot: dict, country: dict) -> dict:
    """Existing entries are kept as they are; that is what makes a run resumable"""
    if country['name'] not in snapshot:
        snapshot[country['name']] = {
            'slug': slug(country['url']),
            'url': country['url'],
            'urlUSA': to_usa(country['url']),
            'leagues': {},
        }
    return snapshot[country['name']]

def league_status(entry: dict, confirm_empty_after: int = CONFIRM_EMPTY_AFTER) -> str:
    """A stored confirmed-empty only counts while confirmation is switched on"""
    if entry.get('teams'):
        return COMPLETE
    if confirm_empty_after and entry.get('status') == CONFIRMED_EMPTY:
        return CONFIRMED_EMPTY
    return PENDING

def league_is_complete(entry: dict, confirm_empty_after: int = CONFIRM_EMPTY_AFTER) -> bool:
    return league_status(entry, confirm_empty_after) != PENDING

def build_league_entry(league: dict, teams: list, previous: dict = None,
                       confirm_empty_after: int = CONFIRM_EMPTY_AFTER) -> dict:
    entry = {
        'slug': slug(league['url']),
        'url': league['url'],
        'urlUSA': to_usa(league['url']),
        'isCup': is_cup(league['url']) or is_sentinel(teams),
        'status': COMPLETE if teams else PENDING,
        'teams': teams,
    }
    if not teams:
        empty_runs = (previous or {}).get('emptyRuns', 0) + 1
        entry['emptyRuns'] = empty_runs
        if confirm_empty_after and empty_runs >= confirm_empty_after:
            entry['status'] = CONFIRMED_EMPTY
    return entry

def incomplete_leagues(snapshot: dict, confirm_empty_after: int = CONFIRM_EMPTY_AFTER) -> list:
    """(country, league) pairs still waiting for teams: the next run's frontier"""
    return [
        (country_name, league_name)
        for country_name, country in snapshot.items()
        for league_name, league in (country.get('leagues') or {}).items()
        if not league_is_complete(league, confirm_empty_after)
    ]

# =============================================================================
# CRAWL ORCHESTRATOR
# =============================================================================

class CrawlOrchestrator:
    """
    Walks countries -> leagues -> teams over one snapshot.
    The snapshot is only ever mutated from here, and flushed to
    checkpoint_path after every fetched league.
    """

    def __init__(self, fetcher, snapshot: dict, checkpoint_path: Path, final_path: Path,
                 retry: RetryPolicy = None, limiter: RateLimiter = None,
                 confirm_empty_after: int = CONFIRM_EMPTY_AFTER, country_limit: int = None):
        self.fetcher = fetcher
        self.snapshot = snapshot
        self.checkpoint_path = checkpoint_path
        self.final_path = final_path
        self.retry = retry or RetryPolicy(fetcher)
        self.limiter = limiter or RateLimiter(REQUEST_PAUSE)
        self.confirm_empty_after = confirm_empty_after
        self.country_limit = country_limit
        self.stats = CrawlStats()

    async def run(self) -> dict:
        countries = await discover_countries(self.fetcher)
        if self.country_limit:
            countries = countries[:self.country_limit]
            logger.info(f"  ℹ️  TEST MODE: Limited to {len(countries)} countries")

        for country in countries:
            await self.crawl_country(country)

        await self.fetcher.close()
        save_checkpoint(self.snapshot, self.final_path)
        logger.info(f"🎉 Final snapshot written → {self.final_path}")
        return self.snapshot

    async def crawl_country(self, country: dict):
        logger.info(f"🔹 Processing country: {country['name']}")
        entry = ensure_country(self.snapshot, country)
        self.stats.countries += 1

        leagues = await discover_leagues(self.fetcher, country)
        if not leagues:
            return

        total_teams = 0
        for league in leagues:
            total_teams += await self.crawl_league(entry, league)

        logger.info(f"✅ {country['name']}: {total_teams} teams across {len(entry['leagues'])} leagues")

    async def crawl_league(self, country_entry: dict, league: dict) -> int:
        existing = country_entry['leagues'].get(league['name'])

        if existing is not None and existing.get('slug') not in (None, league['id']):
            logger.warning(
                f"   ⚠️  League name collision: '{league['name']}' is stored as "
                f"{existing.get('slug')}, now seen as {league['id']}"
            )

        if existing is not None and league_is_complete(existing, self.confirm_empty_after):
            logger.info(f"   ✓ skip cached league: {league['name']}")
            self.stats.leagues_skipped += 1
            cached = count_teams(existing)
            self.stats.teams += cached
            return cached

        logger.info(f"   → league: {league['name']}")
        teams = await self.retry.fetch_teams(league)
        entry = build_league_entry(league, teams, existing, self.confirm_empty_after)
        country_entry['leagues'][league['name']] = entry

        save_checkpoint(self.snapshot, self.checkpoint_path)
        self.stats.leagues_fetched += 1
        fetched = count_teams(entry)
        self.stats.teams += fetched

        await self.limiter.wait()
        return fetched

# =============================================================================
# MAIN SCRAPER
# =============================================================================

async def main():
    print("\n" + "="*80)
    print("⚽ FLASHSCORE COUNTRY / LEAGUE / TEAM SCRAPER - PRODUCTION")
    print("="*80)
    print(f"🧪 Test Mode: {TEST_MODE}")
    print(f"⏱️  Timeouts: {DEFAULT_TIMEOUT}ms (league) / {CUP_TIMEOUT}ms (cup)")
    print(f"💤 Request Pause: {REQUEST_PAUSE}ms")
    print("="*80)

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    checkpoint_path, final_path = run_paths(OUTPUT_DIR)
    load_path = Path(CHECKPOINT_FILE) if CHECKPOINT_FILE else checkpoint_path

    snapshot = load_checkpoint(load_path)
    if snapshot is not None:
        logger.info(f"⚡ Loaded checkpoint {load_path} ({len(snapshot)} countries)")
    else:
        snapshot = {}
        older = [p for p in find_checkpoints(OUTPUT_DIR) if p != checkpoint_path]
        if older:
            logger.info(f"ℹ️  Older checkpoint available: {older[-1]} (set CHECKPOINT_FILE to resume from it)")

    dump_dir = OUTPUT_DIR if DEBUG_DUMP else None
    async with PageFetcher(dump_dir=dump_dir) as fetcher:
        orchestrator = CrawlOrchestrator(
            fetcher,
            snapshot,
            checkpoint_path,
            final_path,
            country_limit=TEST_COUNTRY_LIMIT if TEST_MODE else None,
        )
        await orchestrator.run()

    stats = orchestrator.stats
    missing = incomplete_leagues(snapshot)

    print(f"\n{'='*80}")
    print("✅ SCRAPING COMPLETE!")
    print(f"{'='*80}")
    print(f"🌍 Countries: {stats.countries}")
    print(f"🏟️  Leagues fetched: {stats.leagues_fetched} (skipped from checkpoint: {stats.leagues_skipped})")
    print(f"👕 Teams: {stats.teams}")
    print(f"⚠️  Leagues without teams: {len(missing)}")
    for country_name, league_name in missing:
        print(f"   - {country_name} / {league_name}")
    print(f"⏱️  Completed in {stats.elapsed:.1f}s → {final_path}")
    print(f"{'='*80}\n")

def run():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='[%(asctime)s] %(levelname)s %(message)s',
    )
    try:
        asyncio.run(main())
    except Exception as e:
        logger.error(f"❌ FATAL ERROR: {e}")
        sys.exit(1)

if __name__ == "__main__":
    run()
