#!/usr/bin/env python3
import argparse
import base64
import binascii
import hashlib
import json
import logging
import mimetypes
import os
import re
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound
from dotenv import load_dotenv
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/css,*/*;q=0.1",
    "Accept-Language": "en-US,en;q=0.7",
}

# data:[mime];base64,<payload>  (mime may carry + . - like image/svg+xml)
DATA_URI_RE = re.compile(r"data:([a-zA-Z0-9.+\-/]+);base64,([A-Za-z0-9+/=]+)")

MIME_EXTS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/avif": ".avif",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
}

# doctype + documentElement.outerHTML, evaluated in-page after rendering
SNAPSHOT_JS = """
() => {
  const dt = document.doctype;
  const doctype = dt ? "<!DOCTYPE " + dt.name
    + (dt.publicId ? ' PUBLIC "' + dt.publicId + '"' : '')
    + (!dt.publicId && dt.systemId ? ' SYSTEM' : '')
    + (dt.systemId ? ' "' + dt.systemId + '"' : '')
    + ">\\n" : "";
  return doctype + document.documentElement.outerHTML;
}
"""

LINK_HREFS_JS = """
() => Array.from(document.querySelectorAll('link[rel="stylesheet"]'))
  .map(link => link.getAttribute('href'))
"""

INLINE_STYLES_JS = """
() => Array.from(document.querySelectorAll('style')).map(s => s.textContent)
"""

DYNAMIC_STYLES_JS = """
() => Array.from(document.querySelectorAll('[style]'))
  .map(el => el.getAttribute('style'))
  .filter(style => style)
"""

# -------------------- Settings --------------------


@dataclass
class Settings:
    output_dir: str = "output"
    html_name: str = "rendered_after_js.html"

    # Settling
    idle_window: float = 1.0
    hard_timeout: float = 30.0
    poll_interval: float = 0.05
    root_selector: str = "#app"
    wait_for: List[str] = field(default_factory=list)

    # Browser
    wait_until: str = "load"
    capture_timeout: float = 60.0
    user_agent: str = DEFAULT_USER_AGENT
    headless: bool = True

    # Styles
    skip_styles: bool = False
    download_timeout: float = 10.0


# -------------------- Errors --------------------


class CaptureError(Exception):
    pass


class NavigationError(CaptureError):
    pass


class IdleTimeoutError(CaptureError):
    def __init__(self, hard_timeout: float, in_flight: int):
        super().__init__(
            f"network did not go idle within {hard_timeout:g}s "
            f"({in_flight} request(s) still in flight)"
        )
        self.hard_timeout = hard_timeout
        self.in_flight = in_flight


class CaptureCancelled(CaptureError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class DownloadError(CaptureError):
    pass


# -------------------- Cancellation --------------------


class CancelToken:
    """Cooperative cancellation with an optional absolute deadline.

    ``cancel()`` may be called from any thread; waiters poll
    ``raise_if_cancelled()`` between steps.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._event = threading.Event()
        self._deadline = None if timeout is None else clock() + timeout
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("capture deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled():
            raise CaptureCancelled(self.reason or "cancelled")


def bounded_timeout(default: float, cancel: Optional[CancelToken]) -> float:
    if cancel is None:
        return default
    cancel.raise_if_cancelled()
    left = cancel.remaining()
    if left is None:
        return default
    if left <= 0:
        # a zero timeout means "wait forever" to the engine
        cancel.cancel("capture deadline exceeded")
        raise CaptureCancelled(cancel.reason or "capture deadline exceeded")
    return min(default, left)


# -------------------- Browser session --------------------

REQUEST_STARTED = "request"
RESPONSE_RECEIVED = "response"
REQUEST_FINISHED = "finished"
REQUEST_FAILED = "failed"


@dataclass(frozen=True)
class NetworkEvent:
    kind: str
    url: str
    resource_type: Optional[str] = None


EventCallback = Callable[[NetworkEvent], None]


class BrowserSession:
    """Capabilities the capture pipeline needs from a live page."""

    def enable_network(self) -> None:
        raise NotImplementedError

    def navigate(self, url: str, timeout: float) -> None:
        raise NotImplementedError

    def wait_for_selector(self, selector: str, state: str, timeout: float) -> None:
        raise NotImplementedError

    def evaluate(self, expression: str):
        raise NotImplementedError

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        raise NotImplementedError

    def pump(self, seconds: float) -> None:
        raise NotImplementedError

    def stylesheet_responses(self) -> List[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PlaywrightSession(BrowserSession):
    _PAGE_EVENTS = (
        ("request", REQUEST_STARTED),
        ("response", RESPONSE_RECEIVED),
        ("requestfinished", REQUEST_FINISHED),
        ("requestfailed", REQUEST_FAILED),
    )

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        headless: bool = True,
        wait_until: str = "load",
    ):
        self.wait_until = wait_until
        self._responses: List[NetworkEvent] = []
        self._recording = False
        self._pl = sync_playwright().start()
        try:
            self._browser = self._pl.chromium.launch(headless=headless)
            self._context = self._browser.new_context(user_agent=user_agent)
            self.page = self._context.new_page()
        except PlaywrightError:
            self._pl.stop()
            raise

    @staticmethod
    def _to_event(kind: str, obj) -> NetworkEvent:
        # "response" hands over a Response, the others a Request
        req = obj.request if kind == RESPONSE_RECEIVED else obj
        return NetworkEvent(kind, obj.url, req.resource_type)

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        handlers = []
        for pw_name, kind in self._PAGE_EVENTS:

            def _handler(obj, kind=kind):
                callback(self._to_event(kind, obj))

            self.page.on(pw_name, _handler)
            handlers.append((pw_name, _handler))

        def unsubscribe() -> None:
            for pw_name, h in handlers:
                self.page.remove_listener(pw_name, h)

        return unsubscribe

    def _record(self, ev: NetworkEvent) -> None:
        if ev.kind == RESPONSE_RECEIVED:
            self._responses.append(ev)

    def enable_network(self) -> None:
        if not self._recording:
            self.subscribe(self._record)
            self._recording = True

    def navigate(self, url: str, timeout: float) -> None:
        try:
            self.page.goto(url, wait_until=self.wait_until, timeout=timeout * 1000)
        except PlaywrightError as e:
            raise NavigationError(f"failed to load {url}: {e}") from e

    def wait_for_selector(self, selector: str, state: str, timeout: float) -> None:
        try:
            self.page.wait_for_selector(selector, state=state, timeout=timeout * 1000)
        except PlaywrightError as e:
            raise NavigationError(f"selector {selector!r} never became {state}: {e}") from e

    def evaluate(self, expression: str):
        try:
            return self.page.evaluate(expression)
        except PlaywrightError as e:
            raise NavigationError(f"page evaluation failed: {e}") from e

    def pump(self, seconds: float) -> None:
        # events are only dispatched while the sync API is waiting
        try:
            self.page.wait_for_timeout(seconds * 1000)
        except PlaywrightError as e:
            raise NavigationError(f"page closed while waiting for network idle: {e}") from e

    def stylesheet_responses(self) -> List[str]:
        return [ev.url for ev in self._responses if ev.resource_type == "stylesheet"]

    def close(self) -> None:
        try:
            self._context.close()
            self._browser.close()
        except PlaywrightError as e:
            logging.debug("browser close failed: %s", e)
        finally:
            self._pl.stop()


# -------------------- Utils --------------------


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def short_hash(text: str) -> str:
    return hashlib.sha1(text.encode("ascii")).hexdigest()[:12]


def guess_ext_for_mime(mime_type: str) -> str:
    mt = mime_type.strip().lower()
    if mt in MIME_EXTS:
        return MIME_EXTS[mt]
    return mimetypes.guess_extension(mt) or ".bin"


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")


def prettify_html(html: str) -> str:
    if not html:
        return html
    return bs4_parse(html).prettify()


# -------------------- Data URI extraction --------------------


@dataclass(frozen=True)
class AssetRecord:
    content_hash: str
    mime_type: str
    extension: str
    relative_path: str


class DataUriExtractor:
    """Moves base64 data URIs out of markup into ``asset_dir``.

    Payloads are keyed by a hash of their base64 text, so a payload seen
    twice is decoded and written once and both occurrences point at the
    same file. Dedup lasts as long as the extractor; a fresh one per page
    keeps pages independent, reusing one shares assets across pages.
    """

    def __init__(self, asset_dir: Path, rel_prefix: str = "assets"):
        self.asset_dir = Path(asset_dir)
        self.rel_prefix = rel_prefix
        self.records: Dict[str, AssetRecord] = {}
        self._saved = 0

    def _replace(self, m: re.Match) -> str:
        match = m.group(0)
        mime_type = m.group(1).lower()
        b64 = m.group(2)
        h = short_hash(b64)

        rec = self.records.get(h)
        if rec is not None:
            return rec.relative_path

        try:
            data = base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError) as e:
            logging.debug("skip undecodable %s payload (%s...): %s", mime_type, b64[:16], e)
            return match

        ext = guess_ext_for_mime(mime_type)
        filename = f"b64_{h}{ext}"
        out_path = self.asset_dir / filename
        try:
            ensure_parent_dir(out_path)
            out_path.write_bytes(data)
        except OSError as e:
            logging.warning("failed to write %s: %s", out_path, e)
            return match

        rel = Path(self.rel_prefix, filename).as_posix()
        self.records[h] = AssetRecord(h, mime_type, ext, rel)
        self._saved += 1
        return rel

    def process(self, html: str) -> Tuple[str, int]:
        self._saved = 0
        if not html:
            return html, 0
        processed = DATA_URI_RE.sub(self._replace, html)
        return processed, self._saved


def extract_and_replace_data_uris(html: str, asset_dir: Path) -> Tuple[str, int]:
    return DataUriExtractor(asset_dir).process(html)


# -------------------- Network idle --------------------


@dataclass
class NetworkActivity:
    in_flight: int = 0
    last_activity: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def on_event(self, ev: NetworkEvent, now: float) -> None:
        with self.lock:
            if ev.kind == REQUEST_STARTED:
                self.in_flight += 1
            elif ev.kind in (REQUEST_FINISHED, REQUEST_FAILED):
                if self.in_flight > 0:
                    self.in_flight -= 1
            else:
                return
            self.last_activity = now

    def is_idle(self, now: float, idle_window: float) -> bool:
        with self.lock:
            return self.in_flight == 0 and now - self.last_activity >= idle_window


def wait_for_network_idle(
    session: BrowserSession,
    idle_window: float = 1.0,
    hard_timeout: float = 30.0,
    *,
    poll_interval: float = 0.05,
    clock: Callable[[], float] = time.monotonic,
    cancel: Optional[CancelToken] = None,
) -> None:
    """Block until no request has been in flight for ``idle_window`` seconds.

    Raises IdleTimeoutError once ``hard_timeout`` has passed without that
    happening, and CaptureCancelled if ``cancel`` fires first. The event
    listener only lives for the duration of this call.
    """
    start = clock()
    state = NetworkActivity(last_activity=start)
    unsubscribe = session.subscribe(lambda ev: state.on_event(ev, clock()))
    try:
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            session.pump(poll_interval)
            now = clock()
            if state.is_idle(now, idle_window):
                logging.debug("network idle after %.2fs", now - start)
                return
            if now - start >= hard_timeout:
                raise IdleTimeoutError(hard_timeout, state.in_flight)
    finally:
        unsubscribe()


# -------------------- Snapshot --------------------


@dataclass(frozen=True)
class RenderedDocument:
    doctype: Optional[str]
    outer_html: str

    @property
    def markup(self) -> str:
        if self.doctype:
            return self.doctype + "\n" + self.outer_html
        return self.outer_html

    @classmethod
    def from_snapshot(cls, raw: str) -> "RenderedDocument":
        head, sep, rest = raw.partition("\n")
        if sep and head.lstrip().upper().startswith("<!DOCTYPE"):
            return cls(head, rest)
        return cls(None, raw)


@dataclass
class CaptureResult:
    html_path: Path
    assets: List[AssetRecord]
    saved_count: int


def require_selector(
    session: BrowserSession, selector: str, timeout: float
) -> int:
    session.wait_for_selector(selector, "visible", timeout)
    count = session.evaluate(
        f"() => document.querySelectorAll({json.dumps(selector)}).length"
    )
    if not count:
        raise NavigationError(f"no {selector} elements found")
    logging.info("found %d %s element(s)", count, selector)
    return count


def capture(
    session: BrowserSession,
    url: str,
    out_file: Union[str, Path],
    settings: Settings,
    *,
    clock: Callable[[], float] = time.monotonic,
    cancel: Optional[CancelToken] = None,
) -> CaptureResult:
    out_path = Path(out_file)
    step_timeout = settings.capture_timeout
    if cancel is not None:
        cancel.raise_if_cancelled()

    session.enable_network()
    logging.info("GET %s", url)
    session.navigate(url, bounded_timeout(step_timeout, cancel))
    session.wait_for_selector("body", "attached", bounded_timeout(step_timeout, cancel))
    wait_for_network_idle(
        session,
        settings.idle_window,
        settings.hard_timeout,
        poll_interval=settings.poll_interval,
        clock=clock,
        cancel=cancel,
    )
    if cancel is not None:
        cancel.raise_if_cancelled()
    session.wait_for_selector(
        settings.root_selector, "visible", bounded_timeout(step_timeout, cancel)
    )
    for selector in settings.wait_for:
        if cancel is not None:
            cancel.raise_if_cancelled()
        require_selector(session, selector, bounded_timeout(step_timeout, cancel))

    if cancel is not None:
        cancel.raise_if_cancelled()
    raw = session.evaluate(SNAPSHOT_JS)
    if not isinstance(raw, str):
        raise NavigationError(f"snapshot returned {type(raw).__name__}, expected string")
    doc = RenderedDocument.from_snapshot(raw)

    pretty = prettify_html(doc.markup)
    extractor = DataUriExtractor(out_path.parent / "assets")
    processed, saved = extractor.process(pretty)
    logging.info("extracted %d embedded asset(s) to %s", saved, extractor.asset_dir)

    ensure_parent_dir(out_path)
    out_path.write_text(prettify_html(processed), encoding="utf-8")
    logging.info("rendered HTML saved to %s", out_path)
    return CaptureResult(out_path, list(extractor.records.values()), saved)


# -------------------- HTTP --------------------


def build_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def download_file(
    http: requests.Session, url: str, dest: Path, timeout: float = 10.0
) -> Path:
    ensure_parent_dir(dest)
    resp = http.get(url, timeout=timeout, stream=True)
    try:
        if not 200 <= resp.status_code < 300:
            raise DownloadError(f"bad status for {url}: HTTP {resp.status_code}")
        try:
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        f.write(chunk)
        except (requests.RequestException, OSError):
            dest.unlink(missing_ok=True)
            raise
    finally:
        resp.close()
    return dest


# -------------------- Styles --------------------


@dataclass(frozen=True)
class StylesheetReference:
    index: int
    response_url: str
    authored_href: Optional[str]
    resolved_relative_path: str


@dataclass
class PageStyles:
    authored_hrefs: List[Optional[str]] = field(default_factory=list)
    inline: List[str] = field(default_factory=list)
    dynamic: List[str] = field(default_factory=list)


@dataclass
class StyleReport:
    css: List[Path] = field(default_factory=list)
    inline: List[Path] = field(default_factory=list)
    dynamic: List[Path] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def resolve_stylesheet_path(
    index: int, response_url: str, authored_href: Optional[str]
) -> str:
    original = response_url if authored_href is None else authored_href
    path = urlparse(original).path
    segs = [s for s in path.split("/") if s not in ("", ".", "..")]
    if not segs:
        segs = [f"external_css_{index + 1}.css"]
    return "/".join(["css", *segs])


def plan_stylesheet_downloads(
    response_urls: Sequence[str], authored_hrefs: Sequence[Optional[str]]
) -> List[StylesheetReference]:
    refs: List[StylesheetReference] = []
    for i, css_url in enumerate(response_urls):
        href = authored_hrefs[i] if i < len(authored_hrefs) else None
        refs.append(
            StylesheetReference(i, css_url, href, resolve_stylesheet_path(i, css_url, href))
        )
    return refs


def download_stylesheets(
    http: requests.Session,
    refs: Sequence[StylesheetReference],
    output_dir: Path,
    timeout: float = 10.0,
    report: Optional[StyleReport] = None,
) -> StyleReport:
    report = report or StyleReport()
    for ref in refs:
        dest = Path(output_dir, *ref.resolved_relative_path.split("/"))
        try:
            download_file(http, ref.response_url, dest, timeout)
        except (requests.RequestException, DownloadError, OSError) as e:
            logging.warning("failed to download external CSS %s: %s", ref.response_url, e)
            report.failed.append(ref.response_url)
            continue
        logging.info("downloaded external CSS %s -> %s", ref.response_url, dest)
        report.css.append(dest)
    return report


def save_numbered_styles(
    texts: Sequence[str], directory: Path, prefix: str
) -> List[Path]:
    saved: List[Path] = []
    for i, text in enumerate(texts, start=1):
        p = Path(directory) / f"{prefix}_{i}.css"
        try:
            ensure_parent_dir(p)
            p.write_text(text or "", encoding="utf-8")
        except OSError as e:
            logging.warning("failed to save %s: %s", p, e)
            continue
        saved.append(p)
    return saved


def collect_page_styles(session: BrowserSession) -> PageStyles:
    styles = PageStyles(
        authored_hrefs=list(session.evaluate(LINK_HREFS_JS) or []),
        inline=list(session.evaluate(INLINE_STYLES_JS) or []),
    )
    try:
        styles.dynamic = list(session.evaluate(DYNAMIC_STYLES_JS) or [])
    except NavigationError as e:
        logging.warning("failed to extract dynamic styles: %s", e)
    return styles


def reconcile_styles(
    session: BrowserSession,
    http: requests.Session,
    output_dir: Union[str, Path],
    settings: Settings,
) -> StyleReport:
    out = Path(output_dir)
    styles = collect_page_styles(session)
    report = StyleReport()

    report.inline = save_numbered_styles(styles.inline, out / "inline", "inline_style")
    refs = plan_stylesheet_downloads(session.stylesheet_responses(), styles.authored_hrefs)
    download_stylesheets(http, refs, out, settings.download_timeout, report)
    report.dynamic = save_numbered_styles(
        styles.dynamic, out / "dynamic", "dynamic_style"
    )
    return report


# -------------------- Manifest --------------------


def write_manifest(
    url: str,
    output_dir: Path,
    capture_result: CaptureResult,
    styles: Optional[StyleReport] = None,
) -> Path:
    root = Path(output_dir).resolve()

    def rel(p: Union[str, Path]) -> str:
        return Path(p).resolve().relative_to(root).as_posix()

    # RFC3339 UTC timestamp without microseconds
    created_ts = (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
    styles = styles or StyleReport()
    data = {
        "url": url,
        "created_utc": created_ts,
        "html": rel(capture_result.html_path),
        "assets": [
            {
                "hash": a.content_hash,
                "mime": a.mime_type,
                "path": a.relative_path,
            }
            for a in capture_result.assets
        ],
        "css": [rel(p) for p in styles.css],
        "inline": [rel(p) for p in styles.inline],
        "dynamic": [rel(p) for p in styles.dynamic],
        "failed_css": list(styles.failed),
    }
    path = root / "manifest.json"
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        if sys.version_info >= (3, 11):
            import tomllib
        else:
            import tomli as tomllib
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Render a JavaScript page, wait for it to settle and save "
        "a self-contained snapshot with its styles.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument(
        "url", nargs="?", default=None, help="http(s) URL (default: $TARGET_URL)"
    )
    p.add_argument("--output-dir", type=str, default="output", help="output directory")
    p.add_argument(
        "--html-name",
        type=str,
        default="rendered_after_js.html",
        help="file name of the rendered page",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # settling
    p.add_argument(
        "--idle-window", type=float, default=1.0, help="quiet seconds before settled"
    )
    p.add_argument(
        "--hard-timeout", type=float, default=30.0, help="max seconds to wait for idle"
    )
    p.add_argument(
        "--poll-interval", type=float, default=0.05, help="idle check interval seconds"
    )
    p.add_argument(
        "--root-selector", type=str, default="#app", help="client-side root element"
    )
    p.add_argument(
        "--wait-for",
        action="append",
        default=[],
        help="selector that must be visible and non-empty before snapshot",
    )

    # browser
    p.add_argument(
        "--wait-until", type=str, default="load", help="Playwright navigation wait_until"
    )
    p.add_argument(
        "--capture-timeout", type=float, default=60.0, help="overall deadline seconds"
    )
    p.add_argument("--user-agent", type=str, default=DEFAULT_USER_AGENT)
    p.add_argument("--headful", action="store_true", help="show the browser window")

    # styles
    p.add_argument(
        "--skip-styles", action="store_true", help="do not save stylesheets"
    )
    p.add_argument(
        "--download-timeout", type=float, default=10.0, help="CSS download timeout"
    )
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
            for g in ("capture", "browser", "styles", "general"):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**{k.replace("-", "_"): v for k, v in flat.items()})
    return parser.parse_args(argv)


def as_list(value) -> List[str]:
    if isinstance(value, str):
        return [value]
    return list(value or [])


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        output_dir=args.output_dir,
        html_name=args.html_name,
        idle_window=max(0.0, args.idle_window),
        hard_timeout=max(0.1, args.hard_timeout),
        poll_interval=max(0.01, args.poll_interval),
        root_selector=args.root_selector,
        wait_for=as_list(args.wait_for),
        wait_until=args.wait_until,
        capture_timeout=max(1.0, args.capture_timeout),
        user_agent=args.user_agent,
        headless=not args.headful,
        skip_styles=args.skip_styles,
        download_timeout=max(0.1, args.download_timeout),
    )


def run(
    url: str,
    settings: Settings,
    session: BrowserSession,
    http: Optional[requests.Session] = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    cancel: Optional[CancelToken] = None,
) -> Tuple[CaptureResult, Optional[StyleReport]]:
    out_dir = Path(settings.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    result = capture(
        session, url, out_dir / settings.html_name, settings, clock=clock, cancel=cancel
    )
    styles = None
    if not settings.skip_styles:
        styles = reconcile_styles(session, http or build_session(), out_dir, settings)
    write_manifest(url, out_dir, result, styles)
    return result, styles


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    url = args.url or os.getenv("TARGET_URL")
    if not url:
        print("No URL given and TARGET_URL is not set")
        sys.exit(1)
    if urlparse(url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    settings = settings_from_args(args)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    cancel = CancelToken(settings.capture_timeout)
    try:
        session = PlaywrightSession(
            settings.user_agent, settings.headless, settings.wait_until
        )
    except PlaywrightError as e:
        logging.error("failed to start browser: %s", e)
        sys.exit(1)
    try:
        result, styles = run(url, settings, session, cancel=cancel)
    except CaptureError as e:
        logging.error("capture failed: %s", e)
        sys.exit(1)
    finally:
        session.close()

    print(f"Saved to: {result.html_path}")
    print(f"Embedded assets extracted: {result.saved_count}")
    if styles is not None:
        print(
            f"Stylesheets: {len(styles.css)} downloaded, {len(styles.failed)} failed, "
            f"{len(styles.inline)} inline, {len(styles.dynamic)} dynamic"
        )


if __name__ == "__main__":
    main()
