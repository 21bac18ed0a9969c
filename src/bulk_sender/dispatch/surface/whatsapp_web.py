"""WhatsApp Web surface driven through a persistent Playwright browser profile."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from bulk_sender.config import SurfaceSettings
from bulk_sender.dispatch.surface.base import (
    ContextUnavailableError,
    SurfaceObservation,
    SurfaceProbe,
    SurfaceStatus,
)

logger = logging.getLogger(__name__)

INPUT_SELECTORS: tuple[str, ...] = (
    'div[contenteditable="true"][data-tab="10"]',
    'div[contenteditable="true"][title*="message"]',
    'div[contenteditable="true"][title*="Message"]',
    'div[contenteditable="true"].selectable-text',
    'footer div[contenteditable="true"]',
    'div[contenteditable="true"]',
    '[role="textbox"]',
)
SEND_CONTROL_SELECTORS: tuple[str, ...] = (
    'button[data-tab="11"]',
    'button[aria-label*="Send"]',
    'button[aria-label*="send"]',
    'span[data-icon="send"]',
    '[data-testid="send"]',
)

_FIND_INPUT_JS = f"""
() => {{
    for (const selector of {json.dumps(INPUT_SELECTORS)}) {{
        const el = document.querySelector(selector);
        if (el && el.isContentEditable) return el;
    }}
    return null;
}}
"""

_FIND_SEND_CONTROL_JS = f"""
() => {{
    for (const selector of {json.dumps(SEND_CONTROL_SELECTORS)}) {{
        const el = document.querySelector(selector);
        if (!el) continue;
        const button = el.tagName === 'BUTTON' ? el : el.closest('button, [role="button"]');
        if (button) return button;
    }}
    return null;
}}
"""

_PROBE_JS = """
() => {
    const loading = !!(
        document.querySelector('[data-icon="logo"]') ||
        document.querySelector('.landing-wrapper') ||
        document.querySelector('[data-icon="laptop"]') ||
        document.querySelector('[data-testid="startup"]')
    );
    const interactive = !!(
        document.querySelector('footer div[contenteditable="true"]') ||
        document.querySelector('[role="textbox"]') ||
        document.querySelector('div[contenteditable="true"]')
    );
    let error = null;
    if (document.querySelector('[data-icon="alert-phone"]')) {
        error = 'alert-phone';
    } else if (window.location.href.includes('unsupported')) {
        error = 'unsupported browser';
    } else {
        const dialog = document.querySelector('[role="dialog"], [data-animate-modal-popup="true"]');
        if (dialog && /invalid|not on whatsapp|blocked/i.test(dialog.textContent || '')) {
            error = (dialog.textContent || '').trim().slice(0, 200);
        }
    }
    return {loading, interactive, error};
}
"""

_STATUS_JS = """
() => {
    if (document.querySelector('[data-testid="qrcode"], canvas[aria-label*="QR"]')) return 'logged_out';
    if (document.querySelector('[data-testid="startup"], .landing-wrapper')) return 'loading';
    if (document.querySelector('[data-testid="chat-list"], div[role="application"], #pane-side')) {
        return 'ready';
    }
    return 'unknown';
}
"""


def _with_input(body: str) -> str:
    return f"(arg) => {{ const input = ({_FIND_INPUT_JS})(); {body} }}"


_LOCATE_INPUT_JS = _with_input("if (!input) return false; input.focus(); return true;")
_READ_INPUT_JS = _with_input("return input ? (input.textContent || '') : '';")
_SET_TEXT_JS = _with_input("if (input) { input.textContent = arg; }")
_SET_MARKUP_JS = _with_input("if (input) { input.innerHTML = arg; }")
_CLEAR_INPUT_JS = _with_input("if (input) { input.textContent = ''; }")
_NATIVE_INSERT_JS = _with_input(
    """
    if (!input || typeof document.execCommand !== 'function') return false;
    input.focus();
    document.execCommand('selectAll', false, null);
    return document.execCommand('insertText', false, arg);
    """,
)
_CHANGE_SIGNALS_JS = _with_input(
    """
    if (!input) return;
    const events = [
        new Event('focus', {bubbles: true}),
        new Event('input', {bubbles: true}),
        new Event('change', {bubbles: true}),
        new KeyboardEvent('keyup', {bubbles: true}),
    ];
    for (const event of events) {
        try { input.dispatchEvent(event); } catch (e) { /* detached node */ }
    }
    """,
)
_SEND_CONTROL_PRESENT_JS = (
    f"() => {{ const b = ({_FIND_SEND_CONTROL_JS})(); return !!b && !b.disabled; }}"
)
_SEND_CONTROL_CLICK_JS = (
    f"() => {{ const b = ({_FIND_SEND_CONTROL_JS})(); if (b) b.click(); return !!b; }}"
)
_OBSERVE_JS = _with_input(
    """
    const outbound = document.querySelectorAll('.message-out');
    const latest = outbound.length ? outbound[outbound.length - 1] : null;
    let status = null;
    if (latest) {
        const icon = latest.querySelector(
            '[data-icon="msg-dblcheck"], [data-icon="msg-check"], [data-icon="msg-time"]'
        );
        if (icon) status = icon.getAttribute('data-icon').replace('msg-', '');
    }
    const directions = Array.from(document.querySelectorAll('.message-in, .message-out'))
        .slice(-arg)
        .map((el) => (el.classList.contains('message-out') ? 'out' : 'in'));
    const error = document.querySelector('[data-icon="alert-phone"]') ? 'alert-phone' : null;
    return {
        content: input ? (input.textContent || '') : null,
        outboundCount: outbound.length,
        status,
        directions,
        error,
    };
    """,
)


class PageContext:
    """One browser tab addressed to one recipient."""

    def __init__(self, *, page: Page, target: str, payload: str) -> None:
        self.page = page
        self.target = target
        self.payload = payload

    async def _eval(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def probe(self) -> SurfaceProbe:
        raw = await self._eval(_PROBE_JS)
        return SurfaceProbe(
            loading=bool(raw.get("loading")),
            interactive=bool(raw.get("interactive")),
            error=raw.get("error"),
        )

    async def locate_content_area(self) -> bool:
        return bool(await self._eval(_LOCATE_INPUT_JS))

    async def read_content(self) -> str:
        return str(await self._eval(_READ_INPUT_JS))

    async def set_text(self, text: str) -> None:
        await self._eval(_SET_TEXT_JS, text)

    async def set_markup(self, markup: str) -> None:
        await self._eval(_SET_MARKUP_JS, markup)

    async def insert_text_native(self, text: str) -> bool:
        return bool(await self._eval(_NATIVE_INSERT_JS, text))

    async def clear_content(self) -> None:
        await self._eval(_CLEAR_INPUT_JS)

    async def type_character(self, char: str) -> None:
        if char == "\n":
            # Plain Enter submits the message.
            await self.page.keyboard.press("Shift+Enter")
            return
        await self.page.keyboard.type(char)

    async def dispatch_change_signals(self) -> None:
        await self._eval(_CHANGE_SIGNALS_JS)

    async def locate_send_control(self) -> bool:
        return bool(await self._eval(_SEND_CONTROL_PRESENT_JS))

    async def activate_send_control(self) -> None:
        await self._eval(_SEND_CONTROL_CLICK_JS)

    async def press_confirm_key(self) -> None:
        await self._eval(_LOCATE_INPUT_JS)
        await self.page.keyboard.press("Enter")

    async def observe(self, *, recent_window: int) -> SurfaceObservation:
        raw = await self._eval(_OBSERVE_JS, recent_window)
        return SurfaceObservation(
            content_text=raw.get("content"),
            outbound_count=int(raw.get("outboundCount") or 0),
            latest_outbound_status=raw.get("status"),
            recent_directions=tuple(raw.get("directions") or ()),
            error=raw.get("error"),
        )

    async def close(self) -> None:
        if not self.page.is_closed():
            await self.page.close()


class WhatsAppWebProvider:
    """Opens one tab per attempt inside the operator's authenticated browser profile."""

    def __init__(self, settings: SurfaceSettings) -> None:
        self.settings = settings
        self._playwright: Playwright | None = None
        self._browser_context: BrowserContext | None = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        launch_opts: dict[str, Any] = {"headless": self.settings.headless}
        if self.settings.browser_channel:
            launch_opts["channel"] = self.settings.browser_channel
        self.settings.user_data_dir.mkdir(parents=True, exist_ok=True)
        self._browser_context = await self._playwright.chromium.launch_persistent_context(
            str(self.settings.user_data_dir),
            **launch_opts,
        )
        logger.info("Browser profile opened at %s", self.settings.user_data_dir)

    async def stop(self) -> None:
        if self._browser_context is not None:
            await self._browser_context.close()
            self._browser_context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> WhatsAppWebProvider:
        await self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop()

    def send_url(self, target: str, payload: str) -> str:
        phone = target.lstrip("+")
        base = self.settings.base_url.rstrip("/")
        return f"{base}/send?phone={phone}&text={quote(payload, safe='')}"

    async def _new_page(self, url: str) -> Page:
        if self._browser_context is None:
            raise RuntimeError("Browser not started")
        page = await self._browser_context.new_page()
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.navigation_timeout_seconds * 1000,
            )
        except PlaywrightError as error:
            await page.close()
            raise ContextUnavailableError(f"Navigation failed: {error}") from error
        except BaseException:
            await page.close()
            raise
        return page

    async def open(self, target: str, payload: str) -> PageContext:
        page = await self._new_page(self.send_url(target, payload))
        logger.debug("Opened context for %s", target)
        return PageContext(page=page, target=target, payload=payload)

    async def status(self) -> SurfaceStatus:
        page = await self._new_page(self.settings.base_url)
        try:
            raw = await page.evaluate(_STATUS_JS)
        finally:
            await page.close()
        try:
            return SurfaceStatus(raw)
        except ValueError:
            return SurfaceStatus.UNKNOWN
