"""Headless-browser automation of the portal's four-step reservation wizard.

The wizard advances through client-side scripting after AJAX calls, so
every wait polls the rendered document rather than the network layer.
Steps report progress as `BookingEvent`s to an optional observer; the run
ends with a `BookingOutcome` naming the step that failed, if any.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .const import (
    BASE_URL,
    BOOKING_FAILURE_PHRASES,
    BOOKING_SUCCESS_PHRASES,
    BROWSER_ARGS,
    BROWSER_VIEWPORT,
    COMPLETE_INVITATION_PATH,
    CONFIRMATION_TIMEOUT_MS,
    COURT_INVITATION_ENDPOINT,
    COURT_TYPE,
    FIELD_TIMEOUT_MS,
    FORM_TIMEOUT_MS,
    HOUR_SELECT_POLLING_MS,
    HOUR_SELECT_TIMEOUT_MS,
    LINGER_FAILURE_SECONDS,
    LINGER_SUCCESS_SECONDS,
    RESULTS_TIMEOUT_MS,
    SESSION_COOKIE,
    STEP_TIMEOUT_MS,
    SUBMIT_TIMEOUT_MS,
    WIZARD_CONFIRMATION_SELECTOR,
    WIZARD_COURT_TYPE_SELECTOR,
    WIZARD_DATE_SELECTOR,
    WIZARD_DURATION_SELECTOR,
    WIZARD_FORM_SELECTOR,
    WIZARD_RESULTS_SELECTOR,
    WIZARD_SUBMIT_SELECTOR,
    WIZARD_UNIT_SELECTOR,
)
from .exceptions import AutomationStepError, BookingInProgressError, InconclusiveResultError
from .models import (
    BookingEvent,
    BookingOutcome,
    BookingRequest,
    BookingResultKind,
    BookingState,
    Credentials,
    SessionToken,
)
from .session import SessionManager
from .util import format_duration, format_portal_date, normalize_hour, validate_duration

_LOGGER = logging.getLogger(__name__)

TOTAL_STEPS = 4

STEP_SEARCH = "search"
STEP_SELECT_COURT = "select_court"
STEP_CONFIRM = "confirm"
STEP_VERIFY = "verify"
STEP_LAUNCH = "launch"

STEP3_VISIBLE_JS = """() => {
  const step3 = document.querySelector("#step-3");
  if (!step3) return false;
  return window.getComputedStyle(step3).display !== "none";
}"""

HOUR_SELECT_READY_JS = """() => {
  const select = document.querySelector("#search_start_hour");
  if (!select) return false;
  return select.options.length > 1 && !select.disabled;
}"""

SELECT_HOUR_JS = """(preferred) => {
  const select = document.querySelector("#search_start_hour");
  if (!select) return null;
  const values = Array.from(select.options).map((opt) => opt.value).filter((v) => v);
  let hour = null;
  if (preferred && values.includes(preferred)) {
    hour = preferred;
  } else {
    hour = values.slice().sort()[0] || null;
  }
  if (hour) {
    select.value = hour;
    select.dispatchEvent(new Event("change", { bubbles: true }));
  }
  return hour;
}"""

SUBMIT_READY_JS = """() => {
  const btn = document.querySelector("#step1-submit-btn");
  return !!btn && !btn.disabled && btn.offsetParent !== null;
}"""

CLICK_COURT_JS = """(courtId) => {
  const container = document.querySelector(".court_invitations_list");
  if (!container) return { clicked: false, reason: "no-container", fallback: false };
  const buttons = Array.from(container.querySelectorAll("a.btn-choose"));
  if (!buttons.length) return { clicked: false, reason: "no-buttons", fallback: false };
  let target = buttons.find((b) => (b.getAttribute("href") || "").includes("court_id=" + courtId + "&"));
  const fallback = !target;
  if (!target) target = buttons[0];
  try {
    target.scrollIntoView({ behavior: "instant", block: "center", inline: "center" });
  } catch (e) {}
  try {
    target.click();
  } catch (e) {
    return { clicked: false, reason: "click-error", fallback: fallback };
  }
  return { clicked: true, reason: "ok", fallback: fallback };
}"""

ORDER_STEP_VISIBLE_JS = """() => {
  const step3 = document.querySelector("#step-3");
  if (step3 && window.getComputedStyle(step3).display !== "none") return true;
  const panel = document.querySelector(".panel-order-details");
  return !!panel && window.getComputedStyle(panel).display !== "none";
}"""

CLICK_CONTINUE_JS = """(completePath) => {
  let container = document.querySelector("#step-3");
  if (!container || window.getComputedStyle(container).display === "none") {
    container = document.querySelector(".panel-order-details");
  }
  if (!container) return { clicked: false, reason: "no-container" };
  const buttons = Array.from(
    container.querySelectorAll("a.btn-blue, button.btn-blue, a.btn, button.btn")
  );
  if (!buttons.length) return { clicked: false, reason: "no-buttons" };
  const target =
    buttons.find((b) => (b.getAttribute("href") || "").includes(completePath)) || buttons[0];
  try {
    target.scrollIntoView({ behavior: "instant", block: "center", inline: "center" });
  } catch (e) {}
  try {
    target.click();
  } catch (e) {
    return { clicked: false, reason: "click-error" };
  }
  return { clicked: true, reason: "ok" };
}"""

STEP4_VISIBLE_JS = """() => {
  const step4 = document.querySelector("#step-4");
  return !!step4 && window.getComputedStyle(step4).display !== "none";
}"""

CONFIRMATION_JS = """() => {
  const step4 = document.querySelector("#step-4");
  return {
    hasAlertSuccess: !!document.querySelector(".alert-success"),
    hasAlertDanger: !!document.querySelector(".alert-danger"),
    hasAlertWarning: !!document.querySelector(".alert-warning"),
    text: step4 ? (step4.textContent || "").trim() : "",
  };
}"""

BrowserFactory = Callable[[SessionToken], AbstractAsyncContextManager[Page]]
BookingObserver = Callable[[BookingEvent], Awaitable[None] | None]


def evaluate_confirmation(content: Mapping[str, Any]) -> BookingResultKind:
    """Classify the confirmation step; any failure marker outranks success."""
    text = str(content.get("text") or "")
    has_error = (
        bool(content.get("hasAlertDanger"))
        or bool(content.get("hasAlertWarning"))
        or any(phrase in text for phrase in BOOKING_FAILURE_PHRASES)
    )
    if has_error:
        return "failure"
    has_success = bool(content.get("hasAlertSuccess")) or any(
        phrase in text for phrase in BOOKING_SUCCESS_PHRASES
    )
    return "success" if has_success else "inconclusive"


@dataclass(slots=True)
class BookingJob:
    request: BookingRequest
    state: BookingState = BookingState.IDLE
    events: list[BookingEvent] = field(default_factory=list)


class PlaywrightBrowser:
    """Chromium page primed with the portal session cookie."""

    def __init__(
        self,
        token: SessionToken,
        *,
        base_url: str = BASE_URL,
        headless: bool = True,
        executable_path: str | None = None,
    ) -> None:
        self._token = token
        self._cookie_domain = urlsplit(base_url).hostname or ""
        self._headless = headless
        self._executable_path = executable_path
        self._playwright = None
        self._browser = None

    async def __aenter__(self) -> Page:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                executable_path=self._executable_path,
                args=list(BROWSER_ARGS),
            )
            context = await self._browser.new_context(viewport=dict(BROWSER_VIEWPORT))
            await context.add_cookies(
                [
                    {
                        "name": SESSION_COOKIE,
                        "value": self._token.session_id,
                        "domain": self._cookie_domain,
                        "path": "/",
                        "httpOnly": True,
                        "secure": True,
                    }
                ]
            )
            return await context.new_page()
        except BaseException:
            await self._close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._close()

    async def _close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                _LOGGER.warning("Closing the browser failed: %s", exc)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class BookingAutomation:
    """Drives one booking at a time through the portal wizard.

    The portal keeps a single wizard flow per session, so a request that
    arrives while another booking runs is rejected rather than queued.
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        base_url: str | None = None,
        headless: bool = True,
        executable_path: str | None = None,
        browser_factory: BrowserFactory | None = None,
        observer: BookingObserver | None = None,
        linger_success: float = LINGER_SUCCESS_SECONDS,
        linger_failure: float = LINGER_FAILURE_SECONDS,
    ) -> None:
        self._sessions = sessions
        self._base_url = (base_url or sessions.base_url).rstrip("/")
        self._headless = headless
        self._executable_path = executable_path
        self._browser_factory = browser_factory or self._default_browser
        self._observer = observer
        self._linger_success = max(0.0, linger_success)
        self._linger_failure = max(0.0, linger_failure)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def book(self, request: BookingRequest, credentials: Credentials) -> BookingOutcome:
        if self._lock.locked():
            raise BookingInProgressError("A booking is already in progress.")
        async with self._lock:
            normalize_hour(request.start_hour)
            validate_duration(request.duration)
            job = BookingJob(request=request)
            token = await self._sessions.acquire_session(credentials)
            try:
                async with self._browser_factory(token) as page:
                    outcome = await self._drive(job, page)
                    await asyncio.sleep(
                        self._linger_success if outcome.success else self._linger_failure
                    )
            except PlaywrightError as exc:
                _LOGGER.error("Browser could not be started: %s", exc)
                outcome = self._abort(job, STEP_LAUNCH, f"Browser could not be started: {exc}")
            return outcome

    async def _drive(self, job: BookingJob, page: Page) -> BookingOutcome:
        request = job.request
        steps = (
            (BookingState.SEARCH_SUBMITTED, STEP_SEARCH, "Filling search form...", self._submit_search),
            (
                BookingState.COURT_SELECTED,
                STEP_SELECT_COURT,
                f"Selecting court {request.court_number}...",
                self._select_court,
            ),
            (BookingState.ORDER_CONFIRMED, STEP_CONFIRM, "Confirming booking...", self._confirm_order),
        )
        for index, (state, step, message, handler) in enumerate(steps, start=1):
            await self._emit(job, state, index, message)
            try:
                await handler(page, request)
            except AutomationStepError as exc:
                return self._abort(job, exc.step, str(exc))
            except PlaywrightError as exc:
                return self._abort(job, step, f"Booking step {step} failed: {exc}")
            job.state = state

        await self._emit(job, BookingState.VERIFIED, TOTAL_STEPS, "Verifying booking...")
        try:
            result = await self._verify(page)
        except InconclusiveResultError as exc:
            job.state = BookingState.VERIFIED
            _LOGGER.warning("Booking of court %s is inconclusive", request.court_number)
            return self._outcome(job, "inconclusive", str(exc), failed_step=STEP_VERIFY)
        except AutomationStepError as exc:
            return self._abort(job, exc.step, str(exc))
        except PlaywrightError as exc:
            return self._abort(job, STEP_VERIFY, f"Booking step {STEP_VERIFY} failed: {exc}")

        job.state = BookingState.VERIFIED
        if result == "success":
            _LOGGER.info("Court %s booked", request.court_number)
            return self._outcome(job, "success", f"Court {request.court_number} booked successfully")
        _LOGGER.error("Portal reported a failed booking for court %s", request.court_number)
        return self._outcome(
            job,
            "failure",
            "The portal reported an error on the confirmation step.",
            failed_step=STEP_VERIFY,
        )

    async def _submit_search(self, page: Page, request: BookingRequest) -> None:
        await page.goto(f"{self._base_url}{COURT_INVITATION_ENDPOINT}", wait_until="networkidle")
        if await page.evaluate(STEP3_VISIBLE_JS):
            _LOGGER.info("Wizard already past the search step, skipping form")
            return

        await self._wait_for_selector(page, WIZARD_FORM_SELECTOR, FORM_TIMEOUT_MS, STEP_SEARCH)
        for selector in (WIZARD_UNIT_SELECTOR, WIZARD_COURT_TYPE_SELECTOR, WIZARD_DATE_SELECTOR):
            await self._wait_for_selector(page, selector, FIELD_TIMEOUT_MS, STEP_SEARCH)

        await page.select_option(WIZARD_UNIT_SELECTOR, request.unit_id)
        await page.select_option(WIZARD_COURT_TYPE_SELECTOR, COURT_TYPE)
        await page.fill(WIZARD_DATE_SELECTOR, format_portal_date(request.date))
        await page.dispatch_event(WIZARD_DATE_SELECTOR, "change")
        await page.dispatch_event(WIZARD_DATE_SELECTOR, "blur")

        await self._wait_for_function(
            page,
            HOUR_SELECT_READY_JS,
            HOUR_SELECT_TIMEOUT_MS,
            STEP_SEARCH,
            polling=HOUR_SELECT_POLLING_MS,
        )
        selected = await page.evaluate(SELECT_HOUR_JS, normalize_hour(request.start_hour))
        if not selected:
            raise AutomationStepError(STEP_SEARCH, "No available hours to select.")
        if selected != normalize_hour(request.start_hour):
            _LOGGER.warning("Hour %s not offered, selected %s", request.start_hour, selected)

        await page.select_option(WIZARD_DURATION_SELECTOR, format_duration(request.duration))
        await page.dispatch_event(WIZARD_DURATION_SELECTOR, "change")
        await self._wait_for_function(page, SUBMIT_READY_JS, SUBMIT_TIMEOUT_MS, STEP_SEARCH)
        await page.click(WIZARD_SUBMIT_SELECTOR)
        await self._wait_for_selector(page, WIZARD_RESULTS_SELECTOR, RESULTS_TIMEOUT_MS, STEP_SEARCH)

    async def _select_court(self, page: Page, request: BookingRequest) -> None:
        if await page.evaluate(STEP3_VISIBLE_JS):
            _LOGGER.info("Wizard already past court selection")
            return
        await self._wait_for_selector(page, WIZARD_RESULTS_SELECTOR, STEP_TIMEOUT_MS, STEP_SELECT_COURT)
        result = await page.evaluate(CLICK_COURT_JS, str(request.court_id))
        if not result or not result.get("clicked"):
            reason = result.get("reason") if result else "no-result"
            raise AutomationStepError(STEP_SELECT_COURT, f"Could not click a court: {reason}")
        if result.get("fallback"):
            _LOGGER.warning("Court id %s no longer offered, chose the first court", request.court_id)
        await self._wait_for_function(page, ORDER_STEP_VISIBLE_JS, STEP_TIMEOUT_MS, STEP_SELECT_COURT)

    async def _confirm_order(self, page: Page, request: BookingRequest) -> None:
        await self._wait_for_function(page, ORDER_STEP_VISIBLE_JS, STEP_TIMEOUT_MS, STEP_CONFIRM)
        result = await page.evaluate(CLICK_CONTINUE_JS, COMPLETE_INVITATION_PATH)
        if not result or not result.get("clicked"):
            reason = result.get("reason") if result else "no-result"
            raise AutomationStepError(STEP_CONFIRM, f"Could not continue the order: {reason}")
        await self._wait_for_selector(
            page, WIZARD_CONFIRMATION_SELECTOR, CONFIRMATION_TIMEOUT_MS, STEP_CONFIRM
        )

    async def _verify(self, page: Page) -> BookingResultKind:
        await self._wait_for_function(page, STEP4_VISIBLE_JS, STEP_TIMEOUT_MS, STEP_VERIFY)
        content = await page.evaluate(CONFIRMATION_JS)
        result = evaluate_confirmation(content or {})
        if result == "inconclusive":
            raise InconclusiveResultError(
                "Confirmation step showed neither success nor failure.",
                user_message="Check your rentals to see whether the booking went through.",
            )
        return result

    async def _wait_for_selector(self, page: Page, selector: str, timeout: int, step: str) -> None:
        try:
            await page.wait_for_selector(selector, timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise AutomationStepError(step, f"Timed out waiting for {selector}.") from exc

    async def _wait_for_function(
        self,
        page: Page,
        expression: str,
        timeout: int,
        step: str,
        *,
        polling: int | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {"timeout": timeout}
        if polling is not None:
            kwargs["polling"] = polling
        try:
            await page.wait_for_function(expression, **kwargs)
        except PlaywrightTimeoutError as exc:
            raise AutomationStepError(step, f"Timed out in step {step}.") from exc

    async def _emit(self, job: BookingJob, state: BookingState, step: int, message: str) -> None:
        event = BookingEvent(state=state, step=step, total_steps=TOTAL_STEPS, message=message)
        job.events.append(event)
        _LOGGER.debug("Booking step %d/%d: %s", step, TOTAL_STEPS, message)
        if self._observer is None:
            return
        result = self._observer(event)
        if inspect.isawaitable(result):
            await result

    def _abort(self, job: BookingJob, step: str, message: str) -> BookingOutcome:
        _LOGGER.error("Booking aborted in step %s: %s", step, message)
        job.state = BookingState.ABORTED
        return self._outcome(job, "failure", message, failed_step=step)

    def _outcome(
        self,
        job: BookingJob,
        result: BookingResultKind,
        message: str,
        *,
        failed_step: str | None = None,
    ) -> BookingOutcome:
        return BookingOutcome(
            result=result,
            state=job.state,
            message=message,
            failed_step=failed_step,
            events=tuple(job.events),
        )

    def _default_browser(self, token: SessionToken) -> PlaywrightBrowser:
        return PlaywrightBrowser(
            token,
            base_url=self._base_url,
            headless=self._headless,
            executable_path=self._executable_path,
        )
