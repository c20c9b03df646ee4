"""Page steps of one generation attempt.

Each phase logs what it did through the `log` sink (which the controller wires
to the event bus). Phases that cannot continue raise `AffordanceNotFound`;
phases whose failure is tolerable return a boolean instead.

The page object is Playwright's async `Page` (or anything exposing the same
subset of `Page`/`ElementHandle` methods).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from playwright.async_api import Error as PlaywrightError
from pydantic import BaseModel, Field

from flow_story_generator.automation.errors import AffordanceNotFound, AttachmentNotFound
from flow_story_generator.automation.messaging.events import Severity

from .locators import Locators
from .models import Artifact, ReferenceAsset, order_artifacts
from .waiting import Condition, Satisfied, WaitPrimitive, settle

logger = logging.getLogger(__name__)

LogSink = Callable[[str, Severity], None]


class StepTimings(BaseModel):
    """Bounded waits and settle delays, in seconds."""

    element_wait: float = Field(default=30.0, ge=0)
    affordance_wait: float = Field(default=5.0, ge=0)
    after_attach_click: float = Field(default=0.8, ge=0)
    attach_recheck: float = Field(default=0.5, ge=0)
    upload_settle: float = Field(default=2.0, ge=0)
    overlay_settle: float = Field(default=0.3, ge=0)
    chain_settle: float = Field(default=0.5, ge=0)
    clear_settle: float = Field(default=0.1, ge=0)
    write_settle: float = Field(default=0.2, ge=0)

    # Pauses between phases of the per-item sequence.
    after_reset: float = Field(default=0.3, ge=0)
    after_attach: float = Field(default=0.5, ge=0)
    after_chain: float = Field(default=0.5, ge=0)
    after_submit: float = Field(default=0.3, ge=0)

    @classmethod
    def immediate(cls, *, wait: float = 0.05) -> StepTimings:
        """No settle delays and short bounded waits."""

        zeroed = {name: 0.0 for name in cls.model_fields}
        zeroed["element_wait"] = wait
        zeroed["affordance_wait"] = wait
        return cls(**zeroed)


def _preview(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class StepExecutor:
    def __init__(
        self,
        page: Any,
        *,
        waiter: WaitPrimitive,
        log: LogSink,
        locators: Locators | None = None,
        timings: StepTimings | None = None,
    ) -> None:
        self._page = page
        self._waiter = waiter
        self._log = log
        self.locators = locators or Locators()
        self.timings = timings or StepTimings()

    # -- lookup helpers -------------------------------------------------

    async def _query(self, selector: str, root: Any | None = None) -> Any | None:
        scope = self._page if root is None else root
        try:
            return await scope.query_selector(selector)
        except PlaywrightError:
            logger.debug("Selector rejected by page", extra={"selector": selector})
            return None

    async def _query_all(self, selector: str) -> list[Any]:
        try:
            return list(await self._page.query_selector_all(selector))
        except PlaywrightError:
            logger.debug("Selector rejected by page", extra={"selector": selector})
            return []

    async def _first_present(self, selectors: Sequence[str]) -> Any | None:
        for selector in selectors:
            element = await self._query(selector)
            if element is not None:
                logger.debug("Found element", extra={"selector": selector})
                return element
        return None

    def _present(self, selector: str) -> Condition:
        async def _check() -> Any | None:
            return await self._query(selector)

        return _check

    async def _wait_for_first(self, selectors: Sequence[str], timeout: float) -> Any | None:
        result = await self._waiter.wait_for_any([self._present(s) for s in selectors], timeout)
        return result.value if isinstance(result, Satisfied) else None

    async def _find_by_icon_text(self) -> Any | None:
        names = {n.lower() for n in self.locators.attach_icon_names}
        for button in await self._query_all(self.locators.icon_button_scan):
            icon = await self._query(self.locators.icon_element, root=button)
            if icon is None:
                continue
            icon_text = ((await icon.text_content()) or "").strip().lower()
            if icon_text in names:
                self._log(f'Found add button via icon text: "{icon_text}"', Severity.INFO)
                return button
        return None

    # -- phases ---------------------------------------------------------

    async def reset_input_field(self) -> None:
        field = await self._first_present(self.locators.prompt_input)
        if field is None:
            self._log("Prompt input not rendered yet; nothing to clear", Severity.WARNING)
            return
        await field.fill("")
        await field.dispatch_event("input")
        await field.dispatch_event("change")
        await settle(self.timings.clear_settle)
        self._log("Prompt input cleared", Severity.INFO)

    async def attach_reference_asset(self, asset: ReferenceAsset) -> None:
        self._log("Uploading character image...", Severity.INFO)
        try:
            file_input = await self._locate_file_input()
            if file_input is None:
                raise AttachmentNotFound()

            await file_input.set_input_files(
                files={"name": asset.filename, "mimeType": asset.mime_type, "buffer": asset.data}
            )
            await file_input.dispatch_event("input")
            await file_input.dispatch_event("change")
            self._log("File input populated, waiting for upload...", Severity.INFO)
            await settle(self.timings.upload_settle)
        finally:
            await self.dismiss_overlay()
        self._log("Character image uploaded", Severity.SUCCESS)

    async def _locate_file_input(self) -> Any | None:
        loc = self.locators
        attach_button = await self._wait_for_first(loc.attach_button, self.timings.affordance_wait)
        if attach_button is None:
            self._log(
                "Add button not found with standard selectors, trying icon text detection...",
                Severity.WARNING,
            )
            attach_button = await self._find_by_icon_text()

        file_input = await self._first_present(loc.file_input)
        if attach_button is None and file_input is None:
            hidden = await self._query_all(loc.any_file_input)
            if hidden:
                self._log("Found hidden file input directly", Severity.INFO)
                file_input = hidden[0]

        if attach_button is not None and file_input is None:
            self._log("Clicking add ingredient button...", Severity.INFO)
            await attach_button.click()
            await settle(self.timings.after_attach_click)
            file_input = await self._wait_for_first(loc.file_input, self.timings.affordance_wait)

        if file_input is None:
            await settle(self.timings.attach_recheck)
            file_input = await self._first_present(loc.file_input)
        return file_input

    async def dismiss_overlay(self) -> None:
        """Close whatever overlay is open. Never raises."""

        try:
            close_button = await self._first_present(self.locators.overlay_close)
            if close_button is not None:
                await close_button.click()
                await settle(self.timings.overlay_settle)
                return

            dialog = await self._query(self.locators.overlay_root)
            if dialog is not None:
                backdrop = await self._query("xpath=..", root=dialog)
                if backdrop is not None:
                    await backdrop.click()
                    await settle(self.timings.overlay_settle)

            await self._page.keyboard.press("Escape")
            await settle(self.timings.overlay_settle)
        except PlaywrightError as e:
            logger.warning("Overlay dismissal failed", extra={"error": str(e)})

    async def chain_prior_result(self) -> bool:
        self._log("Adding last image to prompt...", Severity.INFO)
        loc = self.locators

        images = await self._query_all(loc.generated_artifact)
        if not images:
            self._log("No images found to add", Severity.WARNING)
            return False

        last_image = images[-1]
        for depth in range(1, loc.carry_forward_max_depth + 1):
            container = await self._query(f"xpath=ancestor::*[{depth}]", root=last_image)
            if container is None:
                break
            button = await self._query(loc.carry_forward_button, root=container)
            if button is not None:
                await button.click()
                await settle(self.timings.chain_settle)
                self._log("Last image added to prompt", Severity.SUCCESS)
                return True

        buttons = await self._query_all(loc.carry_forward_button)
        if buttons:
            await buttons[-1].click()
            await settle(self.timings.chain_settle)
            self._log("Added most recent image to prompt", Severity.SUCCESS)
            return True

        self._log("Could not find Add To Prompt button", Severity.WARNING)
        return False

    async def submit_prompt(self, text: str) -> None:
        field = await self._wait_for_first(self.locators.prompt_input, self.timings.element_wait)
        if field is None:
            raise AffordanceNotFound("prompt input", "Prompt textarea not found")

        # The page only registers a change after the full event sequence.
        await field.fill("")
        await field.dispatch_event("input")
        await settle(self.timings.clear_settle)

        await field.fill(text)
        await field.dispatch_event("input")
        await field.dispatch_event("change")
        await field.focus()
        await field.dispatch_event("keydown")
        await field.dispatch_event("keyup")
        await settle(self.timings.write_settle)

        self._log(f'Prompt written: "{_preview(text)}"', Severity.INFO)

    async def trigger_generation(self) -> None:
        button = await self._wait_for_first(self.locators.create_button, self.timings.element_wait)
        if button is None:
            raise AffordanceNotFound("create button", "Create button not found")
        await button.click()
        self._log("Generation started...", Severity.INFO)

    async def produced_count(self) -> int:
        return len(await self._query_all(self.locators.generated_artifact))

    async def await_generation_result(self, timeout: float) -> bool:
        """True once a new artifact appears; False on timeout or page errors."""

        try:
            initial = await self.produced_count()
            self._log(f"Waiting for generation... ({initial} images currently)", Severity.INFO)

            async def _grown() -> int | None:
                count = await self.produced_count()
                return count if count > initial else None

            result = await self._waiter.wait_for(_grown, timeout)
        except PlaywrightError as e:
            self._log(f"Lost track of the page while waiting: {e}", Severity.ERROR)
            return False

        if isinstance(result, Satisfied):
            self._log(f"Generation complete! New total: {result.value} images", Severity.SUCCESS)
            return True
        self._log("Generation timeout", Severity.WARNING)
        return False

    async def collect_artifacts(self) -> list[Artifact]:
        loc = self.locators
        attribute = loc.artifact_position_attribute
        artifacts: list[Artifact] = []
        for index, image in enumerate(await self._query_all(loc.generated_artifact)):
            src = await image.get_attribute("src")
            if not src:
                continue
            alt = (await image.get_attribute("alt")) or ""
            position = index
            holder = await self._query(f"xpath=ancestor-or-self::*[@{attribute}][1]", root=image)
            if holder is not None:
                raw = await holder.get_attribute(attribute)
                try:
                    position = int(raw) if raw is not None else index
                except ValueError:
                    position = index
            artifacts.append(
                Artifact(
                    locator=src,
                    prompt=alt.removeprefix(loc.artifact_prompt_prefix),
                    position=position,
                    index=index,
                )
            )
        return order_artifacts(artifacts)
