"""Locator strategies for the Flow page.

Each affordance maps to an ordered list of selectors tried in sequence, first
match wins. These are the most likely thing to break when the page changes, so
they live in one model that can be overridden from a JSON file
(`FLOW_STORY_LOCATORS_FILE`).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class Locators(BaseModel):
    prompt_input: list[str] = Field(
        default_factory=lambda: [
            "textarea#PINHOLE_TEXT_AREA_ELEMENT_ID",
            "textarea[placeholder]",
        ]
    )
    create_button: list[str] = Field(default_factory=lambda: ['button[aria-label="Create"]'])
    carry_forward_button: str = 'button[aria-label*="Add To Prompt"]'

    # Buttons use Google Symbols icons rather than aria-labels.
    attach_button: list[str] = Field(
        default_factory=lambda: [
            "button:has(i.google-symbols)",
            "button.sc-c177465c-1",
            "button.sc-d02e9a37-1",
            'button[aria-label="add"]',
            'button[aria-label="Add"]',
            'button[aria-label*="add ingredient"]',
            'button[aria-label*="upload"]',
            'button[aria-label*="Upload"]',
        ]
    )
    icon_button_scan: str = "button"
    icon_element: str = 'i.google-symbols, i[class*="google-symbols"], i'
    attach_icon_names: list[str] = Field(default_factory=lambda: ["add", "add_circle", "add_box"])

    file_input: list[str] = Field(
        default_factory=lambda: [
            'input[type="file"].sc-8770743f-0',
            'input[type="file"][accept*="image"]',
            'input[accept=".png,.jpg,.jpeg,.webp,.heic,.avif"]',
            'input[type="file"]',
        ]
    )
    any_file_input: str = 'input[type="file"]'

    overlay_close: list[str] = Field(
        default_factory=lambda: [
            'button[aria-label="close"]',
            'button[aria-label="Close"]',
            'button[aria-label*="close"]',
            '[role="dialog"] button[aria-label*="close"]',
        ]
    )
    overlay_root: str = '[role="dialog"]'

    generated_artifact: str = 'img[alt*="Flow Image"]'
    artifact_position_attribute: str = "data-index"
    artifact_prompt_prefix: str = "Flow Image: "
    carry_forward_max_depth: int = Field(default=10, ge=1)
