"""Page scan for diagnosing broken locators."""

from __future__ import annotations

from typing import Any

from flow_story_generator.automation.messaging.messages import ScanResult

SCAN_SCRIPT = """
() => {
  const visible = (el) => el.offsetParent !== null;
  const clip = (value) => (value ? String(value).substring(0, 50) : null);
  const result = { buttons: [], inputs: [], textareas: [], images: [] };

  document.querySelectorAll('button').forEach((btn, i) => {
    const ariaLabel = btn.getAttribute('aria-label');
    const text = clip(btn.textContent && btn.textContent.trim());
    const icon = btn.querySelector('i.google-symbols, i[class*="google-symbols"], i');
    const iconText = icon && icon.textContent ? icon.textContent.trim() : null;
    if (ariaLabel || text || iconText) {
      result.buttons.push({
        index: i,
        aria_label: ariaLabel,
        text: text,
        icon_text: iconText,
        class_name: clip(btn.className) || '',
        has_svg: btn.querySelector('svg') !== null,
        visible: visible(btn),
      });
    }
  });

  document.querySelectorAll('input[type="file"]').forEach((input, i) => {
    result.inputs.push({
      index: i,
      accept: input.accept || '',
      class_name: input.className || '',
      visible: visible(input),
    });
  });

  document.querySelectorAll('textarea').forEach((ta, i) => {
    result.textareas.push({
      index: i,
      id: ta.id || '',
      placeholder: clip(ta.placeholder),
      visible: visible(ta),
    });
  });

  document.querySelectorAll('img[alt*="Flow"]').forEach((img, i) => {
    result.images.push({ index: i, alt: clip(img.alt), has_source: !!img.src });
  });

  return result;
}
"""

_RELEVANT_WORDS = ("add", "create", "upload", "close")


async def scan_page(page: Any) -> ScanResult:
    raw = await page.evaluate(SCAN_SCRIPT)
    return ScanResult.model_validate(raw)


def describe_scan(result: ScanResult) -> list[str]:
    """Summary line followed by one line per button that looks like a workflow control."""

    lines = [
        f"Found: {len(result.buttons)} buttons, {len(result.inputs)} file inputs, "
        f"{len(result.textareas)} textareas"
    ]
    for button in result.buttons:
        label = (button.aria_label or "").lower()
        icon = (button.icon_text or "").lower()
        if not (any(w in label for w in _RELEVANT_WORDS) or icon in {"add", "upload", "close"}):
            continue
        identifier = button.aria_label or (
            f"icon:{button.icon_text}" if button.icon_text else (button.text or "")[:20]
        )
        lines.append(
            f'Button: "{identifier}" class="{button.class_name}" (visible: {button.visible})'
        )
    for file_input in result.inputs:
        lines.append(f'FileInput: accept="{file_input.accept}" class="{file_input.class_name}"')
    return lines
