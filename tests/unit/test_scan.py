from __future__ import annotations

import pytest
from dom_fakes import FakePage

from flow_story_generator.automation.browser.scan import describe_scan, scan_page


@pytest.mark.asyncio
async def test_scan_summarises_relevant_controls() -> None:
    page = FakePage()
    page.scan_result = {
        "buttons": [
            {"index": 0, "aria_label": "Create", "text": None, "class_name": "x", "visible": True},
            {"index": 1, "aria_label": None, "icon_text": "add", "class_name": "sc-1", "visible": True},
            {"index": 2, "aria_label": "Settings", "text": "Settings", "visible": False},
        ],
        "inputs": [{"index": 0, "accept": "image/*", "class_name": "sc-8770743f-0"}],
        "textareas": [{"index": 0, "id": "PINHOLE_TEXT_AREA_ELEMENT_ID", "visible": True}],
        "images": [{"index": 0, "alt": "Flow Image: a", "has_source": True}],
    }

    result = await scan_page(page)
    lines = describe_scan(result)

    assert lines[0] == "Found: 3 buttons, 1 file inputs, 1 textareas"
    assert 'Button: "Create" class="x" (visible: True)' in lines
    assert 'Button: "icon:add" class="sc-1" (visible: True)' in lines
    assert not any("Settings" in line for line in lines)
    assert lines[-1] == 'FileInput: accept="image/*" class="sc-8770743f-0"'
