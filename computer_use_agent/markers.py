"""
Best-effort extraction of labelled reasoning sections ("Intent Frame:",
"Visual State:", ...) from assistant text.

Used only to enrich step metadata. Nothing in the loop depends on the model
writing these labels.
"""
import re
from typing import Dict, Optional

MARKERS = {
    "intent_frame": "Intent Frame",
    "visual_state": "Visual State",
    "next_action": "Next Action",
    "expected_outcome": "Expected Outcome",
}

_LABELS = "|".join(re.escape(label) for label in MARKERS.values())
_PATTERN = re.compile(
    rf"^\s*(?:[*#>-]+\s*)?(?P<label>{_LABELS})\s*\**\s*:\s*\**\s*(?P<body>.*?)(?=^\s*(?:[*#>-]+\s*)?(?:{_LABELS})\s*\**\s*:|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_KEY_BY_LABEL = {label.lower(): key for key, label in MARKERS.items()}


def extract_markers(text: Optional[str]) -> Dict[str, str]:
    if not text:
        return {}
    found = {}
    for match in _PATTERN.finditer(text):
        body = match.group("body").strip()
        if body:
            found[_KEY_BY_LABEL[match.group("label").lower()]] = body
    return found
