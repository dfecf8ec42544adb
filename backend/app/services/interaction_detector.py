"""
HTML interaction detector.

Decides, from page structure alone, whether a fetched HTML page needs a
human step (PIN entry, login, button click) before a document is available,
and guesses CSS selectors for the relevant input and submit controls.

The result is advisory: Lane 2 uses it to decide whether to escalate and
Lane 3 uses the selector guesses when a policy does not configure its own.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from app.models.extraction import InteractionKind, InteractionSelectors, InteractionSignal

# Wording that suggests a one-time code is expected on the page
_PIN_INDICATORS = [
    re.compile(r"(?<![a-z])pin(?![a-z])"),
    re.compile(r"pincode|passcode"),
    re.compile(r"6[\s-]?digit"),
    re.compile(r"access[\s-]?code"),
    re.compile(r"enter[\s-]?code"),
    re.compile(r"security[\s-]?code"),
]

_LOGIN_WORDS = ("login", "log in", "sign in", "username", "password")
_ACTION_WORDS = ("download", "view", "print", "open", "access")
_SUBMIT_WORDS = ("submit", "continue", "view")

# Input types a user can type a code into; a missing type defaults to text
_TEXT_INPUT_TYPES = {"", "text", "password", "tel", "number"}

_KIND_CONFIDENCE = {
    InteractionKind.PIN: 0.9,
    InteractionKind.LOGIN: 0.8,
    InteractionKind.BUTTON: 0.7,
    InteractionKind.FORM: 0.6,
}


def _input_type(tag: Tag) -> str:
    return (tag.get("type") or "").strip().lower()


def _attr_text(tag: Tag, *names: str) -> str:
    parts = []
    for name in names:
        value = tag.get(name)
        if isinstance(value, list):
            value = " ".join(value)
        if value:
            parts.append(str(value))
    return " ".join(parts).lower()


def _selectors_for(tag: Tag, use_class: bool = False) -> list[str]:
    selectors = []
    if tag.get("id"):
        selectors.append(f"#{tag['id']}")
    if tag.get("name"):
        selectors.append(f'[name="{tag["name"]}"]')
    if use_class and tag.get("class"):
        selectors.append(f".{tag['class'][0]}")
    return selectors


def _is_submit_control(tag: Tag) -> bool:
    return _input_type(tag) == "submit" and tag.name in ("button", "input")


def _guess_pin_inputs(text_inputs: list[Tag]) -> list[str]:
    selectors: list[str] = []
    for tag in text_inputs:
        hints = _attr_text(tag, "id", "name", "placeholder", "aria-label", "autocomplete")
        if _input_type(tag) == "password" or any(w in hints for w in ("pin", "code", "otp")):
            for selector in _selectors_for(tag):
                if selector not in selectors:
                    selectors.append(selector)
    return selectors


def _guess_submit_controls(soup: BeautifulSoup) -> list[str]:
    selectors: list[str] = []
    for tag in soup.find_all(["button", "input"]):
        if tag.name == "input" and _input_type(tag) not in ("submit", "button"):
            continue
        label = (tag.get_text(" ", strip=True) + " " + _attr_text(tag, "value")).lower()
        if _is_submit_control(tag) or any(w in label for w in _SUBMIT_WORDS):
            for selector in _selectors_for(tag, use_class=True):
                if selector not in selectors:
                    selectors.append(selector)
    return selectors


def detect_html_interaction(html: Optional[str]) -> InteractionSignal:
    """
    Inspect an HTML document for interaction requirements.

    Interaction is required when the page has a code-entry field, a login
    form, or a submit control next to a download/view style action.

    Returns:
        InteractionSignal. An empty document never requires interaction
        (confidence 1.0).
    """
    if not html or not html.strip():
        return InteractionSignal(requires_interaction=False, confidence=1.0)

    soup = BeautifulSoup(html, "html.parser")
    lower_html = html.lower()

    text_inputs = [
        tag for tag in soup.find_all("input") if _input_type(tag) in _TEXT_INPUT_TYPES
    ]
    has_pin_wording = any(pattern.search(lower_html) for pattern in _PIN_INDICATORS)
    has_pin_input = bool(text_inputs) and has_pin_wording

    has_form = soup.find("form") is not None
    has_login_form = has_form and any(word in lower_html for word in _LOGIN_WORDS)

    has_submit_button = any(_is_submit_control(tag) for tag in soup.find_all(["button", "input"]))
    has_action_buttons = any(
        any(word in tag.get_text(" ", strip=True).lower() for word in _ACTION_WORDS)
        for tag in soup.find_all(["button", "a"])
    )

    if has_pin_input:
        kind = InteractionKind.PIN
    elif has_login_form:
        kind = InteractionKind.LOGIN
    elif has_submit_button or has_action_buttons:
        kind = InteractionKind.BUTTON
    elif has_form:
        kind = InteractionKind.FORM
    else:
        kind = None

    requires_interaction = has_pin_input or has_login_form or (has_submit_button and has_action_buttons)

    selectors = InteractionSelectors(
        pin_input=_guess_pin_inputs(text_inputs) if has_pin_input else [],
        submit_button=_guess_submit_controls(soup) if (has_submit_button or has_pin_input) else [],
    )

    return InteractionSignal(
        requires_interaction=requires_interaction,
        interaction_kind=kind,
        confidence=_KIND_CONFIDENCE.get(kind, 0.5),
        selectors=selectors,
    )
