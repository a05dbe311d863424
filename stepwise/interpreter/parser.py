"""
Step interpreter: natural-language step text to a typed action.

Resolution is two-tier. The strict grammar accepts fixed phrasings such as
``Enter "value" in "Email" field``; when none match, keyword heuristics try
to recover the intent from looser text. Both tiers are pure functions of the
input text, so parsing the same step twice always yields the same result.
"""

import re
from typing import Callable, List, Optional, Tuple

from stepwise.core.types import (
    Action,
    ClickAction,
    DialogAction,
    DialogDecision,
    DownloadAction,
    EnterAction,
    ExpectAction,
    HoverAction,
    NavigateAction,
    ParseSource,
    PressAction,
    SelectAction,
    SetCheckedAction,
    StepParseResult,
    UploadAction,
    WaitForRequestAction,
)
from stepwise.interpreter.durations import (
    DURATION_PATTERN,
    duration_to_seconds,
    to_delay_seconds,
    to_timeout_seconds,
)

EMPTY_STEP_ERROR = "Step cannot be empty."
UNSUPPORTED_STEP_ERROR = (
    "Unable to parse step. Use Enter/Click/Go to/Expect, or advanced forms like "
    "Select dropdown, Check/Uncheck checkbox, Hover, Press key, Upload file, "
    "Dialog handling, Wait for request, or Wait for download."
)

_I = re.IGNORECASE

# Strict grammar

STRICT_ENTER = re.compile(r'^Enter\s+"(.+?)"\s+in\s+"(.+?)"\s+field$', _I)
STRICT_PROMPT_DIALOG = re.compile(
    r'^Enter\s+"(.+?)"\s+in\s+(?:the\s+)?prompt\s+dialog\s+and\s+accept$', _I
)
STRICT_CLICK = re.compile(
    r'^Click\s+"(.+?)"(?:\s+button)?(?:\s+after\s+' + DURATION_PATTERN + r")?$", _I
)
STRICT_CLICK_ELEMENT = re.compile(
    r"^Click\s+element\s+with\s+(?:this\s+)?(id\s+)?['\"](.+?)['\"](\s+class)?$", _I
)
STRICT_GO_TO = re.compile(r"^Go\s+to\s+(.+)$", _I)
STRICT_REDIRECT = re.compile(r"^Redirect\s+to\s+(.+?)(?:\s+url)?$", _I)
STRICT_EXPECT = re.compile(r"^Expect\s+(.+)$", _I)
STRICT_SELECT = re.compile(
    r'^Select\s+"(.+?)"\s+from\s+"(.+?)"(?:\s+(?:dropdown|select|list))?$', _I
)
STRICT_CHECK = re.compile(r'^(Check|Uncheck)\s+"(.+?)"(?:\s+checkbox)?$', _I)
STRICT_HOVER = re.compile(r'^Hover\s+(?:over\s+)?"(.+?)"$', _I)
STRICT_PRESS = re.compile(
    r'^Press\s+"(.+?)"(?:\s+(?:in|on)\s+"(.+?)"(?:\s+field)?)?$', _I
)
STRICT_UPLOAD = re.compile(
    r'^Upload\s+files?\s+"(.+?)"\s+(?:to|into|in)\s+"(.+?)"(?:\s+(?:input|field))?$',
    _I,
)
STRICT_DIALOG = re.compile(r"^(Accept|Dismiss)\s+(?:the\s+)?browser\s+dialog$", _I)
STRICT_WAIT_FOR_REQUEST = re.compile(r'^Wait\s+for\s+request\s+"(.+?)"(.*)$', _I)
STRICT_DOWNLOAD = re.compile(
    r'^Wait\s+for\s+(?:the\s+)?download\s+after\s+clicking\s+"(.+?)"'
    r"(?:\s+within\s+" + DURATION_PATTERN + r")?$",
    _I,
)

# Clauses that may follow ``Wait for request "..."`` in any order
REQUEST_CLICK_CLAUSE = re.compile(r'^\s*,?\s*(?:and\s+)?after\s+clicking\s+"(.+?)"', _I)
REQUEST_STATUS_CLAUSE = re.compile(
    r'^\s*,?\s*(?:and\s+)?(?:expect|with)\s+status\s+"?(\d{3})"?', _I
)
REQUEST_WITHIN_CLAUSE = re.compile(
    r"^\s*,?\s*(?:and\s+)?within\s+" + DURATION_PATTERN + r"\b", _I
)

# Expect timeouts and normalization
EXPECT_TIMEOUT_PREFIX = re.compile(
    r"^(?:within|in)\s+" + DURATION_PATTERN + r"\s*,?\s+(.+)$", _I
)
EXPECT_TIMEOUT_SUFFIX = re.compile(r"^(.+?)\s+within\s+" + DURATION_PATTERN + r"$", _I)
BOX_HINT = re.compile(r"\s*(?:inside|in)\s+(?:a|an|the)\s+box\b", _I)
LEADING_ARTICLE = re.compile(r"^(?:a|an|the)\s+", _I)
TRAILING_PUNCTUATION = re.compile(r"[.!]+$")
QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("‘", "’"))

# Fallback heuristics

QUOTED = re.compile(r'"(.+?)"')
REQUEST_METHOD = re.compile(r"^(GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)\s+(.+)$", _I)

DIALOG_WORD = re.compile(r"\b(?:dialog|alert|popup|prompt)\b", _I)
DIALOG_VERB = re.compile(r"\b(?:accept|confirm|ok|dismiss|cancel|close|reject|handle)\b", _I)
DIALOG_DISMISS = re.compile(r"\b(?:dismiss|cancel|close|reject)\b", _I)
PROMPT_WORD = re.compile(r"\bprompt\b", _I)

FALLBACK_REQUEST = re.compile(r'\bwait\s+for\s+(?:the\s+)?request\s+"(.+?)"', _I)
TRIGGER_CLICK = re.compile(
    r'\b(?:click|clicking|tap|tapping|press|pressing)\s+(?:on\s+)?"(.+?)"', _I
)
STATUS_CLAUSE = re.compile(r'\bstatus\s+"?(\d{3})"?', _I)
WITHIN_CLAUSE = re.compile(r"\bwithin\s+" + DURATION_PATTERN + r"\b", _I)

DOWNLOAD_WORD = re.compile(r"\bdownload\b", _I)
UPLOAD_WORD = re.compile(r"\bupload\b", _I)
SELECT_WORD = re.compile(r"\b(?:select|choose|pick)\b", _I)
SELECT_CONTEXT = re.compile(r"\b(?:dropdown|option|from|list)\b", _I)
FALLBACK_SELECT_UNQUOTED = re.compile(
    r"\b(?:select|choose|pick)\s+(.+?)\s+(?:option\s+)?(?:from|in)\s+(?:the\s+)?(.+?)"
    r"(?:\s+(?:dropdown|list|select))?$",
    _I,
)

CHECK_VERB = re.compile(r"\b(check|uncheck|tick|untick)\b", _I)
CHECKBOX_WORD = re.compile(r"\bcheckbox\b", _I)
CHECK_LEADING_VERB = re.compile(r"^(?:check|uncheck|tick|untick)\s+(?:the\s+)?", _I)
CHECKBOX_SUFFIX = re.compile(r"\s+checkbox$", _I)

FALLBACK_HOVER = re.compile(r"^(?:hover|mouse\s+over)\s+(?:over\s+|on\s+)?(.+)$", _I)
FALLBACK_PRESS_KEY = re.compile(
    r'^press\s+(?:the\s+)?"?([A-Za-z0-9+]+)"?\s+key'
    r'(?:\s+(?:in|on)\s+(?:the\s+)?"?(.+?)"?(?:\s+field)?)?$',
    _I,
)

CLICK_WORD = re.compile(r"\b(?:click|tap|press|select)\b", _I)
CLICK_VERB_TAIL = re.compile(r"\b(?:click|tap|press|select)\s+(?:on\s+)?(.+)$", _I)
CLICK_DELAY_PREFIX = re.compile(r"^after\s+" + DURATION_PATTERN + r"\s*,?\s+(.+)$", _I)
CLICK_DELAY_SUFFIX = re.compile(r"^(.+?)\s+after\s+" + DURATION_PATTERN + r"$", _I)
ELEMENT_WITH = re.compile(
    r"\b(?:click|tap|press|select)\s+(?:on\s+)?(?:the\s+)?element\s+with\s+"
    r"(?:this\s+)?(id\s+)?['\"](.+?)['\"](\s+class)?",
    _I,
)

ENTER_WORD = re.compile(r"\b(?:enter|type|fill|input)\b", _I)
FALLBACK_ENTER = re.compile(r"\b(?:enter|type|fill|input)\s+(.+?)\s+(?:in|into)\s+(.+)", _I)
FIELD_SUFFIX = re.compile(r"\s+field$", _I)

FALLBACK_NAVIGATE = re.compile(
    r"^(?:please\s+)?(?:go\s+to|redirect\s+to|navigate\s+to|open|visit)\s+(.+)$", _I
)
URL_SUFFIX = re.compile(r"\s+url$", _I)

EXPECT_WORD = re.compile(r"\b(?:expect|assert|verify|should|see)\b", _I)
EXPECT_LEADING_VERB = re.compile(r"^(?:(?:expect|assert|verify|should|see)\s+)+(?:that\s+)?", _I)
ASSERTION_LEAD = re.compile(r"^(?:expect|assert|verify|should|see)\b", _I)


def parse_step(raw_text: str) -> StepParseResult:
    """
    Interpret one step.

    Args:
        raw_text: Step text as authored

    Returns:
        A successful result carrying the action and which tier produced it,
        or a failed result with a user-facing error
    """
    text = (raw_text or "").strip()
    if not text:
        return StepParseResult.failure(EMPTY_STEP_ERROR)

    action = parse_strict(text)
    if action is not None:
        return StepParseResult.success(action, ParseSource.STRICT)

    action = parse_fallback(text)
    if action is not None:
        return StepParseResult.success(action, ParseSource.FALLBACK)

    return StepParseResult.failure(UNSUPPORTED_STEP_ERROR)


def parse_strict(text: str) -> Optional[Action]:
    for rule in _STRICT_RULES:
        action = rule(text)
        if action is not None:
            return action
    return None


def parse_fallback(text: str) -> Optional[Action]:
    # Sentences led by an assertion verb are expectations
    if ASSERTION_LEAD.match(text):
        return _fallback_expect(text)

    for rule in _FALLBACK_RULES:
        action = rule(text)
        if action is not None:
            return action
    return None


# Shared helpers

def trim_punctuation(text: str) -> str:
    return TRAILING_PUNCTUATION.sub("", text.strip()).strip()


def strip_wrapping_quotes(text: str) -> str:
    value = text.strip()
    for opening, closing in QUOTE_PAIRS:
        if len(value) >= 2 and value.startswith(opening) and value.endswith(closing):
            return value[1:-1].strip()
    return value


def normalize_assertion(text: str) -> str:
    """Drop box hints, wrapping quotes, trailing punctuation and a leading article."""
    value = trim_punctuation(text)
    value = BOX_HINT.sub("", value).strip()
    value = strip_wrapping_quotes(trim_punctuation(value))
    value = LEADING_ARTICLE.sub("", value).strip()
    return value


def split_timeout(text: str) -> Tuple[str, Optional[int]]:
    """Separate a ``within N unit`` prefix or suffix from an assertion."""
    prefix = EXPECT_TIMEOUT_PREFIX.match(text)
    if prefix:
        seconds = duration_to_seconds(prefix.group(1), prefix.group(2))
        return prefix.group(3), to_timeout_seconds(seconds)

    suffix = EXPECT_TIMEOUT_SUFFIX.match(trim_punctuation(text))
    if suffix:
        seconds = duration_to_seconds(suffix.group(2), suffix.group(3))
        return suffix.group(1), to_timeout_seconds(seconds)

    return text, None


def build_expect(body: str) -> Optional[ExpectAction]:
    assertion_text, timeout = split_timeout(body.strip())
    assertion = normalize_assertion(assertion_text) or trim_punctuation(assertion_text)
    if not assertion:
        return None
    return ExpectAction(assertion=assertion, timeout_seconds=timeout)


def element_target(identifier: str, is_id: bool, is_class: bool) -> str:
    if is_id:
        return f"#{identifier}"
    if is_class:
        return f".{identifier}"
    return identifier


def split_request_pattern(text: str) -> Tuple[Optional[str], str]:
    """Split ``"POST **/api/login"`` into method and URL pattern."""
    value = text.strip()
    method_match = REQUEST_METHOD.match(value)
    if method_match:
        return method_match.group(1).upper(), method_match.group(2).strip()
    return None, value


def parse_status(code: str) -> Optional[int]:
    status = int(code)
    if 100 <= status <= 599:
        return status
    return None


def split_file_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# Strict rules

def _strict_enter(text: str) -> Optional[Action]:
    match = STRICT_ENTER.match(text)
    if match:
        return EnterAction(value=match.group(1), target=match.group(2))
    return None


def _strict_prompt_dialog(text: str) -> Optional[Action]:
    match = STRICT_PROMPT_DIALOG.match(text)
    if match:
        return DialogAction(action=DialogDecision.ACCEPT, prompt_text=match.group(1))
    return None


def _strict_click_element(text: str) -> Optional[Action]:
    match = STRICT_CLICK_ELEMENT.match(text)
    if match:
        return ClickAction(
            target=element_target(match.group(2), bool(match.group(1)), bool(match.group(3)))
        )
    return None


def _strict_click(text: str) -> Optional[Action]:
    match = STRICT_CLICK.match(text)
    if not match:
        return None
    delay = None
    if match.group(2):
        delay = to_delay_seconds(duration_to_seconds(match.group(2), match.group(3)))
    return ClickAction(target=match.group(1), delay_seconds=delay)


def _strict_navigate(text: str) -> Optional[Action]:
    match = STRICT_GO_TO.match(text) or STRICT_REDIRECT.match(text)
    if not match:
        return None
    target = strip_wrapping_quotes(match.group(1))
    if not target:
        return None
    return NavigateAction(target=target)


def _strict_expect(text: str) -> Optional[Action]:
    match = STRICT_EXPECT.match(text)
    if match:
        return build_expect(match.group(1))
    return None


def _strict_select(text: str) -> Optional[Action]:
    match = STRICT_SELECT.match(text)
    if match:
        return SelectAction(value=match.group(1), target=match.group(2))
    return None


def _strict_check(text: str) -> Optional[Action]:
    match = STRICT_CHECK.match(text)
    if match:
        return SetCheckedAction(
            target=match.group(2), checked=match.group(1).lower() == "check"
        )
    return None


def _strict_hover(text: str) -> Optional[Action]:
    match = STRICT_HOVER.match(text)
    if match:
        return HoverAction(target=match.group(1))
    return None


def _strict_press(text: str) -> Optional[Action]:
    match = STRICT_PRESS.match(text)
    if match:
        return PressAction(key=match.group(1), target=match.group(2))
    return None


def _strict_upload(text: str) -> Optional[Action]:
    match = STRICT_UPLOAD.match(text)
    if not match:
        return None
    files = split_file_list(match.group(1))
    if not files:
        return None
    return UploadAction(file_paths=files, target=match.group(2))


def _strict_dialog(text: str) -> Optional[Action]:
    match = STRICT_DIALOG.match(text)
    if match:
        return DialogAction(action=DialogDecision(match.group(1).lower()))
    return None


def _strict_wait_for_request(text: str) -> Optional[Action]:
    match = STRICT_WAIT_FOR_REQUEST.match(text)
    if not match:
        return None

    method, pattern = split_request_pattern(match.group(1))
    if not pattern:
        return None

    trigger = None
    status = None
    timeout = None
    tail = match.group(2)
    while tail.strip():
        click_clause = REQUEST_CLICK_CLAUSE.match(tail)
        if click_clause:
            trigger = click_clause.group(1)
            tail = tail[click_clause.end():]
            continue
        status_clause = REQUEST_STATUS_CLAUSE.match(tail)
        if status_clause:
            status = parse_status(status_clause.group(1))
            tail = tail[status_clause.end():]
            continue
        within_clause = REQUEST_WITHIN_CLAUSE.match(tail)
        if within_clause:
            timeout = to_timeout_seconds(
                duration_to_seconds(within_clause.group(1), within_clause.group(2))
            )
            tail = tail[within_clause.end():]
            continue
        # Unknown trailing text is left to the heuristics
        return None

    return WaitForRequestAction(
        url_pattern=pattern,
        method=method,
        status=status,
        trigger_click_target=trigger,
        timeout_seconds=timeout,
    )


def _strict_download(text: str) -> Optional[Action]:
    match = STRICT_DOWNLOAD.match(text)
    if not match:
        return None
    timeout = None
    if match.group(2):
        timeout = to_timeout_seconds(duration_to_seconds(match.group(2), match.group(3)))
    return DownloadAction(trigger_click_target=match.group(1), timeout_seconds=timeout)


_STRICT_RULES: List[Callable[[str], Optional[Action]]] = [
    _strict_enter,
    _strict_prompt_dialog,
    _strict_click_element,
    _strict_click,
    _strict_navigate,
    _strict_expect,
    _strict_select,
    _strict_check,
    _strict_hover,
    _strict_press,
    _strict_upload,
    _strict_dialog,
    _strict_wait_for_request,
    _strict_download,
]


# Fallback rules

def _fallback_dialog(text: str) -> Optional[Action]:
    if not DIALOG_WORD.search(text) or not DIALOG_VERB.search(text):
        return None

    if DIALOG_DISMISS.search(text):
        return DialogAction(action=DialogDecision.DISMISS)

    prompt_text = None
    if PROMPT_WORD.search(text):
        quoted = QUOTED.search(text)
        if quoted:
            prompt_text = quoted.group(1)
    return DialogAction(action=DialogDecision.ACCEPT, prompt_text=prompt_text)


def _fallback_wait_for_request(text: str) -> Optional[Action]:
    match = FALLBACK_REQUEST.search(text)
    if not match:
        return None

    method, pattern = split_request_pattern(match.group(1))
    if not pattern:
        return None

    trigger = TRIGGER_CLICK.search(text)
    status = STATUS_CLAUSE.search(text)
    within = WITHIN_CLAUSE.search(text)

    return WaitForRequestAction(
        url_pattern=pattern,
        method=method,
        status=parse_status(status.group(1)) if status else None,
        trigger_click_target=trigger.group(1) if trigger else None,
        timeout_seconds=(
            to_timeout_seconds(duration_to_seconds(within.group(1), within.group(2)))
            if within else None
        ),
    )


def _fallback_download(text: str) -> Optional[Action]:
    if not DOWNLOAD_WORD.search(text):
        return None
    trigger = TRIGGER_CLICK.search(text)
    if not trigger:
        return None
    within = WITHIN_CLAUSE.search(text)
    timeout = None
    if within:
        timeout = to_timeout_seconds(duration_to_seconds(within.group(1), within.group(2)))
    return DownloadAction(trigger_click_target=trigger.group(1), timeout_seconds=timeout)


def _fallback_upload(text: str) -> Optional[Action]:
    if not UPLOAD_WORD.search(text):
        return None
    quoted = QUOTED.findall(text)
    if len(quoted) < 2:
        return None
    files = split_file_list(quoted[0])
    if not files:
        return None
    return UploadAction(file_paths=files, target=quoted[1])


def _fallback_select(text: str) -> Optional[Action]:
    if not SELECT_WORD.search(text) or not SELECT_CONTEXT.search(text):
        return None

    quoted = QUOTED.findall(text)
    if len(quoted) >= 2:
        return SelectAction(value=quoted[0], target=quoted[1])

    match = FALLBACK_SELECT_UNQUOTED.search(trim_punctuation(text))
    if match:
        value = strip_wrapping_quotes(match.group(1))
        target = strip_wrapping_quotes(match.group(2))
        if value and target:
            return SelectAction(value=value, target=target)
    return None


def _fallback_checkbox(text: str) -> Optional[Action]:
    verb_match = CHECK_VERB.search(text)
    if not verb_match:
        return None
    verb = verb_match.group(1).lower()
    if not CHECKBOX_WORD.search(text) and verb not in ("tick", "untick"):
        return None

    quoted = QUOTED.search(text)
    if quoted:
        target = quoted.group(1)
    else:
        target = trim_punctuation(text)
        target = CHECK_LEADING_VERB.sub("", target)
        target = CHECKBOX_SUFFIX.sub("", target).strip()
    if not target:
        return None

    return SetCheckedAction(target=target, checked=verb in ("check", "tick"))


def _fallback_hover(text: str) -> Optional[Action]:
    match = FALLBACK_HOVER.match(text)
    if not match:
        return None
    target = strip_wrapping_quotes(trim_punctuation(match.group(1)))
    if not target:
        return None
    return HoverAction(target=target)


def _fallback_press_key(text: str) -> Optional[Action]:
    match = FALLBACK_PRESS_KEY.match(trim_punctuation(text))
    if not match:
        return None
    target = match.group(2).strip() if match.group(2) else None
    return PressAction(key=match.group(1), target=target or None)


def _fallback_click(text: str) -> Optional[Action]:
    if not CLICK_WORD.search(text):
        return None

    body = trim_punctuation(text)
    delay = None
    leading = CLICK_DELAY_PREFIX.match(body)
    trailing = CLICK_DELAY_SUFFIX.match(body)
    if leading:
        delay = to_delay_seconds(duration_to_seconds(leading.group(1), leading.group(2)))
        body = leading.group(3)
    elif trailing:
        delay = to_delay_seconds(duration_to_seconds(trailing.group(2), trailing.group(3)))
        body = trailing.group(1)

    element = ELEMENT_WITH.search(body)
    if element:
        target = element_target(element.group(2), bool(element.group(1)), bool(element.group(3)))
        return ClickAction(target=target, delay_seconds=delay)

    quoted = QUOTED.search(body)
    if quoted:
        target = quoted.group(1)
    else:
        tail = CLICK_VERB_TAIL.search(body)
        target = trim_punctuation(tail.group(1)) if tail else ""
    if not target:
        return None

    return ClickAction(target=target, delay_seconds=delay)


def _fallback_enter(text: str) -> Optional[Action]:
    if not ENTER_WORD.search(text):
        return None

    quoted = QUOTED.findall(text)
    if len(quoted) >= 2:
        return EnterAction(value=quoted[0], target=quoted[1])

    match = FALLBACK_ENTER.search(text)
    if not match:
        return None
    value = strip_wrapping_quotes(trim_punctuation(match.group(1)))
    target = FIELD_SUFFIX.sub("", trim_punctuation(match.group(2)))
    target = strip_wrapping_quotes(LEADING_ARTICLE.sub("", target.strip()))
    if not value or not target:
        return None
    return EnterAction(value=value, target=target)


def _fallback_navigate(text: str) -> Optional[Action]:
    match = FALLBACK_NAVIGATE.match(text)
    if not match:
        return None
    target = URL_SUFFIX.sub("", trim_punctuation(match.group(1)))
    target = strip_wrapping_quotes(target)
    if not target:
        return None
    return NavigateAction(target=target)


def _fallback_expect(text: str) -> Optional[Action]:
    if not EXPECT_WORD.search(text):
        return None
    body = EXPECT_LEADING_VERB.sub("", text.strip())
    return build_expect(body or text)


_FALLBACK_RULES: List[Callable[[str], Optional[Action]]] = [
    _fallback_dialog,
    _fallback_wait_for_request,
    _fallback_download,
    _fallback_upload,
    _fallback_select,
    _fallback_checkbox,
    _fallback_hover,
    _fallback_press_key,
    _fallback_click,
    _fallback_enter,
    _fallback_navigate,
    _fallback_expect,
]
