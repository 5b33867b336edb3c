"""
AI Subtask Expansion

Turns a task title into a parent task plus AI-suggested subtasks. The
Gemini generateContent REST endpoint is called with urllib; its reply is
split into one subtask per non-empty line.

A failed generation is reported as a static user-facing message and leaves
the already-inserted parent in place with no subtasks. ExpansionGuard keeps
at most one expansion in flight: a second request started before the first
resolves is rejected, and a cancelled request's late response is discarded.
"""

import http.client
import json
import logging
import re
import threading
import urllib.error
import urllib.request
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from .config import DEFAULT_GEMINI_MODEL, DEFAULT_GEMINI_TIMEOUT_SECONDS, Settings
from .models import Task
from .store import TaskStore

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SUBTASK_ERROR_MESSAGE = (
    "Could not generate subtasks. Check the Gemini API key and model name, then try again."
)

PROMPT_TEMPLATE = (
    "Act as a productivity assistant.\n"
    'Task: "{title}".\n'
    "Break this down into 3 simple, actionable sub-tasks.\n"
    "Return ONLY the sub-tasks as a list. No intro."
)

_BULLET_RE = re.compile(r"^[*\-]\s*")


class SubtaskGenerationError(Exception):
    """The text-generation service could not produce suggestions."""


class ExpansionInFlightError(Exception):
    """Another expansion is still waiting on the text-generation service."""


def parse_subtask_lines(text: str) -> List[str]:
    """Split a model reply into subtask strings, dropping bullets and blank lines."""
    lines = []
    for line in text.splitlines():
        cleaned = _BULLET_RE.sub("", line.strip()).strip()
        if cleaned:
            lines.append(cleaned)
    return lines


class SubtaskGenerator(ABC):
    """Source of suggested subtasks for a task title."""

    @abstractmethod
    def generate_subtasks(self, title: str) -> List[str]:
        """
        Return suggested subtask strings in display order.

        Raises:
            SubtaskGenerationError: On any service, network or decoding failure
        """


class GeminiSubtaskGenerator(SubtaskGenerator):
    """Subtask suggestions from the Gemini generateContent REST API."""

    def __init__(self, api_key: Optional[str], model: str = DEFAULT_GEMINI_MODEL,
                 timeout: float = DEFAULT_GEMINI_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiSubtaskGenerator":
        return cls(settings.gemini_api_key, settings.gemini_model, settings.gemini_timeout_seconds)

    def _build_request(self, title: str) -> urllib.request.Request:
        body = {"contents": [{"parts": [{"text": PROMPT_TEMPLATE.format(title=title)}]}]}
        return urllib.request.Request(
            GEMINI_ENDPOINT.format(model=self.model),
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
            method="POST",
        )

    @staticmethod
    def _extract_text(payload: dict) -> str:
        parts = payload["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)

    def generate_subtasks(self, title: str) -> List[str]:
        if not self.api_key:
            raise SubtaskGenerationError("GEMINI_API_KEY is not configured")

        try:
            with urllib.request.urlopen(self._build_request(title), timeout=self.timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise SubtaskGenerationError(f"Gemini returned HTTP {e.code} for model {self.model}")
        except urllib.error.URLError as e:
            raise SubtaskGenerationError(f"Gemini network error: {e.reason}")
        except (OSError, http.client.HTTPException, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SubtaskGenerationError(f"Unreadable Gemini response: {e!r}")
        except ValueError as e:
            raise SubtaskGenerationError(f"Invalid Gemini request for model {self.model!r}: {e}")

        try:
            text = self._extract_text(payload)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise SubtaskGenerationError(f"Unexpected Gemini response shape: {e!r}")
        return parse_subtask_lines(text)


class ExpansionGuard:
    """
    Single-flight marker for expansions.

    ``begin`` hands out a request token and refuses a second one while the
    first is outstanding. ``cancel`` revokes the outstanding token so the
    owner of that request sees ``is_current`` turn False and drops its result.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self._active is not None

    def begin(self) -> str:
        with self._lock:
            if self._active is not None:
                raise ExpansionInFlightError("An AI expansion is already in progress")
            self._active = uuid.uuid4().hex
            return self._active

    def is_current(self, token: str) -> bool:
        with self._lock:
            return self._active == token

    def finish(self, token: str) -> bool:
        """Release ``token``; False when it was already cancelled or superseded."""
        with self._lock:
            if self._active != token:
                return False
            self._active = None
            return True

    def cancel(self) -> Optional[str]:
        """Revoke the outstanding token, returning it (None when idle)."""
        with self._lock:
            token, self._active = self._active, None
        if token:
            logger.info("Cancelled in-flight AI expansion")
        return token


@dataclass
class ExpansionResult:
    """Outcome of one expansion; ``error`` carries the user-facing message."""

    parent: Optional[Task] = None
    subtasks: List[Task] = field(default_factory=list)
    error: Optional[str] = None
    discarded: bool = False


def expand_task(store: TaskStore, text: str, generator: SubtaskGenerator,
                guard: Optional[ExpansionGuard] = None) -> ExpansionResult:
    """
    Add a parent task and fill it with generated subtasks.

    The parent is inserted before the service is called and stays even when
    generation fails. Blank text does nothing.

    Args:
        store: Task store receiving the parent and subtasks
        text: Parent title
        generator: Subtask source
        guard: Single-flight guard shared by concurrent callers

    Returns:
        ExpansionResult describing what was inserted

    Raises:
        ExpansionInFlightError: If ``guard`` already has an expansion outstanding
    """
    if not text or not text.strip():
        return ExpansionResult()

    guard = guard or ExpansionGuard()
    token = guard.begin()
    try:
        parent = store.add_task(text)
        try:
            suggestions = generator.generate_subtasks(text)
        except SubtaskGenerationError as e:
            logger.error(f"Subtask generation failed for task {parent.id}: {e}")
            return ExpansionResult(parent=parent, error=SUBTASK_ERROR_MESSAGE)
        except Exception:
            logger.exception(f"Subtask generator crashed for task {parent.id}")
            return ExpansionResult(parent=parent, error=SUBTASK_ERROR_MESSAGE)

        if not guard.is_current(token):
            logger.info(f"Discarding {len(suggestions)} late subtasks for task {parent.id}")
            return ExpansionResult(parent=parent, discarded=True)

        subtasks = store.insert_subtasks(parent.id, suggestions)
        return ExpansionResult(parent=store.get_task(parent.id) or parent, subtasks=subtasks)
    finally:
        guard.finish(token)
