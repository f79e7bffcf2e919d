"""
Collaborator ports — the narrow interfaces the production core depends on.

Trend discovery, script writing, voice / image synthesis, publishing and the
run-log store are implemented outside the core (HTTP clients, model SDKs,
databases).  The core only sees these abstract classes and talks to them
through invoke(), which turns every call into a typed CallResult with a
wall-clock timeout instead of letting arbitrary exceptions leak into the
state machine.

Wiring for the CLI: ``load_factory("mypkg.wiring:build")`` imports a callable
that receives the AutomationConfig and returns a Collaborators bundle.
"""
from __future__ import annotations

import importlib
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from autoshorts.errors import ConfigError
from autoshorts.schemas.config import AutomationConfig, FrameSize
from autoshorts.schemas.run import RunLogRecord
from autoshorts.schemas.script import Script

logger = logging.getLogger(__name__)


class TrendSource(ABC):
    """Trend discovery: what is worth making a video about right now."""

    @abstractmethod
    def hunt(self) -> list[dict[str, Any]]:
        """Return trending items (free-form dicts); empty list when nothing found."""


class TextGenerator(ABC):
    """Structured script writing from trending context."""

    @abstractmethod
    def generate_script(self, trending_context: list[dict[str, Any]]) -> Union[Script, dict[str, Any]]:
        """Return a Script, or a dict validated into one by the pipeline."""


class VoiceSynthesizer(ABC):

    @abstractmethod
    def synthesize_voice(self, text: str) -> bytes:
        """Narration audio for the full *text* (any container ffmpeg can read)."""


class ImageSynthesizer(ABC):

    @abstractmethod
    def synthesize_image(self, prompt: str, target_size: FrameSize) -> bytes:
        """Encoded image bytes; the size is a hint, results are normalized locally."""


class Publisher(ABC):

    @abstractmethod
    def publish(self, media_file: Path, metadata: dict[str, Any]) -> str:
        """Upload *media_file*; return the published identifier."""


class RunLogStore(ABC):
    """Append-only record of finished runs."""

    @abstractmethod
    def append(self, record: RunLogRecord) -> None:
        ...

    @abstractmethod
    def recent(self, limit: int = 20) -> list[RunLogRecord]:
        """Newest first."""


@dataclass
class Collaborators:
    trend_source: TrendSource
    text_generator: TextGenerator
    voice: VoiceSynthesizer
    images: ImageSynthesizer
    publisher: Optional[Publisher] = None
    run_log: Optional[RunLogStore] = None


# ---------------------------------------------------------------------------
# Typed call results
# ---------------------------------------------------------------------------

class CallResult(BaseModel):
    """
    Outcome of one collaborator call.

    Exactly one of value / error is meaningful: ``ok`` selects which.
    ``exception`` keeps the original exception so callers can chain it.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    value: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    timed_out: bool = False
    exception: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Any) -> "CallResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: BaseException, timed_out: bool = False) -> "CallResult":
        return cls(
            ok=False,
            error=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            timed_out=timed_out,
            exception=exc,
        )


def invoke(
    fn: Callable[..., Any],
    *args: Any,
    timeout: Optional[float] = None,
    label: str = "call",
    **kwargs: Any,
) -> CallResult:
    """
    Call ``fn(*args, **kwargs)`` with a wall-clock *timeout* (seconds).

    Never raises for collaborator failures: exceptions and timeouts come back
    as ``CallResult.failure``.  A timed-out call is abandoned, not killed.
    It runs on a daemon thread, so a hung collaborator never holds up
    interpreter exit; whatever it returns later is discarded.
    """
    future: Future = Future()

    def _call() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            value = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(value)

    threading.Thread(target=_call, name=f"autoshorts-{label}", daemon=True).start()
    if not wait([future], timeout=timeout).done:
        logger.warning("%s timed out after %ss", label, timeout)
        return CallResult.failure(
            TimeoutError(f"{label} exceeded timeout of {timeout}s"), timed_out=True
        )
    try:
        value = future.result()
    except Exception as exc:
        logger.debug("%s failed: %s: %s", label, type(exc).__name__, exc)
        return CallResult.failure(exc)
    return CallResult.success(value)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def load_factory(target: str) -> Callable[[AutomationConfig], Collaborators]:
    """
    Resolve ``"package.module:callable"`` to a collaborator factory.

    Raises:
        ConfigError: if the target is malformed or cannot be imported.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"collaborator factory must look like 'pkg.module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"cannot import collaborator module {module_name!r}: {exc}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"{target!r} is not a callable")
    return factory


def build_collaborators(target: str, config: AutomationConfig) -> Collaborators:
    """Load the factory named by *target* and call it with *config*."""
    bundle = load_factory(target)(config)
    if not isinstance(bundle, Collaborators):
        raise ConfigError(
            f"collaborator factory {target!r} returned {type(bundle).__name__}, expected Collaborators"
        )
    return bundle
