"""
Ollama Inference Client for ASTER

Sends an assembled context to a local Ollama server (/api/generate) and
returns the model's answer:
- Single-shot or streaming mode (streaming is forced for very large inputs)
- Adaptive timeout and num_ctx computed from the prompt length
- Cooperative cancellation through CancellationToken
- Throttled progress messages (heartbeat while waiting, token rate while streaming)
- Model discovery through /api/tags

Cancellation is not an error: it surfaces as InferenceCancelled, which does
not derive from InferenceError.
"""

import asyncio
import json
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from .config import InferenceConfig
from .context import AssembledContext, assemble
from .documents import StandardizedDocument

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

STREAMING_THRESHOLD = 100000  # user message length that forces streaming
PROGRESS_INTERVAL = 1.5       # seconds between streaming progress updates
PROGRESS_TOKEN_STEP = 20      # ...or this many new tokens
SLOW_PREPARATION = 5.0        # seconds


# =============================================================================
# Errors
# =============================================================================

class InferenceError(Exception):
    """Base class for inference failures."""


class BackendUnreachableError(InferenceError):
    """The inference server could not be contacted."""

    def __init__(self, base_url: str, detail: str = ""):
        self.base_url = base_url
        message = (
            f"Cannot reach Ollama at {base_url}. "
            "Check that the inference backend is running."
        )
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class BackendHTTPError(InferenceError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Ollama returned HTTP {status_code}: {body}")


class InferenceTimeoutError(InferenceError):
    """No complete answer within the allotted time."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request timed out after {timeout_seconds:.0f}s")


class InvalidResponseError(InferenceError):
    """A 2xx answer without usable text."""


class InferenceCancelled(Exception):
    """The request was cancelled by the caller. Not a failure."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


# =============================================================================
# Cancellation
# =============================================================================

class CancellationToken:
    """
    One-shot cancellation signal shared between a caller and a request.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(client.query("...", cancel=token))
        token.cancel()   # task settles with InferenceCancelled
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise InferenceCancelled()


# =============================================================================
# Request shaping
# =============================================================================

def format_prompt(context: AssembledContext) -> str:
    """Flatten the message pair into Ollama's single prompt string."""
    return f"System: {context.system_message}\n\nHuman: {context.user_message}\n\nAssistant:"


def select_context_window(prompt_length: int) -> int:
    """num_ctx tier for a prompt of the given length."""
    if prompt_length > 50000:
        return 16384
    if prompt_length > 20000:
        return 8192
    return 4096


def compute_timeout(prompt_length: int, streaming: bool = False) -> int:
    """
    Adaptive request timeout in seconds.

    Single-shot: clamp(120, ceil(len/1000), 300).
    Streaming:   clamp(180, ceil(len/500), 600).
    """
    if streaming:
        return min(max(math.ceil(prompt_length / 500), 180), 600)
    return min(max(math.ceil(prompt_length / 1000), 120), 300)


def heartbeat_interval(elapsed: float) -> float:
    """Seconds until the next 'still waiting' message."""
    if elapsed >= 60:
        return 10.0
    if elapsed >= 30:
        return 5.0
    return 3.0


def _silent(message: str) -> None:
    pass


# =============================================================================
# Client
# =============================================================================

class InferenceClient:
    """
    Async client for a local Ollama server.

    The configuration is fixed at construction; a per-call model override is
    the only exception. ``transport`` lets tests inject ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: Optional[InferenceConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Backend settings (defaults to InferenceConfig())
            transport: Optional httpx transport (tests)
        """
        self.config = config or InferenceConfig()
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.config.base_url

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=httpx.Timeout(timeout) if timeout else httpx.Timeout(10.0),
        )

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def list_models(self) -> List[str]:
        """
        Names of the models installed on the server (GET /api/tags).

        Raises:
            BackendUnreachableError, BackendHTTPError, InvalidResponseError
        """
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
        except httpx.TimeoutException as e:
            raise InferenceTimeoutError(10.0) from e
        except httpx.TransportError as e:
            raise BackendUnreachableError(self.base_url, str(e)) from e

        if response.is_error:
            raise BackendHTTPError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Model list is not JSON: {e}") from e

        models = data.get("models", []) if isinstance(data, dict) else []
        names = [m.get("name", "") for m in models if isinstance(m, dict) and m.get("name")]
        logger.debug(f"Fetched {len(names)} models from Ollama")
        return names

    async def is_available(self) -> bool:
        """Check if the Ollama server answers."""
        try:
            await self.list_models()
            return True
        except InferenceError:
            return False

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    async def query(
        self,
        prompt: str,
        files: Sequence[StandardizedDocument] = (),
        default_context: str = "",
        cancel: Optional[CancellationToken] = None,
        model_override: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Ask the model a question about a set of files.

        Args:
            prompt: User prompt
            files: Standardized documents to include as context
            default_context: Standing context appended to the system message
            cancel: Optional cancellation token
            model_override: Model to use instead of the configured one
            on_progress: Callback receiving human-readable status strings

        Returns:
            The model's answer, stripped

        Raises:
            InferenceCancelled: If ``cancel`` fires before the answer is complete
            InferenceError: On unreachable backend, HTTP error, timeout or empty answer
        """
        progress = on_progress or _silent
        if cancel is not None:
            cancel.raise_if_cancelled()

        started = time.monotonic()
        progress("Preparing files...")
        context = assemble(prompt, files, default_context)
        preparation = time.monotonic() - started
        if preparation > SLOW_PREPARATION:
            progress(f"Files processed in {preparation:.0f}s, sending to Ollama...")
        else:
            progress("Files processed, sending to Ollama...")

        streaming = self.config.streaming
        if not streaming and len(context.user_message) > STREAMING_THRESHOLD:
            streaming = True
            progress("Large input detected - using streaming mode...")

        full_prompt = format_prompt(context)
        timeout = self.config.request_timeout or compute_timeout(len(full_prompt), streaming)
        payload = {
            "model": model_override or self.config.model,
            "prompt": full_prompt,
            "options": {
                "temperature": self.config.temperature,
                "num_ctx": select_context_window(len(full_prompt)),
            },
            "stream": streaming,
        }
        logger.info(
            f"Querying {payload['model']} ({len(full_prompt)} chars, "
            f"num_ctx={payload['options']['num_ctx']}, timeout={timeout}s, stream={streaming})"
        )

        if streaming:
            request = self._generate_streaming(payload, timeout, progress)
            heartbeat = None
        else:
            request = self._generate(payload, timeout)
            heartbeat = progress

        answer = await self._race(request, timeout, cancel, heartbeat)
        logger.info(f"Received {len(answer)} chars in {time.monotonic() - started:.1f}s")
        return answer.strip()

    async def _race(
        self,
        request: Awaitable[str],
        timeout: float,
        cancel: Optional[CancellationToken],
        heartbeat: Optional[ProgressCallback],
    ) -> str:
        """
        Await ``request`` against the cancellation token and the deadline.

        While waiting, ``heartbeat`` (if given) receives a status message at
        a widening cadence. The request task is always cancelled on exit.
        """
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(request)
        cancel_waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        started = loop.time()
        deadline = started + timeout

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise InferenceTimeoutError(timeout)

                wait_for = remaining
                if heartbeat is not None:
                    wait_for = min(wait_for, heartbeat_interval(loop.time() - started))

                waiting = {task} if cancel_waiter is None else {task, cancel_waiter}
                done, _ = await asyncio.wait(waiting, timeout=wait_for, return_when=asyncio.FIRST_COMPLETED)

                if cancel is not None and cancel.cancelled:
                    logger.info("Inference request cancelled")
                    raise InferenceCancelled()
                if task in done:
                    return task.result()
                if heartbeat is not None and loop.time() < deadline:
                    heartbeat(f"Waiting for Ollama response... ({int(loop.time() - started)}s)")
        finally:
            leftovers = [t for t in (task, cancel_waiter) if t is not None and not t.done()]
            for t in leftovers:
                t.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

    async def _generate(self, payload: Dict[str, Any], timeout: float) -> str:
        """Single-shot POST /api/generate."""
        try:
            async with self._client(timeout) as client:
                response = await client.post("/api/generate", json=payload)
        except httpx.TimeoutException as e:
            raise InferenceTimeoutError(timeout) from e
        except httpx.TransportError as e:
            raise BackendUnreachableError(self.base_url, str(e)) from e

        if response.is_error:
            logger.warning(f"Ollama HTTP {response.status_code}")
            raise BackendHTTPError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Response is not JSON: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise InvalidResponseError("No response text from Ollama")
        return text

    async def _generate_streaming(
        self,
        payload: Dict[str, Any],
        timeout: float,
        progress: ProgressCallback,
    ) -> str:
        """
        Streaming POST /api/generate.

        Each newline-delimited JSON fragment may carry a ``response`` delta;
        a fragment with ``done: true`` ends the stream. Malformed lines are
        skipped. Every non-empty delta counts as one token.
        """
        parts: List[str] = []
        tokens = 0
        started = time.monotonic()
        last_update = started
        last_tokens = 0

        try:
            async with self._client(timeout) as client:
                async with client.stream("POST", "/api/generate", json=payload) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.warning(f"Ollama HTTP {response.status_code}")
                        raise BackendHTTPError(response.status_code, body)

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping malformed stream line: {line[:80]}")
                            continue
                        if not isinstance(chunk, dict):
                            continue

                        fragment = chunk.get("response")
                        if fragment:
                            parts.append(fragment)
                            tokens += 1
                            now = time.monotonic()
                            if tokens == 1:
                                progress("First tokens received, generating response...")
                                last_update, last_tokens = now, tokens
                            elif now - last_update >= PROGRESS_INTERVAL or tokens - last_tokens >= PROGRESS_TOKEN_STEP:
                                elapsed = now - started
                                rate = tokens / elapsed if elapsed > 0 else 0.0
                                progress(
                                    f"Generating response... ({tokens} tokens, "
                                    f"{elapsed:.1f}s at ~{rate:.1f} tokens/sec)"
                                )
                                last_update, last_tokens = now, tokens

                        if chunk.get("done"):
                            break
        except httpx.TimeoutException as e:
            raise InferenceTimeoutError(timeout) from e
        except httpx.TransportError as e:
            raise BackendUnreachableError(self.base_url, str(e)) from e

        text = "".join(parts)
        if not text.strip():
            raise InvalidResponseError("Streaming response contained no text")
        logger.debug(f"Stream complete: {tokens} tokens")
        return text
