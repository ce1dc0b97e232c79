"""
HTTP client for the flash cards API.

Wraps the generation endpoints and implements the polling loop a caller
runs after starting a session: poll until the session is terminal, then
either auto-approve the card (``skip_preview``) or hand it back for preview.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class PollConfig:
    """Configuration for session polling"""
    poll_interval_seconds: float = 2.0
    max_polls: int = 30


class FlashCardsAPIError(Exception):
    """Error envelope returned by the API."""

    def __init__(self, status_code: int, code: str, message: str, request_id: Optional[str] = None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.request_id = request_id


class GenerationTimeout(Exception):
    """The session did not reach a terminal state within the polling budget."""

    def __init__(self, session_id: str, polls: int):
        super().__init__(f"Session {session_id} still running after {polls} polls")
        self.session_id = session_id
        self.polls = polls


class GenerationFailed(Exception):
    """The session ended in the failed state."""

    def __init__(self, session_id: str, error_message: Optional[str]):
        super().__init__(error_message or "Generation failed")
        self.session_id = session_id
        self.error_message = error_message


@dataclass
class GenerationOutcome:
    session: Dict[str, Any]
    card: Dict[str, Any]
    # True when skip_preview was on and the card was approved without preview
    auto_approved: bool = False


class FlashCardsClient:
    """Async client for /api/v1/flash-cards and /api/v1/user."""

    def __init__(
        self,
        base_url: str = "http://localhost:8101",
        token: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_config: Optional[PollConfig] = None,
        timeout: float = 30.0,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            transport=transport,
            timeout=timeout,
        )
        self.poll_config = poll_config or PollConfig()

    async def __aenter__(self) -> "FlashCardsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        resp = await self._client.request(method, f"/api/v1{path}", json=json)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            raise FlashCardsAPIError(
                resp.status_code,
                body.get("code", "INTERNAL_ERROR"),
                body.get("message") or resp.reason_phrase,
                body.get("requestId") or resp.headers.get("X-Request-ID"),
            )
        return body.get("data")

    # Endpoints

    async def generate(
        self,
        input_prompt: str,
        card_type: str = "single_word",
        generation_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Start a session and return its id."""
        payload: Dict[str, Any] = {"input_prompt": input_prompt, "card_type": card_type}
        if generation_params:
            payload["generation_params"] = generation_params
        data = await self._request("POST", "/flash-cards/generate", json=payload)
        return data["sessionId"]

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/flash-cards/sessions/{session_id}")

    async def get_card(self, card_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/flash-cards/{card_id}")

    async def list_cards(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/flash-cards/")

    async def approve(self, card_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/flash-cards/{card_id}/approve")

    async def regenerate(self, card_id: str) -> str:
        data = await self._request("POST", f"/flash-cards/{card_id}/regenerate")
        return data["sessionId"]

    async def mark_downloaded(self, card_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/flash-cards/{card_id}/downloaded")

    async def get_usage(self) -> Dict[str, Any]:
        return await self._request("GET", "/flash-cards/usage")

    async def get_preferences(self) -> Dict[str, Any]:
        return await self._request("GET", "/user/preferences")

    async def update_preferences(self, **changes: Any) -> Dict[str, Any]:
        return await self._request("PUT", "/user/preferences", json=changes)

    # Polling

    async def wait_for_session(self, session_id: str) -> Dict[str, Any]:
        """Poll until the session is completed or failed.

        Raises:
            GenerationTimeout: after ``max_polls`` polls without a terminal state
        """
        cfg = self.poll_config
        for poll in range(1, cfg.max_polls + 1):
            session = await self.get_session(session_id)
            if session["status"] in ("completed", "failed"):
                logger.info(f"Session {session_id} {session['status']} after {poll} poll(s)")
                return session
            if poll < cfg.max_polls:
                await asyncio.sleep(cfg.poll_interval_seconds)
        raise GenerationTimeout(session_id, cfg.max_polls)

    async def generate_and_wait(
        self,
        input_prompt: str,
        card_type: str = "single_word",
        generation_params: Optional[Dict[str, Any]] = None,
    ) -> GenerationOutcome:
        session_id = await self.generate(input_prompt, card_type, generation_params)
        return await self.complete(session_id)

    async def regenerate_and_wait(self, card_id: str) -> GenerationOutcome:
        session_id = await self.regenerate(card_id)
        return await self.complete(session_id)

    async def complete(self, session_id: str) -> GenerationOutcome:
        """Wait for ``session_id`` and apply the preview preference to its card."""
        session = await self.wait_for_session(session_id)
        if session["status"] == "failed" or not session.get("cards"):
            raise GenerationFailed(session_id, session.get("error_message"))

        card = session["cards"][0]
        try:
            prefs = await self.get_preferences()
            skip_preview = bool(prefs.get("skip_preview"))
        except (FlashCardsAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not read preferences, showing preview: {e}")
            skip_preview = False

        if not skip_preview:
            return GenerationOutcome(session=session, card=card)

        card = await self.approve(card["id"])
        return GenerationOutcome(session=session, card=card, auto_approved=True)
