# app/core/genai_client.py
import asyncio
import logging
from typing import Optional, Dict, Any, List
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from app.core.config import settings
from app.core.exceptions import TextGenerationError

logger = logging.getLogger(__name__)

genai.configure(api_key=settings.GOOGLE_API_KEY)

CARD_TEXT_GENERATION_CONFIG: Dict[str, Any] = {
    "temperature": 0.7,
    "top_p": 0.9,
    "top_k": 40,
    "max_output_tokens": 4096,
    "response_mime_type": "application/json",
}

RETRYABLE_ERRORS = (
    google_exceptions.InternalServerError,
    google_exceptions.ResourceExhausted,
    google_exceptions.DeadlineExceeded,
    google_exceptions.ServiceUnavailable,
)


class GeminiClientWithRetry:
    """Gemini client with retry/backoff for transient API errors."""

    # Children are the audience; block anything above low probability
    DEFAULT_SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_LOW_AND_ABOVE"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_LOW_AND_ABOVE"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_LOW_AND_ABOVE"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_LOW_AND_ABOVE"},
    ]

    def __init__(self, model_name: str = settings.TEXT_MODEL, max_retries: int = 3):
        self.model_name = model_name
        self.model = genai.GenerativeModel(model_name)
        self.max_retries = max_retries
        self.base_delay = 1.0
        self.max_delay = 30.0

    async def generate_content_async(
        self,
        prompt: str,
        generation_config: Optional[Dict[str, Any]] = None,
        safety_settings: Optional[List[Dict[str, Any]]] = None
    ) -> Any:
        """
        Generate content with retry logic.

        Args:
            prompt: The input prompt
            generation_config: Optional generation configuration
            safety_settings: Optional safety settings

        Returns:
            The raw Gemini response (``.text`` and ``.usage_metadata``)

        Raises:
            TextGenerationError: If the call fails permanently or all retries are exhausted
        """
        generation_config = generation_config or CARD_TEXT_GENERATION_CONFIG.copy()
        safety_settings = safety_settings or self.DEFAULT_SAFETY_SETTINGS.copy()

        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.info(f"Attempting Gemini API call (attempt {attempt + 1}/{self.max_retries + 1})")
                response = await self.model.generate_content_async(
                    prompt,
                    generation_config=generation_config,
                    safety_settings=safety_settings
                )
                self._validate_response(response)
                logger.info("Gemini API call successful")
                return response

            except RETRYABLE_ERRORS as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_delay(e, attempt)
                    logger.warning(f"Gemini API {type(e).__name__} (attempt {attempt + 1}): {str(e)}")
                    logger.info(f"Retrying in {delay} seconds...")
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"All retry attempts exhausted for {type(e).__name__}")
                break

            except (google_exceptions.InvalidArgument, google_exceptions.PermissionDenied) as e:
                # Don't retry for these errors
                last_exception = e
                logger.error(f"Gemini API {type(e).__name__}: {str(e)}")
                break

            except ValueError as e:
                # Empty or blocked response; the same prompt will be blocked again
                last_exception = e
                logger.error(f"Gemini API returned no usable text: {str(e)}")
                break

            except Exception as e:
                last_exception = e
                logger.warning(f"Unexpected error with Gemini API (attempt {attempt + 1}): {str(e)}")
                if attempt < self.max_retries:
                    delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                    logger.info(f"Unexpected error, retrying in {delay} seconds...")
                    await asyncio.sleep(delay)
                    continue
                logger.error("All retry attempts exhausted for unexpected error")
                break

        self._raise_user_friendly_error(last_exception)

    def _validate_response(self, response: Any) -> None:
        """Validate the API response."""
        if not response:
            raise ValueError("Invalid response from Gemini API")
        # .text raises ValueError itself when the candidate was blocked
        if not response.text or response.text.strip() == "":
            raise ValueError("Empty response from Gemini API")

    def _calculate_delay(self, exception: Exception, attempt: int) -> float:
        """Calculate retry delay based on exception type and attempt number."""
        if isinstance(exception, google_exceptions.ResourceExhausted):
            # Longer delay for quota issues
            return min(self.base_delay * (3 ** attempt), self.max_delay)
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _raise_user_friendly_error(self, last_exception: Optional[Exception]) -> None:
        """Raise a TextGenerationError with a message suitable for the session record."""
        logger.error(f"Gemini API failed. Last error: {str(last_exception)}")
        details = {"error_type": type(last_exception).__name__} if last_exception else {}

        if isinstance(last_exception, google_exceptions.ResourceExhausted):
            raise TextGenerationError("AI service is currently experiencing high demand. Please try again in a few minutes.", details)
        if isinstance(last_exception, google_exceptions.PermissionDenied):
            raise TextGenerationError("AI service configuration error. Please contact support.", details)
        if isinstance(last_exception, google_exceptions.InvalidArgument):
            raise TextGenerationError("Invalid request format. Please try rephrasing your prompt.", details)
        if isinstance(last_exception, ValueError):
            raise TextGenerationError("AI service returned no content for this prompt.", details)
        raise TextGenerationError("AI service is temporarily unavailable. Please try again later.", details)


_gemini_client: Optional[GeminiClientWithRetry] = None


def get_gemini_model() -> GeminiClientWithRetry:
    """Return the shared Gemini client with retry/backoff handling."""
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = GeminiClientWithRetry()
    return _gemini_client
