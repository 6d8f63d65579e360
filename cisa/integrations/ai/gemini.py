import httpx
import structlog

from cisa.core.config import get_settings
from cisa.core.exceptions import AIServiceError

logger = structlog.get_logger()


class GeminiClient:
    """Generative Language REST client asking for JSON-only responses."""

    def __init__(self, api_key: str | None = None, model: str | None = None, client: httpx.AsyncClient | None = None):
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.url = f"{settings.gemini_base_url.rstrip('/')}/{self.model}:generateContent"
        self.temperature = settings.gemini_temperature
        self._client = client or httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
        self._owns_client = client is None

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise AIServiceError("GEMINI_API_KEY is not configured")
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": self.temperature,
            },
        }
        try:
            response = await self._client.post(self.url, params={"key": self.api_key}, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("gemini_http_error", status=exc.response.status_code, model=self.model)
            raise AIServiceError(f"Gemini returned HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("gemini_request_error", error=str(exc), model=self.model)
            raise AIServiceError(f"Gemini request failed: {exc.__class__.__name__}") from exc
        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(part.get("text") or "") for part in parts)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
