"""
Grammar correction for transcripts.

Sends the transcript to Anthropic or OpenAI with a strict minimal-edit
instruction. Correction is best-effort: any failure returns the input text
flagged as unprocessed instead of raising.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from .errors import CorrectionFailed, SessionCancelled
from .retry import DEFAULT_MAX_ATTEMPTS, fetch_with_retry
from .types import CorrectionResult

logger = logging.getLogger(__name__)


ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
MAX_TOKENS = 1024

# Kept in English verbatim when they appear in Spanish dictation
TECHNICAL_TERMS = [
    "git", "commit", "push", "pull", "merge", "branch", "checkout", "rebase", "stash",
    "API", "REST", "GraphQL", "webhook", "endpoint",
    "frontend", "backend", "fullstack", "middleware",
    "deploy", "build", "npm", "yarn", "webpack", "vite",
    "React", "Vue", "Angular", "Node", "Express",
    "Docker", "Kubernetes", "container", "pod",
    "SQL", "NoSQL", "MongoDB", "PostgreSQL", "Redis",
    "AWS", "Azure", "GCP", "serverless", "lambda",
    "CI/CD", "pipeline", "Jenkins", "GitHub Actions",
    "test", "unit test", "integration test", "mock",
    "debug", "log", "error", "exception", "stack trace",
    "async", "await", "promise", "callback",
    "JSON", "XML", "YAML", "CSV",
    "HTTP", "HTTPS", "SSL", "TLS",
    "token", "JWT", "OAuth", "auth",
    "cache", "CDN", "proxy", "load balancer",
]

SYSTEM_PROMPT = f"""Eres un corrector ortográfico LITERAL para desarrolladores hispanohablantes.

REGLAS ESTRICTAS:

1. SOLO corrige errores ortográficos OBVIOS (tildes, letras faltantes)
2. SOLO agrega puntuación básica donde sea gramaticalmente necesaria
3. MANTÉN en inglés y sin cambios los términos técnicos: {", ".join(TECHNICAL_TERMS)}
4. NUNCA cambies el significado de ninguna frase
5. NUNCA agregues, elimines, resumas o parafrasees contenido
6. NUNCA interpretes la intención del usuario ni completes ideas
7. Si no estás 100% seguro de una corrección, NO LA HAGAS

Responde ÚNICAMENTE con el texto corregido. Sin explicaciones.

Ejemplos:
- "nesesito hacer un comit" → "Necesito hacer un commit."
- "el deploy fallo" → "El deploy falló."
- "uno dos tres" → "Uno, dos, tres."
"""


@dataclass(frozen=True)
class CorrectionProvider:
    """How to talk to one correction backend."""
    name: str
    url: str
    build_headers: Callable[[str], Dict[str, str]]
    build_body: Callable[[str, str, str], Dict[str, Any]]
    parse_text: Callable[[Dict[str, Any]], str]


def _anthropic_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }


def _anthropic_body(model: str, system_prompt: str, text: str) -> Dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_TOKENS,
        "system": system_prompt,
        "messages": [{"role": "user", "content": text}],
    }


def _anthropic_text(payload: Dict[str, Any]) -> str:
    return payload["content"][0]["text"]


def _openai_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _openai_body(model: str, system_prompt: str, text: str) -> Dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_TOKENS,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ],
    }


def _openai_text(payload: Dict[str, Any]) -> str:
    return payload["choices"][0]["message"]["content"]


PROVIDERS: Dict[str, CorrectionProvider] = {
    "anthropic": CorrectionProvider(
        "anthropic", ANTHROPIC_URL, _anthropic_headers, _anthropic_body, _anthropic_text
    ),
    "openai": CorrectionProvider(
        "openai", OPENAI_CHAT_URL, _openai_headers, _openai_body, _openai_text
    ),
}


class CorrectionGateway:
    """
    Minimal-edit grammar correction with graceful degradation.

    Usage:
        gateway = CorrectionGateway("anthropic", api_key, model)
        result = gateway.correct("nesesito hacer un comit")
        if not result.is_processed:
            ...  # result.text is the original transcript
    """

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        session: Optional[requests.Session] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown correction provider: {provider}")
        self.provider = PROVIDERS[provider]
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.system_prompt = system_prompt
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return self.provider.name

    def correct(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> CorrectionResult:
        """
        Correct text, never raising for provider failures.

        Raises:
            SessionCancelled: only when the owning session was superseded.
        """
        start = time.perf_counter()
        if not text.strip():
            return self._unprocessed(text, start, "empty text")

        try:
            corrected = self._request(text, cancel_event)
        except SessionCancelled:
            raise
        except CorrectionFailed as e:
            logger.warning("[Correct] %s failed, using original text: %s", self.name, e)
            return self._unprocessed(text, start, str(e))

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info("[Correct] %s %.2fs -> \"%s\"", self.name, latency_ms / 1000, corrected[:50])
        return CorrectionResult(text=corrected, provider=self.name, latency_ms=latency_ms)

    def _request(self, text: str, cancel_event: Optional[threading.Event]) -> str:
        if not self.api_key:
            raise CorrectionFailed(f"{self.name} API key not configured")

        headers = self.provider.build_headers(self.api_key)
        body = self.provider.build_body(self.model, self.system_prompt, text)

        def send() -> requests.Response:
            return self._session.post(
                self.provider.url, json=body, headers=headers, timeout=self.timeout
            )

        try:
            response = fetch_with_retry(
                send,
                max_attempts=self.max_attempts,
                cancel_event=cancel_event,
                label=f"correction/{self.name}",
            )
        except SessionCancelled:
            raise
        except Exception as e:
            raise CorrectionFailed(str(e)) from e

        if not 200 <= response.status_code < 300:
            raise CorrectionFailed(f"{self.name} API error {response.status_code}")

        try:
            corrected = self.provider.parse_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CorrectionFailed(f"Unexpected {self.name} response: {e}") from e

        corrected = (corrected or "").strip()
        if not corrected:
            raise CorrectionFailed(f"{self.name} returned empty text")
        return corrected

    def _unprocessed(self, text: str, start: float, reason: str) -> CorrectionResult:
        return CorrectionResult(
            text=text,
            provider=self.name,
            latency_ms=int((time.perf_counter() - start) * 1000),
            is_processed=False,
            error=reason,
        )

    def close(self) -> None:
        self._session.close()
