"""
carelog/llm/ollama_adapter.py
Ollama backend for case-event analysis. Runs locally; transcripts never
leave the machine. Uses Ollama structured output (format = JSON schema).

RECOMMENDED MODELS (Chinese-capable, by RAM):
  8GB:   qwen2.5:7b
  16GB+: qwen2.5:14b, llama3.1:8b-instruct
"""

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, List

from carelog.analysis.merge import strip_code_fence
from carelog.errors import CollaboratorError
from carelog.llm.base import ANALYSIS_SCHEMA, AnalysisCollaborator
from carelog.models.record import ChatMessage

logger = logging.getLogger(__name__)


class OllamaAdapter(AnalysisCollaborator):

    def __init__(
        self,
        model:       str   = 'qwen2.5:7b',
        host:        str   = 'http://localhost:11434',
        timeout_sec: int   = 300,
        temperature: float = 0.1,
    ):
        self.model       = model
        self.model_name  = model
        self.host        = host.rstrip('/')
        self.timeout_sec = timeout_sec
        self.temperature = temperature

    # ── AVAILABILITY CHECK ───────────────────────────────────
    def is_available(self) -> bool:
        """Ping Ollama and confirm the configured model is pulled."""
        models = self.list_available_models()
        available = any(
            m == self.model or m.startswith(self.model.split(':')[0])
            for m in models
        )
        if not available:
            logger.warning(
                f"Model '{self.model}' not available at {self.host}. "
                f"Available: {models}. Run: ollama pull {self.model}"
            )
        return available

    def list_available_models(self) -> List[str]:
        """Return locally available Ollama model names (empty if unreachable)."""
        try:
            req = urllib.request.Request(f"{self.host}/api/tags", method='GET')
            with urllib.request.urlopen(req, timeout=5) as resp:
                data = json.loads(resp.read().decode())
            return [m['name'] for m in data.get('models', [])]
        except (urllib.error.URLError, OSError, json.JSONDecodeError, KeyError) as e:
            logger.warning(f"Ollama not reachable at {self.host}: {e}")
            return []

    # ── ANALYSIS ─────────────────────────────────────────────
    async def analyze(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        prompt = self.build_prompt(messages)
        logger.info(f"Submitting {len(messages)} messages to Ollama ({self.model})")
        # Blocking HTTP runs in a worker thread; cancelling the awaiting task
        # abandons the request.
        response_text = await asyncio.to_thread(self._generate, prompt)
        return self._parse_response(response_text)

    def _generate(self, prompt: str) -> str:
        payload = json.dumps({
            'model':   self.model,
            'prompt':  prompt,
            'stream':  False,
            'format':  ANALYSIS_SCHEMA,
            'options': {'temperature': self.temperature},
        }).encode('utf-8')

        req = urllib.request.Request(
            f"{self.host}/api/generate",
            data    = payload,
            headers = {'Content-Type': 'application/json'},
            method  = 'POST',
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                data = json.loads(resp.read().decode('utf-8'))
        except urllib.error.URLError as e:
            logger.error(f"Ollama request failed: {e}")
            raise CollaboratorError(f"Ollama request failed: {e}") from e
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Ollama transport error: {e}")
            raise CollaboratorError(f"Ollama transport error: {e}") from e

        return str(data.get('response', '')).strip()

    # ── RESPONSE PARSER ──────────────────────────────────────
    def _parse_response(self, text: str) -> Dict[str, Any]:
        """
        Decode the model output into a dict.
        Handles models that add markdown fences despite structured output.
        """
        try:
            data = json.loads(strip_code_fence(text))
        except json.JSONDecodeError as e:
            logger.error(f"Could not decode Ollama response: {e}")
            raise CollaboratorError(f"Collaborator returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CollaboratorError("Collaborator returned JSON that is not an object")
        return data
