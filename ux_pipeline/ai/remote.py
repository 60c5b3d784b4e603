"""HTTP clients for the hosted vision metadata and UX analysis functions.

Set UX_ANALYSIS_ENDPOINT to override the default endpoint
(default: http://localhost:54321/functions/v1) and UX_ANALYSIS_API_KEY to send a bearer token.

Both clients use a persistent requests.Session with connection pooling so concurrent
pipeline runs do not exhaust sockets against the same host.
"""

import os

import requests

from ux_pipeline.ai.model_base import BaseStageModel
from ux_pipeline.ai.schema import ModelCard, ModelRequest, ModelResponse, RawVisionMetadata
from ux_pipeline.ai.vision_base import BaseVisionClient
from ux_pipeline.core.config import API_KEY_ENV_VAR, ENDPOINT_ENV_VAR

DEFAULT_ENDPOINT = "http://localhost:54321/functions/v1"
DEFAULT_TIMEOUT_SECONDS = 120


class _FunctionsSession:
    """Pooled session posting JSON to one functions endpoint."""

    def __init__(self, endpoint: str | None = None, api_key: str | None = None) -> None:
        endpoint = endpoint or os.environ.get(ENDPOINT_ENV_VAR, DEFAULT_ENDPOINT).strip() or DEFAULT_ENDPOINT
        self.endpoint = endpoint.rstrip("/")
        self._api_key = api_key or os.environ.get(API_KEY_ENV_VAR) or None
        self._session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(pool_connections=10, pool_maxsize=20)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def post(self, path: str, json_payload: dict) -> dict:
        """POST JSON to the endpoint and return the parsed response object."""
        url = f"{self.endpoint}/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        resp = self._session.post(url, json=json_payload, headers=headers, timeout=DEFAULT_TIMEOUT_SECONDS)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {path}, got {type(data).__name__}")
        if data.get("error"):
            raise RuntimeError(f"{path} returned an error: {data['error']}")
        return data


class RemoteVisionClient(BaseVisionClient):
    """Vision metadata via the hosted google-vision-metadata function."""

    def __init__(self, endpoint: str | None = None, api_key: str | None = None) -> None:
        self._http = _FunctionsSession(endpoint, api_key)

    def get_model_card(self) -> ModelCard:
        return ModelCard(name="google-vision", version="v1")

    def extract_metadata(self, image_ref: str) -> RawVisionMetadata:
        data = self._http.post("google-vision-metadata", {"imageUrl": image_ref})
        return RawVisionMetadata.model_validate(data.get("metadata") or {})


class RemoteStageModel(BaseStageModel):
    """Stage model reached through the hosted ux-analysis function."""

    def __init__(self, model_id: str, endpoint: str | None = None, api_key: str | None = None) -> None:
        self._model_id = model_id
        self._http = _FunctionsSession(endpoint, api_key)

    def get_model_card(self) -> ModelCard:
        return ModelCard(name=self._model_id, version="remote")

    def invoke(self, request: ModelRequest) -> ModelResponse:
        payload = {
            "type": request.request_type,
            "payload": {
                "imageUrl": request.image_ref,
                "prompt": request.prompt,
                "model": request.model,
                "maxTokens": request.max_tokens,
                "temperature": request.temperature,
            },
        }
        data = self._http.post("ux-analysis", payload)
        return ModelResponse.model_validate(data)
