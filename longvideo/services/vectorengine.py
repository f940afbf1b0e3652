"""
VectorEngine adapters - httpx implementations of the capability contracts.

API: https://api.vectorengine.ai (OpenAI-compatible gateway)

Each adapter method makes one attempt with the model and key it is given.
HTTP faults are mapped for the FallbackEngine:
    429 / 5xx          -> TransientUpstreamError (Retry-After honored)
    other 4xx          -> UpstreamRequestError
    job failed         -> GenerationError
    polling exhausted  -> TransientUpstreamError (treated as a timeout)
"""
import re
import json
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .capabilities import (
    AnalysisResult,
    StoryAnalyzer,
    ImageGenerator,
    VideoGenerator,
    NarrationSynthesizer,
    MergeService,
)
from .retry import parse_retry_after
from ..exceptions import (
    AnalysisError,
    GenerationError,
    SynthesisError,
    TransientUpstreamError,
    UpstreamRequestError,
)
from ..orchestration.models import Scene
from ..rendering.media_store import LocalMediaStore

logger = logging.getLogger(__name__)


def raise_for_upstream(response: httpx.Response, what: str) -> None:
    if response.status_code < 400:
        return
    body = response.text[:200]
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientUpstreamError(
            f"{what} failed: {response.status_code} - {body}",
            status_code=response.status_code,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    raise UpstreamRequestError(f"{what} failed: {response.status_code} - {body}", status_code=response.status_code)


class VectorEngineClient:
    """Shared HTTP client plus bounded polling settings."""

    def __init__(
        self,
        api_base: str = "https://api.vectorengine.ai",
        timeout: float = 120.0,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
        sleep=asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.sleep = sleep
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def url(self, path: str) -> str:
        return path if path.startswith("http") else f"{self.api_base}{path}"

    @staticmethod
    def headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def post(self, path: str, api_key: str, payload: Dict[str, Any], what: str) -> httpx.Response:
        response = await self.client.post(self.url(path), headers=self.headers(api_key), json=payload)
        raise_for_upstream(response, what)
        return response

    async def post_json(self, path: str, api_key: str, payload: Dict[str, Any], what: str) -> Dict[str, Any]:
        response = await self.post(path, api_key, payload, what)
        try:
            return response.json()
        except ValueError:
            raise UpstreamRequestError(f"{what} returned non-JSON body")

    async def poll(self, path: str, api_key: str, what: str, check) -> str:
        """
        GET path every poll_interval until check(data) returns a result.

        check returns the result URL, None to keep polling, or raises
        GenerationError for a failed job. Non-OK poll responses are skipped.
        """
        for attempt in range(self.max_poll_attempts):
            await self.sleep(self.poll_interval)
            response = await self.client.get(self.url(path), headers=self.headers(api_key))
            if response.status_code != 200:
                logger.debug(f"{what} poll {attempt + 1}: HTTP {response.status_code}")
                continue
            result = check(response.json())
            if result:
                return result

        raise TransientUpstreamError(
            f"{what} timed out after {self.max_poll_attempts} polls"
        )

    async def aclose(self) -> None:
        await self.client.aclose()


# =============================================================================
# Story analysis
# =============================================================================

LANGUAGE_PROMPTS = {
    "cantonese": ("Cantonese (written colloquial Cantonese, Traditional Chinese)", "natural and conversational"),
    "mandarin": ("Mandarin Chinese", "natural and fluent"),
    "english": ("English", "natural and conversational"),
}

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_analysis_json(content: str) -> Dict[str, Any]:
    """Parse LLM JSON output, tolerating markdown code fences."""
    text = _FENCE.sub("", content.strip()).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                pass
    raise AnalysisError(f"Story analysis returned unparseable output: {content[:120]!r}")


def scenes_from_analysis(data: Dict[str, Any]) -> List[Scene]:
    raw = data.get("scenes")
    if not isinstance(raw, list) or not raw:
        raise AnalysisError("Story analysis output has no scenes")

    scenes = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        scenes.append(Scene(
            id=index + 1,
            description=item.get("description") or f"Scene {index + 1}",
            narration=item.get("narration") or "",
            image_prompt=item.get("imagePrompt") or item.get("image_prompt"),
        ))
    if not scenes:
        raise AnalysisError("Story analysis output has no usable scenes")
    return scenes


class VectorEngineStoryAnalyzer(StoryAnalyzer):
    """Chat-completions story analysis (json_object response format)."""

    def __init__(self, client: VectorEngineClient):
        self.client = client

    @staticmethod
    def build_messages(
        story: str,
        scene_count: int,
        character_description: Optional[str],
        visual_style: Optional[str],
        language: str,
    ) -> List[Dict[str, str]]:
        output_language, style = LANGUAGE_PROMPTS.get(language, LANGUAGE_PROMPTS["cantonese"])
        system = (
            "You are a professional video script analyst. Split the user's story into "
            f"{scene_count} consecutive scenes, one per 8-second video segment. For each scene give:\n"
            "1. description: vivid English visual description for video generation\n"
            f"2. narration: voice-over text in {output_language}, {style}, readable within 8 seconds\n"
            "3. imagePrompt: English image prompt with character features and scene details\n\n"
            "Return JSON only:\n"
            '{"scenes": [{"id": 1, "description": "...", "narration": "...", "imagePrompt": "..."}], '
            '"characterPrompt": "English base prompt describing the main character for consistency"}'
        )
        user = f"Story: {story}"
        if character_description:
            user += f"\nCharacter: {character_description}"
        if visual_style:
            user += f"\nVisual style: {visual_style}"
        user += f"\n\nRemember: narration must be written in {output_language}."
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def analyze(
        self,
        story: str,
        *,
        scene_count: int,
        character_description: Optional[str],
        visual_style: Optional[str],
        language: str,
        model: str,
        api_key: str,
        endpoint: Optional[str] = None,
    ) -> AnalysisResult:
        payload = {
            "model": model,
            "messages": self.build_messages(story, scene_count, character_description, visual_style, language),
            "response_format": {"type": "json_object"},
            "temperature": 0.7,
        }
        data = await self.client.post_json(endpoint or "/v1/chat/completions", api_key, payload, f"LLM {model}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise AnalysisError(f"LLM {model} returned no message content")
        if not isinstance(content, str) or not content.strip():
            raise AnalysisError(f"LLM {model} returned empty content")

        parsed = parse_analysis_json(content)
        scenes = scenes_from_analysis(parsed)
        logger.info(f"[LLM] {model} produced {len(scenes)} scenes")
        return AnalysisResult(
            scenes=scenes,
            character_prompt=parsed.get("characterPrompt") or parsed.get("character_prompt"),
            model=model,
        )


# =============================================================================
# Images
# =============================================================================

def midjourney_prompt(prompt: str, reference_image_url: Optional[str], mode: str) -> str:
    suffix = " --fast" if mode == "fast" else ""
    if reference_image_url:
        return f"{prompt} --cref {reference_image_url} --cw 100 --ar 16:9 --v 6.1{suffix}"
    return f"{prompt} --ar 16:9 --v 6.1{suffix}"


class VectorEngineImageGenerator(ImageGenerator):
    """Midjourney submit/poll; other models through images/generations."""

    def __init__(self, client: VectorEngineClient):
        self.client = client

    async def generate(
        self,
        prompt: str,
        *,
        reference_image_url: Optional[str],
        mode: str,
        model: str,
        api_key: str,
    ) -> str:
        if model.startswith("midjourney"):
            return await self._midjourney(prompt, reference_image_url, mode, api_key)
        return await self._images_api(prompt, model, api_key)

    async def _midjourney(self, prompt: str, reference_image_url: Optional[str], mode: str, api_key: str) -> str:
        data = await self.client.post_json(
            "/mj/submit/imagine",
            api_key,
            {"prompt": midjourney_prompt(prompt, reference_image_url, mode), "notifyHook": ""},
            "Midjourney submit",
        )
        if data.get("code") not in (None, 1):
            raise GenerationError(f"Midjourney error: {data.get('description') or data.get('message')}")
        task_id = data.get("result")
        if not task_id:
            raise GenerationError(f"Midjourney returned no task id: {data}")
        logger.info(f"[Image] Midjourney task submitted: {task_id}")

        def check(result: Dict[str, Any]) -> Optional[str]:
            if result.get("status") == "SUCCESS" and result.get("imageUrl"):
                return result["imageUrl"]
            if result.get("status") == "FAILURE":
                raise GenerationError(f"Midjourney failed: {result.get('failReason') or 'unknown'}")
            return None

        return await self.client.poll(f"/mj/task/{task_id}/fetch", api_key, "Midjourney", check)

    async def _images_api(self, prompt: str, model: str, api_key: str) -> str:
        data = await self.client.post_json(
            "/v1/images/generations",
            api_key,
            {"model": model, "prompt": prompt, "n": 1, "size": "1792x1024"},
            f"Image {model}",
        )
        try:
            url = data["data"][0].get("url")
        except (KeyError, IndexError, TypeError, AttributeError):
            url = None
        if not url:
            raise GenerationError(f"Image {model} returned no URL")
        return url


# =============================================================================
# Video
# =============================================================================

class VectorEngineVideoGenerator(VideoGenerator):
    """Veo (video/create), Kling (image2video) and Runway (image_to_video)."""

    def __init__(self, client: VectorEngineClient):
        self.client = client

    async def generate(self, image_url: str, prompt: str, *, model: str, api_key: str) -> str:
        if model == "kling":
            return await self._kling(image_url, prompt, api_key)
        if model == "runway":
            return await self._runway(image_url, prompt, api_key)
        return await self._veo(image_url, prompt, model, api_key)

    async def _veo(self, image_url: str, prompt: str, model: str, api_key: str) -> str:
        data = await self.client.post_json(
            "/v1/video/create",
            api_key,
            {"model": model, "prompt": prompt, "image_url": image_url},
            f"Veo {model} submit",
        )
        task_id = data.get("id")
        if not task_id:
            raise GenerationError(f"Veo {model} returned no task id")

        def check(result: Dict[str, Any]) -> Optional[str]:
            if result.get("status") == "completed" and result.get("video_url"):
                return result["video_url"]
            if result.get("status") == "failed":
                raise GenerationError(f"Veo {model} failed: {result.get('error') or 'unknown'}")
            return None

        return await self.client.poll(f"/v1/video/query?id={task_id}", api_key, f"Veo {model}", check)

    async def _kling(self, image_url: str, prompt: str, api_key: str) -> str:
        data = await self.client.post_json(
            "/kling/v1/videos/image2video",
            api_key,
            {"model_name": "kling-v1-6", "image": image_url, "prompt": prompt, "duration": "5", "mode": "std"},
            "Kling submit",
        )
        task_id = (data.get("data") or {}).get("task_id")
        if not task_id:
            raise GenerationError("Kling returned no task id")

        def check(result: Dict[str, Any]) -> Optional[str]:
            inner = result.get("data") or {}
            if inner.get("task_status") == "succeed":
                videos = (inner.get("task_result") or {}).get("videos") or []
                if videos and videos[0].get("url"):
                    return videos[0]["url"]
                raise GenerationError("Kling succeeded without a video URL")
            if inner.get("task_status") == "failed":
                raise GenerationError(f"Kling failed: {inner.get('task_status_msg') or 'unknown'}")
            return None

        return await self.client.poll(f"/kling/v1/videos/image2video/{task_id}", api_key, "Kling", check)

    async def _runway(self, image_url: str, prompt: str, api_key: str) -> str:
        data = await self.client.post_json(
            "/runwayml/v1/image_to_video",
            api_key,
            {"model": "gen3a_turbo", "promptImage": image_url, "promptText": prompt, "duration": 10, "ratio": "16:9"},
            "Runway submit",
        )
        task_id = data.get("id")
        if not task_id:
            raise GenerationError("Runway returned no task id")

        def check(result: Dict[str, Any]) -> Optional[str]:
            if result.get("status") == "SUCCEEDED" and result.get("output"):
                return result["output"][0]
            if result.get("status") == "FAILED":
                raise GenerationError("Runway generation failed")
            return None

        return await self.client.poll(f"/runwayml/v1/tasks/{task_id}", api_key, "Runway", check)


# =============================================================================
# Narration
# =============================================================================

OPENAI_VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}


def tts_voice(voice_id: str) -> str:
    """Map a voice actor id onto an OpenAI-compatible voice name."""
    voice_id = (voice_id or "").lower()
    if voice_id in OPENAI_VOICES:
        return voice_id
    if "female" in voice_id:
        return "nova"
    return "onyx"


class VectorEngineNarrationSynthesizer(NarrationSynthesizer):
    """OpenAI-compatible /v1/audio/speech; audio is stored in the media store."""

    def __init__(self, client: VectorEngineClient, media_store: LocalMediaStore):
        self.client = client
        self.media_store = media_store

    async def synthesize(self, text: str, *, voice_id: str, language: str, model: str, api_key: str) -> str:
        if not text or not text.strip():
            raise SynthesisError("Narration text is empty")
        response = await self.client.post(
            "/v1/audio/speech",
            api_key,
            {"model": model, "input": text, "voice": tts_voice(voice_id), "response_format": "mp3"},
            f"TTS {model}",
        )
        if not response.content:
            raise SynthesisError(f"TTS {model} returned no audio")
        return await self.media_store.save_bytes(response.content, ".mp3", prefix="tts")


# =============================================================================
# Cloud merge
# =============================================================================

class VectorEngineMergeService(MergeService):
    """`merge` posts the full manifest; `concat` only joins the clips."""

    def __init__(self, client: VectorEngineClient):
        self.client = client

    async def merge(self, manifest: Dict[str, Any], *, model: str, api_key: str) -> str:
        if model == "concat":
            payload = {
                "videos": [v["url"] for v in manifest.get("videos", [])],
                "transition": "fade",
                "transitionDuration": 0.5,
            }
            path = "/video/concat"
        else:
            payload = manifest
            path = "/video/merge"

        data = await self.client.post_json(path, api_key, payload, f"Cloud {model}")
        if not data.get("url"):
            raise UpstreamRequestError(f"Cloud {model} returned no URL: {data.get('error') or data}")
        return data["url"]
