from google import genai
from google.genai import types
import httpx
import logging
from typing import List, Optional, Any, Tuple

from comic_gen.config import Config
from comic_gen.core.errors import FetchError, PanelTimeoutError, ServiceError
from comic_gen.core.models import CharacterReference, GenerationOptions

logger = logging.getLogger(__name__)

# Aspect ratios accepted by the image config; others are left to the prompt and model default
SUPPORTED_ASPECT_RATIOS = {"1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"}


class GenAIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        fetch_timeout_seconds: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        timeout_seconds = timeout_seconds or Config.REQUEST_TIMEOUT_SECONDS
        self.client = genai.Client(
            api_key=api_key or Config.GEMINI_API_KEY,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )
        self.text_model_name = Config.TEXT_MODEL_NAME
        self.image_model_name = Config.IMAGE_MODEL_NAME
        self.fetch_timeout_seconds = fetch_timeout_seconds or Config.FETCH_TIMEOUT_SECONDS
        self.http_transport = http_transport

    async def generate_text(self, prompt: str, schema: Optional[Any] = None, model: Optional[str] = None) -> str:
        try:
            config_args = {}
            if schema:
                config_args['response_mime_type'] = 'application/json'
                config_args['response_schema'] = schema

            response = await self.client.aio.models.generate_content(
                model=model or self.text_model_name,
                contents=prompt,
                config=config_args
            )
            # Schema-constrained output still arrives as JSON text; the planner parses it
            return response.text or ""
        except Exception as e:
            logger.error(f"Error generating text: {e}")
            raise ServiceError(f"Text generation failed: {e}") from e

    def build_image_contents(self, prompt: str, references: List[CharacterReference]) -> List[types.Part]:
        """Reference images first, in the given order, then the text instruction."""
        contents = [
            types.Part.from_bytes(data=ref.image_bytes, mime_type=ref.mime_type)
            for ref in references
        ]
        contents.append(types.Part.from_text(text=prompt))
        return contents

    def build_image_config(self, options: GenerationOptions) -> types.GenerateContentConfig:
        config_args = dict(
            temperature=0.6,
            top_k=32,
            top_p=0.9,
            candidate_count=1,
            seed=options.seed,
            # Image models reject IMAGE-only output on some versions
            response_modalities=['TEXT', 'IMAGE'],
        )
        if options.aspect_ratio_label in SUPPORTED_ASPECT_RATIOS:
            config_args['image_config'] = types.ImageConfig(aspect_ratio=options.aspect_ratio_label)
        return types.GenerateContentConfig(**config_args)

    async def generate_image(
        self,
        prompt: str,
        references: List[CharacterReference],
        options: GenerationOptions,
    ) -> types.GenerateContentResponse:
        """
        Sends one panel request and returns the raw response.

        Image bytes are pulled out by the extractor, which may call fetch_file()
        for results hosted elsewhere.
        """
        model = options.image_model_id or self.image_model_name
        logger.info(f"Generating image with model {model}. Refs: {len(references)}")
        try:
            return await self.client.aio.models.generate_content(
                model=model,
                contents=self.build_image_contents(prompt, references),
                config=self.build_image_config(options),
            )
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Image request timed out: {e}")
            raise PanelTimeoutError(f"Image request timed out: {e}") from e
        except Exception as e:
            logger.error(f"Error generating image: {e}")
            raise ServiceError(f"Image generation failed: {e}") from e

    async def fetch_file(self, uri: str) -> Tuple[bytes, str]:
        """Downloads an externally hosted result, returning (body, content type without parameters)."""
        try:
            async with httpx.AsyncClient(
                timeout=self.fetch_timeout_seconds,
                transport=self.http_transport,
                follow_redirects=True,
            ) as http:
                response = await http.get(uri)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"Fetching {uri} failed: {e}", uri=uri) from e

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type
