import json
import logging
from typing import Any, Iterable, List, Optional, Tuple

from comic_gen.core.errors import ConfigError, PlanFormatError
from comic_gen.core.models import GenerationOptions, PanelSpec, PlanDocument

logger = logging.getLogger(__name__)


def extract_json_object(raw_text: str) -> str:
    """Returns the slice between the first '{' and the last '}', tolerating prose around it."""
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start < 0 or end <= start:
        raise PlanFormatError("No JSON object found in plan response.", raw_text=raw_text)
    return raw_text[start:end + 1]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _character_names(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    names = []
    for item in value:
        if isinstance(item, dict):
            name = _text(item.get("name"))
        elif isinstance(item, str):
            name = item.strip()
        else:
            name = ""
        if name:
            names.append(name)
    return tuple(names)


def parse_plan(raw_text: str, options: GenerationOptions) -> List[PanelSpec]:
    """
    Converts a plan response into at most options.page_count panel specs.

    Raises PlanFormatError when no JSON object with a "panels" array can be
    read. Extra panels are dropped; missing fields get defaults. An empty
    array gives an empty list.
    """
    document = extract_json_object(raw_text or "")
    try:
        data = json.loads(document)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse plan JSON: {document[:100]}...")
        raise PlanFormatError(f"Plan response is not valid JSON: {e}", raw_text=raw_text) from e

    if not isinstance(data, dict) or not isinstance(data.get("panels"), list):
        raise PlanFormatError("Plan response has no 'panels' array.", raw_text=raw_text)

    panels = data["panels"]
    if not panels:
        logger.warning("Plan response contains no panels.")
        return []
    if len(panels) < options.page_count:
        logger.warning(f"Requested {options.page_count} panels but the plan provides {len(panels)}.")

    specs = []
    for n, item in enumerate(panels[:options.page_count], start=1):
        if not isinstance(item, dict):
            raise PlanFormatError(f"Panel {n} in plan response is not an object.", raw_text=raw_text)
        specs.append(PanelSpec(
            index=n,
            title=_text(item.get("title")) or f"Panel {n}",
            visual_description=_text(item.get("visual_summary")) or _text(item.get("prompt")),
            dialogue=_text(item.get("dialogue")),
            caption=_text(item.get("caption")),
            mentioned_characters=_character_names(item.get("characters")),
        ))
    return specs


def build_planning_prompt(story: str, options: GenerationOptions, character_names: Iterable[str] = ()) -> str:
    style = f"{options.style_preset} {options.style_notes}".strip()
    names = list(character_names)
    character_hint = ""
    if names:
        character_hint = (
            f"\nThese characters are provided via reference images: {', '.join(names)}. "
            "Use exactly these names whenever they appear in a panel."
        )

    return f"""
You are a senior comic art director. Split the user's story into exactly {options.page_count} concise panels.
Return strict JSON with this schema:
{{
  "panels": [
    {{
      "title": string,
      "visual_summary": string,
      "dialogue": string,
      "caption": string,
      "characters": [ {{ "name": string, "age": string, "gender": string, "key_traits": string }} ]
    }}
  ]
}}
Guidelines: keep character names consistent; mention settings, camera angles and key actions in visual_summary;
dialogue only if needed, empty string otherwise; caption is a concise narration for below-image text.
Language: {options.language}.
Visual style: {style}.
Speech balloons in image: {'yes, keep dialogue short' if options.render_balloons_in_image else 'no'}.
Captions shown below image: {'yes' if options.show_captions_below_image else 'no'}.{character_hint}

STORY:
{story}
"""


class StoryPlanner:
    def __init__(self, ai_client):
        self.ai_client = ai_client

    async def plan(
        self,
        story: str,
        options: GenerationOptions,
        character_names: Optional[Iterable[str]] = None,
    ) -> List[PanelSpec]:
        """Asks the text model for a panel plan and parses it. Failures are not retried here."""
        story = (story or "").strip()
        if not story:
            raise ConfigError("Story text must not be empty.")

        prompt = build_planning_prompt(story, options, character_names or ())
        logger.info(f"Planning {options.page_count} panels with {options.text_model_id}...")
        raw_text = await self.ai_client.generate_text(prompt, schema=PlanDocument, model=options.text_model_id)
        panels = parse_plan(raw_text, options)
        logger.info(f"Planned {len(panels)} panel(s).")
        return panels
