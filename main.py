import asyncio
import click
import logging
import sys
from pathlib import Path
from dotenv import load_dotenv

from comic_gen.config import Config, build_options, setup_directories
from comic_gen.core.ai_client import GenAIClient
from comic_gen.core.character_store import CharacterStore
from comic_gen.core.errors import ComicGenError, ConfigError
from comic_gen.core.generator import ComicGenerator
from comic_gen.core.models import StylePreset

logger = logging.getLogger(__name__)


def parse_character_option(value: str):
    name, sep, path = value.partition("=")
    if not sep or not name.strip() or not path.strip():
        raise click.BadParameter(f"Expected NAME=PATH, got '{value}'", param_hint="--character")
    return name.strip(), Path(path.strip())


def load_character_store(characters_dir, character_options) -> CharacterStore:
    store = CharacterStore.load(Path(characters_dir)) if characters_dir else CharacterStore()
    for value in character_options:
        name, path = parse_character_option(value)
        store.add_file(name, path)
    if characters_dir and character_options:
        store.save()
    return store


@click.command()
@click.option('--story-file', required=True, type=click.Path(exists=True, dir_okay=False), help='Path to the story text file.')
@click.option('--pages', 'page_count', type=int, default=None, help='Number of panels to generate.')
@click.option('--language', default=None, help='Language for titles, dialogue and captions.')
@click.option('--aspect', default=None, help='Panel size as WIDTHxHEIGHT, e.g. 1024x1536.')
@click.option('--style', 'style_preset', type=click.Choice([s.value for s in StylePreset]), default=None, help='Style preset.')
@click.option('--style-notes', default="", help='Free-text style notes added to every panel prompt.')
@click.option('--balloons/--no-balloons', default=False, help='Draw dialogue as speech balloons inside the images.')
@click.option('--captions-below/--no-captions-below', default=True, help='Captions are meant to be shown below the images.')
@click.option('--seed', type=int, default=None, help='Seed passed to the image model.')
@click.option('--max-parallel', type=int, default=None, help='Maximum image requests in flight (1-6).')
@click.option('--text-model', default=None, help='Model used for story planning.')
@click.option('--image-model', default=None, help='Model used for panel rendering.')
@click.option('--character', 'characters', multiple=True, help='Reference image as NAME=PATH. Repeatable.')
@click.option('--characters-dir', type=click.Path(file_okay=False), default=None, help='Directory of the persistent character gallery.')
@click.option('--retries', type=int, default=None, help='Extra attempts per failed panel.')
@click.option('--plan-only', is_flag=True, help='Print the panel plan and stop.')
@click.option('--output', type=click.Path(dir_okay=False), default=None, help='Write the bundle to this ZIP file.')
@click.option('--output-dir', default="output", help='Directory to save results when --output is not given.')
@click.option('--verbose', is_flag=True, help='Enable debug logging.')
def main(story_file, page_count, language, aspect, style_preset, style_notes, balloons, captions_below, seed,
         max_parallel, text_model, image_model, characters, characters_dir, retries, plan_only, output,
         output_dir, verbose):
    """
    Turns a short story into illustrated comic panels using Gemini.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    # 1. Config & Setup
    load_dotenv()
    try:
        Config.validate()
        options = build_options(
            page_count=page_count,
            language=language,
            aspect=aspect,
            style_preset=style_preset,
            style_notes=style_notes,
            render_balloons_in_image=balloons,
            show_captions_below_image=captions_below,
            seed=seed,
            max_parallel=max_parallel,
            text_model_id=text_model,
            image_model_id=image_model,
        )
        store = load_character_store(characters_dir, characters)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(2)

    with open(story_file, 'r', encoding='utf-8') as f:
        story = f.read()
    logger.info(f"Loaded story file: {story_file} ({len(story)} chars)")
    if store.names():
        logger.info(f"Character references: {', '.join(store.names())}")

    # 2. Initialize Core Components
    ai_client = GenAIClient()
    generator = ComicGenerator(
        ai_client,
        store,
        retries=Config.PANEL_RETRIES if retries is None else retries,
    )

    # 3. Plan, render and package
    try:
        if plan_only:
            panels = asyncio.run(generator.plan(story, options))
            for panel in panels:
                click.echo(f"[{panel.index}] {panel.title}")
                click.echo(f"    {panel.visual_description}")
                if panel.dialogue:
                    click.echo(f"    Dialogue: {panel.dialogue}")
                if panel.caption and options.show_captions_below_image:
                    click.echo(f"    Caption: {panel.caption}")
                if panel.mentioned_characters:
                    click.echo(f"    Characters: {', '.join(panel.mentioned_characters)}")
            return

        run = asyncio.run(generator.run(story, options))
    except ComicGenError as e:
        logger.error(f"Generation failed: {e}")
        sys.exit(1)

    if output:
        run.bundle.write_zip(Path(output))
    else:
        output_path = Path(output_dir)
        setup_directories(output_path)
        run.bundle.write_to_directory(output_path / "panels")

    for result in run.results:
        if result.error is not None:
            logger.warning(f"Panel {result.index} has no image: {result.error}")

    generated = len(run.bundle.images)
    logger.info(f"Job Complete! {generated}/{len(run.results)} panels generated.")

if __name__ == '__main__':
    main()
