from comic_gen.core.errors import ConfigError
from comic_gen.core.models import GenerationOptions, PanelSpec, StylePreset

STYLE_DESCRIPTORS = {
    StylePreset.PHOTOREALISM.value: (
        "photorealistic, high dynamic range, cinematic lighting, sharp details, "
        "consistent lens and color grading"
    ),
    StylePreset.COMIC.value: "western comic style, bold inks, halftone shading, flat colors, dynamic composition",
    StylePreset.MANGA.value: "manga style, screentone textures, black and white ink, expressive linework",
    StylePreset.ANIME.value: "anime style, clean lineart, cel shading, vibrant colors, cinematic",
    StylePreset.WATERCOLOR.value: "watercolor wash, soft edges, painterly textures",
    StylePreset.PIXEL.value: "pixel art, 64x64 upscale, crisp pixel edges, NES era palette",
    StylePreset.THREE_D.value: "3D render, physically based materials, realistic lighting, raytraced reflections",
}

NO_TEXT_CLAUSE = "Do not render any text inside the image."
CLOSING_CLAUSES = (
    "High resolution, highly detailed.",
    "Keep lighting, color palette and character appearance consistent across panels.",
)


def style_clause(style_preset: str) -> str:
    """Returns the canned style sentence for a preset, or raises ConfigError."""
    descriptor = STYLE_DESCRIPTORS.get(style_preset)
    if descriptor is None:
        known = ", ".join(STYLE_DESCRIPTORS)
        raise ConfigError(f"Unknown style preset '{style_preset}'. Expected one of: {known}")
    label = style_preset.replace("_", " ")
    return f"Single comic panel, art style: {label} ({descriptor})."


def dialogue_clause(spec: PanelSpec, options: GenerationOptions) -> str:
    if options.render_balloons_in_image and spec.dialogue:
        return f"Draw clear, legible speech balloons containing exactly this dialogue: {spec.dialogue}"
    return NO_TEXT_CLAUSE


def compose_prompt(spec: PanelSpec, options: GenerationOptions) -> str:
    """
    Builds the final rendering instruction for one panel.

    Clauses in order: style sentence, style notes, visual description,
    dialogue handling, closing quality/consistency clauses. Empty clauses are
    skipped and the rest joined with single spaces. Pure and deterministic.
    """
    clauses = [
        style_clause(options.style_preset),
        options.style_notes,
        spec.visual_description,
        dialogue_clause(spec, options),
        *CLOSING_CLAUSES,
    ]
    return " ".join(c for c in clauses if c.strip())
