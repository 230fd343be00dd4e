import logging
import re

from .settings import IMAGE_PROMPT_MAX_CHARS

logger = logging.getLogger(__name__)

VALID_SCRIPT_LENGTHS = ["1 min", "5 min", "10 min", "15 min", "30 min", "60 min", "120 min"]
DEFAULT_SCRIPT_LENGTH = "5 min"

TRUNCATION_MARKER = "..."

JSON_ONLY = "Return ONLY valid JSON. No markdown. No commentary."

SCRIPT_SYSTEM = "You are a professional screenwriter. " + JSON_ONLY
CHARACTERS_SYSTEM = "You are a casting director and character designer. " + JSON_ONLY
BUDGET_SYSTEM = "You are a professional film budgeting assistant. " + JSON_ONLY
SCHEDULE_SYSTEM = "You are a professional Assistant Director. " + JSON_ONLY
LOCATIONS_SYSTEM = "You are an experienced location scout. " + JSON_ONLY
SOUND_SYSTEM = "You are a film sound designer. " + JSON_ONLY
STORYBOARD_SYSTEM = "You are a professional storyboard artist. " + JSON_ONLY
CONCEPT_SYSTEM = "You are a film director and production designer. " + JSON_ONLY


SCRIPT_SCHEMA = r"""{
  "logline": "<one sentence: protagonist, conflict, stakes>",
  "synopsis": "<2-3 short paragraphs>",
  "script": "<full screenplay in standard format>",
  "shortScript": [
    {
      "scene": "<short title matching a scene heading>",
      "shotNumber": "<1A, 1B, 2A...>",
      "description": "<2-3 sentences of visuals and action>",
      "cameraAngle": "<e.g. Close-Up>",
      "cameraMovement": "<e.g. Static>",
      "lens": "<e.g. 35mm>",
      "lighting": "<e.g. Soft natural light>",
      "duration": "<e.g. 5 seconds>",
      "dialogue": "<spoken lines, if any>",
      "soundEffects": "<e.g. Waves on rocks>",
      "notes": "<directorial notes>",
      "imagePrompt": "<one sentence visual description for an illustrator>"
    }
  ],
  "themes": ["<theme>", "<theme>", "<theme>"]
}"""

CHARACTERS_SCHEMA = r"""{
  "characters": [
    {
      "name": "<name as written in the script>",
      "role": "<protagonist | antagonist | supporting | ...>",
      "description": "<2-3 sentences>",
      "traits": ["<trait>", "<trait>"],
      "skinColor": "<skin tone>",
      "hairColor": "<hair color and style>",
      "clothingColor": "<main wardrobe colors>",
      "mood": "<dominant mood>"
    }
  ]
}"""

BUDGET_SCHEMA = r"""{
  "categories": [
    {
      "name": "<category name>",
      "amount": <number, USD>,
      "percentage": <number>,
      "items": ["<item>", "<item>"],
      "tips": ["<tip>"],
      "alternatives": ["<alternative>"]
    }
  ]
}"""

SCHEDULE_SCHEMA = r"""{
  "schedule": [
    {
      "day": <number>,
      "date": "<Day 1>",
      "location": "<primary shooting location>",
      "scenes": ["<scene heading>"],
      "callTime": "<HH:MM>",
      "wrapTime": "<HH:MM>",
      "castRequired": ["<character>"],
      "notes": "<logistics>"
    }
  ]
}"""

LOCATIONS_SCHEMA = r"""{
  "locations": [
    {
      "name": "<specific, real-world style place name>",
      "type": "<interior | exterior | studio>",
      "description": "<what it looks like>",
      "mood": "<emotional tone>",
      "colorPalette": "<dominant colors>",
      "propsOrFeatures": ["<prop or feature>"],
      "scenes": ["<scene heading>"],
      "rating": <number 1-5, suitability>,
      "lowBudgetTips": "<how to shoot it cheaply>",
      "highBudgetOpportunities": "<what more money buys>"
    }
  ]
}"""

SOUND_PLAN_SCHEMA = r"""{
  "soundPlan": {
    "overallStyle": "<overall sonic style>",
    "musicGenres": ["<genre>", "<genre>"],
    "keyEffects": ["<effect>", "<effect>"],
    "notableMoments": [
      {"scene": "<scene>", "soundDesign": "<what the audience hears>"}
    ]
  }
}"""

SOUND_ASSETS_SCHEMA = r"""{
  "soundAssets": [
    {
      "name": "<short asset name>",
      "type": "<music | sfx | dialogue | ambient>",
      "duration": "<MM:SS, at least 00:10>",
      "description": "<what it should sound like, usable as a generation prompt>",
      "scenes": ["<scene heading>"]
    }
  ]
}"""

SHOTS_SCHEMA = r"""{
  "shots": [
    {
      "shotNumber": "<1, 2, 3...>",
      "description": "<1-2 sentences of visible action and environment>",
      "cameraAngle": "<e.g. Wide Shot, eye level>",
      "cameraMovement": "<e.g. Slow push in>",
      "lens": "<e.g. 35mm>",
      "lighting": "<e.g. Moonlight casting deep shadows>",
      "duration": "<seconds>",
      "imagePrompt": "<visual description for a sketch artist, no filmmaking jargon>"
    }
  ]
}"""

CONCEPT_SCHEMA = r"""{
  "concept": {
    "visualStyle": "<overall look of the film>",
    "colorPalette": "<dominant colors and how they shift>",
    "cameraTechniques": "<framing and movement choices>",
    "lightingApproach": "<key, contrast and motivation>",
    "thematicSymbolism": "<recurring images and what they carry>",
    "productionValues": "<where the money shows on screen>"
  },
  "visualReferences": [
    {"description": "<max 20 words>", "imageUrl": "<reference image URL or empty string>"}
  ]
}"""


SCRIPT_TEMPLATE = """Write a complete screenplay for a {length} {genre} film based on this idea:

"{idea}"

Formatting requirements:
- Proper screenplay format with scene headings (INT./EXT. LOCATION - TIME).
- Character names in ALL CAPS when first introduced.
- Clear, visual action lines; properly formatted dialogue.
- Length appropriate for {length} of screen time.
- shortScript: two key shots per scene, in screenplay order, for the storyboard.

Return JSON in this exact format:
{schema}"""

CHARACTERS_TEMPLATE = """Read this {genre} screenplay and list every significant character.

SCRIPT:
{script}

Use the names exactly as they appear in the script. Give concrete visual details
(skin, hair, clothing colors) so a portrait artist can draw each one.

Return JSON in this exact format:
{schema}"""

BUDGET_TEMPLATE = """Generate a professional film budget breakdown for a {length} {genre} film.

Estimate realistic costs for: Pre-production, Cast, Crew, Locations, Equipment,
Art Department, Post-Production, Music & Sound, Marketing, Miscellaneous.
Amounts are in USD. Percentages should total ~100%. Max 10 categories.

{mode_instructions}

Return JSON in this exact format:
{schema}"""

LOW_BUDGET_INSTRUCTIONS = """This is a low-budget production:
- Add cost-saving tips for each category.
- Suggest cheaper alternatives for each category."""

STANDARD_BUDGET_INSTRUCTIONS = """Provide standard industry costs.
Tips and alternatives can be empty arrays if not applicable."""

SCHEDULE_TEMPLATE = """Create a realistic shooting schedule for a {length} film from this script.

SCRIPT:
{script}

Group scenes by location to minimise company moves. One entry per shooting day.

Return JSON in this exact format:
{schema}"""

LOCATIONS_TEMPLATE = """Scout filming locations for this {genre} script.

SCRIPT:
{script}

Name each location specifically (never "Primary Location" or similar placeholders).
Every location must be tied to the scenes that use it.

Return JSON in this exact format:
{schema}"""

SOUND_PLAN_TEMPLATE = """Create a sound design plan for a {genre} movie with the following idea:

"{idea}"

Return JSON in this exact format:
{schema}"""

SOUND_ASSETS_TEMPLATE = """Break this {genre} script down into the sound assets a post-production team
must create: music cues, sound effects, dialogue/ADR needs and ambient beds.

SCRIPT:
{script}

Return JSON in this exact format:
{schema}"""

SHOTS_TEMPLATE = """Analyze the following {genre} scene and produce exactly {count} storyboard frames.

Do NOT mention cameras, crew, or movie sets in imagePrompt; describe only what is visible.

SCENE:
{scene}

Return JSON in this exact format:
{schema}"""

CONCEPT_TEMPLATE = """Write a cinematic concept document for a {genre} film from this script or synopsis.

SCRIPT:
{script}

Cover visual style, color palette, camera techniques, lighting approach, thematic
symbolism and production values. Add 3-5 visual references.

Return JSON in this exact format:
{schema}"""

FRAME_PREFIX = (
    "Cinematic hand-drawn storyboard sketch, black and white pencil style, professional film "
    "storyboard, dramatic lighting, realistic proportions, strong composition,"
)
FRAME_SUFFIX = (
    "detailed line work, moody atmosphere, visible pencil strokes, charcoal sketch texture, "
    "not photorealistic, no color, no text, no UI elements."
)
FRAME_FALLBACK = (
    "Cinematic hand-drawn storyboard sketch, black and white pencil style, professional film "
    "pre-production, dramatic lighting, realistic proportions, strong composition, {shot}, moody "
    "atmosphere, detailed line work, visible pencil strokes, cross-hatching effect, not "
    "photorealistic, no color, no text, no UI elements, film production storyboard panel with "
    "figures in a dramatic scene."
)
SHOT_TYPE_PATTERN = re.compile(
    r"(wide|medium|close-up|establishing|over-shoulder|insert|extreme)\s*(shot|long shot|close-up)?",
    re.IGNORECASE,
)

PORTRAIT_TEMPLATE = (
    "Photorealistic full-body portrait of a real person portraying the character. {visual}. "
    "Cinematic style, high detail, natural colors, realistic textures and lighting. Ensure full "
    "head and body are in frame, no cropping. The image should look like a professional actor "
    "in costume, ready for film production."
)


def normalize_script_length(length: str) -> str:
    if length in VALID_SCRIPT_LENGTHS:
        return length
    logger.warning(f"Invalid scriptLength {length!r}, defaulting to {DEFAULT_SCRIPT_LENGTH}")
    return DEFAULT_SCRIPT_LENGTH


def build_script_prompt(idea: str, genre: str, length: str) -> str:
    return SCRIPT_TEMPLATE.format(idea=idea, genre=genre, length=length, schema=SCRIPT_SCHEMA)


def build_characters_prompt(script: str, genre: str) -> str:
    return CHARACTERS_TEMPLATE.format(script=script, genre=genre, schema=CHARACTERS_SCHEMA)


def build_budget_prompt(genre: str, length: str, low_budget: bool) -> str:
    return BUDGET_TEMPLATE.format(
        genre=genre,
        length=length,
        mode_instructions=LOW_BUDGET_INSTRUCTIONS if low_budget else STANDARD_BUDGET_INSTRUCTIONS,
        schema=BUDGET_SCHEMA,
    )


def build_schedule_prompt(script: str, length: str) -> str:
    return SCHEDULE_TEMPLATE.format(script=script, length=length, schema=SCHEDULE_SCHEMA)


def build_locations_prompt(script: str, genre: str) -> str:
    return LOCATIONS_TEMPLATE.format(script=script, genre=genre, schema=LOCATIONS_SCHEMA)


def build_sound_plan_prompt(idea: str, genre: str) -> str:
    return SOUND_PLAN_TEMPLATE.format(idea=idea, genre=genre, schema=SOUND_PLAN_SCHEMA)


def build_sound_assets_prompt(script: str, genre: str) -> str:
    return SOUND_ASSETS_TEMPLATE.format(script=script, genre=genre, schema=SOUND_ASSETS_SCHEMA)


def build_shots_prompt(scene: str, genre: str, count: int) -> str:
    return SHOTS_TEMPLATE.format(scene=scene, genre=genre, count=count, schema=SHOTS_SCHEMA)


def build_concept_prompt(script: str, genre: str) -> str:
    return CONCEPT_TEMPLATE.format(script=script, genre=genre, schema=CONCEPT_SCHEMA)


def truncate_prompt(prompt: str, limit: int = IMAGE_PROMPT_MAX_CHARS) -> str:
    if len(prompt) <= limit:
        return prompt
    return prompt[:limit - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER


def build_frame_prompt(image_prompt: str) -> str:
    # Prompts produced by the shot list may already carry the house style.
    if image_prompt.startswith("Cinematic hand-drawn"):
        styled = image_prompt
    else:
        styled = f"{FRAME_PREFIX} {image_prompt}, {FRAME_SUFFIX}"
    return truncate_prompt(styled)


def build_fallback_frame_prompt(image_prompt: str) -> str:
    """Keep only the art direction and shot type; used after a content-policy block."""
    match = SHOT_TYPE_PATTERN.search(image_prompt)
    shot = match.group(0).strip() if match else "medium shot"
    return truncate_prompt(FRAME_FALLBACK.format(shot=shot))


def build_visual_description(character) -> str:
    parts = [
        f"Character name: {character.name}",
        f"Description: {character.description}",
        f"Role: {character.role}" if character.role else "",
        f"Mood: {character.mood}" if character.mood else "",
        f"Skin color: {character.skin_color}" if character.skin_color else "",
        f"Hair color: {character.hair_color}" if character.hair_color else "",
        f"Clothing color: {character.clothing_color}" if character.clothing_color else "",
    ]
    return ". ".join(p for p in parts if p)


def build_portrait_prompt(visual_description: str) -> str:
    return truncate_prompt(PORTRAIT_TEMPLATE.format(visual=visual_description))
