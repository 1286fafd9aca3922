from enum import Enum


class AudienceLevel(str, Enum):
    ELEMENTARY = "Elementary"
    HIGH_SCHOOL = "High School"
    COLLEGE = "College"
    EXPERT = "Expert"


class VisualStyle(str, Enum):
    DEFAULT = "Default"
    MINIMALIST = "Minimalist"
    REALISTIC = "Realistic"
    CARTOON = "Cartoon"
    VINTAGE = "Vintage"
    FUTURISTIC = "Futuristic"
    RENDER_3D = "3D Render"
    SKETCH = "Sketch"
    GEOMETRIC = "Geometric Patterns"


class Language(str, Enum):
    ENGLISH = "English"
    SPANISH = "Spanish"
    FRENCH = "French"
    GERMAN = "German"
    MANDARIN = "Mandarin"
    JAPANESE = "Japanese"
    HINDI = "Hindi"
    ARABIC = "Arabic"
    PORTUGUESE = "Portuguese"
    RUSSIAN = "Russian"


LEVEL_INSTRUCTIONS = {
    AudienceLevel.ELEMENTARY: (
        "Target Audience: Elementary School (Ages 6-10). Style: Bright, simple, fun. "
        "Use large clear icons and very minimal text labels."
    ),
    AudienceLevel.HIGH_SCHOOL: (
        "Target Audience: High School. Style: Standard Textbook. Clean lines, clear labels, "
        "accurate maps or diagrams. Avoid cartoony elements."
    ),
    AudienceLevel.COLLEGE: (
        "Target Audience: University. Style: Academic Journal. High detail, data-rich, "
        "precise cross-sections or complex schematics."
    ),
    AudienceLevel.EXPERT: (
        "Target Audience: Industry Expert. Style: Technical Blueprint/Schematic. Extremely dense "
        "detail, monochrome or technical coloring, precise annotations."
    ),
}

DEFAULT_LEVEL_INSTRUCTION = "Target Audience: General Public. Style: Clear and engaging."

STYLE_INSTRUCTIONS = {
    VisualStyle.MINIMALIST: (
        "Aesthetic: Bauhaus Minimalist. Flat vector art, limited color palette (2-3 colors), "
        "reliance on negative space and simple geometric shapes."
    ),
    VisualStyle.REALISTIC: (
        "Aesthetic: Photorealistic Composite. Cinematic lighting, 8k resolution, highly detailed "
        "textures. Looks like a photograph."
    ),
    VisualStyle.CARTOON: (
        "Aesthetic: Educational Comic. Vibrant colors, thick outlines, expressive cel-shaded style."
    ),
    VisualStyle.VINTAGE: (
        "Aesthetic: 19th Century Scientific Lithograph. Engraving style, sepia tones, textured "
        "paper background, fine hatch lines."
    ),
    VisualStyle.FUTURISTIC: (
        "Aesthetic: Cyberpunk HUD. Glowing neon blue/cyan lines on dark background, holographic "
        "data visualization, 3D wireframes."
    ),
    VisualStyle.RENDER_3D: (
        "Aesthetic: 3D Isometric Render. Claymorphism or high-gloss plastic texture, studio "
        "lighting, soft shadows, looks like a physical model."
    ),
    VisualStyle.SKETCH: (
        "Aesthetic: Da Vinci Notebook. Ink on parchment sketch, handwritten annotations style, "
        "rough but accurate lines."
    ),
    VisualStyle.GEOMETRIC: (
        "Aesthetic: Art Deco Geometric Patterns. Emphasizes intricate geometric shapes, symmetry, "
        "and repeating patterns. Color palette inspired by Art Deco including gold, black, "
        "emerald, and cream. Elegant and architectural."
    ),
}

# "Default" shares the generic illustration arm.
DEFAULT_STYLE_INSTRUCTION = (
    "Aesthetic: High-quality digital scientific illustration. Clean, modern, highly detailed."
)


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def level_instruction(level):
    return LEVEL_INSTRUCTIONS.get(_coerce(AudienceLevel, level), DEFAULT_LEVEL_INSTRUCTION)


def style_instruction(style):
    return STYLE_INSTRUCTIONS.get(_coerce(VisualStyle, style), DEFAULT_STYLE_INSTRUCTION)


def compose_instructions(level, style):
    """Return ``(level_instruction, style_instruction)`` for an audience/style pair.

    Unknown or missing values fall back to the generic instructions.
    """
    return level_instruction(level), style_instruction(style)


RESEARCH_PROMPT = """\
You are an expert visual researcher and data journalist.
Your goal is to research the topic: "{topic}" and create a factual plan for an infographic.

**CRITICAL: Use both Google Search and Google Maps tools to find the most accurate, up-to-date \
information, local details, and factual data about this topic.**

Context:
{level_instruction}
{style_instruction}
Language: {language}

Please provide your response in the following format EXACTLY:

FACTS:
- [Fact 1]
- [Fact 2]
- [Fact 3]

IMAGE_PROMPT:
[A highly detailed image generation prompt describing the visual composition, colors, and layout \
for the infographic. Do not include citations in the prompt string itself.]
"""

FALLBACK_IMAGE_PROMPT = "Create a detailed infographic about {topic}. {level_instruction} {style_instruction}"

EDIT_FALLBACK_PREFIX = "Modified version of previous scene: "

ANALYSIS_PROMPT = """\
Analyze this image in {language}.

Targeted Question/Context provided by user: "{question}"
Additional Context: "{context}"

Provide a professional, informative report identifying key elements and answering the user's \
specific query.
"""

DEFAULT_ANALYSIS_QUESTION = "Provide a general detailed analysis."
DEFAULT_ANALYSIS_CONTEXT = "Focus on visual clarity and factual representation."

CHAT_SYSTEM_PROMPT = (
    "You are InfoGenius, a helpful AI assistant specialized in research and visual "
    "information design. Keep responses concise and insightful."
)

TRANSCRIBE_PROMPT = "Transcribe this audio message. Provide only the text of the transcription."

SPEECH_PROMPT = "Speak this message clearly: {text}"
