import itertools

from system_prompt import (
    DEFAULT_LEVEL_INSTRUCTION,
    DEFAULT_STYLE_INSTRUCTION,
    AudienceLevel,
    VisualStyle,
    compose_instructions,
)


def test_every_pair_yields_non_empty_instructions():
    for level, style in itertools.product(AudienceLevel, VisualStyle):
        level_instr, style_instr = compose_instructions(level, style)
        assert level_instr.strip()
        assert style_instr.strip()
        assert level_instr != style_instr


def test_levels_and_styles_are_distinct():
    levels = {compose_instructions(level, VisualStyle.DEFAULT)[0] for level in AudienceLevel}
    styles = {compose_instructions(AudienceLevel.EXPERT, style)[1] for style in VisualStyle}
    assert len(levels) == len(AudienceLevel)
    assert len(styles) == len(VisualStyle)


def test_plain_strings_are_accepted():
    assert compose_instructions("Elementary", "Sketch") == compose_instructions(
        AudienceLevel.ELEMENTARY, VisualStyle.SKETCH
    )


def test_unknown_values_fall_back():
    assert compose_instructions("Kindergarten", "Pointillism") == (
        DEFAULT_LEVEL_INSTRUCTION,
        DEFAULT_STYLE_INSTRUCTION,
    )
    assert compose_instructions(None, None) == (DEFAULT_LEVEL_INSTRUCTION, DEFAULT_STYLE_INSTRUCTION)
    assert "General Public" in DEFAULT_LEVEL_INSTRUCTION
    assert "digital scientific illustration" in DEFAULT_STYLE_INSTRUCTION
