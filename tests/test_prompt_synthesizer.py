"""
Tests for scene prompt synthesis.
"""

import pytest

from storyboard_api.schemas.storyboard import CharacterReference
from storyboard_api.services.prompt_synthesizer import (
    PromptSynthesizer,
    activity_composition,
    extract_character_reference,
    focus_scene_on_character,
    should_maintain_clothing,
    truncate_at_word,
)


class TestPromptSynthesizer:
    """Tests for PromptSynthesizer.build"""

    @pytest.fixture
    def synthesizer(self):
        return PromptSynthesizer(max_length=1800, description_budget=400)

    def test_prompt_without_character_has_no_character_clauses(self, synthesizer):
        prompt = synthesizer.build("A lighthouse on a cliff at dusk", "cinematic", "vintage")

        assert prompt.enhanced.startswith("Professional cinematic storyboard frame: A lighthouse on a cliff at dusk")
        assert "medium shot, rule of thirds" in prompt.enhanced
        assert "MAIN CHARACTER" not in prompt.enhanced
        assert "CONSISTENCY RULES" not in prompt.enhanced
        assert "different face" not in prompt.negative
        assert "no character visible" not in prompt.negative

    def test_prompt_with_character_pins_identity(self, synthesizer):
        prompt = synthesizer.build(
            "Mina opens the shop door",
            "realistic",
            "modern",
            character_ref="Mina, short black hair, round glasses",
        )

        assert "MAIN CHARACTER (REQUIRED IN FRAME): Mina, short black hair, round glasses" in prompt.enhanced
        assert "character-centric composition" in prompt.enhanced
        assert "same outfit" in prompt.enhanced
        assert "different face" in prompt.negative
        assert "no character visible" in prompt.negative

    def test_clothing_change_drops_outfit_rule(self, synthesizer):
        prompt = synthesizer.build("Mina at the party", character_ref="Mina", maintain_clothing=False)

        assert "same outfit" not in prompt.enhanced
        assert "same person, identical face" in prompt.enhanced

    def test_parts_appear_in_fixed_order(self, synthesizer):
        prompt = synthesizer.build("A robot paints", "watercolor", "pastel", character_ref="Bolt")
        text = prompt.enhanced

        positions = [
            text.index("A robot paints"),
            text.index("MAIN CHARACTER"),
            text.index("medium shot focusing on character"),
            text.index("soft diffused lighting"),
            text.index("watercolor painting"),
            text.index("gentle, dreamy"),
            text.index("CONSISTENCY RULES"),
            text.index("8K resolution"),
            text.index("masterpiece, best quality"),
        ]
        assert positions == sorted(positions)

    def test_long_description_is_truncated_at_word_boundary(self, synthesizer):
        scene = " ".join(f"word{i}" for i in range(2000))

        prompt = synthesizer.build(scene, character_ref="Bolt, a silver robot")

        assert len(prompt.enhanced) <= 1800
        assert prompt.enhanced.endswith("masterpiece, best quality")
        description = prompt.enhanced[len(PromptSynthesizer.PREFIX) + 1:].split(". ")[0]
        # 마지막 단어가 온전해야 한다
        assert description.split(" ")[-1] in scene.split(" ")
        assert len(description) <= 400

    def test_description_budget_shrinks_to_fit_max_length(self):
        synthesizer = PromptSynthesizer(max_length=900, description_budget=400)
        scene = "a " * 600

        prompt = synthesizer.build(scene.strip(), character_ref="Bolt")

        assert len(prompt.enhanced) <= 900
        assert "MAIN CHARACTER" in prompt.enhanced

    def test_unbroken_description_never_emits_partial_token(self, synthesizer):
        prompt = synthesizer.build("a" * 500)

        assert "a" * 10 not in prompt.enhanced
        assert prompt.enhanced.startswith("Professional cinematic storyboard frame: detailed professional scene.")

    def test_unknown_style_falls_back_to_realistic(self, synthesizer):
        prompt = synthesizer.build("A street market", visual_style="claymation")

        assert "photorealistic" in prompt.enhanced

    def test_empty_scene_uses_default_description(self, synthesizer):
        prompt = synthesizer.build("   ")

        assert "detailed professional scene" in prompt.enhanced

    @pytest.mark.parametrize("theme, lighting", [
        ("vintage", "golden hour lighting"),
        ("monochrome", "dramatic lighting"),
        ("pastel", "soft diffused lighting"),
        ("earth", "natural daylight"),
    ])
    def test_lighting_follows_color_theme(self, synthesizer, theme, lighting):
        assert synthesizer.lighting_for(theme).startswith(lighting)


class TestCharacterFocus:
    """Tests for character-focused scene prompts"""

    @pytest.fixture
    def synthesizer(self):
        return PromptSynthesizer(max_length=1800, description_budget=400)

    def test_character_name_leads_the_scene(self, synthesizer):
        prompt = synthesizer.build("a quiet street at dawn", character_ref="Mina, short black hair", character_name="Mina")

        assert prompt.enhanced.startswith(
            "Professional cinematic storyboard frame: Mina as central character in scene: a quiet street at dawn"
        )
        assert "Mina must be clearly visible, in focus, and prominently placed" in prompt.enhanced

    @pytest.mark.parametrize("scene, opening", [
        ("running across the bridge", "Mina is the main subject actively running"),
        ("a conversation by the window", "Mina prominently featured a conversation"),
        ("sad under the rain", "Close focus on Mina as protagonist: sad"),
        ("Mina opens the shop door", "PRIMARY FOCUS: Mina opens the shop door"),
    ])
    def test_scene_kind_picks_the_opening(self, scene, opening):
        assert focus_scene_on_character(scene, "Mina").startswith(opening)

    def test_activity_adds_camera_hint(self, synthesizer):
        prompt = synthesizer.build("typing on a laptop at the desk", character_ref="Mina", character_name="Mina")

        assert "Camera angle: over-the-shoulder view or side profile" in prompt.enhanced

    @pytest.mark.parametrize("scene, hint", [
        ("reading a book", "side view or 3/4 angle"),
        ("eating lunch", "natural eating/drinking posture"),
        ("talking on the phone", "facing camera or another person"),
        ("walking the dog", "dynamic movement"),
        ("thinking about the past", "contemplative pose"),
        ("a lighthouse on a cliff", ""),
    ])
    def test_activity_composition(self, scene, hint):
        assert activity_composition(scene).startswith(hint)
        assert bool(activity_composition(scene)) == bool(hint)

    def test_reference_image_uses_stronger_clause(self, synthesizer):
        with_image = synthesizer.build("a street", character_ref="Mina", character_name="Mina", has_reference_image=True)
        without_image = synthesizer.build("a street", character_ref="Mina", character_name="Mina")

        assert "EXACT same facial features as the reference image" in with_image.enhanced
        assert "same clothing style as reference image" in with_image.enhanced
        assert "reference image" not in without_image.enhanced
        assert "wearing the same clothing/outfit" in without_image.enhanced

    def test_name_without_character_reference_is_ignored(self, synthesizer):
        prompt = synthesizer.build("a street", character_name="Mina")

        assert "Mina" not in prompt.enhanced
        assert "MAIN CHARACTER" not in prompt.enhanced

    def test_focus_parts_keep_fixed_order_and_length(self):
        synthesizer = PromptSynthesizer(max_length=1800, description_budget=400)
        scene = " ".join(f"reading{i}" for i in range(300))

        prompt = synthesizer.build(scene, character_ref="Mina", character_name="Mina")
        text = prompt.enhanced

        assert len(text) <= 1800
        positions = [
            text.index("Mina as central character"),
            text.index("Mina must be clearly visible"),
            text.index("MAIN CHARACTER"),
            text.index("CONSISTENCY RULES"),
        ]
        assert positions == sorted(positions)


class TestClothingHeuristic:
    """Tests for should_maintain_clothing"""

    def test_plain_scene_keeps_clothing(self):
        assert should_maintain_clothing("She walks through the park with her dog") is True

    def test_explicit_change(self):
        assert should_maintain_clothing("He went home to change clothes") is False

    def test_time_transition(self):
        assert should_maintain_clothing("The next morning she returns to the office") is False

    def test_setting_change_needs_time_marker(self):
        assert should_maintain_clothing("They move indoor") is True
        assert should_maintain_clothing("They move indoor as night falls") is False

    def test_empty_text(self):
        assert should_maintain_clothing(None) is True


class TestCharacterReference:
    """Tests for extract_character_reference"""

    def test_selected_character_wins_over_persona(self):
        character = CharacterReference(name="Mina", appearance="short black hair", personality="curious")

        reference = extract_character_reference("**Main character:** someone else", character)

        assert reference == "Mina, short black hair, curious"

    def test_selected_character_is_capped(self):
        character = CharacterReference(name="Mina", description="x" * 500)

        assert len(extract_character_reference(None, character)) == 200

    def test_persona_marker_lines_only(self):
        persona = (
            "The story follows a painter.\n"
            "**Main character:** Bolt, a small silver robot\n"
            "\n"
            "Some unrelated note"
        )

        assert extract_character_reference(persona) == "Main character: Bolt, a small silver robot."

    def test_persona_without_markers(self):
        assert extract_character_reference("A determined protagonist") == ""
        assert extract_character_reference(None) == ""


class TestTruncateAtWord:
    """Tests for truncate_at_word"""

    def test_short_text_unchanged(self):
        assert truncate_at_word("hello world", 50) == "hello world"

    def test_cuts_before_partial_word(self):
        assert truncate_at_word("hello wonderful world", 12) == "hello"

    def test_keeps_word_ending_at_limit(self):
        assert truncate_at_word("hello wonderful world", 15) == "hello wonderful"

    def test_overlong_first_token_is_dropped_not_split(self):
        assert truncate_at_word("supercalifragilistic", 5) == ""
        assert truncate_at_word("a" * 500, 400) == ""
