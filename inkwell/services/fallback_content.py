"""Canned responses served when the language model is unavailable."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List


class FallbackCategory(str, Enum):
    CHARACTER_DESCRIPTION = "character-description"
    OUTLINE = "outline"
    CHAPTER = "chapter"
    WRITING_SUGGESTION = "writing-suggestion"
    AI_ASSISTANCE = "ai-assistance"
    FEEDBACK = "feedback"
    ANALYZE_CONSISTENCY = "analyze-consistency"


DEFAULT_CATEGORY = FallbackCategory.AI_ASSISTANCE.value

UNABLE_TO_GENERATE_MESSAGE = "Unable to generate content right now. Please try again later."


DEFAULT_FALLBACK_RESPONSES: Dict[str, List[str]] = {
    FallbackCategory.CHARACTER_DESCRIPTION.value: [
        (
            "A traveller from somewhere far away, with a layered and complicated temperament. "
            "A long and varied life has taught them to see what others miss when trouble arrives. "
            "They were well educated, but their real wisdom was earned on the road."
        ),
        (
            "Quiet and perceptive, this character notices everything around them. They rarely speak "
            "at length, yet at the decisive moment they say exactly what needs to be said. Their past "
            "is full of unanswered questions, and those questions drive everything they do."
        ),
        (
            "Bright and outgoing, this character lifts the mood of every room. They stay hopeful even "
            "in the darkest hours, strong without losing their gentleness, and their friends lean on "
            "them more than they realise."
        ),
    ],
    FallbackCategory.OUTLINE.value: [
        (
            "Chapter 1: Introduce the main characters and the setting, hinting at unease beneath a calm surface.\n"
            "Chapter 2: The protagonist uncovers a secret that changes their fate and decides to set out.\n"
            "Chapter 3: An important ally joins, while the antagonist takes notice.\n"
            "Chapter 4: The first major conflict ends in defeat.\n"
            "Chapter 5: The protagonist seeks new strength and knowledge and begins to grow.\n"
            "Finale: The decisive confrontation, and a protagonist transformed."
        ),
        (
            "Opening: In an ordinary town, the protagonist reaches a turning point.\n"
            "Rising action: An unexpected discovery forces them out of their comfort zone.\n"
            "Development: New friends and enemies overturn what they believed about the world.\n"
            "Climax: They face their greatest fear and pay a heavy price.\n"
            "Turn: The truth comes out and they question their original purpose.\n"
            "Ending: They return home changed, and the world is different because of what they did."
        ),
    ],
    FallbackCategory.CHAPTER.value: [
        (
            "Sunlight slipped through the gap in the curtains and laid a golden line across the floor. "
            "The protagonist woke slowly; today would not be an ordinary day. Last night's dream was "
            "still vivid, and its strange omens would not let them rest.\n\n"
            "Breakfast happened on autopilot while the television murmured the usual news. Then the "
            "anchor named a place, and the protagonist froze. It was the very scene from the dream.\n\n"
            "This could not be a coincidence. Setting the cup down, they decided to go and see it for "
            "themselves. Perhaps this was where everything would turn."
        ),
        (
            "Rain drummed on the window and the city sank into grey. The protagonist stood watching the "
            "blurred street, thoughts racing. Recent events had left the ordinary course of life far "
            "behind.\n\n"
            "Letters and a single photograph lay scattered on the desk. It was the only clue, pointing "
            "to an address they had never heard of. The sensible thing would be to call someone. Deep "
            "down, though, they knew this journey belonged to them alone.\n\n"
            "They packed a small bag and left a note. The moment they stepped outside, the storm "
            "stopped, as if something had been waiting."
        ),
    ],
    FallbackCategory.WRITING_SUGGESTION.value: [
        (
            "Consider adding more sensory detail so readers can step inside the scene.\n"
            "Dig deeper into the character's inner monologue to show the complexity of their thoughts.\n"
            "Vary the pacing: speed up during the climax and slow down for emotional beats."
        ),
        (
            "The current plot could use more suspense or foreshadowing to seed later developments.\n"
            "The protagonist's reactions feel idealised; some inner struggle would make them more human.\n"
            "Add transitional passages between scene changes so the story flows more naturally."
        ),
        (
            "Make the dialogue more individual so each character's speech reflects who they are.\n"
            "Raise the conflict, external or internal, to keep the story moving.\n"
            "Trim some descriptions so heavy modifiers do not slow the reading rhythm."
        ),
    ],
    FallbackCategory.AI_ASSISTANCE.value: [
        (
            "The writing assistant is temporarily offline. In the meantime you can:\n"
            "1. Start from one of the built-in templates\n"
            "2. Look through the suggestions in the writing guide\n"
            "3. Come back to this feature a little later"
        ),
        (
            "We could not reach the writing assistant. Keep drafting by hand or try again later. "
            "The writing guide collects plenty of techniques and ideas that may help in the meantime."
        ),
        (
            "The writing assistant ran into a temporary problem. Save your work and try the assistant "
            "again later. For now, this is a good moment to focus on the core of your characters and plot."
        ),
    ],
    FallbackCategory.FEEDBACK.value: [
        (
            "The overall structure is complete and the characters have depth. The plot develops "
            "naturally, though some turning points could use more setup. The voice is consistent and "
            "suits the intended readers. Consider enriching the background of secondary characters and "
            "filling out the world-building."
        ),
        (
            "The piece has a distinctive point of view and a clear theme. Character motivations are "
            "clear and their actions make sense. Pacing is mostly good, though the middle drags a little. "
            "Dialogue is lively and shows personality. Consider sharpening the central conflict and "
            "giving the ending a deeper thematic payoff."
        ),
        (
            "The opening is engaging and earns the reader's interest. The plot is logical, but a few key "
            "decisions lack enough support. Scene description is vivid and immersive. Review each "
            "character's growth so their changes feel gradual and earned. Overall, a promising piece."
        ),
    ],
    FallbackCategory.ANALYZE_CONSISTENCY.value: [
        (
            "The story stays consistent in these areas:\n"
            "- Personalities of the main characters\n"
            "- Rules of the world\n"
            "- The overall timeline\n\n"
            "Possible inconsistencies worth checking:\n"
            "- When and why secondary characters appear\n"
            "- Seasonal details in some scene descriptions\n"
            "- The limits of characters' abilities"
        ),
        (
            "The internal logic of the story is broadly coherent. Character motivations are clear and "
            "their behaviour fits their setup. The plot develops without obvious jumps.\n\n"
            "Areas to watch:\n"
            "- Make sure time passes plausibly between chapters\n"
            "- Keep each character's voice consistent\n"
            "- Check that descriptions of locations agree"
        ),
        (
            "The main storyline holds together well, and the protagonist's growth follows the plot.\n\n"
            "Possible inconsistencies:\n"
            "- Some subplots are not fully woven into the main line\n"
            "- A few concepts are explained in contradictory ways\n"
            "- Character relationships shift slightly in later chapters\n\n"
            "Reviewing these points will keep the reading experience whole."
        ),
    ],
}


__all__ = [
    "DEFAULT_CATEGORY",
    "DEFAULT_FALLBACK_RESPONSES",
    "FallbackCategory",
    "UNABLE_TO_GENERATE_MESSAGE",
]
