from __future__ import annotations

from .json_loader import load_prompt_json

_DEFAULTS = {
    "persona_system_prompt_template": (
        "You are {name}. {personality}. "
        "Only respond with one or two sentence replies unless asked to explain in detail."
    ),
    "chat_trailing_instruction": (
        "respond naturally to the above conversation, in character, "
        "driving the narrative forward and pursuing your goals."
    ),
    "dream_instruction": (
        "You are asleep. Dream freely about the conversations above, in character. "
        "Describe the dream in a few vivid sentences."
    ),
    "goal_instruction": (
        "A new day begins. Based on the conversations above, state in character "
        "one goal you want to pursue today."
    ),
    "summary_system_prompt": "Summarize the following conversation history:",
    "inbound_text_template": "({channel_name}) {author}: {text}",
    "image_caption_query": "Describe this image in one or two sentences for someone who cannot see it.",
    "image_caption_template": "[image: {description}]",
}


def _cfg() -> dict[str, object]:
    return load_prompt_json("persona.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def build_persona_system_prompt(name: str, personality: str) -> str:
    return _text("persona_system_prompt_template").format(name=name, personality=personality)


def chat_trailing_instruction() -> str:
    return _text("chat_trailing_instruction")


def dream_instruction() -> str:
    return _text("dream_instruction")


def goal_instruction() -> str:
    return _text("goal_instruction")


def summary_system_prompt() -> str:
    return _text("summary_system_prompt")


def format_inbound_text(channel_name: str, author: str, text: str) -> str:
    return _text("inbound_text_template").format(channel_name=channel_name, author=author, text=text)


def image_caption_query() -> str:
    return _text("image_caption_query")


def format_image_caption(description: str) -> str:
    return _text("image_caption_template").format(description=description)
