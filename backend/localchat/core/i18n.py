"""
Localized strings used by the conversation engine and the console.

Only a small closed set of locales is recognized; anything else falls back
to English.
"""
from typing import Dict, Literal

Language = Literal["en", "zh"]

SUPPORTED_LANGUAGES = ("en", "zh")
DEFAULT_LANGUAGE: Language = "en"

TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "en": {
        "new_chat": "New Chat",
        "default_preview": "Start a new conversation",
        "search_placeholder": "Search chats...",
        "no_chats": "No chats found",
        "you": "You",
        "model": "Model",
        "error": "Failed to send message. Please try again.",
        "welcome_title": "How can I help you today?",
        "input_placeholder": "Message the model...",
        "disclaimer": "The model can make mistakes. Consider checking important information.",
        "retry_hint": "Type /retry to try again.",
        "title_prompt": (
            'Generate a very short, concise title (max 6 words) for a conversation '
            'that starts with: "{message}". Do not use quotes.'
        ),
    },
    "zh": {
        "new_chat": "新对话",
        "default_preview": "开始新的对话",
        "search_placeholder": "搜索对话...",
        "no_chats": "未找到对话",
        "you": "你",
        "model": "模型",
        "error": "发送失败，请重试。",
        "welcome_title": "今天有什么可以帮您？",
        "input_placeholder": "给模型发送消息...",
        "disclaimer": "模型可能会犯错。请核实重要信息。",
        "retry_hint": "输入 /retry 重试。",
        "title_prompt": '为这段对话生成一个非常简短的标题（最多6个字）："{message}"。不要使用引号。',
    },
}

# Every locale's placeholder title; a session carrying any of them has no derived title yet.
PLACEHOLDER_TITLES = frozenset(strings["new_chat"] for strings in TRANSLATIONS.values())


def normalize_language(value: str | None) -> Language:
    """Map a free-form locale tag ("zh-CN", "en_US.UTF-8") onto a supported language."""
    if not value:
        return DEFAULT_LANGUAGE
    tag = value.strip().lower()
    for lang in SUPPORTED_LANGUAGES:
        if tag.startswith(lang):
            return lang
    return DEFAULT_LANGUAGE


def get_translations(lang: str) -> Dict[str, str]:
    return TRANSLATIONS[normalize_language(lang)]


def is_placeholder_title(title: str | None) -> bool:
    return not title or title in PLACEHOLDER_TITLES
