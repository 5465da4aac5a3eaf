import json
import logging
from typing import Any, Dict, List, Tuple

from openai import OpenAI

from ..config import OPENAI_API_KEY, OPENAI_ORG_ID, OPENAI_TEXT_MODEL

logger = logging.getLogger(__name__)

client = OpenAI(api_key=OPENAI_API_KEY, organization=OPENAI_ORG_ID or None) if OPENAI_API_KEY else None

DEFAULT_STYLE = "vibrant and colorful children's book illustration"


class StoryGenerationError(RuntimeError):
    pass


def act_split(page_count: int) -> Tuple[int, int, int]:
    """Pages given to beginning / middle / end of the story."""
    if page_count <= 2:
        return 1, 0, max(0, page_count - 1)
    begin = max(1, round(page_count * 0.25))
    end = max(1, round(page_count * 0.25))
    middle = page_count - begin - end
    if middle < 1:
        middle = 1
        if begin > 1:
            begin -= 1
        elif end > 1:
            end -= 1
    return begin, middle, end


def narrative_structure(page_count: int) -> str:
    if page_count == 1:
        return "Single page format: combine introduction, challenge and resolution into one scene."
    if page_count == 2:
        return ("Two-page format:\n"
                " - Page 1: introduce the character and the adventure\n"
                " - Page 2: show the resolution and what was learned")
    b, m, _ = act_split(page_count)
    return ("Three-act structure:\n"
            f" - BEGINNING (pages 1-{b}): main character, setting, normal world\n"
            f" - MIDDLE (pages {b + 1}-{b + m}): the challenge and attempts to overcome it\n"
            f" - END (pages {b + m + 1}-{page_count}): resolution, growth, closure")


def _messages(prompt: str, page_count: int, style: str) -> List[Dict[str, str]]:
    system = (
        f"You are a children's author creating a {page_count}-page illustrated story. "
        "Warm, age-appropriate prose. Avoid brand names and anything scary.\n\n"
        f"Follow this {narrative_structure(page_count)}\n\n"
        "Return JSON: {\"title\": str, \"cover_image_prompt\": str, "
        "\"pages\": [{\"page_number\": int, \"text\": str, \"image_prompt\": str}]} "
        f"with exactly {page_count} pages. Image prompts describe the scene in the style: {style}."
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]


def parse_story(raw: str, page_count: int) -> Dict[str, Any]:
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise StoryGenerationError(f"LLM returned invalid JSON: {e}") from e
    pages = data.get("pages") or []
    if not isinstance(pages, list) or not pages:
        raise StoryGenerationError("LLM returned no pages")
    out = []
    for i, p in enumerate(pages[:page_count], start=1):
        out.append({
            "page_number": i,
            "text": str(p.get("text") or "").strip() or "…",
            "image_prompt": str(p.get("image_prompt") or p.get("text") or "").strip(),
        })
    title = str(data.get("title") or "").strip() or "My Storybook"
    return {
        "title": title,
        "cover_image_prompt": str(data.get("cover_image_prompt") or f"Book cover for {title}"),
        "pages": out,
    }


def generate_story(prompt: str, page_count: int = 8, style: str = DEFAULT_STYLE) -> Dict[str, Any]:
    if client is None:
        raise StoryGenerationError("OPENAI_API_KEY is not set")
    resp = client.chat.completions.create(
        model=OPENAI_TEXT_MODEL,
        temperature=0.9,
        response_format={"type": "json_object"},
        messages=_messages(prompt, page_count, style),
    )
    story = parse_story(resp.choices[0].message.content, page_count)
    logger.info("📝 Story drafted title=%r pages=%d", story["title"], len(story["pages"]))
    return story
