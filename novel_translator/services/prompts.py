"""
Prompt construction for glossary generation, glossary merging, chunking
and translation.
"""

from __future__ import annotations

import json
from typing import List, Optional, Sequence, Tuple

from ..config import TranslatorConfig
from ..models.glossary import Glossary, GlossaryEntry, Proposal
from ..models.prompt import Prompt
from ..text_utils import generate_metadata

# Marker the translation user prompt ends with, followed by the source text
TRANSLATE_MARKER = "Translate the following Japanese text into English:"


GLOSSARY_GENERATION_SYSTEM_PROMPT = """
You are generating entries for a multi-key dictionary used as the knowledge base of a RAG pipeline for Japanese to English translation. The dictionary keeps names and proper nouns consistent across many separate translation calls: whenever any key of an entry occurs in the text being translated, the entry's "value" is added to the translator's context.

Rules and Guidelines:
1. Output Format:
   - Produce a JSON object with an "entries" array
   - Each entry has "keys" (array of Japanese terms/names) and "value" (structured metadata string)

2. Value String Format:
   - Start with the category in square brackets, e.g. [character], [location], [organization], [term], [skill name]
   - Use "Key: Value" pairs separated by " | "
   - For names, write the full English name followed by the Japanese in brackets
   - Include gender for characters unless it cannot be determined
   - Capitalize proper nouns

3. Entry Selection:
   - Character names, location names, proper nouns and special terms only
   - Skip common nouns, and skip terms whose meaning is unclear from context

4. Size:
   - Keep values concise; only include information useful for translation
   - Nicknames and alternate readings are useful

Expected JSON Structure:
{
  "entries": [
    {
      "keys": [array of strings],
      "value": "[category] Key: Value | Additional_Field: Additional_Value | ..."
    }
  ]
}

Example Output:
{
  "entries": [
    {
      "keys": ["名無しの権兵衛", "ななしのごんべい"],
      "value": "[character] Name: John Doe (名無しの権兵衛) | Gender: Male | Nickname: Nanashi (ななし)"
    },
    {
      "keys": ["アメリカ合衆国", "アメリカ"],
      "value": "[location] Name: United States (アメリカ)"
    }
  ]
}

Output only the JSON, without any commentary.

The raw text is delimited with <text> XML tags.
""".strip()


GLOSSARY_MERGE_SYSTEM_PROMPT = """
You maintain the glossary of a translation system that uses a RAG pipeline.

Goal
- Merge a proposed glossary entry into a subset of the existing dictionary, keeping translations consistent across chapters.
- Prefer existing translations; only change an entry when it clearly improves translation quality.
- Output only JSON actions for the caller to execute.

Inputs
  <existing_dictionary> { "entries": [ { "id": number, "keys": string[], "value": string }, ... ] } </existing_dictionary>
  <new_updates> { "entries": [ { "keys": string[], "value": string } ] } </new_updates>
- existing_dictionary holds only the entries you may modify.
- new_updates were generated without seeing the dictionary and often duplicate it.
- Only "value" is shown to the translation model later; keep it concise.

Output Format (strict)
- Either a single JSON object { "action": "none" }
- Or a JSON array of action objects
- Allowed actions:
  - { "action": "none" }
  - { "action": "add_entry" }                                   // append the new entry as provided
  - { "action": "delete", "id": number }
  - { "action": "update", "id": number, "data": string }        // replace the value of id
  - { "action": "add_key", "id": number, "data": string[] }     // add keys to id
  - { "action": "del_key", "id": number, "data": string[] }     // remove keys from id
- IDs must come from <existing_dictionary>. Never invent IDs.
- add_entry has no id or data.
- No code fences, comments or extra keys.

Style
- Keys are raw Japanese strings (kanji/kana) that can appear in the source. No English or romaji keys.
- Values read "[category] Name: EN (JP) | Gender: ... | Nickname: EN (JP) | Note: ...".
- Keep an existing English rendering rather than switching to a synonym.

Procedure
1) If several existing entries describe the same concept, keep the most complete one, update it, add missing keys and delete the duplicates.
2) If the new entry matches an existing concept, do nothing unless it brings useful key variants (add_key) or the existing value needs trimming (update).
3) If the new entry is a different concept from every existing entry, return [{ "action": "add_entry" }].
4) Remove clearly non-Japanese keys with del_key.
5) Use the smallest set of actions. When unsure, return { "action": "none" }.

Examples

existing: id 1, value "[term] Name: Messiah (救世主)"
new: value "[term] Name: Saviour (救世主)"
Output: { "action": "none" }

existing: id 42, keys ["名無しの権兵衛"], value "[character] Name: John Doe (名無しの権兵衛)"
new: keys ["ななしのごんべい"], value "[character] Name: John Doe (名無しの権兵衛)"
Output: [{ "action": "add_key", "id": 42, "data": ["ななしのごんべい"] }]

existing: id 3, keys ["東雲","しののめ"], value "[character] Name: Shinonome (東雲) | Gender: Female"
          id 5, keys ["氷姫"], value "[character] Name: Ice Princess (氷姫) | Gender: Female | Note: A nickname for Shinonome."
new: keys ["東雲"], value "[character] Name: Shinonome (東雲) | Gender: Female"
Output:
  [
    { "action": "update", "id": 3, "data": "[character] Name: Shinonome (東雲) | Gender: Female | Nickname: Ice Princess (氷姫)" },
    { "action": "add_key", "id": 3, "data": ["氷姫"] },
    { "action": "delete", "id": 5 }
  ]

existing: id 17, keys ["京都"], value "[location] Name: Kyoto (京都)"
new: keys ["大阪"], value "[location] Name: Osaka (大阪)"
Output: [{ "action": "add_entry" }]
""".strip()


TRANSLATION_SYSTEM_PROMPT = """
You are a highly skilled Japanese to English literature translator. Keep the original tone, prose, nuance and character voices of the source text as closely as possible.
Do not localize anything by changing the original meaning or tone.
""".strip()


NARRATIVE_INSTRUCTIONS = {
    "auto": "Determine which narrative voice (first person, third person) the text is best translated as.",
    "first": (
        "For non-dialogue text (narration, description), default to a first-person narrative voice "
        "unless the raw text strongly indicates a different narrative style."
    ),
    "third": (
        "For non-dialogue text (narration, description), default to a third-person narrative voice "
        "unless the raw text strongly indicates a different narrative style."
    ),
}

HONORIFIC_INSTRUCTIONS = {
    "preserve": """
When translating names, preserve honorifics if they are present in the original text.
<example>
'花子さん' -> 'Hanako-san'
'花子様' -> 'Hanako-sama'
</example>
""".strip(),
    "nil": """
When translating names, drop common honorifics. You may replace them with a suitable English equivalent depending on context.
<example>
'花子さん' -> 'Hanako'
'花子殿' -> 'Miss Hanako'
</example>
""".strip(),
}

NAME_ORDER_INSTRUCTIONS = {
    "jp": """
Keep the Japanese name order (LastName FirstName) in your English translation.
<example>
'山田太郎' -> 'Yamada Taro'
'琴 紗月' -> 'Koto Satsuki'
</example>
""".strip(),
    "en": """
Use English name order (FirstName LastName) in your translation.
<example>
'山田太郎' -> 'Taro Yamada'
'琴 紗月' -> 'Satsuki Koto'
</example>
""".strip(),
}

TRANSLATION_INSTRUCTIONS_TEMPLATE = """
<instructions>
### Guiding Principles & Context Usage
Prioritize Raw Text: if the <metadata> contradicts the Japanese text, the raw text wins.
Use the <metadata> (characters, glossary) and the preceding lines to keep terminology consistent, follow who is speaking, resolve ambiguities, and infer omitted subjects.

### Core Translation Directives
Tone and Style: replicate the author's style and the tone of the scene.
Dialogue: dialogue is enclosed in Japanese quotation marks (「 」, 『 』). Work out the speaker from context and replace the marks with smart quotation marks (“”).
Pronouns: use correct English pronouns, taking character information from the metadata where available.
Narrative Voice: {narrative}
Parentheses: text in parentheses may be furigana or an authorial aside. Omit it when it is purely phonetic.
Natural English: prefer fluent, natural English over literal renderings.

### Names
{honorifics}
{name_order}

### Output Format
You MUST place the translated English text inside <translation> and </translation> tags. The extraction script relies strictly on this format.
<example>
Input: 「ただいま戻りました」
Output: <translation>“I have returned.”</translation>
Input: 空は青く澄み渡っていた。
Output: <translation>The sky was clear and blue.</translation>
</example>

Repeat non-Japanese text back unchanged.
<example>
Input: ==--==--==
Output: <translation>==--==--==</translation>
</example>
</instructions>
""".strip()


CHUNKING_SYSTEM_PROMPT = """
You are an expert text analyst specializing in literary structure. Segment a long-form Japanese text into semantically coherent chunks (a scene, a block of dialogue, a self-contained passage) for a downstream translation step.

### Objective
- Given numbered paragraphs [Start..End], output one JSON array of [start, end] integer pairs forming contiguous, non-overlapping chunks.

### Input
- <text> has one paragraph per line, prefixed by its index: [123] content
  - The [n] prefix is authoritative numbering and not part of the source.
  - Empty paragraphs still count.
- <metadata> gives the inclusive Start and End indices for this run.

### Output
- A single JSON array: [[a1, b1], [a2, b2], ..., [ak, bk]]
- The intervals must cover every index from Start to End with no gaps and no overlaps.
- Only the JSON array; no commentary, no code fences.

### Chunking Goals
- Target 100-200 characters of content per chunk; allowed 50-400; avoid exceeding 300.
- Prefer natural breakpoints: scene separators (＊＊＊, ─────, ◆◆◆), headings (第N話, 【タイトル】), time/place/POV transitions, switches between dialogue and narration, and the edges of special blocks (status screens, chat logs, letters, lists).
- Splitting long conversations, logs or tables is fine; cut between utterances, rows or items.
- Avoid chunks under 40 characters when they can be merged with a neighbour.

### Edges
- The first and last paragraphs of the window may be cut off by batching. Still cover [Start..End] exactly.
- Do not invent or renumber indices.

### Example
[42] 【文】...【文】
[43]
[44] 【文】...【文】
[45]
[46] 【文】
[47] ◆◆◆
[48] 【文】...【文】
Potential output snippet: ..., [39, 46], [47, 56], ...
""".strip()


def build_stage1_prompt(chunk: str) -> Prompt:
    """Glossary generation prompt for one block of source text."""
    return Prompt(system=GLOSSARY_GENERATION_SYSTEM_PROMPT, user=f"<text>\n{chunk}\n</text>")


def build_merge_prompt(conflicts: Sequence[GlossaryEntry], proposal: Proposal) -> Prompt:
    """Glossary merge prompt showing the conflicting entries and the proposal."""
    existing = {"entries": [entry.to_dict() for entry in conflicts]}
    updates = {"entries": [proposal.to_dict()]}
    user = (
        "<existing_dictionary>\n"
        f"{json.dumps(existing, ensure_ascii=False, indent=2)}\n"
        "</existing_dictionary>\n\n"
        "<new_updates>\n"
        f"{json.dumps(updates, ensure_ascii=False, indent=2)}\n"
        "</new_updates>"
    )
    return Prompt(system=GLOSSARY_MERGE_SYSTEM_PROMPT, user=user)


class PromptManager:
    """
    Prompt builder for one translation session.

    The static parts of the translation and chunking prompts are built once
    from the configuration; per-request prompts add glossary metadata and
    context.
    """

    def __init__(self, config: TranslatorConfig, glossary: Optional[Glossary] = None):
        self.config = config
        self.glossary = glossary
        self.translation_system = self._build_translation_system()
        self.chunking_system = CHUNKING_SYSTEM_PROMPT

    def _build_translation_system(self) -> str:
        instructions = TRANSLATION_INSTRUCTIONS_TEMPLATE.format(
            narrative=NARRATIVE_INSTRUCTIONS.get(self.config.narrative, ""),
            honorifics=HONORIFIC_INSTRUCTIONS.get(self.config.honorifics, ""),
            name_order=NAME_ORDER_INSTRUCTIONS.get(self.config.name_order, ""),
        )
        return f"{TRANSLATION_SYSTEM_PROMPT}\n\n{instructions}"

    def get_translation_prompt(self, text: str, preceding: str = "") -> Prompt:
        """
        Build the prompt for translating ``text``.

        Args:
            text: Source text to translate
            preceding: Lines immediately before ``text``, used as context
        """
        metadata = generate_metadata(preceding + text, self.glossary) if self.glossary else ""
        context = (
            f"\nHere are the lines immediately preceding the text to be translated, for context:\n{preceding}"
            if preceding
            else ""
        )

        metadata_block = f"<metadata>\n{metadata}\n</metadata>\n{context}" if (metadata or context) else ""

        custom = ""
        if self.config.custom_instruction:
            custom = f"### Additional Notes:\n{self.config.custom_instruction.strip()}"

        parts = [custom, metadata_block, f"{TRANSLATE_MARKER}\n{text}"]
        return Prompt(system=self.translation_system, user="\n\n".join(p for p in parts if p))

    def get_chunking_prompt(self, paragraphs: Sequence[Tuple[int, str]], offset: int = 0) -> Prompt:
        """
        Build the prompt asking for a chunking of ``paragraphs``.

        Args:
            paragraphs: ``(index, text)`` pairs with 0-based global indices
            offset: Subtracted from every 1-based index shown to the model
        """
        lines: List[str] = [f"[{index + 1 - offset}] {text}" for index, text in paragraphs]
        start = paragraphs[0][0] + 1 - offset if paragraphs else 1
        end = paragraphs[-1][0] + 1 - offset if paragraphs else 1

        user = (
            "<text>\n"
            + "\n".join(lines)
            + "\n</text>\n<metadata>\n"
            + f"Start: {start}\nEnd: {end}\n</metadata>"
        )
        return Prompt(system=self.chunking_system, user=user)
