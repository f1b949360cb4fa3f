"""Default prompt templates for scene and beat generation."""

from __future__ import annotations

SCENE_SUMMARY_TEMPLATE = """<message role="system">
You are an experienced editor who writes precise scene summaries for an author's reference.
</message>
<message role="user">
<sceneSummaryRequest>
  <scene title="{sceneTitle}">
{sceneContent}{truncatedNote}
  </scene>
  <codexContext>
{codexEntries}
  </codexContext>
  <instructions>
    Summarize what happens in this scene: who is present, what they do and
    what changes by the end.  Keep the order of events.
    {lengthRequirement}
    {languageInstruction}
    <redundancy>Do not repeat information already captured in the codex context.</redundancy>
{additionalInstructions}
  </instructions>
</sceneSummaryRequest>
</message>"""

STAGING_NOTES_TEMPLATE = """<message role="system">
You track the physical staging of a story: positions, objects at hand, clothing and injuries.
</message>
<message role="user">
<stagingNotesRequest>
  <scene>
{sceneContent}
  </scene>
  <instructions>
    Write short staging notes describing the state at the end of the text:
    where each character is, what they hold or wear, and anything that must
    stay consistent in the next passage.  Use a bullet list.
    {languageInstruction}
{customInstruction}
  </instructions>
</stagingNotesRequest>
</message>"""

TITLE_STYLE_INSTRUCTIONS: dict[str, str] = {
    "descriptive": "The title should be descriptive and atmospheric.",
    "action": "The title should be action-packed and dynamic.",
    "emotional": "The title should reflect the emotional mood of the scene.",
    "concise": "The title should be concise and impactful.",
}

SCENE_TITLE_TEMPLATE = (
    "Create a title for the following scene. The title should be up to {maxWords} words \n"
    "{styleInstruction}\n{genreInstruction}\n{languageInstruction}{customInstruction}\n\n"
    "Scene content (only this one scene):\n{sceneContent}\n\n"
    "Respond only with the title, without further explanations or quotation marks."
)

DEFAULT_SYSTEM_MESSAGE = (
    "You are a creative writing partner. Continue the author's story in their "
    "voice, staying consistent with the established characters and world."
)

BEAT_TEMPLATE = """<message role="system">{systemMessage}</message>
<message role="user">
<storyContext title="{storyTitle}">
{codexEntries}
<storySoFar>
{storySoFar}
</storySoFar>
<currentScene>
{sceneFullText}
</currentScene>
</storyContext>
<beatRequest>
  {pointOfView}
  <writingStyle>{writingStyle}</writingStyle>
  <length>Write about {wordCount} words.</length>
  <beat>{prompt}</beat>
</beatRequest>
</message>"""

LANGUAGE_INSTRUCTIONS: dict[str, str] = {
    "de": "Antworte auf Deutsch.",
    "fr": "Réponds en français.",
    "es": "Responde en español.",
    "ja": "日本語で回答してください。",
    "en": "Respond in English.",
}

DEFAULT_LANGUAGE_INSTRUCTION = (
    "Write the summary in the same language as the scene content."
)


def language_instruction(language: str | None) -> str:
    return LANGUAGE_INSTRUCTIONS.get((language or "").lower(), DEFAULT_LANGUAGE_INSTRUCTION)
