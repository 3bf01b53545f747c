"""
Content Analysis Module using the OpenAI API

This module is responsible for:
1. Describing a probe frame and deciding what else the video needs
   (transcript? more keyframes?)
2. Describing additional keyframes in free text
3. Rating the importance of a video from all gathered evidence
4. Generating a short filename slug
5. Transcribing extracted audio

JSON answers go through one validation step (`parse_model_json`) that
strips markdown fences and checks the payload against a pydantic schema.
Nothing here retries; network errors reach the caller unchanged.
"""

import base64
import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from config import Settings
from errors import ResponseParseError
from models import AnalysisResult, FrameAnalysisResponse, ImportanceAssessment

logger = logging.getLogger(__name__)

SchemaT = TypeVar('SchemaT', bound=BaseModel)

NO_SPEECH_MARKER = "No speech detected in video."


def create_client(settings: Settings) -> AsyncOpenAI:
    """Build the API client; fails when the credential is missing."""
    return AsyncOpenAI(
        api_key=settings.require_api_key(),
        max_retries=0,
        timeout=settings.request_timeout,
    )


def _strip_fences(text: str) -> str:
    text = text.strip()
    fenced = re.match(r'^```(?:json)?\s*(.*?)\s*```$', text, re.DOTALL | re.IGNORECASE)
    if fenced:
        return fenced.group(1).strip()
    return text


def parse_model_json(text: Optional[str], schema: Type[SchemaT]) -> SchemaT:
    """
    Validate a model answer against a schema.

    Args:
        text: Raw message content
        schema: Pydantic model describing the expected object

    Returns:
        Validated schema instance

    Raises:
        ResponseParseError: On missing content, invalid JSON or schema mismatch
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from the AI service", raw=text)

    body = _strip_fences(text)
    if not body.startswith('{'):
        # Tolerate a sentence before or after the object
        match = re.search(r'\{.*\}', body, re.DOTALL)
        if match:
            body = match.group()

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}", raw=text) from e

    if not isinstance(payload, dict):
        raise ResponseParseError("Response is not a JSON object", raw=text)

    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        fields = ', '.join('.'.join(str(p) for p in err['loc']) or '<root>' for err in e.errors())
        raise ResponseParseError(f"Response does not match {schema.__name__} (fields: {fields})", raw=text) from e


def _image_url(image_bytes: bytes) -> str:
    return f"data:image/jpeg;base64,{base64.b64encode(image_bytes).decode('ascii')}"


class ContentAnalyzer:
    """
    Typed request/response wrapper around vision, completion and
    transcription calls.
    """

    INITIAL_FRAME_PROMPT = """Analyze this image and return a JSON object with EXACTLY this format:
{{
  "description": "A clear, factual description without flowery language",
  "needsTranscript": true/false,
  "additionalKeyframes": number between 0-4
}}

CRITICAL TRANSCRIPT RULES:
1. ALWAYS set needsTranscript=true if:
   - Video is longer than 5 seconds
   - There are any people visible
   - There are any children visible
   - There appears to be any conversation or interaction
   - There is any text or signage visible
   - There is any audio that might contain speech
2. Only set needsTranscript=false if:
   - Video is very short (under 5 seconds)
   - Contains only scenery or objects
   - No people or text visible
   - No apparent conversation or interaction

Guidelines:
- description: Keep it simple and factual
- needsTranscript: Follow the rules above strictly
- additionalKeyframes: Request more if scene is dynamic or multiple angles would help

The video is {duration:.1f} seconds long.
Respond ONLY with the JSON object, no other text."""

    DESCRIBE_FRAME_PROMPT = "Briefly describe what is happening in this image."

    IMPORTANCE_PROMPT = """Analyze this video content and provide a JSON response with two parts:
1. A clear, factual description of the complete video content
2. An importance rating (1-9, where 1 = absolutely must keep, 9 = can delete)

Content to analyze:
Initial scene: {initial}{additional}
{transcript}
Duration: {duration:.1f} seconds

Return a JSON object with EXACTLY this format:
{{
  "importance": number between 1-9,
  "reason": "brief explanation of the rating",
  "fullDescription": "clear, factual description of the complete video content"
}}

CRITICAL IMPORTANCE RATING GUIDELINES:
Rating 1-2 (Must Keep Forever):
- ANY content with children/kids (playing, learning, milestones, daily life)
- Family pets (any activity, behavior, or interaction)
- Family milestones or achievements (birthdays, first steps, learning new skills)
- Holiday celebrations
- Family gatherings
- School events
- Sports/activities involving family members

Rating 3-4 (Very Important):
- Extended family events
- Trips and vacations
- Home videos showing family life
- Friend gatherings
- Notable weather events

Rating 5-7 (Less Important):
- Scenic shots without family
- Random events or activities
- General location shots
- Test videos

Rating 8-9 (Least Important):
- Duplicate content
- Blurry or unclear footage
- Accidental recordings
- Random non-family content

Guidelines for the full description:
- Focus on WHO is in the video (especially family members)
- Describe what they're doing
- Include key details from all available frames
- Mention any significant audio/dialogue
- Keep it factual but don't minimize the significance of family moments

Remember: If you see kids, pets, or family activities, this is AUTOMATICALLY a high importance video (rating 1-2).

Respond ONLY with the JSON object, no other text."""

    SHORT_NAME_PROMPT = """Create a very short (3-5 words) filename-friendly description of this scene: "{description}"
Response should:
1. Use only lowercase letters, numbers, and hyphens
2. Be clear but concise
3. Capture the key content
4. NOT include any quotes or special formatting
5. NOT include importance rating (will be added separately)

Example good responses:
dirt-track-racing
kids-birthday-party
beach-sunset-walk
family-car-trip

Example bad responses:
"dirt-track-racing"
A dirt track racing video
[dirt-track-racing]
{importance}_dirt-track-racing

Respond with ONLY the short name, no other text."""

    def __init__(self, client: AsyncOpenAI, settings: Settings):
        """
        Initialize the analyzer.

        Args:
            client: Async OpenAI client (or anything with the same surface)
            settings: Model names and token budgets
        """
        self.client = client
        self.settings = settings

    async def _complete(self, model: str, content, max_tokens: int, temperature: Optional[float] = None) -> str:
        kwargs = {
            'model': model,
            'messages': [{'role': 'user', 'content': content}],
            'max_tokens': max_tokens,
        }
        if temperature is not None:
            kwargs['temperature'] = temperature

        response = await self.client.chat.completions.create(**kwargs)

        if not response.choices:
            raise ResponseParseError("AI response did not contain any choices")
        text = response.choices[0].message.content
        if text is None:
            raise ResponseParseError("AI response choice has no content")
        logger.debug(f"Raw response ({model}): {text}")
        return text.strip()

    async def analyze_initial_frame(self, image_bytes: bytes, duration: float) -> AnalysisResult:
        """
        Describe the probe frame and decide the follow-up stages.

        Args:
            image_bytes: JPEG data of the probe frame
            duration: Video duration in seconds

        Returns:
            AnalysisResult; needs_transcript is forced on for long videos
        """
        prompt = self.INITIAL_FRAME_PROMPT.format(duration=duration)
        text = await self._complete(
            self.settings.vision_model,
            [
                {'type': 'text', 'text': prompt},
                {'type': 'image_url', 'image_url': {'url': _image_url(image_bytes)}},
            ],
            self.settings.probe_max_tokens,
        )
        response = parse_model_json(text, FrameAnalysisResponse)
        result = AnalysisResult.from_response(
            response, duration, self.settings.transcript_duration_threshold
        )
        logger.info(
            f"Initial analysis: transcript={'yes' if result.needs_transcript else 'no'}, "
            f"extra keyframes={result.additional_keyframes}"
        )
        return result

    async def describe_frame(self, image_bytes: bytes) -> str:
        """Free-text description of one keyframe."""
        text = await self._complete(
            self.settings.vision_model,
            [
                {'type': 'text', 'text': self.DESCRIBE_FRAME_PROMPT},
                {'type': 'image_url', 'image_url': {'url': _image_url(image_bytes)}},
            ],
            self.settings.describe_max_tokens,
        )
        if not text:
            raise ResponseParseError("Frame description is empty")
        return text

    async def determine_importance(
        self,
        initial_description: str,
        additional_descriptions: List[str],
        transcript: Optional[str],
        duration: float
    ) -> ImportanceAssessment:
        """
        Rate the video from everything gathered so far.

        Args:
            initial_description: Probe frame description
            additional_descriptions: Keyframe descriptions (may be empty)
            transcript: Transcript text, or None/"" when there is no speech
            duration: Video duration in seconds

        Returns:
            ImportanceAssessment with a rating in 1-9
        """
        additional = ''
        if additional_descriptions:
            additional = "\n\nAdditional scenes:\n" + "\n".join(additional_descriptions)
        transcript_block = f"\nTranscript: {transcript}" if transcript else f"\n{NO_SPEECH_MARKER}"

        prompt = self.IMPORTANCE_PROMPT.format(
            initial=initial_description,
            additional=additional,
            transcript=transcript_block,
            duration=duration,
        )
        text = await self._complete(self.settings.text_model, prompt, self.settings.importance_max_tokens)
        assessment = parse_model_json(text, ImportanceAssessment)
        logger.info(f"Importance: {assessment.importance}/9 - {assessment.reason}")
        return assessment

    async def generate_short_name(self, description: str, importance: int) -> str:
        """Ask for a 3-5 word hyphenated slug (unsanitized)."""
        prompt = self.SHORT_NAME_PROMPT.format(description=description, importance=importance)
        return await self._complete(
            self.settings.text_model,
            prompt,
            self.settings.name_max_tokens,
            temperature=self.settings.name_temperature,
        )

    async def transcribe_audio(self, audio_path: Path) -> str:
        """
        Transcribe an audio file.

        Returns:
            Transcript text; "" when the service heard nothing
        """
        with open(audio_path, 'rb') as audio_file:
            transcription = await self.client.audio.transcriptions.create(
                model=self.settings.transcription_model,
                file=audio_file,
            )
        text = (getattr(transcription, 'text', None) or '').strip()
        logger.info(f"Transcription length: {len(text)} characters")
        return text
