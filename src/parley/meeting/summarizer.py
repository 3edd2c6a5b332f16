"""
AI summarization client using Anthropic's Claude API.

Generates a meeting summary and action items with anti-hallucination
safeguards and retry logic.
"""

import logging
import os
import re
import time
from typing import Callable, List, Optional

from .models import Meeting, MeetingSummary

logger = logging.getLogger(__name__)


class SummarizationError(Exception):
    """Raised when no summary could be produced."""


class SummarizerClient:
    """Client for AI-powered meeting summarization."""

    MODEL = "claude-sonnet-4-5-20250929"
    MAX_RETRIES = 3
    INITIAL_RETRY_DELAY = 2.0  # seconds

    def __init__(
        self,
        api_key: Optional[str] = None,
        client=None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None
    ):
        """
        Initialize summarizer client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            client: Pre-built client exposing messages.create (skips the key check)
            model: Model id, defaults to MODEL
            max_retries: Attempts before giving up, defaults to MAX_RETRIES
        """
        self.model = model or self.MODEL
        self.max_retries = max_retries or self.MAX_RETRIES

        # Lazy import anthropic to avoid import errors if not installed
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package not installed. "
                "Install with: pip install anthropic>=0.40.0"
            )
        self.anthropic = anthropic

        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not found in environment or provided")
        self.client = anthropic.Anthropic(api_key=self.api_key)

    def summarize(
        self,
        meeting: Meeting,
        status_callback: Optional[Callable[[str], None]] = None
    ) -> MeetingSummary:
        """
        Summarize a meeting's transcript.

        Args:
            meeting: Meeting to summarize (not modified)
            status_callback: Optional callback for status updates

        Returns:
            MeetingSummary with the summary text and action items

        Raises:
            SummarizationError: If summarization fails after all retries
        """
        if not meeting.segments:
            return MeetingSummary(summary="No speech was transcribed in this meeting.")

        # Only the transcript; a previous summary would bias the new one
        transcript = meeting.generate_markdown(include_summary=False)
        response_text = self._complete(self._build_prompt(transcript), status_callback)
        return self.parse_response(response_text)

    def _complete(self, prompt: str, status_callback: Optional[Callable[[str], None]] = None) -> str:
        # Retry with exponential backoff
        last_error = None
        for attempt in range(self.max_retries):
            try:
                if attempt > 0:
                    delay = self.INITIAL_RETRY_DELAY * (2 ** (attempt - 1))
                    if status_callback:
                        status_callback(f"Retrying in {delay:.0f}s...")
                    logger.info(f"Summary attempt {attempt + 1}/{self.max_retries} in {delay:.0f}s")
                    time.sleep(delay)

                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=4096,
                    temperature=0.0,  # Deterministic for consistency
                    messages=[
                        {
                            "role": "user",
                            "content": prompt
                        }
                    ]
                )

                text = response.content[0].text

                if status_callback:
                    status_callback("Summary generated successfully")

                return text

            except self.anthropic.APIConnectionError as e:
                last_error = f"Network error: {e}"
            except self.anthropic.RateLimitError as e:
                last_error = f"Rate limit exceeded: {e}"
            except self.anthropic.APIStatusError as e:
                last_error = f"API error ({e.status_code}): {e.message}"
            except Exception as e:
                last_error = f"Unexpected error: {e}"
            logger.warning(f"Summary attempt {attempt + 1} failed: {last_error}")

        # All retries exhausted
        raise SummarizationError(f"Summarization failed after {self.max_retries} attempts: {last_error}")

    @staticmethod
    def parse_response(text: str) -> MeetingSummary:
        """
        Split the model's markdown into the summary and action items.

        Falls back to the whole response as the summary when the expected
        headings are missing.
        """
        sections = {}
        current = None
        for line in text.splitlines():
            heading = re.match(r'^#{1,3}\s+(.+?)\s*$', line)
            if heading:
                current = heading.group(1).strip().lower()
                sections[current] = []
            elif current is not None:
                sections[current].append(line)

        summary_lines = sections.get("summary")
        summary = "\n".join(summary_lines).strip() if summary_lines is not None else text.strip()

        action_items: List[str] = []
        for line in sections.get("action items", []):
            item = re.match(r'^\s*[-*]\s+(?:\[[ xX]\]\s*)?(.+?)\s*$', line)
            if item:
                action_items.append(item.group(1))

        # "None" placeholders are not action items
        action_items = [a for a in action_items if a.lower().rstrip('.') != "no action items assigned"]
        return MeetingSummary(summary=summary, action_items=action_items)

    def _build_prompt(self, transcript_content: str) -> str:
        """
        Build the summarization prompt with anti-hallucination guidelines.

        Args:
            transcript_content: Full transcript markdown

        Returns:
            Complete prompt string
        """
        return f"""You are a meeting summarization assistant. Your task is to create an accurate summary of the following meeting transcript.

**CRITICAL RULES (Anti-Hallucination):**
1. **Only use information from the transcript** - never add external knowledge or assumptions
2. **Preserve exact technical terms, names, and numbers** - don't paraphrase domain-specific terminology
3. **Keep speaker labels as-is** - if transcript shows "Speaker 1", use "Speaker 1" (don't guess real names)
4. **Don't infer unspoken intent** - if something wasn't explicitly said, don't add it
5. **Preserve uncertainty** - if speakers were uncertain or debating, reflect that

**OUTPUT FORMAT:**

## Summary
[1-3 paragraphs capturing the meeting's purpose, key outcomes, and decisions]

## Action Items
[One bullet per task: "- Owner: task". If no action items exist, write "- No action items assigned."]

---

**MEETING TRANSCRIPT:**

{transcript_content}

---

**Generate the summary now, using exactly the two headings above:**"""
