"""
ReviewDesk - Reply Coach
Two reply suggestions per review from OpenAI, with template fallback
"""
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests
from sqlalchemy import update

from reviewdesk.config import PipelineSettings
from reviewdesk.database import db
from reviewdesk.exceptions import ReplyGenerationFailure
from reviewdesk.models.db_models import DBReview, ReplyState
from reviewdesk.services.http_client import call_json

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = 'https://api.openai.com/v1/chat/completions'

TONE_INSTRUCTIONS = {
    'professional': 'Write in a professional, courteous tone. Be formal but warm.',
    'friendly': 'Write in a friendly, conversational tone. Be warm and personable.',
    'grateful': 'Write in a deeply grateful tone. Express sincere appreciation.',
    'brief': 'Write very concisely. Keep it short and to the point.',
}
DEFAULT_TONE = 'professional'

SYSTEM_PROMPT = (
    'You are an expert customer service representative who writes perfect review responses. '
    'Always respond with valid JSON. Never wrap JSON in markdown code blocks.'
)


def normalize_tone(tone: Optional[str]) -> str:
    tone = (tone or '').strip().lower()
    return tone if tone in TONE_INSTRUCTIONS else DEFAULT_TONE


def word_count(text: str) -> int:
    return len(text.split())


@dataclass
class ReplyDraft:
    option1: str
    option2: str
    tone: str
    word_count: List[int] = field(default_factory=list)  # [min, max]
    fallback: bool = False

    def __post_init__(self):
        if not self.word_count:
            counts = [word_count(self.option1), word_count(self.option2)]
            self.word_count = [min(counts), max(counts)]

    def to_dict(self) -> dict:
        return {
            'option1': self.option1,
            'option2': self.option2,
            'tone': self.tone,
            'word_count': list(self.word_count)
        }


class ReplyCoach:
    """Drafts replies for stored reviews"""

    def __init__(self, settings: PipelineSettings, session: requests.Session = None):
        self.settings = settings
        self.session = session

    def draft_replies(self, review: DBReview, tone: str = None, business_name: str = None) -> ReplyDraft:
        """
        Generate two reply variants for a review.

        Never raises: if the generation service is missing, slow or returns
        garbage, deterministic templates come back with fallback=True.
        Not deduplicated, so every call may spend API quota.
        """
        tone = normalize_tone(tone)
        business_name = business_name or (review.business.name if review.business else 'our team')

        try:
            return self._generate(review, tone, business_name)
        except ReplyGenerationFailure as e:
            logger.warning(f"Reply generation failed for {review.id}, using fallback: {e}")
        except Exception as e:
            logger.error(f"Unexpected reply generation error for {review.id}: {e}")

        return self.fallback_replies(review, tone, business_name)

    def _generate(self, review: DBReview, tone: str, business_name: str) -> ReplyDraft:
        if not self.settings.openai_api_key:
            raise ReplyGenerationFailure('OpenAI API key not configured')

        prompt = self._build_prompt(review, tone, business_name)
        result = call_json(
            'POST',
            OPENAI_CHAT_URL,
            self.settings.reply_timeout,
            session=self.session,
            headers={
                'Authorization': f'Bearer {self.settings.openai_api_key}',
                'Content-Type': 'application/json'
            },
            json={
                'model': self.settings.reply_model,
                'messages': [
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': prompt}
                ],
                'max_tokens': 400,
                'temperature': 0.7
            }
        )

        if not result.ok:
            raise ReplyGenerationFailure(result.error or 'generation request failed')

        try:
            content = result.data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            raise ReplyGenerationFailure('OpenAI API returned empty response')

        parsed = self._parse_json(content)
        option1 = str(parsed.get('option1') or '').strip()
        option2 = str(parsed.get('option2') or '').strip()
        if not option1 or not option2:
            raise ReplyGenerationFailure('response missing reply options')

        logger.info(f"Generated {tone} reply options for {review.id}")
        return ReplyDraft(option1=option1, option2=option2, tone=tone)

    def _build_prompt(self, review: DBReview, tone: str, business_name: str) -> str:
        return f"""You are a customer service expert helping a local business respond to reviews.

BUSINESS CONTEXT:
- Business: {business_name}
- Customer: {review.author or 'the customer'}
- Platform: {review.platform}
- Rating: {review.rating}/5 stars
- Review: "{review.body or ''}"

TONE: {TONE_INSTRUCTIONS[tone]}

GUIDELINES:
- Be brief, grateful, and specific
- Reference specific details from their review
- Thank them by name
- Do NOT make promises or offer incentives
- Do NOT ask for anything in return
- Keep it under 100 words
- For low ratings, acknowledge the problem and invite them to get in touch

Generate 2 different reply options. Return as JSON:
{{
  "option1": "First reply option",
  "option2": "Second reply option"
}}"""

    @staticmethod
    def _parse_json(content: str) -> dict:
        text = (content or '').strip()
        if text.startswith('```'):
            text = text.strip('`')
            if text.lower().startswith('json'):
                text = text[4:]
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            raise ReplyGenerationFailure('response was not valid JSON')
        if not isinstance(parsed, dict):
            raise ReplyGenerationFailure('response JSON was not an object')
        return parsed

    @staticmethod
    def fallback_replies(review: DBReview, tone: str, business_name: str) -> ReplyDraft:
        """Deterministic templates keyed on the rating"""
        name = review.author or 'there'
        rating = review.rating or 0

        if rating >= 4:
            option1 = (f"Thank you {name} for the {rating}-star review! We're thrilled you had a great "
                       f"experience with {business_name}. We appreciate your feedback and look forward "
                       f"to serving you again soon.")
            option2 = (f"Hi {name}, thank you so much for taking the time to share your experience! "
                       f"We're delighted to hear about your visit to {business_name}. "
                       f"Your feedback means the world to us.")
        elif rating == 3:
            option1 = (f"Thank you {name} for your feedback. We're glad parts of your visit to "
                       f"{business_name} went well, and we'd love to hear how we can earn five stars next time.")
            option2 = (f"Hi {name}, thanks for taking the time to review {business_name}. "
                       f"Your comments help us improve, and we hope to see you again soon.")
        else:
            option1 = (f"Hi {name}, we're sorry your experience with {business_name} fell short. "
                       f"Please reach out to us directly so we can make this right.")
            option2 = (f"Thank you for letting us know, {name}. This isn't the experience we want for "
                       f"our customers at {business_name}. We'd appreciate the chance to talk with you "
                       f"and resolve it.")

        if tone == 'brief':
            option1 = option1.split('. ')[0].rstrip('.!') + '.'
            option2 = option2.split('. ')[0].rstrip('.!') + '.'

        return ReplyDraft(option1=option1, option2=option2, tone=tone, fallback=True)

    def draft_for_review(self, review: DBReview, tone: str = None, force: bool = False) -> Optional[ReplyDraft]:
        """
        Draft replies and store option1 on the review.

        Only reviews in reply_state 'none' are drafted. With force set,
        'drafted' and 'generating' are reclaimed too, so a draft left behind
        by a dead worker never blocks the owner. The state flip to 'generating'
        is a conditional update, so two automatic drafts can't both spend quota
        on the same review.

        Returns:
            The draft, or None if the review wasn't eligible
        """
        allowed = [ReplyState.NONE]
        if force:
            allowed.extend([ReplyState.DRAFTED, ReplyState.GENERATING])
        # A failed draft never leaves the review stuck in generating
        previous_state = ReplyState.NONE if review.reply_state == ReplyState.GENERATING else review.reply_state

        claimed = db.session.execute(
            update(DBReview)
            .where(DBReview.id == review.id, DBReview.reply_state.in_(allowed))
            .values(reply_state=ReplyState.GENERATING)
        )
        db.session.commit()
        if claimed.rowcount != 1:
            logger.info(f"Skipping reply draft for {review.id}: state is {review.reply_state}")
            return None

        db.session.refresh(review)
        try:
            draft = self.draft_replies(review, tone)
            review.draft_text = draft.option1
            review.reply_state = ReplyState.DRAFTED
            db.session.commit()
        except Exception as e:
            logger.error(f"Failed to store reply draft for {review.id}: {e}")
            db.session.rollback()
            review.reply_state = previous_state
            db.session.commit()
            raise

        return draft
