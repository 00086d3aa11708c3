"""
ReviewDesk - Notification Dispatcher
Fan one event out to SMS, email and webhook channels with per-channel retry
"""
import json
import hmac
import hashlib
import logging
import smtplib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy import select, update
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To
from twilio.rest import Client as TwilioClient
from twilio.http.http_client import TwilioHttpClient
from twilio.base.exceptions import TwilioRestException

from reviewdesk.config import PipelineSettings
from reviewdesk.database import db, insert_or_skip
from reviewdesk.exceptions import NotificationDeliveryFailure
from reviewdesk.models.db_models import (
    DBNotificationChannel, DBNotificationJob, DBReview, JobStatus, NotificationChannelType, new_id
)
from reviewdesk.services.http_client import CallResult, Outcome, call_json, classify_status

logger = logging.getLogger(__name__)

# Thread pool for channel delivery
notification_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix='notify')

JOB_KEY = ['business_id', 'event_id', 'channel']


# ==========================================
# Events and results
# ==========================================

@dataclass
class Event:
    """Something a business should hear about"""
    event_id: str
    event_type: str
    business_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    review_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    EVENT_REVIEW_RECEIVED = 'review.received'

    @classmethod
    def for_review(cls, review: DBReview) -> 'Event':
        return cls(
            event_id=f"{cls.EVENT_REVIEW_RECEIVED}:{review.id}",
            event_type=cls.EVENT_REVIEW_RECEIVED,
            business_id=review.business_id,
            review_id=review.id,
            data={
                'review_id': review.id,
                'platform': review.platform,
                'author': review.author,
                'rating': review.rating,
                'body': review.body,
                'sentiment': review.sentiment,
                'review_url': review.review_url
            }
        )

    def payload(self) -> dict:
        """Body posted to webhook channels"""
        return {
            'event_id': self.event_id,
            'event_type': self.event_type,
            'business_id': self.business_id,
            'timestamp': self.timestamp,
            'data': self.data
        }

    def subject(self) -> str:
        if self.event_type == self.EVENT_REVIEW_RECEIVED:
            return f"New {self.data.get('rating')}-star {self.data.get('platform', '')} review"
        return f"ReviewDesk: {self.event_type.replace('_', ' ').replace('.', ' ')}"

    def message(self) -> str:
        """Short human-readable text for SMS and email"""
        if self.event_type == self.EVENT_REVIEW_RECEIVED:
            body = (self.data.get('body') or '').strip()
            if len(body) > 140:
                body = body[:137] + '...'
            text = f"{self.subject()} from {self.data.get('author') or 'a customer'}"
            return f"{text}: \"{body}\"" if body else text

        details = ', '.join(f"{k}={v}" for k, v in self.data.items() if isinstance(v, (str, int, float)))
        return f"{self.subject()}{' (' + details + ')' if details else ''}"


@dataclass
class Delivery:
    """What a sender needs; built on the dispatching thread"""
    to: str
    message: str
    channel: str
    subject: str = ''
    payload: Dict[str, Any] = field(default_factory=dict)
    secret: Optional[str] = None


@dataclass
class NotificationJobResult:
    channel: str
    status: str  # sent, failed, duplicate
    job_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None
    recorded: bool = True  # False when the job row could not be updated

    STATUS_DUPLICATE = 'duplicate'

    def to_dict(self) -> dict:
        return {
            'channel': self.channel,
            'status': self.status,
            'job_id': self.job_id,
            'attempts': self.attempts,
            'error': self.error,
            'recorded': self.recorded
        }


# ==========================================
# Senders
# ==========================================

class SmsSender:
    """Twilio messages.create"""

    def __init__(self, settings: PipelineSettings, client: TwilioClient = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> Optional[TwilioClient]:
        if self._client is None and self.settings.twilio_account_sid and self.settings.twilio_auth_token:
            self._client = TwilioClient(
                self.settings.twilio_account_sid,
                self.settings.twilio_auth_token,
                http_client=TwilioHttpClient(timeout=self.settings.notify_timeout)
            )
        return self._client

    def send(self, delivery: Delivery) -> CallResult:
        if self.client is None or not self.settings.twilio_from_number:
            return CallResult.fatal_failure('Twilio not configured')

        try:
            message = self.client.messages.create(
                body=delivery.message,
                from_=self.settings.twilio_from_number,
                to=delivery.to
            )
        except TwilioRestException as e:
            return CallResult(classify_status(e.status or 500), status_code=e.status, error=f"Twilio error: {e.msg}")
        except requests.exceptions.Timeout:
            return CallResult.transient_failure('Twilio request timeout', timed_out=True)
        except requests.exceptions.RequestException as e:
            return CallResult.transient_failure(f"Twilio connection error: {e}")

        logger.info(f"SMS sent: {message.sid}")
        return CallResult.success({'sid': message.sid})


class EmailSender:
    """SendGrid when an API key is set, otherwise SMTP"""

    def __init__(self, settings: PipelineSettings):
        self.settings = settings

    @property
    def use_sendgrid(self) -> bool:
        return bool(self.settings.sendgrid_api_key)

    @property
    def use_smtp(self) -> bool:
        return bool(self.settings.smtp_host and self.settings.smtp_user and self.settings.smtp_pass)

    def send(self, delivery: Delivery) -> CallResult:
        if self.use_sendgrid:
            return self._send_sendgrid(delivery)
        if self.use_smtp:
            return self._send_smtp(delivery)
        return CallResult.fatal_failure('Email not configured')

    def _send_sendgrid(self, delivery: Delivery) -> CallResult:
        message = Mail(
            from_email=Email(self.settings.from_email, self.settings.from_name),
            to_emails=To(delivery.to),
            subject=delivery.subject or 'ReviewDesk notification',
            plain_text_content=delivery.message
        )

        sg = SendGridAPIClient(self.settings.sendgrid_api_key)
        sg.client.timeout = self.settings.notify_timeout
        try:
            response = sg.send(message)
        except Exception as e:
            # python-http-client raises HTTPError subclasses carrying status_code
            status_code = getattr(e, 'status_code', None)
            if status_code:
                return CallResult(classify_status(status_code), status_code=status_code, error=f"SendGrid error: {status_code}")
            return CallResult.transient_failure(f"SendGrid request failed: {e}")

        if response.status_code in (200, 201, 202):
            logger.info(f"Email sent to {delivery.to}: {delivery.subject}")
            return CallResult.success(status_code=response.status_code)
        return CallResult(classify_status(response.status_code), status_code=response.status_code,
                          error=f"SendGrid error: {response.status_code}")

    def _send_smtp(self, delivery: Delivery) -> CallResult:
        msg = MIMEText(delivery.message, 'plain')
        msg['Subject'] = delivery.subject or 'ReviewDesk notification'
        msg['From'] = f"{self.settings.from_name} <{self.settings.from_email}>"
        msg['To'] = delivery.to

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port,
                              timeout=self.settings.notify_timeout) as server:
                server.starttls()
                server.login(self.settings.smtp_user, self.settings.smtp_pass)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            return CallResult.fatal_failure(f"SMTP authentication failed: {e}")
        except smtplib.SMTPRecipientsRefused as e:
            return CallResult.fatal_failure(f"SMTP recipient refused: {e}")
        except (smtplib.SMTPException, OSError) as e:
            return CallResult.transient_failure(f"SMTP error: {e}")

        logger.info(f"Email sent to {delivery.to}: {delivery.subject}")
        return CallResult.success()


class WebhookSender:
    """POST the event JSON, signed when the channel has a secret"""

    def __init__(self, settings: PipelineSettings, session: requests.Session = None):
        self.settings = settings
        self.session = session

    @staticmethod
    def sign(secret: str, body: bytes) -> str:
        signature = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
        return f"sha256={signature}"

    def send(self, delivery: Delivery) -> CallResult:
        if not delivery.to.startswith(('http://', 'https://')):
            return CallResult.fatal_failure('URL must start with http:// or https://')

        body = json.dumps(delivery.payload).encode('utf-8')
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': 'ReviewDesk-Webhook/1.0',
            'X-ReviewDesk-Event': delivery.payload.get('event_type', ''),
            'X-ReviewDesk-Event-Id': delivery.payload.get('event_id', '')
        }
        if delivery.secret:
            headers['X-ReviewDesk-Signature'] = self.sign(delivery.secret, body)

        return call_json('POST', delivery.to, self.settings.notify_timeout, session=self.session,
                         expect_json=False, data=body, headers=headers)


# ==========================================
# Dispatcher
# ==========================================

class NotificationDispatcher:
    """Creates one job per channel per event and delivers them in parallel"""

    def __init__(
        self,
        settings: PipelineSettings,
        senders: Dict[str, Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        executor: ThreadPoolExecutor = None
    ):
        self.settings = settings
        self.senders = senders if senders is not None else {
            NotificationChannelType.SMS: SmsSender(settings),
            NotificationChannelType.EMAIL: EmailSender(settings),
            NotificationChannelType.WEBHOOK: WebhookSender(settings),
        }
        self.sleep = sleep
        self.executor = executor or notification_executor

    def dispatch(self, event: Event, channels: List[DBNotificationChannel]) -> List[NotificationJobResult]:
        """
        Deliver an event on each channel.

        A (business, event_id, channel) that already has a job is reported as
        'duplicate' and not sent again, unless that job has sat in 'pending'
        longer than NOTIFY_STALE_PENDING_SECONDS, in which case it is reclaimed
        and sent. Sends run concurrently; job rows are only written from this
        thread.

        Returns:
            One result per channel, in channel order
        """
        results: List[Optional[NotificationJobResult]] = []
        pending = []

        for channel in channels:
            if channel.business_id != event.business_id:
                # Never deliver one tenant's event on another tenant's channel
                logger.error(f"Channel {channel.id} does not belong to {event.business_id}, skipping")
                continue

            delivery = Delivery(
                to=channel.target,
                message=event.message(),
                channel=channel.channel,
                subject=event.subject(),
                payload=event.payload(),
                secret=channel.secret
            )
            job_id = self._create_job(event, delivery)
            if job_id is None:
                logger.info(f"Duplicate notification {event.event_id} on {channel.channel}, skipping")
                results.append(NotificationJobResult(channel.channel, NotificationJobResult.STATUS_DUPLICATE))
                continue

            results.append(None)
            pending.append((len(results) - 1, job_id, delivery))

        futures = [
            (index, job_id, delivery, self.executor.submit(self._deliver, delivery))
            for index, job_id, delivery in pending
        ]

        for index, job_id, delivery, future in futures:
            status, attempts, error = future.result()
            recorded = self._finish_job(job_id, status, attempts, error)
            if not recorded:
                error = f"{error}; failed to record job" if error else 'failed to record job'
            results[index] = NotificationJobResult(delivery.channel, status, job_id=job_id,
                                                   attempts=attempts, error=error, recorded=recorded)

        return results

    def _create_job(self, event: Event, delivery: Delivery) -> Optional[str]:
        """Insert the job row, or reclaim a stale pending one; None means duplicate"""
        job_id = new_id('job')
        now = datetime.utcnow()
        payload = json.dumps({'to': delivery.to, 'message': delivery.message,
                              'channel': delivery.channel, 'event': delivery.payload})
        created = insert_or_skip(DBNotificationJob, {
            'id': job_id,
            'business_id': event.business_id,
            'review_id': event.review_id,
            'event_id': event.event_id,
            'event_type': event.event_type,
            'channel': delivery.channel,
            'target': delivery.to,
            'payload': payload,
            'status': JobStatus.PENDING,
            'attempts': 0,
            'created_at': now,
            'updated_at': now,
        }, JOB_KEY)
        if created:
            return job_id
        return self._reclaim_stale_job(event, delivery, payload, now)

    def _reclaim_stale_job(self, event: Event, delivery: Delivery, payload: str,
                           now: datetime) -> Optional[str]:
        # A pending row this old was left by a process that died before finishing it.
        # Bumping updated_at in the same statement means only one caller wins the claim.
        cutoff = now - timedelta(seconds=self.settings.notify_stale_pending)
        key = (
            DBNotificationJob.business_id == event.business_id,
            DBNotificationJob.event_id == event.event_id,
            DBNotificationJob.channel == delivery.channel,
        )
        claimed = db.session.execute(
            update(DBNotificationJob)
            .where(*key, DBNotificationJob.status == JobStatus.PENDING, DBNotificationJob.updated_at < cutoff)
            .values(updated_at=now, target=delivery.to, payload=payload)
        )
        db.session.commit()
        if claimed.rowcount != 1:
            return None

        job_id = db.session.scalar(select(DBNotificationJob.id).where(*key))
        logger.warning(f"Reclaimed stale pending job {job_id} for {event.event_id} on {delivery.channel}")
        return job_id

    def _deliver(self, delivery: Delivery):
        """Runs on a worker thread: retries transient failures, no database access"""
        sender = self.senders.get(delivery.channel)
        if sender is None:
            return JobStatus.FAILED, 0, f"No sender for channel '{delivery.channel}'"

        max_attempts = self.settings.notify_max_attempts
        attempts = 0
        error = None

        while attempts < max_attempts:
            attempts += 1
            try:
                result = sender.send(delivery)
            except Exception as e:
                logger.error(f"{delivery.channel} sender raised: {e}")
                return JobStatus.FAILED, attempts, f"Sender error: {e}"

            if result.ok:
                return JobStatus.SENT, attempts, None

            error = result.error
            if result.outcome == Outcome.FATAL:
                break

            if attempts < max_attempts:
                delay = self.settings.notify_backoff * (2 ** (attempts - 1))
                logger.warning(f"{delivery.channel} attempt {attempts}/{max_attempts} failed, retrying in {delay}s: {error}")
                self.sleep(delay)

        return JobStatus.FAILED, attempts, error

    def _finish_job(self, job_id: str, status: str, attempts: int, error: Optional[str]) -> bool:
        """Record the delivery outcome; False if the row could not be written"""
        job = db.session.get(DBNotificationJob, job_id)
        if job is None or job.is_terminal:
            logger.error(f"Notification job {job_id} missing or already finished, outcome not recorded")
            return False

        job.status = status
        job.attempts = attempts
        job.last_error = error
        job.updated_at = datetime.utcnow()
        if status == JobStatus.SENT:
            job.sent_at = datetime.utcnow()
        else:
            failure = NotificationDeliveryFailure(job.channel, error or "unknown error")
            logger.error(f"Notification job {job_id} to {job.target}, {attempts} attempt(s): {failure}")

        try:
            db.session.commit()
        except Exception as e:
            logger.error(f"Failed to record notification job {job_id}: {e}")
            db.session.rollback()
            return False
        return True
