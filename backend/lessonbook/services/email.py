# backend/lessonbook/services/email.py
"""
Email Service

Sends transactional email through the Resend API. Bodies are rendered from
Jinja2 templates under ``lessonbook/templates/email``.
"""

from datetime import date, time
import html
import logging
from pathlib import Path
import re
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader
import resend

from ..core.config import settings
from ..core.exceptions import ServiceException
from ..models.instructor import Instructor
from ..models.order import Lesson, Order
from ..models.student import Student

logger = logging.getLogger(__name__)

BRAND_NAME = "Lessonbook"
TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


def _format_date(value: date, format_str: str = "%d %b %Y") -> str:
    if isinstance(value, str):
        return value
    return value.strftime(format_str)


def _format_time(value: time, format_str: str = "%H:%M") -> str:
    if isinstance(value, str):
        return value
    return value.strftime(format_str)


def _format_pence(amount_pence: int) -> str:
    return f"\u00a3{amount_pence / 100:,.2f}"


class EmailService:
    """Service for sending emails using Resend API."""

    def __init__(self, from_email: Optional[str] = None):
        self.from_email = from_email or settings.from_email
        self.logger = logging.getLogger(self.__class__.__name__)
        self.env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["format_date"] = _format_date
        self.env.filters["format_time"] = _format_time

    def render(self, template_name: str, **context: Any) -> str:
        return self.env.get_template(template_name).render(brand_name=BRAND_NAME, **context)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a generic email using Resend.

        Raises:
            ServiceException: If email sending fails
        """
        if not settings.email_enabled:
            self.logger.info(f"Email disabled; skipped '{subject}' to {to_email}")
            return {"skipped": True}
        if not settings.resend_api_key:
            raise ServiceException("Resend API key not configured")
        resend.api_key = settings.resend_api_key

        email_data = {
            "from": self.from_email,
            "to": to_email,
            "subject": subject,
            "html": html_content,
            "text": text_content or self._html_to_text(html_content),
        }
        try:
            response = resend.Emails.send(email_data)
        except Exception as e:
            self.logger.error(f"Failed to send email to {to_email}: {str(e)}")
            raise ServiceException(f"Failed to send email: {str(e)}") from e

        self.logger.info(f"Email sent successfully to {to_email} - Subject: {subject}")
        return response

    def send_lesson_feedback_request(self, lesson: Lesson, student: Student, instructor: Instructor) -> Dict[str, Any]:
        if not student.email:
            raise ServiceException("Student has no email address")
        html_content = self.render(
            "email/lesson_feedback_request.html",
            student_first_name=student.first_name,
            instructor_name=instructor.name,
            lesson_date=lesson.lesson_date,
            start_time=lesson.start_time,
            feedback_url=f"{settings.frontend_url.rstrip('/')}/lessons/{lesson.id}/feedback",
        )
        return self.send_email(
            to_email=student.email,
            subject=f"How was your lesson with {instructor.name}?",
            html_content=html_content,
        )

    def send_order_confirmation(self, order: Order, student: Student) -> Dict[str, Any]:
        if not student.email:
            raise ServiceException("Student has no email address")
        first_lesson = order.lessons[0] if order.lessons else None
        html_content = self.render(
            "email/order_confirmation.html",
            student_first_name=student.first_name,
            order=order,
            instructor_name=order.instructor.name,
            first_lesson_date=first_lesson.lesson_date if first_lesson else None,
            total_price=_format_pence(order.package_total_price_pence),
            lesson_price=_format_pence(order.package_lesson_price_pence),
            orders_url=f"{settings.frontend_url.rstrip('/')}/student/orders/{order.id}",
        )
        return self.send_email(
            to_email=student.email,
            subject="Your driving lessons have been booked",
            html_content=html_content,
        )

    @staticmethod
    def _html_to_text(html_content: str) -> str:
        text = re.sub(r"<[^>]+>", " ", html_content)
        return html.unescape(re.sub(r"\s+", " ", text)).strip()
