"""Deterministic sample data for demo mode.

Populates a record store with a handful of clients, forms, feedback
spread over recent days, and a couple of reports, so the dashboard has
something to show without a remote record service. A seeded
``random.Random`` keeps the data identical between runs.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Any

from ledger.src.models import (
    ClientStatus,
    FormCategory,
    FormStatus,
    QuestionType,
    ReportFormat,
    ReportStatus,
    ReportType,
)
from ledger.src.store import RecordStore

logger = logging.getLogger(__name__)

_CLIENTS: list[dict[str, Any]] = [
    {"name": "Acme Corporation", "company": "Acme", "industry": "Manufacturing"},
    {"name": "Blue Harbor Hotels", "company": "Blue Harbor", "industry": "Hospitality"},
    {"name": "Cedar Health", "company": "Cedar Health Group", "industry": "Healthcare"},
    {"name": "Delta Logistics", "company": "Delta", "industry": "Logistics"},
    {"name": "Evergreen Retail", "company": "Evergreen", "industry": "Retail"},
    {"name": "Fjord Software", "company": "Fjord", "industry": "Technology"},
    {"name": "Granite Bank", "company": "Granite Financial", "industry": "Finance"},
    {"name": "Harbor Events", "company": None, "industry": None},
]

_STATUSES = [
    ClientStatus.ACTIVE,
    ClientStatus.ACTIVE,
    ClientStatus.ACTIVE,
    ClientStatus.PENDING,
    ClientStatus.ACTIVE,
    ClientStatus.INACTIVE,
    ClientStatus.ACTIVE,
    ClientStatus.BLOCKED,
]

_FORMS: list[dict[str, Any]] = [
    {
        "title": "Customer Satisfaction Survey",
        "description": "Quarterly satisfaction check-in",
        "category": FormCategory.SATISFACTION,
        "status": FormStatus.PUBLISHED,
        "questions": [
            {"id": "q_overall", "type": QuestionType.RATING, "text": "Overall satisfaction"},
            {"id": "q_support", "type": QuestionType.RATING, "text": "Support quality"},
            {"id": "q_comment", "type": QuestionType.TEXT, "text": "Anything else?"},
        ],
    },
    {
        "title": "Product Feedback",
        "description": "Feature and usability ratings",
        "category": FormCategory.PRODUCT,
        "status": FormStatus.PUBLISHED,
        "questions": [
            {"id": "q_usability", "type": QuestionType.SCALE, "text": "Ease of use"},
            {"id": "q_value", "type": QuestionType.RATING, "text": "Value for money"},
        ],
    },
    {
        "title": "Event Follow-up",
        "description": "Post-event questionnaire",
        "category": FormCategory.EVENT,
        "status": FormStatus.DRAFT,
        "questions": [
            {
                "id": "q_format",
                "type": QuestionType.MULTIPLE,
                "text": "Preferred format",
                "options": ["In person", "Online", "Hybrid"],
            },
        ],
    },
]

_SOURCES = ["website", "email", "mobile_app", "social_media", "in_store"]
_SOURCE_WEIGHTS = [40, 25, 20, 10, 5]


def seed_demo_data(
    store: RecordStore,
    now: datetime | None = None,
    days: int = 45,
    seed: int = 7,
) -> dict[str, int]:
    """Populate *store* with sample records.

    Args:
        store: Store to populate (normally backed by InMemoryBackend).
        now: Reference time for "recent" data. Defaults to now.
        days: How many days back feedback is spread.
        seed: Random seed; the same seed gives the same data.

    Returns:
        Count of records created per kind.
    """
    rng = random.Random(seed)
    ref = now or datetime.now()

    clients = []
    for index, (entry, status) in enumerate(zip(_CLIENTS, _STATUSES)):
        slug = entry["name"].split()[0].lower()
        clients.append(
            store.clients.create(
                {
                    **entry,
                    "email": f"contact@{slug}.example",
                    "phone": f"+1 (555) 010-{index:04d}",
                    "status": status,
                    "created_at": ref - timedelta(days=days + 30 - index),
                }
            )
        )

    forms = [
        store.forms.create({**entry, "created_at": ref - timedelta(days=days + 10)})
        for entry in _FORMS
    ]
    rated_forms = [f for f in forms if f.status == FormStatus.PUBLISHED]

    feedback_count = 0
    contacted: set[str] = set()
    per_form: dict[str, int] = {}
    for offset in range(days, -1, -1):
        day = ref - timedelta(days=offset)
        for _ in range(rng.randint(0, 4)):
            client = rng.choice(clients[:-1])
            form = rng.choice(rated_forms)
            rated = [q for q in form.questions if q.type in (QuestionType.RATING, QuestionType.SCALE)]
            values = [rng.choice([2, 3, 4, 4, 5, 5]) for _ in rated]
            store.feedback.create(
                {
                    "client_id": client.id,
                    "form_id": form.id,
                    "submitted_at": day.replace(
                        hour=rng.randint(8, 19), minute=rng.randint(0, 59), second=0, microsecond=0
                    ),
                    "ratings": [
                        {"question_ref": q.id, "value": v} for q, v in zip(rated, values)
                    ],
                    "source": rng.choices(_SOURCES, weights=_SOURCE_WEIGHTS)[0],
                }
            )
            feedback_count += 1
            contacted.add(client.id)
            per_form[form.id] = per_form.get(form.id, 0) + 1

    for client_id in sorted(contacted):
        store.clients.update(client_id, {"last_contact": ref})
        store.refresh_client_stats(client_id)
    for form_id, responses in per_form.items():
        store.forms.update(form_id, {"responses": responses})

    reports = [
        store.reports.create(
            {
                "title": "Monthly Feedback Summary",
                "type": ReportType.FEEDBACK_SUMMARY,
                "description": "Headline metrics for the last 30 days",
                "date_range": 30,
                "format": ReportFormat.CSV,
                "status": ReportStatus.PENDING,
            }
        ),
        store.reports.create(
            {
                "title": "Client Performance Q-review",
                "type": ReportType.CLIENT_REPORT,
                "description": "Responses and ratings per client",
                "date_range": 90,
                "format": ReportFormat.EXCEL,
                "status": ReportStatus.PENDING,
            }
        ),
    ]

    counts = {
        "clients": len(clients),
        "forms": len(forms),
        "feedback": feedback_count,
        "reports": len(reports),
    }
    logger.info(
        "Seeded demo data: %d clients, %d forms, %d feedback, %d reports",
        counts["clients"],
        counts["forms"],
        counts["feedback"],
        counts["reports"],
    )
    return counts
