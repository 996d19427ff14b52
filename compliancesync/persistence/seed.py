from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import RequirementTemplate
from compliancesync.persistence.repos import templates as templates_repo


# Baseline regulatory catalog loaded by scripts/seed_templates.py.
TEMPLATE_CATALOG: list[dict[str, Any]] = [
    {
        "id": "sec-ria-001",
        "regulatory_framework": "sec_ria",
        "title": "Code of Ethics",
        "description": "Establish and maintain a written code of ethics that addresses key aspects of fiduciary duty, "
        "with annual acknowledgement by every supervised person.",
        "category": "policy_management",
        "authority": "SEC Rule 204A-1",
        "evidence_types": ["signed_acknowledgement", "policy_document"],
        "frequency": "annual",
    },
    {
        "id": "sec-ria-002",
        "regulatory_framework": "sec_ria",
        "title": "Annual Compliance Review",
        "description": "Conduct an annual review of the adequacy and effectiveness of the compliance program.",
        "category": "risk_management",
        "authority": "SEC Rule 206(4)-7",
        "evidence_types": ["review_memo", "board_minutes"],
        "frequency": "annual",
    },
    {
        "id": "sec-ria-003",
        "regulatory_framework": "sec_ria",
        "title": "Books and Records Retention",
        "description": "Retain required books and records in an easily accessible place for the mandated period.",
        "category": "recordkeeping",
        "authority": "SEC Rule 204-2",
        "evidence_types": ["retention_schedule", "archive_log"],
        "frequency": "ongoing",
    },
    {
        "id": "sec-ria-004",
        "regulatory_framework": "sec_ria",
        "title": "Privacy Notice Delivery",
        "description": "Deliver initial and annual privacy notices to clients describing information sharing practices.",
        "category": "privacy_security",
        "authority": "Regulation S-P",
        "evidence_types": ["notice_copy", "delivery_log"],
        "frequency": "annual",
    },
    {
        "id": "finra-001",
        "regulatory_framework": "finra",
        "title": "Annual Compliance Meeting",
        "description": "Hold an annual compliance meeting with each registered representative.",
        "category": "employee_training",
        "authority": "FINRA Rule 3110(a)(7)",
        "evidence_types": ["attendance_record", "meeting_agenda"],
        "frequency": "annual",
    },
    {
        "id": "finra-002",
        "regulatory_framework": "finra",
        "title": "Written Supervisory Procedures",
        "description": "Establish, maintain and enforce written procedures to supervise the types of business engaged in.",
        "category": "policy_management",
        "authority": "FINRA Rule 3110(b)",
        "evidence_types": ["policy_document", "approval_record"],
        "frequency": "annual",
    },
    {
        "id": "finra-003",
        "regulatory_framework": "finra",
        "title": "Communications Review",
        "description": "Review and approve retail communications before first use.",
        "category": "business_practices",
        "authority": "FINRA Rule 2210",
        "evidence_types": ["approval_record", "communication_copy"],
        "frequency": "ongoing",
    },
    {
        "id": "ins-001",
        "regulatory_framework": "state_insurance",
        "title": "Producer License Renewal",
        "description": "Keep resident and non-resident producer licenses current, including continuing education.",
        "category": "licensing",
        "authority": "State Producer Licensing Model Act",
        "evidence_types": ["license_certificate", "ce_transcript"],
        "frequency": "annual",
    },
    {
        "id": "ins-002",
        "regulatory_framework": "state_insurance",
        "title": "Suitability Review",
        "description": "Document suitability determinations for annuity recommendations.",
        "category": "consumer_protection",
        "authority": "NAIC Suitability in Annuity Transactions Model Regulation",
        "evidence_types": ["suitability_form"],
        "frequency": "ongoing",
    },
    {
        "id": "hipaa-001",
        "regulatory_framework": "hipaa",
        "title": "Security Risk Assessment",
        "description": "Conduct periodic security risk assessments to identify threats and vulnerabilities to ePHI.",
        "category": "privacy_security",
        "authority": "45 CFR 164.308(a)(1)",
        "evidence_types": ["risk_assessment_report"],
        "frequency": "annual",
    },
    {
        "id": "hipaa-002",
        "regulatory_framework": "hipaa",
        "title": "Business Associate Agreements",
        "description": "Execute business associate agreements with every vendor handling protected health information.",
        "category": "business_associates",
        "authority": "45 CFR 164.502(e)",
        "evidence_types": ["signed_agreement"],
        "frequency": "ongoing",
    },
    {
        "id": "hipaa-003",
        "regulatory_framework": "hipaa",
        "title": "Workforce Security Training",
        "description": "Provide security awareness training to all workforce members.",
        "category": "employee_training",
        "authority": "45 CFR 164.308(a)(5)",
        "evidence_types": ["training_record", "attendance_record"],
        "frequency": "annual",
    },
    {
        "id": "hipaa-004",
        "regulatory_framework": "hipaa",
        "title": "Patient Access Requests",
        "description": "Respond to patient requests for access to their records within required timeframes.",
        "category": "patient_rights",
        "authority": "45 CFR 164.524",
        "evidence_types": ["request_log"],
        "frequency": "ongoing",
    },
]


async def seed_templates(session: AsyncSession, catalog: list[dict[str, Any]] | None = None) -> tuple[int, int]:
    # Insert missing templates and refresh existing ones; returns (created, updated).
    created = 0
    updated = 0
    for entry in catalog or TEMPLATE_CATALOG:
        template = await templates_repo.get_template(session, entry["id"])
        if template is None:
            session.add(RequirementTemplate(is_active=True, **entry))
            created += 1
            continue
        changed = False
        for key, value in entry.items():
            if getattr(template, key) != value:
                setattr(template, key, value)
                changed = True
        if changed:
            updated += 1
    await session.commit()
    return created, updated
